"""LAN networking for desperados.

A multicast group session exchanges framed datagrams with every peer on the
local segment, and a subnet ranger sweeps a /24 with unicast liveness probes
to find peers that are not reachable through the group.
"""

from desperados.net.errors import (
    AddressError,
    DespError,
    InterfaceError,
    SessionClosedError,
    SessionOpenError,
)
from desperados.net.multicast import InboundMessage, MulticastSession, SessionClosed, open_session
from desperados.net.ranger import RangeScan, ScanDone, ScanPeer, ScanStep, Transport, start_scan

__all__ = [
    "AddressError",
    "DespError",
    "InboundMessage",
    "InterfaceError",
    "MulticastSession",
    "RangeScan",
    "ScanDone",
    "ScanPeer",
    "ScanStep",
    "SessionClosed",
    "SessionClosedError",
    "SessionOpenError",
    "Transport",
    "open_session",
    "start_scan",
]
