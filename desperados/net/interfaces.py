"""Local interface lookup for joining a multicast group.

A socket joining a group on a multi-homed host needs an explicit interface.
When no source address is configured we learn the primary outbound address
by "connecting" a throwaway UDP socket toward a well-known external host (no
packet is sent), then pick the up, non-loopback, multicast-capable interface
that carries that address.

Interface data comes from ``psutil``.
"""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass

import psutil
from loguru import logger

from desperados.net.errors import AddressError, InterfaceError

DEFAULT_PROBE_HOST = ("8.8.8.8", 80)


@dataclass(frozen=True)
class NetInterface:
    """One IPv4-addressed network interface."""

    name: str
    address: str
    netmask: str | None = None
    mac: str | None = None


def primary_address(probe_host: tuple[str, int] = DEFAULT_PROBE_HOST) -> str:
    """Return the local IPv4 address used to reach *probe_host*."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(probe_host)
        return s.getsockname()[0]
    except OSError as exc:
        raise InterfaceError(
            f"cannot determine primary address via {probe_host[0]}:{probe_host[1]}: {exc}"
        ) from exc
    finally:
        s.close()


def _is_multicast_capable(name: str, stats: dict) -> bool:
    st = stats.get(name)
    if st is None or not st.isup:
        return False
    # ``flags`` is a comma-separated list on psutil >= 5.9.3; older releases
    # lack it, in which case we cannot rule the interface out.
    flags = getattr(st, "flags", "")
    if flags:
        parts = flags.split(",")
        if "loopback" in parts or "multicast" not in parts:
            return False
    return True


def list_multicast_interfaces() -> list[NetInterface]:
    """Return every up, non-loopback, multicast-capable IPv4 interface.

    Interfaces without a hardware address (tunnels, most VPNs) are skipped.
    """
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, RuntimeError) as exc:
        raise InterfaceError(f"interface enumeration failed: {exc}") from exc

    out: list[NetInterface] = []
    for name, entries in addrs.items():
        if not _is_multicast_capable(name, stats):
            continue
        mac = next(
            (a.address for a in entries if a.family == psutil.AF_LINK and a.address),
            None,
        )
        if mac is None:
            continue
        for a in entries:
            if a.family != socket.AF_INET or not a.address:
                continue
            if ipaddress.IPv4Address(a.address).is_loopback:
                continue
            out.append(NetInterface(name=name, address=a.address, netmask=a.netmask, mac=mac))
    return out


def find_multicast_interface(address: str) -> NetInterface:
    """Return the multicast-capable interface carrying *address*."""
    for iface in list_multicast_interfaces():
        if iface.address == address:
            logger.debug("[Desp/Interfaces] using {} ({})", iface.name, iface.address)
            return iface
    raise InterfaceError(f"no multicast-capable interface has address {address}")


def parse_address(text: str, default_port: int | None = None) -> tuple[str, int]:
    """Parse ``"ip"`` or ``"ip:port"`` into an ``(ip, port)`` pair.

    *default_port* is used when the text carries no port; if it is ``None``
    a port is required.
    """
    text = text.strip()
    host, sep, port_text = text.rpartition(":")
    if not sep:
        host, port_text = text, ""
    if not port_text:
        if default_port is None:
            raise AddressError(f"address {text!r} has no port")
        port = default_port
    else:
        try:
            port = int(port_text)
        except ValueError:
            raise AddressError(f"bad port in address {text!r}") from None
    if not 0 <= port <= 65535:
        raise AddressError(f"port out of range in address {text!r}")
    try:
        ip = ipaddress.IPv4Address(host)
    except ValueError:
        raise AddressError(f"bad IPv4 address {text!r}") from None
    return str(ip), port
