"""Exceptions raised by the desperados network layer."""

from __future__ import annotations


class DespError(Exception):
    """Base class for all desperados network errors."""


class AddressError(DespError, ValueError):
    """An address string could not be parsed or has the wrong kind."""


class InterfaceError(DespError):
    """No usable network interface could be determined."""


class SessionOpenError(DespError):
    """Socket creation, bind or group join failed while opening a session."""


class SessionClosedError(DespError):
    """The session has been closed and can no longer send."""
