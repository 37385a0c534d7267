"""Wire framing shared by multicast sessions and subnet scans.

Every datagram starts with the 4-byte ASCII magic tag ``DESP``.  What follows
is either a 5-byte control command (``!ping`` / ``!pong``) or arbitrary
application bytes::

    bytes 0-3   magic tag
    bytes 4-8   control command (only when the datagram is exactly 9 bytes)
    bytes 4..N  application payload (otherwise)

There is no length or type field.  An application payload that is exactly
``!ping`` or ``!pong`` cannot be told apart from a control frame and is
treated as one.
"""

from __future__ import annotations

from enum import Enum

MAGIC = b"DESP"
DEFAULT_PORT = 11332


class Control(bytes, Enum):
    """Liveness control commands."""

    PING = b"!ping"
    PONG = b"!pong"


def encode(payload: bytes) -> bytes:
    """Prefix *payload* with the magic tag."""
    return MAGIC + bytes(payload)


def decode(data: bytes) -> bytes | None:
    """Strip and validate the magic tag.

    Returns the payload, or ``None`` if *data* is not a frame (shorter than
    the tag or carrying a foreign tag).  An empty payload is valid.
    """
    if len(data) < len(MAGIC) or data[: len(MAGIC)] != MAGIC:
        return None
    return bytes(data[len(MAGIC):])


def control_of(payload: bytes) -> Control | None:
    """Return the control command carried by *payload*, if any."""
    try:
        return Control(bytes(payload))
    except ValueError:
        return None


PING_FRAME = encode(Control.PING.value)
PONG_FRAME = encode(Control.PONG.value)
