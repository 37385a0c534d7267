"""Subnet ranger: a sequential unicast liveness sweep of a /24.

Peers on a routed subnet never see our multicast traffic, but a session
answers a unicast ``!ping`` on its group port all the same.  The ranger takes
the first three octets of a base address and probes ``.1`` through ``.254``
in ascending order, one candidate at a time (``.255`` is the broadcast
address and is never probed).

For every candidate it queues, in order:

- ``ScanPeer`` if the candidate answered with a well-formed ``!pong``,
- ``ScanStep`` with the candidate's last octet, whether or not it answered.

The sweep ends with exactly one ``ScanDone``.  ``close()`` is checked once
per candidate, before its probe, so cancellation takes effect within one probe
timeout.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Union

from loguru import logger

from desperados.config.schema import RangerConfig
from desperados.net.errors import AddressError
from desperados.net.frame import DEFAULT_PORT, PING_FRAME, PONG_FRAME
from desperados.net.interfaces import parse_address
from desperados.net.resilience import supervised_task

Address = tuple[str, int]

FIRST_HOST = 1
LAST_HOST = 254
END_CURSOR = LAST_HOST + 1


class Transport(str, Enum):
    """How a candidate is probed."""

    UDP = "udp"
    TCP = "tcp"


@dataclass(frozen=True)
class ScanStep:
    """Progress: candidate *index* (last octet) has been probed."""

    index: int
    transport: Transport


@dataclass(frozen=True)
class ScanPeer:
    """A candidate answered the probe."""

    address: Address
    transport: Transport


@dataclass(frozen=True)
class ScanDone:
    """Terminal event; ``cancelled`` is True when ``close()`` cut the sweep short."""

    cancelled: bool = False


ScanEvent = Union[ScanStep, ScanPeer, ScanDone]

# (host, port, timeout) -> responder address, or None
Probe = Callable[[str, int, float], Awaitable[Union[Address, None]]]


def subnet_prefix(base_address: str) -> str:
    """Return the first three octets of *base_address* (``"a.b.c"``)."""
    ip, _ = parse_address(base_address, 0)
    return ip.rsplit(".", 1)[0]


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

async def probe_udp(host: str, port: int, timeout: float) -> Address | None:
    """Send a ``!ping`` datagram and wait for a ``!pong``.

    Write and read are each bounded by *timeout*.  Any failure yields
    ``None``; most candidates never answer.
    """
    loop = asyncio.get_running_loop()
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.setblocking(False)
            sock.connect((host, port))
            await asyncio.wait_for(loop.sock_sendall(sock, PING_FRAME), timeout=timeout)
            data = await asyncio.wait_for(loop.sock_recv(sock, 64), timeout=timeout)
            if data == PONG_FRAME:
                peer = sock.getpeername()
                return peer[0], peer[1]
    except (OSError, asyncio.TimeoutError) as exc:
        logger.debug("[Desp/Ranger] udp probe {}:{} failed: {!r}", host, port, exc)
    return None


async def probe_tcp(host: str, port: int, timeout: float) -> Address | None:
    """Connect, send a ``!ping`` frame and read back a 9-byte ``!pong``.

    Sessions only listen on UDP, so this only finds peers running a TCP
    responder on *port*.
    """
    writer: asyncio.StreamWriter | None = None
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout,
        )
        writer.write(PING_FRAME)
        await asyncio.wait_for(writer.drain(), timeout=timeout)
        data = await asyncio.wait_for(reader.readexactly(len(PONG_FRAME)), timeout=timeout)
        if data == PONG_FRAME:
            peer = writer.get_extra_info("peername")
            return peer[0], peer[1]
    except (OSError, asyncio.TimeoutError, asyncio.IncompleteReadError) as exc:
        logger.debug("[Desp/Ranger] tcp probe {}:{} failed: {!r}", host, port, exc)
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
    return None


_PROBES: dict[Transport, Probe] = {
    Transport.UDP: probe_udp,
    Transport.TCP: probe_tcp,
}


# ---------------------------------------------------------------------------
# Scan
# ---------------------------------------------------------------------------

class RangeScan:
    """A sequential liveness sweep of one /24.

    Parameters
    ----------
    base_address:
        Any address in the target /24; only its first three octets are used.
    transport:
        Probe transport, reported on every ``ScanStep`` / ``ScanPeer``.
    port:
        Port probed on every candidate (default 11332).
    probe_timeout:
        Write and read deadline per probe, in seconds.
    events:
        Queue to deliver events into.  A new one of size *event_buffer* is
        created when omitted.
    probe:
        Replaces the transport's built-in probe.
    """

    def __init__(
        self,
        base_address: str,
        transport: Transport | str = Transport.UDP,
        port: int = DEFAULT_PORT,
        probe_timeout: float = 0.1,
        *,
        events: asyncio.Queue | None = None,
        event_buffer: int = 64,
        probe: Probe | None = None,
    ):
        self.prefix = subnet_prefix(base_address)
        self.transport = Transport(transport)
        if not 1 <= port <= 65535:
            raise AddressError(f"port {port} out of range")
        if probe_timeout <= 0:
            raise ValueError("probe_timeout must be positive")
        self.port = port
        self.probe_timeout = probe_timeout
        self._probe: Probe = probe or _PROBES[self.transport]

        self._cursor = FIRST_HOST
        self._events: asyncio.Queue = events if events is not None else asyncio.Queue(maxsize=event_buffer)
        self._cancel = asyncio.Event()
        self._finished = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._drained = False

    @property
    def cursor(self) -> int:
        """Last octet of the next candidate; 255 once the sweep is complete."""
        return self._cursor

    @property
    def finished(self) -> bool:
        """True when every candidate has been probed."""
        return self._cursor == END_CURSOR

    @property
    def closed(self) -> bool:
        """True once ``ScanDone`` has been queued."""
        return self._finished.is_set()

    @property
    def events(self) -> asyncio.Queue:
        return self._events

    def start(self) -> None:
        """Begin the sweep. Must be called from a running event loop."""
        if self._task is not None:
            return
        asyncio.get_running_loop()
        self._task = supervised_task(
            self._run(), name=f"ranger-{self.prefix}", component="Ranger",
        )

    def close(self) -> None:
        """Request cancellation; honoured before the next probe."""
        self._cancel.set()

    async def wait_closed(self) -> None:
        await self._finished.wait()

    async def _emit(self, event: ScanEvent) -> None:
        await self._events.put(event)

    async def _run(self) -> None:
        logger.info(
            "[Desp/Ranger] scanning {}.{}-{} port {} via {}",
            self.prefix, FIRST_HOST, LAST_HOST, self.port, self.transport.value,
        )
        cancelled = False
        found = 0
        while True:
            if self._cancel.is_set():
                cancelled = True
                break
            if self._cursor == END_CURSOR:
                break

            host = f"{self.prefix}.{self._cursor}"
            try:
                peer = await self._probe(host, self.port, self.probe_timeout)
            except Exception as exc:
                # Injected probes may fail any way they like; one bad
                # candidate never ends the sweep.
                logger.debug("[Desp/Ranger] probe {} failed: {!r}", host, exc)
                peer = None
            if peer is not None:
                found += 1
                logger.info("[Desp/Ranger] peer found at {}:{}", peer[0], peer[1])
                await self._emit(ScanPeer(address=(peer[0], peer[1]), transport=self.transport))
            await self._emit(ScanStep(index=self._cursor, transport=self.transport))
            self._cursor += 1

        await self._emit(ScanDone(cancelled=cancelled))
        self._finished.set()
        logger.info(
            "[Desp/Ranger] scan of {}.0/24 {}: {} peer(s)",
            self.prefix, "cancelled" if cancelled else "complete", found,
        )

    def __aiter__(self) -> "RangeScan":
        return self

    async def __anext__(self) -> ScanEvent:
        if self._drained:
            raise StopAsyncIteration
        event = await self._events.get()
        if isinstance(event, ScanDone):
            self._drained = True
        return event


def start_scan(
    base_address: str,
    transport: Transport | str | None = None,
    port: int | None = None,
    timeout: float | None = None,
    *,
    config: RangerConfig | None = None,
    events: asyncio.Queue | None = None,
    probe: Probe | None = None,
) -> RangeScan:
    """Create a ``RangeScan`` and start it.

    Explicit arguments override *config*.  Address and port errors raise
    before any background task exists.
    """
    config = config or RangerConfig()
    scan = RangeScan(
        base_address,
        transport or config.transport,
        port or config.port,
        timeout or config.probe_timeout,
        events=events,
        event_buffer=config.event_buffer,
        probe=probe,
    )
    scan.start()
    return scan
