"""Multicast group session.

How it works
------------
1. ``open_session`` resolves the group (default ``239.0.0.0:11332``) and the
   local source address, picks the multicast-capable interface carrying that
   address and joins the group on it.
2. Two sockets are kept: a receive socket bound to the group port and joined
   to the group, and a send socket bound to the source address and connected
   to the group.  Multicast loopback is forced on so a session sees its own
   frames.
3. One background task owns the receive socket.  It reads with a short
   deadline, answers ``!ping`` frames with ``!pong`` to the sender, drops
   ``!pong`` and foreign traffic, and queues an ``InboundMessage`` for every
   application frame.
4. ``close()`` only signals the task.  It is noticed at the next read
   deadline, at which point both sockets are released and a terminal
   ``SessionClosed`` event is queued.

Events are handed over through an ``asyncio.Queue``; a full queue makes the
receive loop wait rather than drop anything.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from dataclasses import dataclass
from typing import Union

from loguru import logger

from desperados.config.schema import MulticastConfig
from desperados.net.errors import AddressError, SessionClosedError, SessionOpenError
from desperados.net.frame import DEFAULT_PORT, PONG_FRAME, Control, control_of, decode, encode
from desperados.net.interfaces import find_multicast_interface, parse_address, primary_address
from desperados.net.resilience import supervised_task, with_deadline

Address = tuple[str, int]


@dataclass(frozen=True)
class InboundMessage:
    """An application frame received from the group."""

    source: Address
    payload: bytes


@dataclass(frozen=True)
class SessionClosed:
    """Terminal event: the session released its sockets.

    ``error`` is set when a fatal socket error ended the session and is
    ``None`` after a requested close.
    """

    error: Exception | None = None


SessionEvent = Union[InboundMessage, SessionClosed]


def _fmt(addr: Address) -> str:
    return f"{addr[0]}:{addr[1]}"


def _ensure_loopback(sock: socket.socket) -> bool:
    """Turn multicast loopback on if needed. Returns the previous setting."""
    enabled = bool(sock.getsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP))
    if not enabled:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
    return enabled


class MulticastSession:
    """A joined multicast group with its send socket and receive loop.

    Parameters
    ----------
    recv_sock:
        Socket the receive loop reads from (bound, joined to the group).
    send_sock:
        Socket outbound frames are written to (connected to the group).
    group:
        The ``(ip, port)`` of the group.
    read_timeout:
        Receive deadline in seconds; also the close-check interval.
    read_buffer:
        Largest datagram read.
    events:
        Queue to deliver events into.  A new one of size *event_buffer* is
        created when omitted.
    """

    def __init__(
        self,
        recv_sock: socket.socket,
        send_sock: socket.socket,
        group: Address,
        *,
        loopback: bool = True,
        read_timeout: float = 1.0,
        read_buffer: int = 8192,
        events: asyncio.Queue | None = None,
        event_buffer: int = 64,
    ):
        recv_sock.setblocking(False)
        send_sock.setblocking(False)
        self._recv_sock: socket.socket | None = recv_sock
        self._send_sock: socket.socket | None = send_sock
        self.group = group
        self.loopback = loopback
        self.read_timeout = read_timeout
        self.read_buffer = read_buffer
        self._recv_addr: Address = recv_sock.getsockname()[:2]
        self._send_addr: Address = send_sock.getsockname()[:2]

        self._events: asyncio.Queue = events if events is not None else asyncio.Queue(maxsize=event_buffer)
        self._close_requested = asyncio.Event()
        self._released = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._drained = False

    # -- properties ----------------------------------------------------------

    @property
    def recv_addr(self) -> Address:
        return self._recv_addr

    @property
    def send_addr(self) -> Address:
        return self._send_addr

    @property
    def events(self) -> asyncio.Queue:
        """Queue the host must keep draining."""
        return self._events

    @property
    def closed(self) -> bool:
        """True once both sockets have been released."""
        return self._recv_sock is None

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the receive loop. Must be called from a running event loop."""
        if self._task is not None or self.closed:
            return
        asyncio.get_running_loop()
        self._task = supervised_task(
            self._run(), name=f"multicast-{_fmt(self.group)}", component="Multicast",
        )
        logger.info(
            "[Desp/Multicast] session open: group={} recv={} send={}",
            _fmt(self.group), _fmt(self._recv_addr), _fmt(self._send_addr),
        )

    def close(self) -> None:
        """Ask the receive loop to shut down.

        Returns immediately.  Teardown happens within one read deadline and
        is signalled by a ``SessionClosed`` event (or ``wait_closed()``).
        """
        self._close_requested.set()
        if self._task is None:
            self._release()

    async def wait_closed(self) -> None:
        """Wait until both sockets have been released."""
        await self._released.wait()

    # -- sending -------------------------------------------------------------

    async def send(self, payload: bytes) -> None:
        """Frame *payload* and write it to the group.

        Raises ``SessionClosedError`` once ``close()`` has been called and
        ``OSError`` if the write fails.
        """
        sock = self._send_sock
        if sock is None or self._close_requested.is_set():
            raise SessionClosedError("multicast session is closed")
        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendall(sock, encode(payload))
        except OSError as exc:
            logger.warning("[Desp/Multicast] send to {} failed: {}", _fmt(self.group), exc)
            raise

    # -- receive loop --------------------------------------------------------

    async def _read(self) -> tuple[bytes, Address] | None:
        loop = asyncio.get_running_loop()
        return await with_deadline(
            loop.sock_recvfrom(self._recv_sock, self.read_buffer),  # type: ignore[arg-type]
            self.read_timeout,
        )

    async def _run(self) -> None:
        error: Exception | None = None
        try:
            error = await self._receive_loop()
        except asyncio.CancelledError:
            self._release()
            self._deliver_terminal(SessionClosed())
            raise
        except Exception as exc:
            logger.error("[Desp/Multicast] receive loop crashed, closing session: {!r}", exc)
            error = exc
        self._release()
        await self._events.put(SessionClosed(error=error))

    async def _receive_loop(self) -> Exception | None:
        """Read until close is requested; return the fatal error, if any."""
        while not self._close_requested.is_set():
            try:
                got = await self._read()
            except ConnectionResetError:
                # ICMP port-unreachable for an earlier pong (Windows)
                continue
            except OSError as exc:
                logger.error("[Desp/Multicast] receive failed, closing session: {}", exc)
                return exc
            if got is None:
                continue
            data, addr = got
            await self._handle_datagram(data, (addr[0], addr[1]))
        return None

    def _deliver_terminal(self, event: SessionClosed) -> None:
        # The loop task is being cancelled and cannot wait on a full queue.
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            supervised_task(
                self._events.put(event),
                name=f"multicast-closed-{_fmt(self.group)}",
                component="Multicast",
            )

    async def _handle_datagram(self, data: bytes, addr: Address) -> None:
        payload = decode(data)
        if payload is None:
            logger.debug("[Desp/Multicast] dropped {}-byte non-frame from {}", len(data), _fmt(addr))
            return

        command = control_of(payload)
        if command is Control.PING:
            loop = asyncio.get_running_loop()
            try:
                await loop.sock_sendto(self._recv_sock, PONG_FRAME, addr)  # type: ignore[arg-type]
                logger.debug("[Desp/Multicast] answered ping from {}", _fmt(addr))
            except OSError as exc:
                logger.debug("[Desp/Multicast] pong to {} failed: {}", _fmt(addr), exc)
            return
        if command is Control.PONG:
            return

        await self._events.put(InboundMessage(source=addr, payload=payload))

    def _release(self) -> None:
        if self._recv_sock is None:
            return
        for sock in (self._recv_sock, self._send_sock):
            if sock is not None:
                sock.close()
        self._recv_sock = None
        self._send_sock = None
        self._released.set()
        logger.info("[Desp/Multicast] session closed: group={}", _fmt(self.group))

    # -- event iteration -----------------------------------------------------

    def __aiter__(self) -> "MulticastSession":
        return self

    async def __anext__(self) -> SessionEvent:
        if self._drained:
            raise StopAsyncIteration
        event = await self._events.get()
        if isinstance(event, SessionClosed):
            self._drained = True
        return event


def _create_sockets(
    group: Address,
    source_ip: str,
    bind_address: str,
) -> tuple[socket.socket, socket.socket]:
    """Create the joined receive socket and the connected send socket."""
    recv_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    send_sock: socket.socket | None = None
    try:
        recv_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                recv_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass
        recv_sock.bind((bind_address, group[1]))
        mreq = socket.inet_aton(group[0]) + socket.inet_aton(source_ip)
        recv_sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        loopback = _ensure_loopback(recv_sock)

        send_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        send_sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(source_ip))
        _ensure_loopback(send_sock)
        send_sock.bind((source_ip, 0))
        send_sock.connect(group)
    except OSError as exc:
        recv_sock.close()
        if send_sock is not None:
            send_sock.close()
        raise SessionOpenError(f"cannot join {_fmt(group)} on {source_ip}: {exc}") from exc
    if not loopback:
        logger.debug("[Desp/Multicast] multicast loopback was off, enabled it")
    return recv_sock, send_sock


def open_session(
    group_address: str = "",
    source_address: str = "",
    *,
    config: MulticastConfig | None = None,
    events: asyncio.Queue | None = None,
) -> MulticastSession:
    """Join a multicast group and start its receive loop.

    *group_address* and *source_address* override the values in *config*.
    An empty source address means "the primary outbound address".  Any
    failure raises before a session or background task exists.
    """
    config = config or MulticastConfig()
    group = parse_address(group_address or config.group, DEFAULT_PORT)
    if not ipaddress.IPv4Address(group[0]).is_multicast:
        raise AddressError(f"{_fmt(group)} is not a multicast group")

    source_text = source_address or config.source_address
    if not source_text:
        source_text = primary_address(parse_address(config.probe_host))
    # A source port is never honoured; the send socket binds an ephemeral one.
    source_ip, _ = parse_address(source_text, 0)

    iface = find_multicast_interface(source_ip)
    # The session task needs a running loop; check before any socket exists.
    asyncio.get_running_loop()
    recv_sock, send_sock = _create_sockets(group, iface.address, config.bind_address)

    session = MulticastSession(
        recv_sock,
        send_sock,
        group,
        loopback=True,
        read_timeout=config.read_timeout,
        read_buffer=config.read_buffer,
        events=events,
        event_buffer=config.event_buffer,
    )
    session.start()
    return session
