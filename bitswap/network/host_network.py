"""Bitswap network built on a peer-to-peer host that opens protocol streams."""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
import time
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Iterator,
    Protocol,
    Sequence,
    runtime_checkable,
)

from ..message import from_net
from .connect_events import ConnectEventManager
from .interfaces import (
    PROTOCOL_BITSWAP,
    PROTOCOL_BITSWAP_NO_VERS,
    PROTOCOL_BITSWAP_ONE_ONE,
    PROTOCOL_BITSWAP_ONE_ZERO,
    MessageSenderOpts,
    NetOpt,
    PeerId,
    Receiver,
    Settings,
    Stats,
    default_settings,
)

if TYPE_CHECKING:
    from ..cid import Cid
    from ..message import BitSwapMessage

log = logging.getLogger("bitswap_network")

CONNECT_TIMEOUT = 5.0
MAX_SEND_TIMEOUT = 120.0
MIN_SEND_TIMEOUT = 10.0
SEND_LATENCY = 2.0
MIN_SEND_RATE = (100 * 1000) // 8  # 100 kbit/s in bytes per second
TEMP_ADDR_TTL = 120.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_SEND_ERROR_BACKOFF = 0.1

_NS = 1_000_000_000


class ProtocolNotSupportedError(Exception):
    """Raised by a host when the remote peer supports none of the protocols."""


class UnrecognizedProtocolError(Exception):
    """Raised when a stream was negotiated with a protocol bitswap cannot speak."""


@runtime_checkable
class Stream(Protocol):
    """A bidirectional byte stream to a remote peer over one protocol."""

    protocol: str
    remote_peer: PeerId

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; return b"" at the end of the stream."""

    def write(self, data: bytes) -> Any:
        """Write ``data`` to the stream."""

    def set_write_deadline(self, deadline: float | None) -> None:
        """Set an absolute wall-clock deadline for writes; None clears it."""

    def close(self) -> None:
        """Close the stream gracefully."""

    def reset(self) -> None:
        """Abort the stream."""


@runtime_checkable
class Host(Protocol):
    """A peer-to-peer host that connects to peers and opens streams."""

    def id(self) -> PeerId:
        """Return the local peer identity."""

    def connect(self, peer: PeerId, timeout: float | None = None) -> None:
        """Connect to ``peer``."""

    def new_stream(
        self, peer: PeerId, protocols: Sequence[str], timeout: float | None = None
    ) -> Stream:
        """Open a stream to ``peer`` using the first protocol it supports."""

    def set_stream_handler(self, protocol: str, handler: Callable[[Stream], None]) -> None:
        """Register the handler of incoming streams for ``protocol``."""

    def notify(self, notifiee: Any) -> None:
        """Register an object whose on_connected/on_disconnected are called."""

    def latency_ewma(self, peer: PeerId) -> float:
        """Return the average measured latency to ``peer`` in seconds."""

    def ping(self, peer: PeerId) -> float:
        """Ping ``peer`` and return the round-trip time in seconds."""

    def add_addrs(self, peer: PeerId, addrs: Sequence[Any], ttl: float) -> None:
        """Remember addresses of ``peer`` for ``ttl`` seconds."""

    def connection_manager(self) -> Any:
        """Return the host's connection manager."""


@runtime_checkable
class ContentRouting(Protocol):
    """Finds and announces providers of content."""

    def find_providers(
        self, cid: Cid, max_results: int
    ) -> Iterable[tuple[PeerId, Sequence[Any]]]:
        """Yield (peer, addresses) pairs of peers providing ``cid``."""

    def provide(self, cid: Cid, announce: bool) -> None:
        """Announce that the local peer provides ``cid``."""


def send_timeout(size: int) -> float:
    """Return the time in seconds allowed for sending ``size`` bytes."""
    timeout_ns = int(SEND_LATENCY * _NS) + (_NS * size) // MIN_SEND_RATE
    timeout_ns = max(int(MIN_SEND_TIMEOUT * _NS), min(int(MAX_SEND_TIMEOUT * _NS), timeout_ns))
    return timeout_ns / _NS


def process_settings(*args: NetOpt) -> Settings:
    """Apply options to the default settings and prefix the supported protocols."""
    settings = default_settings()
    for option in args:
        option(settings)
    settings.supported_protocols = [
        settings.protocol_prefix + proto for proto in settings.supported_protocols
    ]
    return settings


def _with_defaults(opts: MessageSenderOpts | None) -> MessageSenderOpts:
    opts = dataclasses.replace(opts) if opts is not None else MessageSenderOpts()
    if opts.max_retries == 0:
        opts.max_retries = DEFAULT_MAX_RETRIES
    if opts.send_timeout == 0:
        opts.send_timeout = MAX_SEND_TIMEOUT
    if opts.send_error_backoff == 0:
        opts.send_error_backoff = DEFAULT_SEND_ERROR_BACKOFF
    return opts


class StreamMessageSender:
    """Sends a series of messages to one peer over a reusable stream."""

    def __init__(self, to: PeerId, network: HostNetwork, opts: MessageSenderOpts) -> None:
        self.to = to
        self.opts = opts
        self._network = network
        self._stream: Stream | None = None
        self._connected = False

    @property
    def stream(self) -> Stream | None:
        return self._stream

    def connect(self) -> Stream:
        """Open a stream to the remote peer unless one is open already."""
        if self._connected and self._stream is not None:
            return self._stream
        timeout = self.opts.send_timeout
        self._network._host.connect(self.to, timeout)
        stream = self._network._new_stream_to_peer(self.to, timeout)
        self._stream = stream
        self._connected = True
        return stream

    def reset(self) -> None:
        """Abort the stream; the next send opens a new one."""
        if self._stream is None:
            return
        try:
            self._stream.reset()
        finally:
            self._connected = False

    def close(self) -> None:
        """Close the stream."""
        if self._stream is not None:
            self._stream.close()

    def supports_have(self) -> bool:
        """Report whether the peer understands HAVE and DONT_HAVE."""
        if self._stream is None:
            return False
        return self._network.supports_have(self._stream.protocol)

    def send_msg(self, message: BitSwapMessage) -> None:
        """Send ``message``, retrying on failure."""
        self._multi_attempt(lambda: self._send(message))

    def _multi_attempt(self, attempt: Callable[[], Any]) -> None:
        retries = self.opts.max_retries
        for index in range(retries):
            try:
                attempt()
                return
            except ProtocolNotSupportedError:
                self._network._mark_unresponsive(self.to)
                raise
            except Exception as exc:
                with contextlib.suppress(Exception):
                    self.reset()
                if index == retries - 1:
                    self._network._mark_unresponsive(self.to)
                    raise
                time.sleep(self.opts.send_error_backoff)
                log.info("send message to %s failed, retrying: %s", self.to, exc)

    def _send(self, message: BitSwapMessage) -> None:
        start = time.monotonic()
        try:
            stream = self.connect()
        except Exception as exc:
            log.info("failed to open stream to %s: %s", self.to, exc)
            raise
        # The send timeout includes the time spent connecting.
        timeout = self.opts.send_timeout - (time.monotonic() - start)
        try:
            self._network._msg_to_stream(stream, message, timeout)
        except Exception as exc:
            log.info("failed to send message to %s: %s", self.to, exc)
            raise


class HostNetwork:
    """Bitswap network that exchanges messages over streams of a host."""

    def __init__(self, host: Host, routing: ContentRouting, *args: NetOpt) -> None:
        settings = process_settings(*args)
        self._host = host
        self._routing = routing
        prefix = settings.protocol_prefix
        self.protocol_bitswap_no_vers = prefix + PROTOCOL_BITSWAP_NO_VERS
        self.protocol_bitswap_one_zero = prefix + PROTOCOL_BITSWAP_ONE_ZERO
        self.protocol_bitswap_one_one = prefix + PROTOCOL_BITSWAP_ONE_ONE
        self.protocol_bitswap = prefix + PROTOCOL_BITSWAP
        self.supported_protocols = list(settings.supported_protocols)
        self._receiver: Receiver | None = None
        self._connect_events: ConnectEventManager | None = None
        self._stats = Stats()
        self._stats_lock = threading.Lock()

    def local_peer(self) -> PeerId:
        """Return the identity of the local peer."""
        return self._host.id()

    def ping(self, peer: PeerId) -> float:
        """Ping ``peer`` and return the round-trip time in seconds."""
        return self._host.ping(peer)

    def latency(self, peer: PeerId) -> float:
        """Return the average latency to ``peer`` in seconds."""
        return self._host.latency_ewma(peer)

    def supports_have(self, protocol: str) -> bool:
        """Report whether ``protocol`` carries HAVE and DONT_HAVE messages."""
        return protocol not in (
            self.protocol_bitswap_one_one,
            self.protocol_bitswap_one_zero,
            self.protocol_bitswap_no_vers,
        )

    def _msg_to_stream(self, stream: Stream, message: BitSwapMessage, timeout: float) -> None:
        try:
            stream.set_write_deadline(time.time() + timeout)
        except Exception as exc:
            log.warning("error setting deadline: %s", exc)

        proto = stream.protocol
        if proto in (self.protocol_bitswap_one_one, self.protocol_bitswap):
            message.to_net_v1(stream)
        elif proto in (self.protocol_bitswap_one_zero, self.protocol_bitswap_no_vers):
            message.to_net_v0(stream)
        else:
            raise UnrecognizedProtocolError(f"unrecognized protocol on remote: {proto}")

        with self._stats_lock:
            self._stats.messages_sent += 1

        try:
            stream.set_write_deadline(None)
        except Exception as exc:
            log.warning("error resetting deadline: %s", exc)

    def new_message_sender(
        self, peer: PeerId, opts: MessageSenderOpts | None = None
    ) -> StreamMessageSender:
        """Connect to ``peer`` and return a sender for a series of messages."""
        sender = StreamMessageSender(peer, self, _with_defaults(opts))
        sender._multi_attempt(sender.connect)
        return sender

    def send_message(self, peer: PeerId, message: BitSwapMessage) -> None:
        """Send one message to ``peer`` on a fresh stream."""
        stream = self._new_stream_to_peer(peer, CONNECT_TIMEOUT)
        try:
            self._msg_to_stream(stream, message, send_timeout(message.size()))
        except Exception:
            with contextlib.suppress(Exception):
                stream.reset()
            raise
        stream.close()

    def _new_stream_to_peer(self, peer: PeerId, timeout: float | None) -> Stream:
        return self._host.new_stream(peer, self.supported_protocols, timeout)

    def set_delegate(self, receiver: Receiver) -> None:
        """Register ``receiver`` and start handling streams and connection events."""
        self._receiver = receiver
        self._connect_events = ConnectEventManager(receiver)
        for proto in self.supported_protocols:
            self._host.set_stream_handler(proto, self.handle_new_stream)
        self._host.notify(self)

    def connect_to(self, peer: PeerId) -> None:
        """Connect to ``peer``."""
        self._host.connect(peer, None)

    def find_providers(self, cid: Cid, max_results: int) -> Iterator[PeerId]:
        """Yield providers of ``cid``, other than the local peer."""
        local = self._host.id()
        for peer, addrs in self._routing.find_providers(cid, max_results):
            if peer == local:
                continue
            self._host.add_addrs(peer, addrs, TEMP_ADDR_TTL)
            yield peer

    def provide(self, cid: Cid) -> None:
        """Announce ``cid`` to the network."""
        self._routing.provide(cid, True)

    def handle_new_stream(self, stream: Stream) -> None:
        """Read messages from an incoming stream until it ends."""
        try:
            receiver = self._receiver
            if receiver is None:
                with contextlib.suppress(Exception):
                    stream.reset()
                return
            while True:
                try:
                    received = from_net(stream)
                except EOFError:
                    return
                except Exception as exc:
                    with contextlib.suppress(Exception):
                        stream.reset()
                    receiver.receive_error(exc)
                    log.debug(
                        "bitswap net handle_new_stream from %s error: %s",
                        stream.remote_peer,
                        exc,
                    )
                    return
                peer = stream.remote_peer
                log.debug("bitswap net handle_new_stream from %s", peer)
                if self._connect_events is not None:
                    self._connect_events.on_message(peer)
                with self._stats_lock:
                    self._stats.messages_recvd += 1
                receiver.receive_message(peer, received)
        finally:
            with contextlib.suppress(Exception):
                stream.close()

    def connection_manager(self) -> Any:
        """Return the host's connection manager."""
        return self._host.connection_manager()

    def stats(self) -> Stats:
        """Return a snapshot of the message counters."""
        with self._stats_lock:
            return dataclasses.replace(self._stats)

    def on_connected(self, peer: PeerId, transient: bool = False) -> None:
        """Handle a new connection reported by the host; transient ones are ignored."""
        if transient or self._connect_events is None:
            return
        self._connect_events.connected(peer)

    def on_disconnected(self, peer: PeerId, transient: bool = False) -> None:
        """Handle a closed connection reported by the host; transient ones are ignored."""
        if transient or self._connect_events is None:
            return
        self._connect_events.disconnected(peer)

    def _mark_unresponsive(self, peer: PeerId) -> None:
        if self._connect_events is not None:
            self._connect_events.mark_unresponsive(peer)