"""A simulated bitswap network that passes messages between peers in-process."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterator, Protocol

from ..network.interfaces import (
    PROTOCOL_BITSWAP_NO_VERS,
    PROTOCOL_BITSWAP_ONE_ONE,
    PROTOCOL_BITSWAP_ONE_ZERO,
    MessageSenderOpts,
    NetOpt,
    PeerId,
    Receiver,
    Stats,
    default_settings,
)

if TYPE_CHECKING:
    from ..cid import Cid
    from ..message import BitSwapMessage

log = logging.getLogger("bitswap_testnet")

_OLD_PROTOCOLS = frozenset(
    {PROTOCOL_BITSWAP_NO_VERS, PROTOCOL_BITSWAP_ONE_ZERO, PROTOCOL_BITSWAP_ONE_ONE}
)
_POLL_INTERVAL = 0.1


class PeerNotFoundError(LookupError):
    """Raised when a peer is not part of the network."""


class _Delay(Protocol):
    def next_wait_time(self) -> float: ...


class _RateLimitGenerator(Protocol):
    def next_rate_limit(self) -> float: ...


class RateLimiter:
    """Token bucket that turns sent sizes into transmission delays."""

    def __init__(
        self, bandwidth: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.bandwidth = bandwidth
        self._clock = clock
        self._allowance = bandwidth / 10
        self._max_allowance = bandwidth
        self._last_update = clock()
        self._lock = threading.Lock()
        self.count = 0
        self.duration = 0.0

    def limit(self, size: int) -> float:
        """Account for ``size`` bytes and return the delay in seconds they incur."""
        with self._lock:
            if self.bandwidth == 0:
                return 0.0
            now = self._clock()
            self._allowance += (now - self._last_update) * self.bandwidth
            self._last_update = now
            self._allowance = min(self._allowance, self._max_allowance)
            self._allowance -= size
            if self._allowance >= 0:
                return 0.0
            delay = -self._allowance / self.bandwidth
            self.count += 1
            self.duration += delay
            return delay


class MockRoutingServer:
    """Shared in-memory record of which peers provide which CIDs."""

    def __init__(self) -> None:
        self._providers: dict[Cid, list[PeerId]] = {}
        self._lock = threading.Lock()

    def client(self, peer: PeerId) -> RoutingClient:
        """Return a routing client acting for ``peer``."""
        return RoutingClient(self, peer)


@dataclass
class RoutingClient:
    """Routing access of one peer to a :class:`MockRoutingServer`."""

    server: MockRoutingServer
    peer: PeerId

    def provide(self, cid: Cid) -> None:
        """Record the peer as a provider of ``cid``."""
        with self.server._lock:
            providers = self.server._providers.setdefault(cid, [])
            if self.peer not in providers:
                providers.append(self.peer)

    def find_providers(self, cid: Cid, max_results: int) -> Iterator[PeerId]:
        """Yield at most ``max_results`` providers of ``cid``."""
        with self.server._lock:
            providers = list(self.server._providers.get(cid, ()))
        yield from itertools.islice(providers, max(0, max_results))


@dataclass
class _Pending:
    sender: PeerId
    message: BitSwapMessage
    should_send: float


class _ReceiverQueue:
    """Delivers queued messages in order, respecting their delays where order allows."""

    def __init__(self, receiver: NetworkClient) -> None:
        self.receiver = receiver
        self._queue: list[_Pending] = []
        self._active = False
        self._lock = threading.Lock()

    def enqueue(self, pending: _Pending) -> None:
        with self._lock:
            self._queue.append(pending)
            if not self._active:
                self._active = True
                threading.Thread(target=self._process, daemon=True).start()

    def _process(self) -> None:
        while True:
            with self._lock:
                self._queue.sort(key=lambda item: item.should_send)
                if not self._queue:
                    self._active = False
                    return
                head = self._queue[0]
                wait = head.should_send - time.monotonic()
                ready = wait < _POLL_INTERVAL
                if ready:
                    self._queue.pop(0)
            if not ready:
                time.sleep(_POLL_INTERVAL)
                continue
            if wait > 0:
                time.sleep(wait)
            self.receiver._record_received()
            try:
                self.receiver._receive_message(head.sender, head.message)
            except Exception:
                log.exception("receiver failed to handle message from %s", head.sender)


class VirtualNetwork:
    """A fake network that simulates latency and optionally bandwidth."""

    def __init__(
        self,
        routing: MockRoutingServer,
        delay: _Delay,
        rate_limit_generator: _RateLimitGenerator | None = None,
    ) -> None:
        self._routing = routing
        self._delay = delay
        self._rate_limit_generator = rate_limit_generator
        self._latencies: dict[PeerId, dict[PeerId, float]] = {}
        self._rate_limiters: dict[PeerId, dict[PeerId, RateLimiter]] = {}
        self._clients: dict[PeerId, _ReceiverQueue] = {}
        self._conns: set[str] = set()
        self._lock = threading.Lock()

    @property
    def is_rate_limited(self) -> bool:
        return self._rate_limit_generator is not None

    def adapter(self, peer: PeerId, *args: NetOpt) -> NetworkClient:
        """Add ``peer`` to the network and return its bitswap network client."""
        with self._lock:
            settings = default_settings()
            for option in args:
                option(settings)
            client = NetworkClient(
                peer, self, self._routing.client(peer), list(settings.supported_protocols)
            )
            self._clients[peer] = _ReceiverQueue(client)
            return client

    def has_peer(self, peer: PeerId) -> bool:
        """Report whether ``peer`` is on the network."""
        with self._lock:
            return peer in self._clients

    def send_message(self, sender: PeerId, to: PeerId, message: BitSwapMessage) -> None:
        """Queue a copy of ``message`` for delivery from ``sender`` to ``to``."""
        message = message.clone()
        with self._lock:
            latencies = self._latencies.setdefault(sender, {})
            if to not in latencies:
                latencies[to] = self._delay.next_wait_time()
            latency = latencies[to]

            bandwidth_delay = 0.0
            if self._rate_limit_generator is not None:
                limiters = self._rate_limiters.setdefault(sender, {})
                limiter = limiters.get(to)
                if limiter is None:
                    limiter = RateLimiter(self._rate_limit_generator.next_rate_limit())
                    limiters[to] = limiter
                bandwidth_delay = limiter.limit(message.to_proto_v1().size())

            queue = self._clients.get(to)
            if queue is None:
                raise PeerNotFoundError("cannot locate peer on network")
            queue.enqueue(
                _Pending(sender, message, time.monotonic() + latency + bandwidth_delay)
            )


def tag_for_peers(a: PeerId, b: PeerId) -> str:
    """Return a key identifying the connection between two peers."""
    return a + b if a < b else b + a


class NetworkClient:
    """The bitswap network of one peer on a :class:`VirtualNetwork`."""

    def __init__(
        self,
        local: PeerId,
        network: VirtualNetwork,
        routing: RoutingClient,
        supported_protocols: list[str],
    ) -> None:
        self.local = local
        self.network = network
        self.routing = routing
        self.supported_protocols = supported_protocols
        self._receiver: Receiver | None = None
        self._stats = Stats()
        self._stats_lock = threading.Lock()

    def local_peer(self) -> PeerId:
        """Return the identity of this peer."""
        return self.local

    def ping(self, peer: PeerId) -> float:
        """Return the simulated round-trip time to ``peer``."""
        return self.latency(peer)

    def latency(self, peer: PeerId) -> float:
        """Return the simulated latency to ``peer``; zero before any message."""
        with self.network._lock:
            return self.network._latencies.get(self.local, {}).get(peer, 0.0)

    def send_message(self, peer: PeerId, message: BitSwapMessage) -> None:
        """Send ``message`` to ``peer``."""
        self.network.send_message(self.local, peer, message)
        with self._stats_lock:
            self._stats.messages_sent += 1

    def stats(self) -> Stats:
        """Return a snapshot of the message counters."""
        with self._stats_lock:
            return Stats(self._stats.messages_sent, self._stats.messages_recvd)

    def find_providers(self, cid: Cid, max_results: int) -> Iterator[PeerId]:
        """Yield providers of ``cid``."""
        yield from self.routing.find_providers(cid, max_results)

    def provide(self, cid: Cid) -> None:
        """Announce that this peer provides ``cid``."""
        self.routing.provide(cid)

    def new_message_sender(
        self, peer: PeerId, opts: MessageSenderOpts | None = None
    ) -> MessagePasser:
        """Return a sender for a series of messages to ``peer``."""
        return MessagePasser(self, peer, self.local)

    def set_delegate(self, receiver: Receiver) -> None:
        """Register the receiver of incoming messages and connection events."""
        self._receiver = receiver

    def connect_to(self, peer: PeerId) -> None:
        """Connect to ``peer``, notifying both sides once."""
        with self.network._lock:
            other = self.network._clients.get(peer)
            if other is None:
                raise PeerNotFoundError("no such peer in network")
            tag = tag_for_peers(self.local, peer)
            if tag in self.network._conns:
                return
            self.network._conns.add(tag)
        other.receiver._peer_connected(self.local)
        self._peer_connected(peer)

    def disconnect_from(self, peer: PeerId) -> None:
        """Break the connection to ``peer``, notifying both sides once."""
        with self.network._lock:
            other = self.network._clients.get(peer)
            if other is None:
                raise PeerNotFoundError("no such peer in network")
            tag = tag_for_peers(self.local, peer)
            if tag not in self.network._conns:
                return
            self.network._conns.discard(tag)
        other.receiver._peer_disconnected(self.local)
        self._peer_disconnected(peer)

    def _record_received(self) -> None:
        with self._stats_lock:
            self._stats.messages_recvd += 1

    def _receive_message(self, sender: PeerId, message: BitSwapMessage) -> None:
        if self._receiver is None:
            log.debug("dropping message from %s: no receiver on %s", sender, self.local)
            return
        self._receiver.receive_message(sender, message)

    def _peer_connected(self, peer: PeerId) -> None:
        if self._receiver is not None:
            self._receiver.peer_connected(peer)

    def _peer_disconnected(self, peer: PeerId) -> None:
        if self._receiver is not None:
            self._receiver.peer_disconnected(peer)


@dataclass
class MessagePasser:
    """Message sender that hands messages straight to the virtual network."""

    net: NetworkClient
    target: PeerId
    local: PeerId

    def send_msg(self, message: BitSwapMessage) -> None:
        """Send ``message`` to the target peer."""
        self.net.send_message(self.target, message)

    def close(self) -> None:
        """Nothing to close."""

    def reset(self) -> None:
        """Nothing to reset."""

    def supports_have(self) -> bool:
        """Report whether the target supports any protocol newer than 1.1.0."""
        with self.net.network._lock:
            queue = self.net.network._clients.get(self.target)
            if queue is None:
                raise PeerNotFoundError("no such peer in network")
            protocols: Any = list(queue.receiver.supported_protocols)
        return any(proto not in _OLD_PROTOCOLS for proto in protocols)