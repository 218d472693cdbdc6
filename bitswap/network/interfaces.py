"""Interfaces, settings and statistics shared by bitswap network implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..cid import Cid
    from ..message import BitSwapMessage

PeerId = str

PROTOCOL_BITSWAP_NO_VERS = "/ipfs/bitswap"
PROTOCOL_BITSWAP_ONE_ZERO = "/ipfs/bitswap/1.0.0"
PROTOCOL_BITSWAP_ONE_ONE = "/ipfs/bitswap/1.1.0"
PROTOCOL_BITSWAP = "/ipfs/bitswap/1.2.0"

DEFAULT_PROTOCOLS = (
    PROTOCOL_BITSWAP,
    PROTOCOL_BITSWAP_ONE_ONE,
    PROTOCOL_BITSWAP_ONE_ZERO,
    PROTOCOL_BITSWAP_NO_VERS,
)


@dataclass
class Stats:
    """Counts of bitswap messages sent and received over a network."""

    messages_sent: int = 0
    messages_recvd: int = 0


@dataclass
class MessageSenderOpts:
    """Retry and timeout settings for a message sender; zero means use the default.

    Durations are in seconds.
    """

    max_retries: int = 0
    send_timeout: float = 0.0
    send_error_backoff: float = 0.0


@dataclass
class Settings:
    """Protocol settings of a bitswap network."""

    protocol_prefix: str = ""
    supported_protocols: list[str] = field(default_factory=lambda: list(DEFAULT_PROTOCOLS))


NetOpt = Callable[[Settings], None]


def prefix(protocol_prefix: str) -> NetOpt:
    """Return an option that sets the protocol prefix."""

    def apply(settings: Settings) -> None:
        settings.protocol_prefix = protocol_prefix

    return apply


def supported_protocols(protocols: Iterable[str]) -> NetOpt:
    """Return an option that sets the supported protocols."""
    chosen = list(protocols)

    def apply(settings: Settings) -> None:
        settings.supported_protocols = list(chosen)

    return apply


def default_settings() -> Settings:
    """Return settings supporting every bitswap protocol version, newest first."""
    return Settings()


@runtime_checkable
class ConnectionListener(Protocol):
    """Told when a peer becomes reachable or unreachable."""

    def peer_connected(self, peer: PeerId) -> None:
        """Handle a peer becoming connected."""

    def peer_disconnected(self, peer: PeerId) -> None:
        """Handle a peer becoming disconnected."""


@runtime_checkable
class Receiver(ConnectionListener, Protocol):
    """Receives messages, errors and connection events from a network."""

    def receive_message(self, sender: PeerId, incoming: BitSwapMessage) -> None:
        """Handle a message received from ``sender``."""

    def receive_error(self, error: Exception) -> None:
        """Handle an error raised while receiving."""


@runtime_checkable
class MessageSender(Protocol):
    """Sends a series of messages to one peer."""

    def send_msg(self, message: BitSwapMessage) -> None:
        """Send ``message``, raising on failure."""

    def close(self) -> None:
        """Close the underlying stream."""

    def reset(self) -> None:
        """Reset the underlying stream."""

    def supports_have(self) -> bool:
        """Report whether the remote peer understands HAVE and DONT_HAVE."""


@runtime_checkable
class BitSwapNetwork(Protocol):
    """Network connectivity for bitswap."""

    def local_peer(self) -> PeerId:
        """Return the identity of the local peer."""

    def send_message(self, peer: PeerId, message: BitSwapMessage) -> None:
        """Send one message to ``peer``."""

    def set_delegate(self, receiver: Receiver) -> None:
        """Register the receiver of incoming messages and events."""

    def connect_to(self, peer: PeerId) -> None:
        """Connect to ``peer``."""

    def new_message_sender(self, peer: PeerId, opts: MessageSenderOpts) -> MessageSender:
        """Open a sender for a series of messages to ``peer``."""

    def stats(self) -> Stats:
        """Return message counters."""

    def find_providers(self, cid: Cid, max_results: int) -> Iterator[PeerId]:
        """Yield peers that provide ``cid``."""

    def provide(self, cid: Cid) -> None:
        """Announce that the local peer provides ``cid``."""

    def ping(self, peer: PeerId) -> float:
        """Return the round-trip time to ``peer`` in seconds."""

    def latency(self, peer: PeerId) -> float:
        """Return the average latency to ``peer`` in seconds."""