"""Tracking of peer connections and responsiveness."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .interfaces import ConnectionListener, PeerId


@dataclass
class _ConnState:
    refs: int = 0
    responsive: bool = True


class ConnectEventManager:
    """Turns per-connection events into per-peer connected/disconnected events.

    A peer is reported connected when its first connection opens and
    disconnected when its last one closes or it is marked unresponsive.
    """

    def __init__(self, listener: ConnectionListener) -> None:
        self._listener = listener
        self._lock = threading.Lock()
        self._conns: dict[PeerId, _ConnState] = {}

    def connected(self, peer: PeerId) -> None:
        """Record a new connection to ``peer``."""
        with self._lock:
            state = self._conns.setdefault(peer, _ConnState())
            state.refs += 1
            if state.refs == 1 and state.responsive:
                self._listener.peer_connected(peer)

    def disconnected(self, peer: PeerId) -> None:
        """Record that a connection to ``peer`` closed."""
        with self._lock:
            state = self._conns.get(peer)
            if state is None:
                return
            state.refs -= 1
            if state.refs == 0:
                if state.responsive:
                    self._listener.peer_disconnected(peer)
                del self._conns[peer]

    def mark_unresponsive(self, peer: PeerId) -> None:
        """Report ``peer`` as disconnected while its connections stay open."""
        with self._lock:
            state = self._conns.get(peer)
            if state is None or not state.responsive:
                return
            state.responsive = False
            self._listener.peer_disconnected(peer)

    def on_message(self, peer: PeerId) -> None:
        """Note a message from ``peer``, making an unresponsive peer responsive again."""
        with self._lock:
            state = self._conns.get(peer)
            if state is None or state.responsive:
                return
            state.responsive = True
            self._listener.peer_connected(peer)