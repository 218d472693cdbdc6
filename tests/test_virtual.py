import threading
import time

import pytest

from bitswap.message import BitSwapMessage, new_block
from bitswap.network.interfaces import (
    PROTOCOL_BITSWAP,
    PROTOCOL_BITSWAP_NO_VERS,
    PROTOCOL_BITSWAP_ONE_ONE,
    PROTOCOL_BITSWAP_ONE_ZERO,
    supported_protocols,
)
from bitswap.testnet.delays import FixedDelay, FixedRateLimitGenerator
from bitswap.testnet.virtual import (
    MockRoutingServer,
    PeerNotFoundError,
    RateLimiter,
    VirtualNetwork,
    tag_for_peers,
)


class Recorder:
    def __init__(self, on_message=None):
        self.on_message = on_message
        self.messages = []
        self.events = []
        self.received = threading.Event()

    def receive_message(self, sender, incoming):
        self.messages.append((sender, incoming))
        if self.on_message is not None:
            self.on_message(sender, incoming)
        self.received.set()

    def receive_error(self, error):
        pass

    def peer_connected(self, peer):
        self.events.append(("connected", peer))

    def peer_disconnected(self, peer):
        self.events.append(("disconnected", peer))


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_send_message_async_but_wait_for_response():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    waiter = net.adapter("waiter")
    responder = net.adapter("responder")
    expected = b"received async"

    def respond(from_waiter, msg):
        reply = BitSwapMessage(True)
        reply.add_block(new_block(expected))
        waiter.send_message(from_waiter, reply)

    waiter_rec = Recorder()
    responder_rec = Recorder(respond)
    responder.set_delegate(responder_rec)
    waiter.set_delegate(waiter_rec)

    sent = BitSwapMessage(True)
    sent.add_block(new_block(b"data"))
    waiter.send_message("responder", sent)

    assert wait_until(lambda: len(waiter_rec.messages) == 1)
    sender, reply = waiter_rec.messages[0]
    assert sender == "waiter"
    assert [b.data for b in reply.blocks()] == [expected]
    assert waiter.stats().messages_sent == 2
    assert responder.stats().messages_recvd == 1
    assert wait_until(lambda: waiter.stats().messages_recvd == 1)


def test_has_peer():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    net.adapter("a")
    assert net.has_peer("a")
    assert not net.has_peer("b")


def test_send_to_unknown_peer_raises():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    a = net.adapter("a")
    with pytest.raises(PeerNotFoundError):
        a.send_message("missing", BitSwapMessage(False))
    assert a.stats().messages_sent == 0


def test_stats_and_latency():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0.01))
    a = net.adapter("a")
    b = net.adapter("b")
    rec = Recorder()
    b.set_delegate(rec)
    assert a.latency("b") == 0.0
    a.send_message("b", BitSwapMessage(False))
    assert rec.received.wait(5)
    assert a.stats().messages_sent == 1
    assert b.stats().messages_recvd == 1
    assert a.latency("b") == 0.01
    assert a.ping("b") == 0.01
    assert rec.messages[0][0] == "a"


def test_message_is_copied_on_send():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0.05))
    a = net.adapter("a")
    b = net.adapter("b")
    rec = Recorder()
    b.set_delegate(rec)
    msg = BitSwapMessage(False)
    msg.add_block(new_block(b"one"))
    a.send_message("b", msg)
    msg.add_block(new_block(b"two"))
    assert rec.received.wait(5)
    assert [blk.data for blk in rec.messages[0][1].blocks()] == [b"one"]


def test_messages_delivered_in_order():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    a = net.adapter("a")
    b = net.adapter("b")
    rec = Recorder()
    b.set_delegate(rec)
    for payload in (b"1", b"2", b"3"):
        msg = BitSwapMessage(False)
        msg.add_block(new_block(payload))
        a.send_message("b", msg)
    assert wait_until(lambda: len(rec.messages) == 3)
    assert [m.blocks()[0].data for _, m in rec.messages] == [b"1", b"2", b"3"]


def test_rate_limited_network_delivers():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0), FixedRateLimitGenerator(1e9))
    assert net.is_rate_limited
    a = net.adapter("a")
    b = net.adapter("b")
    rec = Recorder()
    b.set_delegate(rec)
    a.send_message("b", BitSwapMessage(True))
    assert rec.received.wait(5)
    assert rec.messages[0][1].full is True


def test_connect_and_disconnect_notify_both_sides_once():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    a = net.adapter("a")
    b = net.adapter("b")
    ra, rb = Recorder(), Recorder()
    a.set_delegate(ra)
    b.set_delegate(rb)
    a.connect_to("b")
    b.connect_to("a")
    assert ra.events == [("connected", "b")]
    assert rb.events == [("connected", "a")]
    a.disconnect_from("b")
    a.disconnect_from("b")
    assert ra.events == [("connected", "b"), ("disconnected", "b")]
    assert rb.events == [("connected", "a"), ("disconnected", "a")]


def test_connect_to_unknown_peer_raises():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    a = net.adapter("a")
    with pytest.raises(PeerNotFoundError):
        a.connect_to("missing")
    with pytest.raises(PeerNotFoundError):
        a.disconnect_from("missing")


@pytest.mark.parametrize(
    "proto, expected",
    [
        (PROTOCOL_BITSWAP, True),
        (PROTOCOL_BITSWAP_ONE_ONE, False),
        (PROTOCOL_BITSWAP_ONE_ZERO, False),
        (PROTOCOL_BITSWAP_NO_VERS, False),
    ],
)
def test_message_passer_supports_have(proto, expected):
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    a = net.adapter("a")
    net.adapter("b", supported_protocols([proto]))
    assert a.new_message_sender("b").supports_have() is expected


def test_message_passer_sends():
    net = VirtualNetwork(MockRoutingServer(), FixedDelay(0))
    a = net.adapter("a")
    b = net.adapter("b")
    rec = Recorder()
    b.set_delegate(rec)
    sender = a.new_message_sender("b")
    sender.send_msg(BitSwapMessage(False))
    assert rec.received.wait(5)
    assert rec.messages[0][0] == "a"


def test_routing_provide_and_find():
    server = MockRoutingServer()
    net = VirtualNetwork(server, FixedDelay(0))
    a = net.adapter("a")
    b = net.adapter("b")
    c = net.adapter("c")
    cid = new_block(b"content").cid
    a.provide(cid)
    b.provide(cid)
    a.provide(cid)
    assert list(c.find_providers(cid, 10)) == ["a", "b"]
    assert list(c.find_providers(cid, 1)) == ["a"]
    assert list(c.find_providers(new_block(b"other").cid, 10)) == []


def test_tag_for_peers_is_symmetric():
    assert tag_for_peers("a", "b") == "ab"
    assert tag_for_peers("b", "a") == "ab"


def test_rate_limiter_delay():
    now = [0.0]
    limiter = RateLimiter(1000.0, clock=lambda: now[0])
    assert limiter.limit(50) == 0.0
    assert limiter.limit(550) == pytest.approx(0.5)
    now[0] = 1.0
    assert limiter.limit(100) == 0.0
    assert limiter.count == 1


def test_rate_limiter_zero_bandwidth():
    assert RateLimiter(0.0).limit(10_000) == 0.0