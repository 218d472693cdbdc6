# bitswap

Building blocks of the Bitswap block-exchange protocol: content identifiers,
the protobuf wire format, wantlists, Bitswap messages, a network adapter that
runs over a host you supply, and an in-process virtual network for simulations
and tests. It has no dependencies outside the standard library.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `bitswap.cid`: `Cid` (binary CID with `version`, `codec`, `multihash`,
  `to_bytes()`, `prefix()` and a base58/base32 string form), `Prefix`
  (`to_bytes()`, `sum(data)`), `prefix_from_bytes`, `new_cid_v0`,
  `new_cid_v1`, `cast_cid`, `decode_cid`, `sha256_multihash`,
  `base58_encode`/`base58_decode`, `encode_uvarint`/`decode_uvarint`.
  Malformed input raises `CidError`.
- `bitswap.wire`: the protobuf encoding of messages: `WireMessage`,
  `WireEntry`, `WireBlock`, `WireBlockPresence` (each with `marshal()`),
  the enums `WantType` and `BlockPresenceType`, and `unmarshal_message`.
  Undecodable data raises `WireError`.
- `bitswap.wantlist`: `Wantlist` (`add`, `remove`, `remove_type`, `get`,
  `entries`, `absorb`, `len()` and `in`), `Entry`, `new_ref_entry` and
  `sort_entries` (highest priority first).
- `bitswap.message`: `BitSwapMessage` with wants, blocks and HAVE/DONT_HAVE
  presences; `to_proto_v0()`/`to_proto_v1()` for the 1.0.0 and 1.1.0+ wire
  forms, `to_net_v0(writer)`/`to_net_v1(writer)` for length-prefixed output,
  and `from_net(reader)` to read one message back (raising `EOFError` at the
  end of the stream and `MessageError` on bad data). Also `Block`,
  `new_block`, `message_from_wire`, `max_entry_size` and
  `block_presence_size`.
- `bitswap.network.interfaces`: the `Receiver`, `ConnectionListener`,
  `MessageSender` and `BitSwapNetwork` protocols, `MessageSenderOpts`,
  `Settings`, `Stats`, the protocol ID constants, `default_settings()`, and
  the options `prefix(...)` and `supported_protocols(...)`.
- `bitswap.network.connect_events`: `ConnectEventManager`, which turns
  per-connection events into per-peer connected/disconnected notifications
  and tracks peers marked unresponsive.
- `bitswap.network.host_network`: `HostNetwork`, which speaks Bitswap over a
  `Host` and a `ContentRouting` you provide; `StreamMessageSender` with
  retries and backoff; `send_timeout(size)`; `process_settings(...)`.
- `bitswap.testnet.delays`: `FixedDelay`, `VariableDelay`,
  `InternetLatencyDelayGenerator`, `FixedRateLimitGenerator` and
  `VariableRateLimitGenerator`. Durations are in seconds.
- `bitswap.testnet.virtual`: `VirtualNetwork`, an in-process network of
  `NetworkClient` adapters with simulated latency and optional bandwidth
  limits (`RateLimiter`), plus `MockRoutingServer` for provider records.

## Examples

Encode a message and read it back:

```python
import io

from bitswap.message import BitSwapMessage, from_net, new_block
from bitswap.wire import WantType

wanted = new_block(b"hello")

message = BitSwapMessage(full=True)
message.add_entry(wanted.cid, 1, WantType.BLOCK, True)
message.add_block(new_block(b"payload"))

buffer = io.BytesIO()
message.to_net_v1(buffer)
buffer.seek(0)

received = from_net(buffer)
assert received.full
assert [entry.cid for entry in received.wantlist()] == [wanted.cid]
```

A later want-have does not downgrade a want-block:

```python
from bitswap.cid import decode_cid
from bitswap.wantlist import Wantlist
from bitswap.wire import WantType

cid = decode_cid("QmQL8LqkEgYXaDHdNYCG2mmpow7Sp8Z8Kt3QS688vyBeC7")

wl = Wantlist()
wl.add(cid, 5, WantType.BLOCK)
assert wl.add(cid, 5, WantType.HAVE) is False
assert wl.get(cid).want_type is WantType.BLOCK
```

Two peers on a virtual network (messages are delivered on a background
thread after the simulated delay):

```python
from bitswap.testnet.delays import FixedDelay
from bitswap.testnet.virtual import MockRoutingServer, VirtualNetwork

net = VirtualNetwork(MockRoutingServer(), FixedDelay(0.0))
alice = net.adapter("peer-a")
bob = net.adapter("peer-b")
# Give each adapter a Receiver with set_delegate(...), then:
# alice.connect_to("peer-b"); alice.send_message("peer-b", message)
```

## What this package does not do

It provides the message format, wantlists and network layer only. There is no
block exchange engine: nothing here stores blocks, schedules wants, runs
sessions or decides what to send to whom. `HostNetwork` does not open real
network connections itself; it needs a `Host` and `ContentRouting`
implementation supplied by the caller. There is no command-line program.