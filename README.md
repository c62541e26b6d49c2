# anachro

A small publish/subscribe protocol for devices that exchange messages over
any byte transport. The package provides the message types and their binary
encoding, COBS framing, a client connection state machine and a broker that
routes messages between clients.

## Modules

- `anachro.wire` – the binary encoding used on the wire (`Writer`,
  `Reader`: fixed-width little-endian integers, LEB128 varints,
  length-prefixed bytes and UTF-8 strings) and COBS framing (`cobs_encode`,
  `cobs_decode`). Malformed data raises `WireError`.
- `anachro.icd` – the message types. Clients send `ComponentControl` and
  `ComponentPubSub` messages (`encode_component` / `decode_component`); the
  broker sends `ArbitratorControl`, `ArbitratorPubSub`, `ObjStore` and
  `Mailbox` messages (`encode_arbitrator` / `decode_arbitrator`). Paths are
  either `LongPath` (a string) or `ShortPath` (a 16-bit shortcode).
  `matches(subscr, publ)` compares a possibly wildcard subscription with a
  published path; `check_path` and `check_name` enforce the 127 and 32 byte
  limits.
- `anachro.cobs_buf` – `CobsBuffer`, which gathers incoming bytes into
  zero-terminated frames of at most `capacity` bytes. Feeding returns
  `Consumed`, `OverFull`, `DeserError` or `Success`.
- `anachro.client_io` – the `ClientIo` interface a transport implements,
  the client errors (`ClientError`, `NotActiveError`, `BusyError`,
  `UnexpectedMessageError`, `ClientIoError` with an `IoErrorKind`), and the
  `RecvMsg` / `SendMsg` records.
- `anachro.table` – `PubSubTable` and `Topic`, describing the topics a
  client subscribes and publishes to and how their payloads are decoded
  and encoded.
- `anachro.client` – `Client`, the connection state machine: registration,
  subscriptions, shortcode registration, publishing and receiving.
- `anachro.server` – `Broker`, which tracks up to eight clients, each with
  up to eight subscriptions and eight shortcodes, and routes published
  messages; plus the `ServerIoIn` / `ServerIoOut` interfaces and
  `ResponseQueue`.
- `anachro.groundhog` – `RollingTimer`, a wrapping 32-bit tick counter, and
  `since(now, other)`.

## Installing

```
pip install .
```

## Topic matching

`+` matches exactly one path segment, `#` matches everything after it.

```python
from anachro.icd import matches

assert matches("/+/temperature/#", "/dev_1/temperature/front")
assert not matches("foo/bar", "foo/baz")
```

## Wire messages

```python
from anachro.icd import (
    ComponentControl, ComponentInfo, Version,
    encode_component, decode_component,
)
from anachro.wire import cobs_encode, cobs_decode

msg = ComponentControl(
    seq=0x0504,
    ty=ComponentInfo(name="cool-board", version=Version(0, 1, 0, 123)),
)
frame = cobs_encode(encode_component(msg))   # ends with a zero byte
assert decode_component(cobs_decode(frame)) == msg
```

`CobsBuffer.feed(data, decoder)` splits a byte stream into frames and
COBS-decodes each one before handing it to `decoder` (for example
`decode_arbitrator`); `feed_simple(data)` returns the raw frame instead.

## Topic tables

```python
from anachro.table import PubSubTable, Topic, TableMessage

table = PubSubTable(
    subs=[Topic("temp", "sensors/temp", decode=lambda b: int.from_bytes(b, "little"))],
    pubs=[Topic("led", "actuators/led", decode=lambda b: b[0], encode=lambda v: bytes([v]))],
)
out = table.serialize(TableMessage("led", 1))
assert (out.path, out.buf) == ("actuators/led", b"\x01")
```

## Running a client

Implement `ClientIo` for your transport: `recv()` returns a decoded broker
message or `None`, and `send(msg)` transmits one component message. Create
a `Client(name, version, ctr_init, sub_paths, pub_short_paths,
timeout_ticks)` – usually with `table.sub_paths()` and `table.pub_paths()` –
and call `client.process_one(cio, table)` regularly. Each call advances the
connection by one step; with `timeout_ticks` set, an unanswered request is
resent (or registration restarted) after that many calls.

Once `client.is_connected()` is true, `client.get_id()` returns the `Uuid`
the broker assigned, `client.publish(cio, path, payload)` sends a message
(using the registered shortcode for known publish paths), and
`process_one` returns a `RecvMsg` for each message received on a
subscribed topic. `client.reset_connection()` starts over.

## Running a broker

```python
from anachro.icd import (
    ArbitratorControl, ComponentControl, ComponentInfo,
    ComponentRegistration, Uuid, Version,
)
from anachro.server import Broker, Request, ResponseQueue, ServerIoIn

class Inbox(ServerIoIn):
    def __init__(self, requests):
        self._requests = list(requests)

    def recv(self):
        return self._requests.pop(0) if self._requests else None

client_id = Uuid(bytes(range(16)))
broker = Broker()
broker.register_client(client_id)

out = ResponseQueue()
hello = ComponentControl(1, ComponentInfo("board", Version(0, 1, 0, 0)))
broker.process_msg(Inbox([Request(client_id, hello)]), out)
assert out.responses[0].msg == ArbitratorControl(1, ComponentRegistration(client_id))
```

Failures raise `ServerError` with a `ServerErrorKind`; after one, sending
`RESET_MESSAGE` to the client makes it reconnect. `remove_client` and
`reset_client` drop a client or its subscriptions and shortcodes.

## What is not included

The package contains no transports: there is no serial, TCP or other
implementation of `ClientIo`, `ServerIoIn` or `ServerIoOut`, and no
command-line program. You supply the code that moves bytes and calls
`process_one` / `process_msg`.

## Tests

```
pip install .[test]
pytest
```