"""Message types exchanged between clients (components) and the broker.

Arbitrator messages travel from the broker to clients; component
messages travel from clients to the broker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from itertools import zip_longest
from typing import Union

from anachro.wire import Reader, WireError, Writer

MAX_PATH_LEN = 127
MAX_NAME_LEN = 32


def _check_len(value: str, limit: int, what: str) -> str:
    if len(value.encode("utf-8")) > limit:
        raise ValueError(f"{what} {value!r} is longer than {limit} bytes")
    return value


def check_path(path: str) -> str:
    """Return ``path`` if it fits the maximum pub/sub path length."""
    return _check_len(path, MAX_PATH_LEN, "path")


def check_name(name: str) -> str:
    """Return ``name`` if it fits the maximum device name length."""
    return _check_len(name, MAX_NAME_LEN, "name")


@dataclass(frozen=True)
class Uuid:
    """A 16 byte identifier."""

    value: bytes = bytes(16)

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", bytes(self.value))
        if len(self.value) != 16:
            raise ValueError("a Uuid holds exactly 16 bytes")

    def __bytes__(self) -> bytes:
        return self.value


@dataclass(frozen=True)
class Version:
    """Semantic version of a device."""

    major: int
    minor: int
    trivial: int
    misc: int


@dataclass(frozen=True)
class LongPath:
    """A full UTF-8 pub/sub path."""

    path: str


@dataclass(frozen=True)
class ShortPath:
    """A pre-registered 16 bit shortcode for a path."""

    short_id: int


PubSubPath = Union[LongPath, ShortPath]


# ---- Arbitrator -> Component -------------------------------------------


class ControlError(Enum):
    """Errors the broker may answer a control request with."""

    NO_WILDCARDS_IN_SHORTS = 0
    RESET_CONNECTION = 1


@dataclass(frozen=True)
class ComponentRegistration:
    """The client was registered and assigned ``uuid``."""

    uuid: Uuid


@dataclass(frozen=True)
class PubSubShortRegistration:
    """A path shortcode was registered."""

    short_id: int


ControlResponse = Union[ComponentRegistration, PubSubShortRegistration]


@dataclass(frozen=True)
class ArbitratorControl:
    """Control channel reply; ``response`` is a ControlError on failure."""

    seq: int
    response: Union[ComponentRegistration, PubSubShortRegistration, ControlError]


@dataclass(frozen=True)
class SubAck:
    """Acknowledgement of a subscription request."""

    path: PubSubPath


@dataclass(frozen=True)
class SubMsg:
    """A message published by another client to a subscribed path."""

    path: PubSubPath
    payload: bytes


@dataclass(frozen=True)
class ArbitratorPubSub:
    """Pub/sub channel message from the broker."""

    response: Union[SubAck, SubMsg]


@dataclass(frozen=True)
class ObjStore:
    """Object store channel message (no content yet)."""


@dataclass(frozen=True)
class Mailbox:
    """Mailbox channel message (no content yet)."""


Arbitrator = Union[ArbitratorControl, ArbitratorPubSub, ObjStore, Mailbox]


# ---- Component -> Arbitrator -------------------------------------------


@dataclass(frozen=True)
class ComponentInfo:
    """Registration details of a client."""

    name: str
    version: Version


@dataclass(frozen=True)
class PubSubShort:
    """Request to register ``short_id`` as a shortcode for ``long_name``."""

    long_name: str
    short_id: int


@dataclass(frozen=True)
class ComponentControl:
    """Control channel request from a client."""

    seq: int
    ty: Union[ComponentInfo, PubSubShort]


@dataclass(frozen=True)
class Publish:
    """Publish ``payload`` on the message's path."""

    payload: bytes


@dataclass(frozen=True)
class Subscribe:
    """Subscribe to the message's path."""


@dataclass(frozen=True)
class Unsubscribe:
    """Unsubscribe from the message's path."""


@dataclass(frozen=True)
class ComponentPubSub:
    """Pub/sub channel message from a client."""

    path: PubSubPath
    ty: Union[Publish, Subscribe, Unsubscribe]


Component = Union[ComponentControl, ComponentPubSub]


# ---- encoding helpers ---------------------------------------------------


def _write_path(writer: Writer, path: PubSubPath) -> None:
    match path:
        case LongPath(path=text):
            writer.varint(0).text(text)
        case ShortPath(short_id=short_id):
            writer.varint(1).u16(short_id)
        case _:
            raise WireError(f"not a pub/sub path: {path!r}")


def _read_path(reader: Reader) -> PubSubPath:
    match reader.varint():
        case 0:
            return LongPath(reader.text())
        case 1:
            return ShortPath(reader.u16())
        case tag:
            raise WireError(f"unknown path variant {tag}")


def _read_result_tag(reader: Reader) -> bool:
    """Return True for an Ok result, False for an Err result."""
    match reader.varint():
        case 0:
            return True
        case 1:
            return False
        case tag:
            raise WireError(f"unknown result variant {tag}")


def encode_arbitrator(msg: Arbitrator) -> bytes:
    """Serialize a broker-to-client message."""
    writer = Writer()
    match msg:
        case ArbitratorControl(seq=seq, response=response):
            writer.varint(0).u16(seq)
            match response:
                case ComponentRegistration(uuid=uuid):
                    writer.varint(0).varint(0).raw(uuid.value)
                case PubSubShortRegistration(short_id=short_id):
                    writer.varint(0).varint(1).u16(short_id)
                case ControlError():
                    writer.varint(1).varint(response.value)
                case _:
                    raise WireError(f"not a control response: {response!r}")
        case ArbitratorPubSub(response=response):
            writer.varint(1).varint(0)
            match response:
                case SubAck(path=path):
                    writer.varint(0)
                    _write_path(writer, path)
                case SubMsg(path=path, payload=payload):
                    writer.varint(1)
                    _write_path(writer, path)
                    writer.byte_seq(payload)
                case _:
                    raise WireError(f"not a pub/sub response: {response!r}")
        case ObjStore():
            writer.varint(2)
        case Mailbox():
            writer.varint(3)
        case _:
            raise WireError(f"not an arbitrator message: {msg!r}")
    return writer.to_bytes()


def decode_arbitrator(data: bytes) -> Arbitrator:
    """Deserialize a broker-to-client message."""
    reader = Reader(data)
    match reader.varint():
        case 0:
            seq = reader.u16()
            if _read_result_tag(reader):
                match reader.varint():
                    case 0:
                        return ArbitratorControl(seq, ComponentRegistration(Uuid(reader.raw(16))))
                    case 1:
                        return ArbitratorControl(seq, PubSubShortRegistration(reader.u16()))
                    case tag:
                        raise WireError(f"unknown control response variant {tag}")
            tag = reader.varint()
            try:
                return ArbitratorControl(seq, ControlError(tag))
            except ValueError as exc:
                raise WireError(f"unknown control error variant {tag}") from exc
        case 1:
            if not _read_result_tag(reader):
                raise WireError("pub/sub errors have no variants")
            match reader.varint():
                case 0:
                    return ArbitratorPubSub(SubAck(_read_path(reader)))
                case 1:
                    path = _read_path(reader)
                    return ArbitratorPubSub(SubMsg(path, reader.byte_seq()))
                case tag:
                    raise WireError(f"unknown pub/sub response variant {tag}")
        case 2:
            return ObjStore()
        case 3:
            return Mailbox()
        case tag:
            raise WireError(f"unknown arbitrator variant {tag}")


def encode_component(msg: Component) -> bytes:
    """Serialize a client-to-broker message."""
    writer = Writer()
    match msg:
        case ComponentControl(seq=seq, ty=ty):
            writer.varint(0).u16(seq)
            match ty:
                case ComponentInfo(name=name, version=version):
                    writer.varint(0).text(name)
                    writer.u8(version.major).u8(version.minor)
                    writer.u8(version.trivial).u8(version.misc)
                case PubSubShort(long_name=long_name, short_id=short_id):
                    writer.varint(1).text(long_name).u16(short_id)
                case _:
                    raise WireError(f"not a control type: {ty!r}")
        case ComponentPubSub(path=path, ty=ty):
            writer.varint(1)
            _write_path(writer, path)
            match ty:
                case Publish(payload=payload):
                    writer.varint(0).byte_seq(payload)
                case Subscribe():
                    writer.varint(1)
                case Unsubscribe():
                    writer.varint(2)
                case _:
                    raise WireError(f"not a pub/sub type: {ty!r}")
        case _:
            raise WireError(f"not a component message: {msg!r}")
    return writer.to_bytes()


def decode_component(data: bytes) -> Component:
    """Deserialize a client-to-broker message."""
    reader = Reader(data)
    match reader.varint():
        case 0:
            seq = reader.u16()
            match reader.varint():
                case 0:
                    name = reader.text()
                    version = Version(reader.u8(), reader.u8(), reader.u8(), reader.u8())
                    return ComponentControl(seq, ComponentInfo(name, version))
                case 1:
                    long_name = reader.text()
                    return ComponentControl(seq, PubSubShort(long_name, reader.u16()))
                case tag:
                    raise WireError(f"unknown control type variant {tag}")
        case 1:
            path = _read_path(reader)
            match reader.varint():
                case 0:
                    return ComponentPubSub(path, Publish(reader.byte_seq()))
                case 1:
                    return ComponentPubSub(path, Subscribe())
                case 2:
                    return ComponentPubSub(path, Unsubscribe())
                case tag:
                    raise WireError(f"unknown pub/sub type variant {tag}")
        case tag:
            raise WireError(f"unknown component variant {tag}")


def matches(subscr: str, publ: str) -> bool:
    """Does the (possibly wildcard) path ``subscr`` match ``publ``?

    ``+`` matches exactly one segment, ``#`` matches everything that follows.
    """
    if not subscr or not publ:
        return False
    for sub_seg, pub_seg in zip_longest(subscr.split("/"), publ.split("/")):
        if sub_seg == "+" and pub_seg is not None:
            continue
        if sub_seg == "#":
            return True
        if sub_seg is not None and sub_seg == pub_seg:
            continue
        return False
    return True