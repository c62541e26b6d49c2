"""The broker: tracks connected clients and routes their pub/sub messages."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from anachro.icd import (
    Arbitrator,
    ArbitratorControl,
    ArbitratorPubSub,
    Component,
    ComponentControl,
    ComponentInfo,
    ComponentPubSub,
    ComponentRegistration,
    ControlError,
    LongPath,
    PubSubPath,
    PubSubShort,
    PubSubShortRegistration,
    Publish,
    ShortPath,
    SubAck,
    SubMsg,
    Subscribe,
    Unsubscribe,
    Uuid,
    Version,
    check_name,
    check_path,
    matches,
)

__all__ = [
    "MAX_CLIENTS",
    "MAX_SUBSCRIPTIONS",
    "MAX_SHORTCUTS",
    "RESET_MESSAGE",
    "ServerErrorKind",
    "ServerError",
    "ServerIoErrorKind",
    "ServerIoError",
    "Request",
    "Response",
    "ServerIoIn",
    "ServerIoOut",
    "ResponseQueue",
    "Broker",
]

_log = logging.getLogger(__name__)

MAX_CLIENTS = 8
MAX_SUBSCRIPTIONS = 8
MAX_SHORTCUTS = 8


class ServerErrorKind(Enum):
    """Ways processing on the broker can fail."""

    CLIENT_ALREADY_REGISTERED = "client already registered"
    UNKNOWN_CLIENT = "unknown client"
    CLIENT_DISCONNECTED = "client disconnected"
    CONNECTION_ERROR = "connection error"
    RESOURCES_EXHAUSTED = "resources exhausted"
    UNKNOWN_SHORTCODE = "unknown shortcode"
    INTERNAL_ERROR = "internal error"
    DESERIALIZE_FAILURE = "deserialize failure"


class ServerError(Exception):
    """A broker operation failed; ``kind`` tells how."""

    def __init__(self, kind: ServerErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind


class ServerIoErrorKind(Enum):
    """Ways the broker's transport can fail."""

    RESPONSE_PUSH_FAILED = "response push failed"
    DESERIALIZE_FAILURE = "deserialize failure"


class ServerIoError(Exception):
    """The broker's transport failed; ``kind`` tells how."""

    def __init__(self, kind: ServerIoErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind


# Send this to a client after an error to make it reconnect.
RESET_MESSAGE = ArbitratorControl(0, ControlError.RESET_CONNECTION)


@dataclass(frozen=True)
class Request:
    """A message from the client ``source`` to the broker."""

    source: Uuid
    msg: Component


@dataclass(frozen=True)
class Response:
    """A message from the broker to the client ``dest``."""

    dest: Uuid
    msg: Arbitrator


class ServerIoIn(ABC):
    """Supplies requests received from clients."""

    @abstractmethod
    def recv(self) -> Optional[Request]:
        """Return the next request, or None if nothing is waiting.

        Raises ServerIoError if the transport fails.
        """


class ServerIoOut(ABC):
    """Accepts responses to be delivered to clients."""

    @abstractmethod
    def push_response(self, resp: Response) -> None:
        """Queue ``resp``; raises ServerIoError if it cannot be taken."""


class ResponseQueue(ServerIoOut):
    """Collects responses in a list, up to an optional capacity."""

    def __init__(self, capacity: Optional[int] = None) -> None:
        self.capacity = capacity
        self.responses: list[Response] = []

    def push_response(self, resp: Response) -> None:
        if self.capacity is not None and len(self.responses) >= self.capacity:
            raise ServerIoError(ServerIoErrorKind.RESPONSE_PUSH_FAILED)
        self.responses.append(resp)

    def __len__(self) -> int:
        return len(self.responses)

    def __iter__(self) -> Iterator[Response]:
        return iter(self.responses)


@dataclass
class _Shortcut:
    long: str
    short: int


@dataclass
class _Connected:
    name: str
    version: Version
    subscriptions: list[str] = field(default_factory=list)
    shortcuts: list[_Shortcut] = field(default_factory=list)

    def resolve(self, path: PubSubPath) -> str:
        match path:
            case LongPath(path=text):
                return text
            case ShortPath(short_id=sid):
                for shortcut in self.shortcuts:
                    if shortcut.short == sid:
                        return shortcut.long
                raise ServerError(ServerErrorKind.UNKNOWN_SHORTCODE)
            case _:
                raise ServerError(ServerErrorKind.INTERNAL_ERROR)


def _owned_path(path: str) -> str:
    try:
        return check_path(path)
    except ValueError as exc:
        raise ServerError(ServerErrorKind.RESOURCES_EXHAUSTED) from exc


@dataclass
class _Client:
    id: Uuid
    state: Optional[_Connected] = None

    def connected(self) -> _Connected:
        if self.state is None:
            raise ServerError(ServerErrorKind.CLIENT_DISCONNECTED)
        return self.state

    def process_control(self, ctrl: ComponentControl) -> Optional[Response]:
        match ctrl.ty:
            case ComponentInfo(name=name, version=version):
                try:
                    owned_name = check_name(name)
                except ValueError as exc:
                    raise ServerError(ServerErrorKind.RESOURCES_EXHAUSTED) from exc
                self.state = _Connected(owned_name, version)
                return Response(
                    self.id, ArbitratorControl(ctrl.seq, ComponentRegistration(self.id))
                )
            case PubSubShort(long_name=long_name, short_id=short_id):
                state = self.connected()
                if "#" in long_name or "+" in long_name:
                    return Response(
                        self.id,
                        ArbitratorControl(ctrl.seq, ControlError.NO_WILDCARDS_IN_SHORTS),
                    )
                exists = any(
                    sc.long == long_name and sc.short == short_id for sc in state.shortcuts
                )
                if not exists:
                    if len(state.shortcuts) >= MAX_SHORTCUTS:
                        raise ServerError(ServerErrorKind.RESOURCES_EXHAUSTED)
                    state.shortcuts.append(_Shortcut(_owned_path(long_name), short_id))
                return Response(
                    self.id, ArbitratorControl(ctrl.seq, PubSubShortRegistration(short_id))
                )
            case _:
                raise ServerError(ServerErrorKind.INTERNAL_ERROR)

    def process_subscribe(self, path: PubSubPath) -> Response:
        state = self.connected()
        path_str = state.resolve(path)
        if path_str not in state.subscriptions:
            if len(state.subscriptions) >= MAX_SUBSCRIPTIONS:
                raise ServerError(ServerErrorKind.RESOURCES_EXHAUSTED)
            state.subscriptions.append(_owned_path(path_str))
        return Response(self.id, ArbitratorPubSub(SubAck(path)))

    def process_unsub(self, path: PubSubPath) -> None:
        state = self.connected()
        path_str = state.resolve(path)
        if path_str in state.subscriptions:
            state.subscriptions.remove(path_str)


def _push(sio_out: ServerIoOut, resp: Response) -> None:
    try:
        sio_out.push_response(resp)
    except ServerIoError as exc:
        raise ServerError(ServerErrorKind.RESOURCES_EXHAUSTED) from exc


class Broker:
    """Routes messages between up to eight registered clients.

    Each client may hold up to eight subscriptions and eight shortcodes.
    """

    def __init__(self) -> None:
        self._clients: list[_Client] = []

    def register_client(self, uuid: Uuid) -> None:
        """Register a client so that its messages can be processed."""
        if any(c.id == uuid for c in self._clients):
            raise ServerError(ServerErrorKind.CLIENT_ALREADY_REGISTERED)
        if len(self._clients) >= MAX_CLIENTS:
            raise ServerError(ServerErrorKind.RESOURCES_EXHAUSTED)
        self._clients.append(_Client(uuid))

    def remove_client(self, uuid: Uuid) -> None:
        """Forget a client; its messages are no longer processed."""
        pos = next(
            (i for i, c in enumerate(self._clients) if c.id == uuid), None
        )
        if pos is None:
            raise ServerError(ServerErrorKind.UNKNOWN_CLIENT)
        last = self._clients.pop()
        if pos < len(self._clients):
            self._clients[pos] = last

    def reset_client(self, uuid: Uuid) -> None:
        """Return a client to its initial state, dropping subscriptions and shortcodes."""
        self._client(uuid).state = None

    def process_msg(self, sio_in: ServerIoIn, sio_out: ServerIoOut) -> None:
        """Process one request from ``sio_in``, pushing any responses to ``sio_out``.

        After an error it is usually best to send RESET_MESSAGE to the client.
        """
        try:
            request = sio_in.recv()
        except ServerIoError as exc:
            if exc.kind is ServerIoErrorKind.RESPONSE_PUSH_FAILED:
                _log.error("Broker: client disconnected")
                raise ServerError(ServerErrorKind.CLIENT_DISCONNECTED) from exc
            _log.error("Broker: bad deserialize")
            raise ServerError(ServerErrorKind.DESERIALIZE_FAILURE) from exc
        if request is None:
            return

        source, msg = request.source, request.msg
        match msg:
            case ComponentControl():
                response = self._client(source).process_control(msg)
                if response is not None:
                    _push(sio_out, response)
            case ComponentPubSub(path=path, ty=Publish(payload=payload)):
                self._process_publish(sio_out, path, payload, source)
            case ComponentPubSub(path=path, ty=Subscribe()):
                _push(sio_out, self._client(source).process_subscribe(path))
            case ComponentPubSub(path=path, ty=Unsubscribe()):
                self._client(source).process_unsub(path)
            case _:
                raise ServerError(ServerErrorKind.INTERNAL_ERROR)

    def _client(self, uuid: Uuid) -> _Client:
        for client in self._clients:
            if client.id == uuid:
                return client
        raise ServerError(ServerErrorKind.UNKNOWN_CLIENT)

    def _process_publish(
        self, sio_out: ServerIoOut, path: PubSubPath, payload: bytes, source: Uuid
    ) -> None:
        sender = next(
            (c.state for c in self._clients if c.state is not None and c.id == source),
            None,
        )
        if sender is None:
            raise ServerError(ServerErrorKind.UNKNOWN_CLIENT)
        path_str = sender.resolve(path)

        for client in self._clients:
            state = client.state
            if state is None or client.id == source:
                continue
            if not any(matches(subt, path_str) for subt in state.subscriptions):
                continue
            # Match on the published path, not the (possibly wildcard) subscription.
            shortcut = next((s for s in state.shortcuts if s.long == path_str), None)
            out_path: PubSubPath = (
                ShortPath(shortcut.short) if shortcut is not None else LongPath(path_str)
            )
            _push(sio_out, Response(client.id, ArbitratorPubSub(SubMsg(out_path, payload))))