"""The client state machine: connects to a broker, subscribes, and exchanges messages."""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Iterable, Optional

from anachro.client_io import (
    ClientIo,
    NotActiveError,
    RecvMsg,
    UnexpectedMessageError,
)
from anachro.icd import (
    ArbitratorControl,
    ArbitratorPubSub,
    ComponentControl,
    ComponentInfo,
    ComponentPubSub,
    ComponentRegistration,
    LongPath,
    Publish,
    PubSubShort,
    PubSubShortRegistration,
    ShortPath,
    SubAck,
    SubMsg,
    Subscribe,
    Uuid,
    Version,
    check_name,
    check_path,
)
from anachro.table import PUBLISH_SHORTCODE_OFFSET, PubSubTable, TableError

__all__ = ["PUBLISH_SHORTCODE_OFFSET", "Client"]

_log = logging.getLogger(__name__)

_U16_MASK = 0xFFFF
_TICK_MAX = 0xFF


class _State(Enum):
    DISCONNECTED = auto()
    PENDING_REGISTRATION = auto()
    REGISTERED = auto()
    SUBSCRIBING = auto()
    SUBSCRIBED = auto()
    SHORTCODING_SUB = auto()
    SHORTCODING_PUB = auto()
    ACTIVE = auto()


class Client:
    """Tracks the connection to a broker and processes messages.

    ``timeout_ticks`` is the number of calls to :meth:`process_one` to wait
    for a response before retrying; None disables automatic retries.
    """

    def __init__(
        self,
        name: str,
        version: Version,
        ctr_init: int,
        sub_paths: Iterable[str],
        pub_short_paths: Iterable[str],
        timeout_ticks: Optional[int] = None,
    ) -> None:
        self._name = check_name(name)
        self._version = version
        self._ctr = ctr_init & _U16_MASK
        self._sub_paths = tuple(sub_paths)
        self._pub_paths = tuple(pub_short_paths)
        self._timeout_ticks = timeout_ticks
        self._uuid = Uuid()
        self._state = _State.DISCONNECTED
        self._tick = 0
        self._idx = 0

    # ---- public interface ------------------------------------------------

    def reset_connection(self) -> None:
        """Disconnect immediately; the next processing step reconnects."""
        _log.error("Resetting connection")
        self._state = _State.DISCONNECTED
        self._tick = 0
        self._idx = 0

    def get_id(self) -> Optional[Uuid]:
        """The Uuid assigned by the broker, or None when not connected."""
        return self._uuid if self.is_connected() else None

    def is_connected(self) -> bool:
        """Is the client connected and active?"""
        return self._state is _State.ACTIVE

    def publish(self, cio: ClientIo, path: str, payload: bytes) -> None:
        """Publish ``payload`` on ``path``; raises NotActiveError when not connected."""
        self._require_active()
        if path in self._pub_paths:
            pub_path = ShortPath(self._pub_paths.index(path) | PUBLISH_SHORTCODE_OFFSET)
        else:
            pub_path = LongPath(path)
        cio.send(ComponentPubSub(pub_path, Publish(bytes(payload))))

    def process_one(self, cio: ClientIo, table: PubSubTable) -> Optional[RecvMsg]:
        """Advance the connection by one step.

        Returns a received subscription message when one arrives while active.
        """
        state = self._state
        if state is _State.DISCONNECTED:
            self._disconnected(cio)
        elif state is _State.PENDING_REGISTRATION:
            self._pending_registration(cio)
            if self._timeout_violated():
                _log.warning("Registration timeout; going to disconnected state")
                self._state = _State.DISCONNECTED
                self._tick = 0
        elif state is _State.REGISTERED:
            self._registered(cio)
        elif state is _State.SUBSCRIBING:
            self._subscribing(cio)
            if self._timeout_violated():
                _log.info("Subscribe timeout; resending")
                self._send_sub(cio, self._sub_paths[self._idx])
                self._tick = 0
        elif state is _State.SUBSCRIBED:
            self._subscribed(cio)
        elif state is _State.SHORTCODING_SUB:
            self._shortcoding_sub(cio)
            if self._timeout_violated():
                _log.info("Subscribe shortcode timeout; resending")
                self._send_short(cio, self._sub_paths[self._idx], self._idx)
                self._tick = 0
        elif state is _State.SHORTCODING_PUB:
            self._shortcoding_pub(cio)
            if self._timeout_violated():
                _log.info("Publish shortcode timeout; resending")
                self._send_short(
                    cio,
                    self._pub_paths[self._idx],
                    self._idx | PUBLISH_SHORTCODE_OFFSET,
                )
                self._tick = 0
        else:
            return self._active(cio, table)
        return None

    # ---- helpers ---------------------------------------------------------

    def _require_active(self) -> None:
        if self._state is not _State.ACTIVE:
            raise NotActiveError("client is not connected")

    def _timeout_violated(self) -> bool:
        return self._timeout_ticks is not None and self._timeout_ticks <= self._tick

    def _bump_tick(self) -> None:
        self._tick = min(self._tick + 1, _TICK_MAX)

    def _next_seq(self) -> int:
        self._ctr = (self._ctr + 1) & _U16_MASK
        return self._ctr

    def _send_sub(self, cio: ClientIo, path: str) -> None:
        cio.send(ComponentPubSub(LongPath(path), Subscribe()))

    def _send_short(self, cio: ClientIo, long_name: str, short_id: int) -> None:
        cio.send(ComponentControl(self._next_seq(), PubSubShort(long_name, short_id)))

    def _start_pub_shortcodes(self, cio: ClientIo) -> None:
        self._send_short(cio, self._pub_paths[0], PUBLISH_SHORTCODE_OFFSET)
        self._state = _State.SHORTCODING_PUB
        self._tick = 0
        self._idx = 0

    # ---- states ----------------------------------------------------------

    def _disconnected(self, cio: ClientIo) -> None:
        seq = self._next_seq()
        cio.send(ComponentControl(seq, ComponentInfo(self._name, self._version)))
        self._state = _State.PENDING_REGISTRATION
        self._tick = 0

    def _pending_registration(self, cio: ClientIo) -> None:
        msg = cio.recv()
        if msg is None:
            self._bump_tick()
            return
        if not isinstance(msg, ArbitratorControl):
            _log.info("Not a control message while waiting for registration")
            self._bump_tick()
            return
        if msg.seq != self._ctr:
            self._bump_tick()
            raise UnexpectedMessageError(
                f"sequence mismatch: got {msg.seq}, expected {self._ctr}"
            )
        if isinstance(msg.response, ComponentRegistration):
            self._uuid = msg.response.uuid
            self._state = _State.REGISTERED
            self._tick = 0
            return
        self._bump_tick()
        raise UnexpectedMessageError(f"unexpected registration response {msg.response!r}")

    def _registered(self, cio: ClientIo) -> None:
        if not self._sub_paths:
            self._state = _State.SUBSCRIBED
            self._tick = 0
            return
        self._send_sub(cio, self._sub_paths[0])
        self._state = _State.SUBSCRIBING
        self._idx = 0
        self._tick = 0

    def _subscribing(self, cio: ClientIo) -> None:
        msg = cio.recv()
        if msg is None:
            self._bump_tick()
            return
        match msg:
            case ArbitratorPubSub(response=SubAck(path=LongPath(path=acked))) if (
                acked == self._sub_paths[self._idx]
            ):
                self._idx += 1
                self._tick = 0
                if self._idx >= len(self._sub_paths):
                    self._state = _State.SUBSCRIBED
                else:
                    self._send_sub(cio, self._sub_paths[self._idx])
                    self._state = _State.SUBSCRIBING
            case _:
                self._bump_tick()

    def _subscribed(self, cio: ClientIo) -> None:
        if self._sub_paths:
            self._send_short(cio, self._sub_paths[0], 0)
            self._state = _State.SHORTCODING_SUB
            self._tick = 0
            self._idx = 0
        elif self._pub_paths:
            self._start_pub_shortcodes(cio)
        else:
            self._state = _State.ACTIVE
            self._tick = 0

    def _shortcode_ack(self, cio: ClientIo, expected_id: int) -> bool:
        """Receive one message; True if it acknowledges ``expected_id``."""
        msg = cio.recv()
        if msg is None:
            self._bump_tick()
            return False
        match msg:
            case ArbitratorControl(seq=seq, response=PubSubShortRegistration(short_id=sid)) if (
                seq == self._ctr and sid == expected_id
            ):
                return True
            case _:
                self._bump_tick()
                return False

    def _shortcoding_sub(self, cio: ClientIo) -> None:
        if not self._shortcode_ack(cio, self._idx):
            return
        self._idx += 1
        if self._idx < len(self._sub_paths):
            self._send_short(cio, self._sub_paths[self._idx], self._idx)
            self._tick = 0
        elif self._pub_paths:
            self._start_pub_shortcodes(cio)
        else:
            self._state = _State.ACTIVE
            self._tick = 0

    def _shortcoding_pub(self, cio: ClientIo) -> None:
        if not self._shortcode_ack(cio, self._idx | PUBLISH_SHORTCODE_OFFSET):
            return
        self._idx += 1
        if self._idx >= len(self._pub_paths):
            self._state = _State.ACTIVE
            self._tick = 0
        else:
            self._send_short(
                cio,
                self._pub_paths[self._idx],
                self._idx | PUBLISH_SHORTCODE_OFFSET,
            )
            self._tick = 0

    def _active(self, cio: ClientIo, table: PubSubTable) -> Optional[RecvMsg]:
        msg = cio.recv()
        if not (isinstance(msg, ArbitratorPubSub) and isinstance(msg.response, SubMsg)):
            return None
        sub_msg = msg.response

        match sub_msg.path:
            case ShortPath(short_id=sid):
                if sid >= len(self._sub_paths):
                    raise UnexpectedMessageError(f"unknown shortcode {sid:#06x}")
                path = self._sub_paths[sid]
            case LongPath(path=text):
                try:
                    path = check_path(text)
                except ValueError as exc:
                    raise UnexpectedMessageError(str(exc)) from exc
            case other:
                raise UnexpectedMessageError(f"not a pub/sub path: {other!r}")

        try:
            payload = table.from_pub_sub(sub_msg)
        except TableError as exc:
            _log.error("Could not decode subscription message")
            raise UnexpectedMessageError(str(exc)) from exc

        return RecvMsg(path, payload)