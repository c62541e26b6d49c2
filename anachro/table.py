"""Tables of publish and subscribe topics used by clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from anachro.client_io import SendMsg
from anachro.icd import LongPath, ShortPath, SubMsg, matches

__all__ = [
    "PUBLISH_SHORTCODE_OFFSET",
    "TableError",
    "NoMatchError",
    "PayloadError",
    "Topic",
    "TableMessage",
    "PubSubTable",
]

# Shortcodes below this value name subscription topics, the rest publish topics.
PUBLISH_SHORTCODE_OFFSET = 0x8000


class TableError(Exception):
    """Base class of table errors."""


class NoMatchError(TableError):
    """No topic in the table matches."""


class PayloadError(TableError):
    """A payload could not be decoded or encoded."""


@dataclass(frozen=True)
class Topic:
    """A named topic at ``path`` with its payload codec."""

    name: str
    path: str
    decode: Callable[[bytes], Any]
    encode: Optional[Callable[[Any], bytes]] = None


@dataclass(frozen=True)
class TableMessage:
    """A value carried on the topic called ``topic``."""

    topic: str
    value: Any


class PubSubTable:
    """The subscribe and publish topics a client is interested in."""

    def __init__(self, subs: Iterable[Topic], pubs: Iterable[Topic]) -> None:
        self._subs = tuple(subs)
        self._pubs = tuple(pubs)
        names = [topic.name for topic in self._subs + self._pubs]
        if len(set(names)) != len(names):
            raise ValueError("topic names in a table must be unique")

    def sub_paths(self) -> tuple[str, ...]:
        """All subscription paths, in table order."""
        return tuple(topic.path for topic in self._subs)

    def pub_paths(self) -> tuple[str, ...]:
        """All publishing paths, in table order."""
        return tuple(topic.path for topic in self._pubs)

    def _resolve(self, path: LongPath | ShortPath) -> str:
        match path:
            case LongPath(path=text):
                return text
            case ShortPath(short_id=sid) if sid < PUBLISH_SHORTCODE_OFFSET:
                paths = self.sub_paths()
                index = sid
            case ShortPath(short_id=sid):
                paths = self.pub_paths()
                index = sid - PUBLISH_SHORTCODE_OFFSET
            case _:
                raise NoMatchError(f"not a pub/sub path: {path!r}")
        if index >= len(paths):
            raise NoMatchError(f"unknown shortcode {path.short_id:#06x}")
        return paths[index]

    def from_pub_sub(self, msg: SubMsg) -> TableMessage:
        """Decode a received message into the first table topic that matches it."""
        msg_path = self._resolve(msg.path)
        for topic in self._subs + self._pubs:
            if matches(msg_path, topic.path):
                try:
                    value = topic.decode(msg.payload)
                except ValueError as exc:
                    raise PayloadError(f"bad payload for {topic.path!r}") from exc
                return TableMessage(topic.name, value)
        raise NoMatchError(f"no topic matches {msg_path!r}")

    def _pub_topic(self, message: TableMessage) -> Optional[Topic]:
        return next((t for t in self._pubs if t.name == message.topic), None)

    def get_pub_path(self, message: TableMessage) -> Optional[str]:
        """The publish path of ``message``, or None for a subscription topic."""
        topic = self._pub_topic(message)
        return topic.path if topic else None

    def serialize(self, message: TableMessage) -> SendMsg:
        """Encode ``message`` for publishing."""
        topic = self._pub_topic(message)
        if topic is None:
            raise NoMatchError(f"{message.topic!r} is not a publish topic")
        if topic.encode is None:
            raise PayloadError(f"topic {topic.name!r} has no encoder")
        try:
            buf = topic.encode(message.value)
        except ValueError as exc:
            raise PayloadError(f"cannot encode value for {topic.path!r}") from exc
        return SendMsg(bytes(buf), topic.path)