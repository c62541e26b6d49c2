"""Accumulates a byte stream into zero-terminated COBS frames."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from anachro.wire import cobs_decode

__all__ = ["Consumed", "OverFull", "DeserError", "Success", "CobsBuffer"]

T = TypeVar("T")


@dataclass(frozen=True)
class Consumed:
    """All input was taken; the frame is still incomplete."""


@dataclass(frozen=True)
class OverFull:
    """The buffer filled up; ``remaining`` is the unused part of the input."""

    remaining: bytes


@dataclass(frozen=True)
class DeserError:
    """A frame ended but could not be decoded."""

    remaining: bytes


@dataclass(frozen=True)
class Success(Generic[T]):
    """A frame was completed; ``remaining`` is the input after it."""

    data: T
    remaining: bytes


FeedResult = Union[Consumed, OverFull, DeserError, Success]


class CobsBuffer:
    """Collects bytes until a zero terminator, holding at most ``capacity``."""

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self._buf = bytearray()

    def _take_frame(self, data: bytes) -> Consumed | OverFull | tuple[bytes, bytes]:
        """Feed raw bytes; return a (frame, remaining) pair once a frame ends."""
        data = bytes(data)
        if not data:
            return Consumed()

        zero_pos = data.find(0)
        if zero_pos >= 0:
            take, release = data[: zero_pos + 1], data[zero_pos + 1 :]
            if len(self._buf) + zero_pos <= self.capacity:
                self._buf += take
                frame = bytes(self._buf)
                self._buf.clear()
                return frame, release
            self._buf.clear()
            return OverFull(release)

        if len(self._buf) + len(data) > self.capacity:
            new_start = self.capacity - len(self._buf)
            self._buf.clear()
            return OverFull(data[new_start:])
        self._buf += data
        return Consumed()

    def feed(self, data: bytes, decoder: Callable[[bytes], Any]) -> FeedResult:
        """Feed bytes; on a complete frame, COBS-decode it and apply ``decoder``."""
        return self.feed_with(data, decoder, lambda value: value)

    def feed_with(
        self,
        data: bytes,
        decoder: Callable[[bytes], Any],
        fun: Callable[[Any], Any],
    ) -> FeedResult:
        """Like :meth:`feed`, but the result holds ``fun`` applied to the value."""
        taken = self._take_frame(data)
        if not isinstance(taken, tuple):
            return taken
        frame, remaining = taken
        try:
            value = decoder(cobs_decode(frame))
        except ValueError:
            return DeserError(remaining)
        return Success(fun(value), remaining)

    def feed_simple(self, data: bytes) -> FeedResult:
        """Feed bytes; on a complete frame, return the raw frame with its terminator."""
        taken = self._take_frame(data)
        if not isinstance(taken, tuple):
            return taken
        frame, remaining = taken
        return Success(frame, remaining)