"""The transport interface used by clients, and client error types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from anachro.icd import Arbitrator, Component

__all__ = [
    "IoErrorKind",
    "ClientError",
    "NotActiveError",
    "BusyError",
    "UnexpectedMessageError",
    "ClientIoError",
    "ClientIo",
    "RecvMsg",
    "SendMsg",
]


class IoErrorKind(Enum):
    """Ways a transport can fail."""

    PARSING_ERROR = "parsing error"
    NO_DATA = "no data"
    OUTPUT_FULL = "output full"


class ClientError(Exception):
    """Base class of all client errors."""


class NotActiveError(ClientError):
    """The client is not connected to the broker."""


class BusyError(ClientError):
    """The client is busy."""


class UnexpectedMessageError(ClientError):
    """A message arrived that the client did not expect."""


class ClientIoError(ClientError):
    """The transport failed to send or receive a message."""

    def __init__(self, kind: IoErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind


class ClientIo(ABC):
    """Moves messages between a client and the broker, over any transport."""

    @abstractmethod
    def recv(self) -> Optional[Arbitrator]:
        """Receive one message from the broker, or None if nothing is waiting.

        Raises ClientIoError if the transport fails.
        """

    @abstractmethod
    def send(self, msg: Component) -> None:
        """Send one message to the broker.

        Raises ClientIoError if the transport fails.
        """


@dataclass(frozen=True)
class RecvMsg:
    """A message received from the broker, decoded through a table."""

    path: str
    payload: Any


@dataclass(frozen=True)
class SendMsg:
    """A serialized payload ready to be published to ``path``."""

    buf: bytes
    path: str