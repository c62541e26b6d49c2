"""Compact binary encoding used on the wire, and COBS framing.

Integers are fixed-width little-endian, lengths and enum tags are
unsigned LEB128 varints, and strings/byte blobs are length prefixed.
"""

from __future__ import annotations

__all__ = ["WireError", "Writer", "Reader", "cobs_encode", "cobs_decode"]

_MAX_VARINT_BYTES = 10
_COBS_MAX_BLOCK = 254


class WireError(ValueError):
    """Raised when data cannot be encoded or decoded."""


class Writer:
    """Accumulates encoded values; every method returns the writer."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def _fixed(self, value: int, size: int) -> Writer:
        if not isinstance(value, int) or not 0 <= value < 1 << (8 * size):
            raise WireError(f"{value!r} does not fit in {size} unsigned byte(s)")
        self._buf += value.to_bytes(size, "little")
        return self

    def u8(self, value: int) -> Writer:
        return self._fixed(value, 1)

    def u16(self, value: int) -> Writer:
        return self._fixed(value, 2)

    def u32(self, value: int) -> Writer:
        return self._fixed(value, 4)

    def varint(self, value: int) -> Writer:
        if not isinstance(value, int) or value < 0 or value.bit_length() > 64:
            raise WireError(f"{value!r} cannot be encoded as a varint")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value:
                self._buf.append(byte | 0x80)
            else:
                self._buf.append(byte)
                return self

    def raw(self, data: bytes) -> Writer:
        self._buf += data
        return self

    def byte_seq(self, data: bytes) -> Writer:
        return self.varint(len(data)).raw(data)

    def text(self, value: str) -> Writer:
        return self.byte_seq(value.encode("utf-8"))

    def to_bytes(self) -> bytes:
        return bytes(self._buf)


class Reader:
    """Reads encoded values from a byte string, front to back."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def raw(self, count: int) -> bytes:
        end = self._pos + count
        if count < 0 or end > len(self._data):
            raise WireError("unexpected end of data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def u8(self) -> int:
        return self.raw(1)[0]

    def u16(self) -> int:
        return int.from_bytes(self.raw(2), "little")

    def u32(self) -> int:
        return int.from_bytes(self.raw(4), "little")

    def varint(self) -> int:
        result = 0
        for shift in range(0, 7 * _MAX_VARINT_BYTES, 7):
            byte = self.u8()
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
        raise WireError("varint is too long")

    def byte_seq(self) -> bytes:
        return self.raw(self.varint())

    def text(self) -> str:
        try:
            return self.byte_seq().decode("utf-8")
        except UnicodeDecodeError as exc:
            raise WireError("string is not valid UTF-8") from exc


def cobs_encode(data: bytes) -> bytes:
    """COBS-encode ``data`` and append the zero frame terminator."""
    out = bytearray()
    block = bytearray()
    for byte in data:
        if byte == 0:
            out.append(len(block) + 1)
            out += block
            block.clear()
        else:
            block.append(byte)
            if len(block) == _COBS_MAX_BLOCK:
                out.append(0xFF)
                out += block
                block.clear()
    out.append(len(block) + 1)
    out += block
    out.append(0)
    return bytes(out)


def cobs_decode(data: bytes) -> bytes:
    """Decode one COBS frame; decoding stops at the first zero byte."""
    data = bytes(data)
    if not data or data[0] == 0:
        raise WireError("empty COBS frame")
    out = bytearray()
    pos = 0
    while pos < len(data):
        code = data[pos]
        if code == 0:
            break
        start = pos + 1
        end = start + code - 1
        if end > len(data):
            raise WireError("COBS block runs past end of data")
        chunk = data[start:end]
        if 0 in chunk:
            raise WireError("zero byte inside COBS block")
        out += chunk
        pos = end
        if code != 0xFF and pos < len(data) and data[pos] != 0:
            out.append(0)
    return bytes(out)