import pytest

from anachro.wire import Reader, WireError, Writer, cobs_decode, cobs_encode


def test_u16_is_little_endian():
    assert Writer().u16(0x0405).to_bytes() == b"\x05\x04"


@pytest.mark.parametrize("value", [0, 1, 127, 128, 255, 300, 16384, 2**32 - 1, 2**63])
def test_varint_round_trip(value):
    encoded = Writer().varint(value).to_bytes()
    assert Reader(encoded).varint() == value


def test_small_varint_is_one_byte():
    assert len(Writer().varint(127).to_bytes()) == 1
    assert len(Writer().varint(128).to_bytes()) == 2


def test_fixed_integers_round_trip():
    data = Writer().u8(200).u16(0xBEEF).u32(0xDEADBEEF).to_bytes()
    reader = Reader(data)
    assert (reader.u8(), reader.u16(), reader.u32()) == (200, 0xBEEF, 0xDEADBEEF)
    assert len(data) == 7


@pytest.mark.parametrize(
    "method,value", [("u8", 256), ("u16", 0x10000), ("u32", 2**32), ("u8", -1)]
)
def test_out_of_range_integers_rejected(method, value):
    with pytest.raises(WireError):
        getattr(Writer(), method)(value)


def test_negative_varint_rejected():
    with pytest.raises(WireError):
        Writer().varint(-5)


def test_text_and_bytes_round_trip():
    data = Writer().text("héllo/wörld").byte_seq(b"\x00\x01\x02").to_bytes()
    reader = Reader(data)
    assert reader.text() == "héllo/wörld"
    assert reader.byte_seq() == b"\x00\x01\x02"


def test_text_length_prefix():
    data = Writer().text("abc").to_bytes()
    assert data[1:] == b"abc"
    assert Reader(data).varint() == 3


def test_truncated_data_raises():
    with pytest.raises(WireError):
        Reader(b"\x01").u16()
    with pytest.raises(WireError):
        Reader(b"\x05ab").byte_seq()


def test_invalid_utf8_raises():
    with pytest.raises(WireError):
        Reader(b"\x02\xff\xfe").text()


def test_overlong_varint_raises():
    with pytest.raises(WireError):
        Reader(b"\x80" * 11).varint()


def test_cobs_encode_empty():
    assert cobs_encode(b"") == b"\x01\x00"


def test_cobs_encode_single_zero():
    assert cobs_encode(b"\x00") == b"\x01\x01\x00"


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"\x00",
        b"\x00\x00",
        b"\x11\x22\x00\x33",
        bytes(range(1, 255)),
        bytes(range(256)) * 3,
        b"\x01" * 253,
        b"\x01" * 254,
        b"\x01" * 255,
        b"\x01" * 254 + b"\x00",
    ],
)
def test_cobs_round_trip(payload):
    encoded = cobs_encode(payload)
    assert encoded.endswith(b"\x00")
    assert 0 not in encoded[:-1]
    assert cobs_decode(encoded) == payload


def test_cobs_decode_without_terminator():
    encoded = cobs_encode(b"\x10\x00\x20")
    assert cobs_decode(encoded[:-1]) == b"\x10\x00\x20"


def test_cobs_decode_stops_at_terminator():
    first = cobs_encode(b"abc")
    second = cobs_encode(b"xyz")
    assert cobs_decode(first + second) == b"abc"


@pytest.mark.parametrize("bad", [b"", b"\x00", b"\x05\x01\x00", b"\x03\x01\x00\x02"])
def test_cobs_decode_rejects_malformed(bad):
    with pytest.raises(WireError):
        cobs_decode(bad)