from collections import deque

import pytest

from anachro.client import PUBLISH_SHORTCODE_OFFSET, Client
from anachro.client_io import (
    ClientIo,
    ClientIoError,
    IoErrorKind,
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
    ControlError,
    LongPath,
    Mailbox,
    Publish,
    PubSubShort,
    PubSubShortRegistration,
    ShortPath,
    SubAck,
    SubMsg,
    Subscribe,
    Uuid,
    Version,
)
from anachro.table import PubSubTable, TableMessage, Topic

VERSION = Version(0, 1, 0, 123)
UUID = Uuid(bytes(range(16)))
SUBS = ("foo/bar/baz", "bib/bim/bap")
PUBS = ("short/send",)


class FakeIo(ClientIo):
    def __init__(self):
        self.inbox = deque()
        self.sent = []
        self.fail_send = False

    def recv(self):
        return self.inbox.popleft() if self.inbox else None

    def send(self, msg):
        if self.fail_send:
            raise ClientIoError(IoErrorKind.OUTPUT_FULL)
        self.sent.append(msg)


def make_table():
    return PubSubTable(
        subs=[
            Topic("Something", SUBS[0], bytes),
            Topic("Else", SUBS[1], bytes),
        ],
        pubs=[Topic("Etwas", PUBS[0], bytes, bytes)],
    )


def make_client(subs=SUBS, pubs=PUBS, timeout=None, ctr=0):
    return Client("cool-board", VERSION, ctr, subs, pubs, timeout)


def connect(client, cio, table):
    """Drive the handshake, answering each request the client sends."""
    for _ in range(50):
        if client.is_connected():
            return
        before = len(cio.sent)
        client.process_one(cio, table)
        for msg in cio.sent[before:]:
            match msg:
                case ComponentControl(seq=seq, ty=ComponentInfo()):
                    cio.inbox.append(ArbitratorControl(seq, ComponentRegistration(UUID)))
                case ComponentControl(seq=seq, ty=PubSubShort(short_id=sid)):
                    cio.inbox.append(ArbitratorControl(seq, PubSubShortRegistration(sid)))
                case ComponentPubSub(path=path, ty=Subscribe()):
                    cio.inbox.append(ArbitratorPubSub(SubAck(path)))
    raise AssertionError("client never connected")


def test_new_client_is_disconnected():
    client = make_client()
    assert client.is_connected() is False
    assert client.get_id() is None


def test_publish_requires_active():
    client = make_client()
    with pytest.raises(NotActiveError):
        client.publish(FakeIo(), PUBS[0], b"x")


def test_name_too_long_rejected():
    with pytest.raises(ValueError):
        Client("n" * 33, VERSION, 0, SUBS, PUBS, None)


def test_first_step_sends_registration():
    cio = FakeIo()
    client = make_client(ctr=0x0503)
    client.process_one(cio, make_table())
    assert cio.sent == [ComponentControl(0x0504, ComponentInfo("cool-board", VERSION))]


def test_full_handshake_message_sequence():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    assert client.is_connected()
    assert client.get_id() == UUID
    assert cio.sent == [
        ComponentControl(1, ComponentInfo("cool-board", VERSION)),
        ComponentPubSub(LongPath(SUBS[0]), Subscribe()),
        ComponentPubSub(LongPath(SUBS[1]), Subscribe()),
        ComponentControl(2, PubSubShort(SUBS[0], 0)),
        ComponentControl(3, PubSubShort(SUBS[1], 1)),
        ComponentControl(4, PubSubShort(PUBS[0], PUBLISH_SHORTCODE_OFFSET)),
    ]


def test_handshake_without_topics_goes_active():
    cio = FakeIo()
    client = make_client(subs=(), pubs=())
    connect(client, cio, make_table())
    assert client.is_connected()
    assert len(cio.sent) == 1


def test_handshake_only_publish_topics():
    cio = FakeIo()
    client = make_client(subs=(), pubs=PUBS)
    connect(client, cio, make_table())
    assert cio.sent[-1] == ComponentControl(2, PubSubShort(PUBS[0], PUBLISH_SHORTCODE_OFFSET))


def test_sequence_mismatch_raises():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    client.process_one(cio, table)
    cio.inbox.append(ArbitratorControl(99, ComponentRegistration(UUID)))
    with pytest.raises(UnexpectedMessageError):
        client.process_one(cio, table)
    assert not client.is_connected()


def test_error_response_during_registration_raises():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    client.process_one(cio, table)
    cio.inbox.append(ArbitratorControl(1, ControlError.RESET_CONNECTION))
    with pytest.raises(UnexpectedMessageError):
        client.process_one(cio, table)


def test_registration_timeout_reconnects_with_new_seq():
    cio = FakeIo()
    table = make_table()
    client = make_client(timeout=2)
    client.process_one(cio, table)
    client.process_one(cio, table)
    client.process_one(cio, table)
    assert len(cio.sent) == 1
    client.process_one(cio, table)
    assert cio.sent[-1] == ComponentControl(2, ComponentInfo("cool-board", VERSION))


def test_subscribe_timeout_resends():
    cio = FakeIo()
    table = make_table()
    client = make_client(timeout=1)
    client.process_one(cio, table)
    cio.inbox.append(ArbitratorControl(1, ComponentRegistration(UUID)))
    client.process_one(cio, table)
    client.process_one(cio, table)
    client.process_one(cio, table)
    sub = ComponentPubSub(LongPath(SUBS[0]), Subscribe())
    assert cio.sent[-2:] == [sub, sub]


def test_wrong_suback_does_not_advance():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    client.process_one(cio, table)
    cio.inbox.append(ArbitratorControl(1, ComponentRegistration(UUID)))
    client.process_one(cio, table)
    client.process_one(cio, table)
    cio.inbox.append(ArbitratorPubSub(SubAck(LongPath("other/path"))))
    client.process_one(cio, table)
    assert cio.sent[-1] == ComponentPubSub(LongPath(SUBS[0]), Subscribe())


def test_publish_uses_shortcode_for_known_path():
    cio = FakeIo()
    client = make_client()
    connect(client, cio, make_table())
    client.publish(cio, PUBS[0], b"hi")
    client.publish(cio, "other/topic", b"yo")
    assert cio.sent[-2:] == [
        ComponentPubSub(ShortPath(PUBLISH_SHORTCODE_OFFSET), Publish(b"hi")),
        ComponentPubSub(LongPath("other/topic"), Publish(b"yo")),
    ]


def test_active_receives_long_path_message():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    cio.inbox.append(ArbitratorPubSub(SubMsg(LongPath(SUBS[1]), b"abc")))
    got = client.process_one(cio, table)
    assert got == RecvMsg(SUBS[1], TableMessage("Else", b"abc"))


def test_active_receives_short_path_message():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    cio.inbox.append(ArbitratorPubSub(SubMsg(ShortPath(0), b"z")))
    got = client.process_one(cio, table)
    assert got == RecvMsg(SUBS[0], TableMessage("Something", b"z"))


def test_active_ignores_other_messages():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    cio.inbox.append(Mailbox())
    assert client.process_one(cio, table) is None
    assert client.process_one(cio, table) is None


def test_active_unknown_shortcode_raises():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    cio.inbox.append(ArbitratorPubSub(SubMsg(ShortPath(7), b"z")))
    with pytest.raises(UnexpectedMessageError):
        client.process_one(cio, table)


def test_active_unmatched_path_raises():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    cio.inbox.append(ArbitratorPubSub(SubMsg(LongPath("no/such/topic"), b"z")))
    with pytest.raises(UnexpectedMessageError):
        client.process_one(cio, table)


def test_reset_connection_disconnects():
    cio = FakeIo()
    table = make_table()
    client = make_client()
    connect(client, cio, table)
    client.reset_connection()
    assert client.get_id() is None
    before = len(cio.sent)
    client.process_one(cio, table)
    assert isinstance(cio.sent[before].ty, ComponentInfo)


def test_send_failure_propagates():
    cio = FakeIo()
    cio.fail_send = True
    client = make_client()
    with pytest.raises(ClientIoError) as info:
        client.process_one(cio, make_table())
    assert info.value.kind is IoErrorKind.OUTPUT_FULL