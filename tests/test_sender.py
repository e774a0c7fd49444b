import io
import os
import socket
import threading

import pytest

from rudpxfer.congestion import Phase
from rudpxfer.protocol import (
    MAX_PAYLOAD_SIZE,
    Header,
    ProtocolError,
    Stage,
    make_packet,
)
from rudpxfer.receiver import Receiver
from rudpxfer.sender import Sender, iter_chunks, main, send_file

ADDRESS = ("127.0.0.1", 9)


class FakeSocket:
    """Scripted socket: replies come from a queue, sent datagrams are recorded."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.sent = []
        self.timeouts = []

    def sendto(self, data, address):
        self.sent.append((bytes(data), address))
        return len(data)

    def recvfrom(self, size):
        if not self.replies:
            raise RuntimeError("script exhausted")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply, ADDRESS

    def settimeout(self, value):
        self.timeouts.append(value)

    def sent_headers(self):
        return [Header.unpack(data) for data, _ in self.sent]


def ack(sequence):
    return Header(Stage.SEND_ACK, 0, sequence).pack()


def data_sequences(fake):
    return [h.sequence for h in fake.sent_headers() if h.stage is Stage.SEND_SYN]


class DropOnce:
    """Wraps a socket and silently drops the first data packet with a given sequence."""

    def __init__(self, sock, sequence):
        self.sock = sock
        self.sequence = sequence
        self.dropped = False

    def sendto(self, data, address):
        header = Header.unpack(data)
        if (
            not self.dropped
            and header.stage is Stage.SEND_SYN
            and header.sequence == self.sequence
        ):
            self.dropped = True
            return len(data)
        return self.sock.sendto(data, address)

    def recvfrom(self, size):
        return self.sock.recvfrom(size)

    def settimeout(self, value):
        self.sock.settimeout(value)


def start_receiver():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    out = io.BytesIO()
    result = {}

    def run():
        receiver = Receiver(sock)
        receiver.handshake()
        result["written"] = receiver.receive(out)
        receiver.finish()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return sock, thread, out, result


def transfer(data, byte_count, wrap=None):
    recv_sock, thread, out, result = start_receiver()
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            channel = wrap(sock) if wrap else sock
            sender = Sender(channel, recv_sock.getsockname(), timeout=1.0)
            sender.handshake()
            sent = sender.send(io.BytesIO(data), byte_count)
            sender.finish()
        thread.join(timeout=10)
        assert not thread.is_alive()
    finally:
        recv_sock.close()
    return sent, out.getvalue(), result


def test_iter_chunks_splits_into_full_payloads():
    data = bytes(range(256)) * 20
    chunks = list(iter_chunks(io.BytesIO(data), 3000))
    assert b"".join(chunks) == data[:3000]
    assert all(len(c) == MAX_PAYLOAD_SIZE for c in chunks[:-1])
    assert 0 < len(chunks[-1]) <= MAX_PAYLOAD_SIZE


def test_iter_chunks_stops_at_end_of_source():
    data = b"abc" * 700
    chunks = list(iter_chunks(io.BytesIO(data), 10**6))
    assert b"".join(chunks) == data


@pytest.mark.parametrize("count", [0, -5])
def test_iter_chunks_with_nothing_to_send(count):
    assert list(iter_chunks(io.BytesIO(b"data"), count)) == []


def test_iter_chunks_rejects_zero_size():
    with pytest.raises(ValueError):
        list(iter_chunks(io.BytesIO(b"data"), 4, size=0))


def test_handshake_sends_syn_then_ack():
    fake = FakeSocket([Header(Stage.CON_ACK, 0, 0).pack()])
    Sender(fake, ADDRESS).handshake()
    assert [d for d, _ in fake.sent] == [
        Header(Stage.CON_SYN, 0, 0).pack(),
        Header(Stage.CON_ACK, 0, 1).pack(),
    ]
    assert all(address == ADDRESS for _, address in fake.sent)


def test_handshake_resends_syn_on_timeout():
    fake = FakeSocket([TimeoutError(), Header(Stage.CON_ACK, 0, 0).pack()])
    Sender(fake, ADDRESS).handshake()
    stages = [h.stage for h in fake.sent_headers()]
    assert stages == [Stage.CON_SYN, Stage.CON_SYN, Stage.CON_ACK]


def test_handshake_rejects_wrong_reply():
    fake = FakeSocket([Header(Stage.FIN, 0, 0).pack()])
    with pytest.raises(ProtocolError):
        Sender(fake, ADDRESS).handshake()


def test_send_single_packet_acknowledged():
    fake = FakeSocket([ack(0)])
    sender = Sender(fake, ADDRESS, timeout=5.0)
    assert sender.send(io.BytesIO(b"hello"), 5) == 5
    assert [d for d, _ in fake.sent] == [make_packet(Stage.SEND_SYN, 0, b"hello")]


def test_timeout_retransmits_and_backs_off():
    fake = FakeSocket([TimeoutError(), ack(0)])
    sender = Sender(fake, ADDRESS, timeout=5.0)
    sender.send(io.BytesIO(b"payload"), 7)
    assert data_sequences(fake) == [0, 0]
    assert sender.timer.timeout == 10.0
    assert sender.congestion.slow_start_threshold == 0


def test_three_duplicate_acks_trigger_fast_retransmit():
    data = os.urandom(3 * MAX_PAYLOAD_SIZE)
    fake = FakeSocket([ack(0), ack(0), ack(0), ack(0), ack(2)])
    sender = Sender(fake, ADDRESS, timeout=5.0)
    assert sender.send(io.BytesIO(data), len(data)) == len(data)
    sequences = data_sequences(fake)
    assert sequences[:3] == [0, 1, 2]
    assert sequences[3:] == [1]
    assert sender.congestion.phase is Phase.CONGESTION_AVOIDANCE


def test_send_rejects_unexpected_stage():
    fake = FakeSocket([Header(Stage.FIN, 0, 0).pack()])
    with pytest.raises(ProtocolError):
        Sender(fake, ADDRESS, timeout=5.0).send(io.BytesIO(b"x"), 1)


def test_finish_exchanges_fin_and_ack():
    fake = FakeSocket(
        [ack(3), Header(Stage.FIN_ACK, 0, 0).pack(), Header(Stage.FIN, 0, 1).pack()]
    )
    Sender(fake, ADDRESS).finish()
    assert [d for d, _ in fake.sent] == [
        Header(Stage.FIN, 0, 0).pack(),
        Header(Stage.FIN_ACK, 0, 1).pack(),
    ]


def test_finish_rejects_wrong_reply():
    fake = FakeSocket([Header(Stage.CON_SYN, 0, 0).pack()])
    with pytest.raises(ProtocolError):
        Sender(fake, ADDRESS).finish()


def test_transfer_end_to_end():
    data = os.urandom(40 * MAX_PAYLOAD_SIZE + 123)
    sent, received, result = transfer(data, len(data))
    assert received == data
    assert sent == len(data)
    assert result["written"] == len(data)


def test_transfer_limited_byte_count():
    data = os.urandom(5 * MAX_PAYLOAD_SIZE)
    count = 2 * MAX_PAYLOAD_SIZE + 17
    sent, received, _ = transfer(data, count)
    assert received == data[:count]
    assert sent == count


def test_transfer_of_nothing():
    sent, received, result = transfer(b"ignored", 0)
    assert received == b""
    assert sent == 0
    assert result["written"] == 0


def test_transfer_recovers_from_lost_packet():
    data = os.urandom(6 * MAX_PAYLOAD_SIZE)
    wrappers = []

    def wrap(sock):
        wrappers.append(DropOnce(sock, 1))
        return wrappers[0]

    sent, received, _ = transfer(data, len(data), wrap)
    assert wrappers[0].dropped
    assert received == data
    assert sent == len(data)


def test_send_file_delivers_file(tmp_path):
    data = os.urandom(3 * MAX_PAYLOAD_SIZE + 9)
    path = tmp_path / "input.bin"
    path.write_bytes(data)
    recv_sock, thread, out, _ = start_receiver()
    try:
        host, port = recv_sock.getsockname()
        assert send_file(host, port, str(path), len(data)) == len(data)
        thread.join(timeout=10)
        assert not thread.is_alive()
    finally:
        recv_sock.close()
    assert out.getvalue() == data


@pytest.mark.parametrize("argv", [[], ["127.0.0.1", "9", "file"]])
def test_main_rejects_wrong_argument_count(argv, capsys):
    assert main(argv) == 1
    assert "usage" in capsys.readouterr().err