"""Receiving end: handshake, in-order reassembly with acknowledgements, teardown."""

from __future__ import annotations

import logging
import socket
import sys
from typing import BinaryIO

from .protocol import (
    MAX_PACKET_SIZE,
    SEQUENCE_MODULUS,
    Header,
    Stage,
    split_packet,
)

logger = logging.getLogger(__name__)

PACKET_BUFFER_SIZE = 100


class ReorderBuffer:
    """Holds out-of-order payloads and releases them in sequence order."""

    def __init__(self, capacity: int = PACKET_BUFFER_SIZE) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.next_sequence = 0
        self._pending: dict[int, bytes] = {}

    @property
    def last_delivered(self) -> int:
        """Sequence number of the last payload released, as acknowledged on the wire."""
        return (self.next_sequence - 1) % SEQUENCE_MODULUS

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, sequence: int, payload: bytes) -> list[bytes] | None:
        """Store a payload and return those now deliverable in order.

        Returns None when the packet is a duplicate or falls outside the window.
        """
        if (
            sequence < self.next_sequence
            or sequence in self._pending
            or sequence >= self.next_sequence + self.capacity
        ):
            return None
        self._pending[sequence] = bytes(payload)
        ready = []
        while self.next_sequence in self._pending:
            ready.append(self._pending.pop(self.next_sequence))
            self.next_sequence += 1
        return ready


class Receiver:
    """Runs the receiving side of a transfer over a bound UDP socket."""

    HANDSHAKE_TIMEOUT = 5.0
    FIN_RESEND_INTERVAL = 5.0

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self.peer: tuple[str, int] | None = None

    def _recv(self) -> bytes:
        data, self.peer = self.sock.recvfrom(MAX_PACKET_SIZE)
        return data

    def _send(self, stage: Stage, sequence: int) -> None:
        self.sock.sendto(Header(stage, 0, sequence).pack(), self.peer)

    def handshake(self) -> None:
        """Answer the sender's three-way handshake."""
        logger.info("[receiver] Enter connection stage.")
        self.sock.settimeout(self.HANDSHAKE_TIMEOUT)
        while True:
            try:
                data = self._recv()
            except TimeoutError:
                logger.info("[receiver] Still waiting for CON_SYN.")
                continue
            break
        Header.unpack(data).expect(Stage.CON_SYN, 0)
        logger.info("[receiver] Got CON_SYN 0.")

        self._send(Stage.CON_ACK, 0)
        logger.info("[receiver] Sent CON_ACK 0.")

        Header.unpack(self._recv()).expect(Stage.CON_ACK, 1)
        logger.info("[receiver] Connection stage complete!")

    def receive(self, out: BinaryIO) -> int:
        """Write incoming payloads to ``out`` in order until FIN; return bytes written."""
        self.sock.settimeout(None)
        buffer = ReorderBuffer()
        written = 0
        while True:
            header, payload = split_packet(self._recv())
            if header.stage is Stage.FIN:
                header.expect(Stage.FIN, 0)
                break
            if header.stage is not Stage.SEND_SYN:
                continue
            ready = buffer.add(header.sequence, payload)
            if ready is None:
                continue
            for chunk in ready:
                out.write(chunk)
                written += len(chunk)
            self._send(Stage.SEND_ACK, buffer.last_delivered)
        return written

    def finish(self) -> None:
        """Complete the four-way teardown after the sender's FIN."""
        logger.info("[receiver] Enter finish stage.")
        self._send(Stage.FIN_ACK, 0)
        fin = Header(Stage.FIN, 0, 1).pack()
        self.sock.sendto(fin, self.peer)

        self.sock.settimeout(self.FIN_RESEND_INTERVAL)
        while True:
            try:
                data = self._recv()
            except TimeoutError:
                self.sock.sendto(fin, self.peer)
                continue
            header = Header.unpack(data)
            if header.stage is Stage.FIN and header.sequence == 0:
                # The sender missed our FIN_ACK and asked again.
                self._send(Stage.FIN_ACK, 0)
                continue
            header.expect(Stage.FIN_ACK, 1)
            break
        logger.info("[receiver] Finish stage complete!")


def receive_file(port: int, destination: str) -> int:
    """Listen on ``port``, receive one file into ``destination``; return bytes written."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sock:
        sock.bind(("", port))
        receiver = Receiver(sock)
        receiver.handshake()
        with open(destination, "wb") as out:
            logger.info("[receiver] Receiving data.")
            written = receiver.receive(out)
            logger.info("[receiver] Finish receiving data.")
            receiver.finish()
    return written


def main(argv: list[str] | None = None) -> int:
    """Command-line entry: ``UDP_port filename_to_write``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 2:
        print("usage: receiver UDP_port filename_to_write", file=sys.stderr)
        return 1
    try:
        port = int(args[0]) % 65536
    except ValueError:
        port = 0
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        receive_file(port, args[1])
    except OSError as exc:
        print(f"receiver: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())