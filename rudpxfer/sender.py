"""Sending end: handshake, windowed transmission with congestion control, teardown."""

from __future__ import annotations

import logging
import socket
import sys
import time
from collections.abc import Iterator
from typing import BinaryIO

from .congestion import INITIAL_TIMEOUT, CongestionControl, RetransmitTimer
from .protocol import (
    MAX_PACKET_SIZE,
    MAX_PAYLOAD_SIZE,
    Header,
    ProtocolError,
    Stage,
    make_packet,
)

logger = logging.getLogger(__name__)

PACKET_BUFFER_SIZE = 100


def iter_chunks(
    source: BinaryIO, byte_count: int, size: int = MAX_PAYLOAD_SIZE
) -> Iterator[bytes]:
    """Yield up to ``byte_count`` bytes of ``source`` in pieces of at most ``size``.

    Stops early at the end of the source.
    """
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    remaining = byte_count
    while remaining > 0:
        chunk = source.read(min(size, remaining))
        if not chunk:
            return
        yield chunk
        remaining -= len(chunk)
        if len(chunk) < min(size, remaining + len(chunk)):
            return


class Sender:
    """Runs the sending side of a transfer over a UDP socket."""

    def __init__(
        self,
        sock: socket.socket,
        address: tuple[str, int],
        timeout: float = INITIAL_TIMEOUT,
    ) -> None:
        self.sock = sock
        self.address = address
        self.timer = RetransmitTimer(timeout)
        self.congestion = CongestionControl()
        self._sent_at: dict[int, float] = {}

    def _recv_header(self) -> Header:
        data, _ = self.sock.recvfrom(MAX_PACKET_SIZE)
        return Header.unpack(data)

    def _send_control(self, stage: Stage, sequence: int) -> bytes:
        packet = Header(stage, 0, sequence).pack()
        self.sock.sendto(packet, self.address)
        return packet

    def _transmit(self, sequence: int, payload: bytes) -> None:
        self.sock.sendto(make_packet(Stage.SEND_SYN, sequence, payload), self.address)
        self._sent_at[sequence] = time.monotonic()

    def _await_ack(self, sequence: int) -> Header | None:
        """Wait for the next header until ``sequence`` times out; None on timeout."""
        elapsed = time.monotonic() - self._sent_at[sequence]
        remaining = self.timer.timeout - elapsed
        if remaining <= 0:
            return None
        self.sock.settimeout(remaining)
        try:
            return self._recv_header()
        except TimeoutError:
            return None

    def handshake(self) -> None:
        """Open the connection with a three-way handshake and sample the round trip."""
        logger.info("[sender] Enter connection stage.")
        self.sock.settimeout(self.timer.timeout)
        syn = self._send_control(Stage.CON_SYN, 0)
        logger.info("[sender] Sent CON_SYN 0.")
        started = time.monotonic()
        while True:
            try:
                header = self._recv_header()
            except TimeoutError:
                self.sock.sendto(syn, self.address)
                logger.info("[sender] Resent CON_SYN 0.")
                started = time.monotonic()
                continue
            break
        logger.info("[sender] Receive CON_ACK 0.")
        self.timer.update(time.monotonic() - started)
        header.expect(Stage.CON_ACK, 0)

        self._send_control(Stage.CON_ACK, 1)
        logger.info("[sender] Sent CON_ACK 1.")
        logger.info("[sender] Connection stage complete!")

    def send(self, source: BinaryIO, byte_count: int) -> int:
        """Transfer up to ``byte_count`` bytes of ``source``; return the bytes sent."""
        chunks = iter_chunks(source, byte_count)
        cc = self.congestion
        pending: dict[int, bytes] = {}
        base = next_sequence = 0
        total = 0
        exhausted = False
        self._sent_at.clear()

        while True:
            window = min(cc.cwnd, PACKET_BUFFER_SIZE)
            while not exhausted and next_sequence - base < window:
                chunk = next(chunks, None)
                if chunk is None:
                    exhausted = True
                    break
                pending[next_sequence] = chunk
                self._transmit(next_sequence, chunk)
                total += len(chunk)
                next_sequence += 1
            if base == next_sequence:
                break

            header = self._await_ack(base)
            if header is None:
                cc.on_timeout()
                self._transmit(base, pending[base])
                self.timer.back_off()
                logger.debug("[sender] Timeout, resent %d.", base)
                continue
            if header.stage is not Stage.SEND_ACK:
                raise ProtocolError(f"expected SEND_ACK, got {header.stage.name}")

            ack = header.sequence
            if base <= ack < next_sequence:
                for sequence in range(base, ack + 1):
                    del pending[sequence]
                    del self._sent_at[sequence]
                    cc.on_ack()
                base = ack + 1
            elif cc.on_duplicate_ack():
                self._transmit(base, pending[base])
                logger.debug("[sender] Fast retransmit of %d.", base)
        return total

    def finish(self) -> None:
        """Close the connection with a four-way teardown."""
        logger.info("[sender] Enter finish stage.")
        fin = self._send_control(Stage.FIN, 0)

        self.sock.settimeout(self.timer.timeout)
        while True:
            try:
                header = self._recv_header()
            except TimeoutError:
                self.sock.sendto(fin, self.address)
                continue
            if header.stage is Stage.SEND_ACK:
                continue
            header.expect(Stage.FIN_ACK, 0)
            break

        self.sock.settimeout(None)
        while True:
            header = self._recv_header()
            if header.stage is Stage.SEND_ACK:
                continue
            if header.stage is Stage.FIN_ACK and header.sequence == 0:
                continue
            header.expect(Stage.FIN, 1)
            break

        self._send_control(Stage.FIN_ACK, 1)
        logger.info("[sender] Finish stage complete!")


def send_file(host: str, port: int, filename: str, byte_count: int) -> int:
    """Send up to ``byte_count`` bytes of ``filename`` to ``host:port``; return bytes sent."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sender = Sender(sock, (host, port))
        sender.handshake()
        with open(filename, "rb") as source:
            logger.info("[sender] Sending data.")
            sent = sender.send(source, byte_count)
            logger.info("[sender] Finish sending data.")
            sender.finish()
    return sent


def main(argv: list[str] | None = None) -> int:
    """Command-line entry: ``receiver_hostname receiver_port filename_to_xfer bytes_to_xfer``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 4:
        print(
            "usage: sender receiver_hostname receiver_port "
            "filename_to_xfer bytes_to_xfer",
            file=sys.stderr,
        )
        return 1
    host, port_text, filename, count_text = args
    try:
        port = int(port_text) % 65536
    except ValueError:
        port = 0
    try:
        byte_count = int(count_text)
    except ValueError:
        byte_count = 0
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        send_file(host, port, filename, byte_count)
    except OSError as exc:
        print(f"sender: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())