"""Wire format shared by both ends of the reliable UDP file transfer."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

MAX_PAYLOAD_SIZE = 1460
SEQUENCE_MODULUS = 1 << 64

_HEADER = struct.Struct(">BHQ")
HEADER_SIZE = _HEADER.size
MAX_PACKET_SIZE = HEADER_SIZE + MAX_PAYLOAD_SIZE


class Stage(enum.IntEnum):
    """Connection stage carried in the first header byte."""

    CON_SYN = 0
    CON_ACK = 1
    SEND_SYN = 2
    SEND_ACK = 3
    FIN = 4
    FIN_ACK = 5


class ProtocolError(Exception):
    """A datagram does not match what the protocol allows at this point."""


@dataclass(frozen=True)
class Header:
    """Fixed-size header: stage, payload length and sequence number."""

    stage: Stage
    payload_length: int = 0
    sequence: int = 0

    def __post_init__(self) -> None:
        try:
            stage = Stage(self.stage)
        except ValueError:
            raise ProtocolError(f"unknown stage {self.stage!r}") from None
        object.__setattr__(self, "stage", stage)
        if not 0 <= self.payload_length <= MAX_PAYLOAD_SIZE:
            raise ProtocolError(f"payload length {self.payload_length} out of range")
        if not 0 <= self.sequence < SEQUENCE_MODULUS:
            raise ProtocolError(f"sequence number {self.sequence} out of range")

    def pack(self) -> bytes:
        """Encode the header into its wire form."""
        return _HEADER.pack(self.stage, self.payload_length, self.sequence)

    @classmethod
    def unpack(cls, data: bytes) -> Header:
        """Decode the header at the start of ``data``."""
        if len(data) < HEADER_SIZE:
            raise ProtocolError(
                f"datagram of {len(data)} bytes is shorter than a header"
            )
        stage, length, sequence = _HEADER.unpack_from(data)
        return cls(stage, length, sequence)

    def expect(self, stage: Stage, sequence: int) -> Header:
        """Check that this is an empty control header of the given stage and sequence."""
        if self.stage is not Stage(stage):
            raise ProtocolError(f"expected {Stage(stage).name}, got {self.stage.name}")
        if self.sequence != sequence:
            raise ProtocolError(
                f"{self.stage.name} carries sequence {self.sequence}, expected {sequence}"
            )
        if self.payload_length:
            raise ProtocolError(f"{self.stage.name} must not carry a payload")
        return self


def make_packet(stage: Stage, sequence: int, payload: bytes = b"") -> bytes:
    """Build a full datagram: header followed by the payload."""
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ProtocolError(
            f"payload of {len(payload)} bytes exceeds {MAX_PAYLOAD_SIZE}"
        )
    return Header(stage, len(payload), sequence).pack() + bytes(payload)


def split_packet(data: bytes) -> tuple[Header, bytes]:
    """Split a datagram into its header and the payload it announces."""
    header = Header.unpack(data)
    end = HEADER_SIZE + header.payload_length
    if len(data) < end:
        raise ProtocolError(
            f"datagram announces {header.payload_length} payload bytes "
            f"but holds {len(data) - HEADER_SIZE}"
        )
    return header, bytes(data[HEADER_SIZE:end])