"""Congestion window and retransmission timeout management for the sender."""

from __future__ import annotations

import enum
from dataclasses import dataclass

DUP_ACK_THRESHOLD = 3
INITIAL_THRESHOLD = 2**31 - 1
INITIAL_TIMEOUT = 5.0
MIN_TIMEOUT = 0.01

_ALPHA = 0.125
_BETA = 0.25


class Phase(enum.Enum):
    """Congestion control phase of the sender."""

    SLOW_START = "slow start"
    CONGESTION_AVOIDANCE = "congestion avoidance"
    FAST_RECOVERY = "fast recovery"


@dataclass
class CongestionControl:
    """Tracks the congestion window in segments and reacts to acknowledgement events."""

    cwnd: int = 1
    slow_start_threshold: int = INITIAL_THRESHOLD
    duplicate_acks: int = 0
    acked_in_window: int = 0
    phase: Phase = Phase.SLOW_START

    def on_ack(self) -> None:
        """Account for one newly acknowledged segment."""
        self.duplicate_acks = 0
        if self.phase is Phase.SLOW_START:
            self.cwnd += 1
            if self.cwnd >= self.slow_start_threshold:
                self.phase = Phase.CONGESTION_AVOIDANCE
        elif self.phase is Phase.CONGESTION_AVOIDANCE:
            self.acked_in_window += 1
            if self.acked_in_window >= self.cwnd:
                self.cwnd += 1
                self.acked_in_window = 0
        else:
            self.cwnd = max(self.slow_start_threshold, 1)
            self.phase = Phase.CONGESTION_AVOIDANCE

    def on_duplicate_ack(self) -> bool:
        """Account for a duplicate acknowledgement.

        Returns True when the duplicate threshold is reached and the first
        unacknowledged segment should be retransmitted.
        """
        self.duplicate_acks += 1
        if self.duplicate_acks < DUP_ACK_THRESHOLD:
            return False
        self.slow_start_threshold = self.cwnd // 2
        self.cwnd = max(self.slow_start_threshold, 1)
        self.duplicate_acks = 0
        self.phase = Phase.FAST_RECOVERY
        return True

    def on_timeout(self) -> None:
        """Collapse the window after a retransmission timeout."""
        self.slow_start_threshold = self.cwnd // 2
        self.cwnd = 1
        self.duplicate_acks = 0
        self.phase = Phase.SLOW_START


def estimate_timeout(rtt: float) -> float:
    """Derive a retransmission timeout in seconds from one round-trip sample in seconds.

    The estimate works in whole milliseconds, as a timeval-based clock would.
    """
    if rtt < 0:
        raise ValueError("round-trip time cannot be negative")
    sample = int(round(rtt * 1_000_000)) // 1000
    estimated = int((1 - _ALPHA) * sample + _ALPHA * sample)
    deviation = int(_BETA * abs(sample - estimated))
    return (estimated + 4 * deviation) / 1000


class RetransmitTimer:
    """The current retransmission timeout, in seconds."""

    def __init__(self, timeout: float = INITIAL_TIMEOUT) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = float(timeout)

    def update(self, rtt: float) -> float:
        """Recompute the timeout from a fresh round-trip sample and return it."""
        self.timeout = max(estimate_timeout(rtt), MIN_TIMEOUT)
        return self.timeout

    def back_off(self) -> float:
        """Double the timeout after a loss and return it."""
        self.timeout *= 2
        return self.timeout

    def __repr__(self) -> str:
        return f"RetransmitTimer(timeout={self.timeout!r})"