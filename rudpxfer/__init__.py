"""Reliable file transfer over UDP: wire format, congestion control, sender and receiver."""

__version__ = "0.1.0"