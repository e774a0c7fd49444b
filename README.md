# rudpxfer

Send a file from one host to another over UDP, reliably.

The transfer opens with a three-way handshake and closes with a four-way
one. Data travels in numbered packets of up to 1460 bytes of payload behind
an 11-byte header (stage, payload length, sequence number). The receiver
puts packets back in order, drops duplicates and packets beyond its
100-packet window, and acknowledges the last packet it has written. The
sender keeps at most 100 packets in flight, retransmits after a timeout
(doubling the timeout each time) or after three duplicate acknowledgements,
and manages its window the TCP way: slow start, congestion avoidance and
fast recovery.

## Installation

```
pip install .
```

## Usage

Start the receiver first. Give it the UDP port to listen on and the file to
write:

```
rudp-recv 9000 received.bin
```

Then start the sender. Give it the receiver's IPv4 address and port, the file
to send and the number of bytes to send:

```
rudp-send 127.0.0.1 9000 original.bin 1048576
```

The sender stops early if the file is shorter than the byte count. Both
commands log their progress through the handshake, data and finish stages,
and exit when the connection is closed. A wrong number of arguments, or a
socket or file error, makes them exit with status 1.

## Library use

The same transfer is available from Python:

```python
from rudpxfer.receiver import receive_file
from rudpxfer.sender import send_file

# in one process; returns the number of bytes written
receive_file(9000, "received.bin")

# in another; returns the number of bytes sent
send_file("127.0.0.1", 9000, "original.bin", 1048576)
```

Lower-level pieces are also available:

- `rudpxfer.protocol`: `Header`, `Stage`, `make_packet` and `split_packet`
  encode and decode packets; `Header.expect` checks a control header.
- `rudpxfer.congestion`: `CongestionControl` holds the window and phase
  (`Phase`), `RetransmitTimer` and `estimate_timeout` hold the timeout.
- `rudpxfer.receiver`: `ReorderBuffer` releases payloads in sequence order;
  `Receiver` runs the receiving side on a socket you supply.
- `rudpxfer.sender`: `iter_chunks` splits a file into payloads; `Sender`
  runs the sending side on a socket you supply.

A malformed packet, or one the protocol does not allow at that point,
raises `rudpxfer.protocol.ProtocolError`.

## Limitations

One receiver handles one transfer from one sender and then exits. Only IPv4
is used. There is no encryption, authentication or integrity check beyond
what UDP itself provides.

## Running the tests

```
pip install .[test]
pytest
```