# mictcp

`mictcp` is a small connection-oriented transport protocol that runs over
UDP on the local machine. It offers:

- a three-way handshake (SYN, SYN-ACK, ACK). During the handshake, client and
  server agree on the share of lost messages they will accept. The stricter
  of the two values is kept. The client proposes 5 %, the server 2 %.
- stop-and-wait delivery with a one-bit sequence number. A message is sent
  again when no acknowledgement arrives within 10 ms.
- partial reliability. A sliding window of the last 100 sends records which
  ones were lost, and every slot starts as a loss. When a message is lost,
  the sender gives it up instead of sending it again, as long as one more
  loss keeps the window within the agreed rate.
- an IP layer that drops a chosen share of outgoing packets, so that loss can
  be studied. Every `MicTcpSocket` sets this share to 20 %.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Command-line tools

### Text chat

Start the receiving side. Pass the MIC-TCP port that it listens on:

```
mictcp-server 1337
```

In another terminal, connect to it and type lines. Press Ctrl+D to stop:

```
mictcp-client 127.0.0.1 1337
```

The client strips the line ending from each line and sends it as one
message with a terminating NUL byte. A line longer than 999 bytes is sent as
several messages. For each message, the client prints its size and the value
that `send` returned. The server prints every message it receives until you
press Ctrl+C.

### Video gateway

`mictcp-gateway` streams a recorded RTP video. It uses either the lossy
`mictcp` transport or a plain UDP path that stalls now and then, as TCP would
after a loss. Any UDP video player can then show the result.

```
mictcp-gateway [-p|-s] [-t tcp|mictcp] (<server>) <port>
```

- `-s` runs the source side. It reads the video file and sends its packets at
  the pace recorded in the file. It needs `<server> <port>`.
- `-p` runs the sink side ("puits"). It accepts one `mictcp` connection and
  forwards each message to UDP port `<port>` on `127.0.0.1`. It needs only
  `<port>`.
- `-t` selects the transport: `tcp` (the default) or `mictcp`.

The source side always reads `../video/video_wildlife.bin`, relative to the
current directory. No video file comes with the package.

Send over `mictcp` and play on UDP port 5004:

```
mictcp-gateway -p -t mictcp 5004
mictcp-gateway -s -t mictcp 127.0.0.1 5004
```

With `-t mictcp`, the source side always connects to MIC-TCP port 1337 on
`localhost`. It still requires the `<server> <port>` arguments, but it does
not use them.

Stream with the TCP-like behaviour straight to a player on port 5004:

```
mictcp-gateway -s -t tcp 127.0.0.1 5004
```

In this mode, the gateway pauses for 2 seconds after every 600 packets to
imitate a TCP stall. With `-t tcp`, the sink side needs no gateway.
`mictcp-gateway -p -t tcp <port>` only says so. Point the player at the port
directly.

At the end of the file, the source side sends an empty datagram (or an empty
`mictcp` message). When the `mictcp` sink receives an empty message, it
stops.

A bad command line prints the usage line and exits with status 1.

The video file holds a sequence of records. Each record has these fields:

1. seconds: 4 bytes, unsigned, little-endian.
2. nanoseconds: 4 bytes, unsigned, little-endian.
3. packet length: 4 bytes, signed, little-endian.
4. the packet bytes.

A packet longer than 1480 bytes is an error. `read_rtp_packet`,
`iter_rtp_packets` and `ts_subtract` in `mictcp.gateway` read these records
and pace them.

## Using the library

The library has these parts:

- `mictcp.pdu` defines the wire format. `Header` has `pack`/`unpack` and
  `Pdu` has `to_bytes`/`from_bytes`. The 16-byte header holds the ports, the
  sequence and acknowledgement numbers, and the SYN/ACK/FIN flags, in network
  byte order. The module also defines `ProtocolState`, `StartMode` and
  `SockAddr`.
- `mictcp.core` provides `IpLayer`, the simulated IP layer. It owns the UDP
  socket, the packet loss rate (`set_loss_rate`), the receive thread
  (`start`) and the application buffer (`AppBuffer`). It also provides
  `now_usec`, `now_msec` and `format_header`.
- `mictcp.protocol` provides `MicTcpSocket` and `LossWindow`.

To act as a client, create a socket with `StartMode.CLIENT` and call
`connect` with the server's `SockAddr`. Then call `send` for each message.
`send` returns the number of payload bytes sent. It returns `0` when a loss
was accepted and the message was given up.

To act as a server, create a socket with `StartMode.SERVER`. The socket
starts a receive thread that handles incoming PDUs. Call `bind` with the
server's address, then call `accept`. `accept` blocks until the handshake
completes and returns the client's address. Read messages with
`recv(max_size)`, which blocks until a message is available.

Both `MicTcpSocket` and `IpLayer` are context managers that close on exit.

`IpLayer` carries traffic between the two sides over two UDP ports,
`cs_port` and `sc_port`. Their defaults are 8524 and 8525, and both sides
must use the same pair. The MIC-TCP ports in `SockAddr` are only the ports
carried in the header. Packet traffic is reported through the `logging`
module, under the `mictcp.core` and `mictcp.protocol` loggers.

## What it does not do

- `close` only closes the local socket. It sends no FIN and runs no closing
  exchange.
- Data flows one way, from client to server. The server only sends
  acknowledgements.
- Because the UDP ports are fixed, each pair of ports carries one client and
  one server. One server socket handles one connection.
- Received datagrams are always reported as coming from `localhost`, so the
  protocol is meant for use on one machine.