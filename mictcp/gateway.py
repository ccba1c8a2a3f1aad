"""Gateway that streams a recorded RTP video over fake TCP or MIC-TCP and back to UDP."""

from __future__ import annotations

import enum
import getopt
import socket
import struct
import sys
import time
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, Optional, Sequence, Tuple

from .pdu import SockAddr, StartMode
from .protocol import MicTcpSocket

ENABLE_TCP_LOSS = True
MAX_UDP_SEGMENT_SIZE = 1480
MICTCP_PORT = 1337
VIDEO_FILE = "../video/video_wildlife.bin"
TCP_LOSS_PERIOD = 600
TCP_LOSS_DELAY_S = 2
USAGE = "usage: gateway [-p|-s][-t tcp|mictcp] (<server>) <port>"

# Seconds and nanoseconds, each stored on 4 bytes, then the packet size.
_RECORD_HEADER = struct.Struct("<IIi")
_NSEC_PER_SEC = 1_000_000_000

Timestamp = Tuple[int, int]


class GatewayFunction(enum.Enum):
    """What the gateway does: feed the stream in, or deliver it out."""

    SOURCE = "source"
    PUITS = "puits"


class GatewayProtocol(enum.Enum):
    """Transport used between the two gateways."""

    TCP = "tcp"
    MICTCP = "mictcp"


class UsageError(Exception):
    """The command line does not follow the gateway's usage."""


@dataclass(frozen=True)
class GatewayOptions:
    """Parsed command line of the gateway."""

    function: GatewayFunction
    protocol: GatewayProtocol = GatewayProtocol.TCP
    host: Optional[str] = None
    port: int = 0


def _parse_port(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise UsageError(f"Invalid port : {text}") from None


def parse_args(argv: Optional[Sequence[str]] = None) -> GatewayOptions:
    """Parse ``[-p|-s] [-t tcp|mictcp] (<server>) <port>``."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        opts, args = getopt.gnu_getopt(list(argv), "t:sp")
    except getopt.GetoptError as exc:
        raise UsageError(str(exc)) from None

    protocol = GatewayProtocol.TCP
    function: Optional[GatewayFunction] = None
    for flag, value in opts:
        if flag == "-t":
            try:
                protocol = GatewayProtocol(value)
            except ValueError:
                raise UsageError(f"Unrecognized transport : {value}") from None
        else:
            if function is not None:
                raise UsageError("")
            function = GatewayFunction.SOURCE if flag == "-s" else GatewayFunction.PUITS

    if function is GatewayFunction.PUITS and len(args) == 1:
        return GatewayOptions(function, protocol, None, _parse_port(args[0]))
    if function is GatewayFunction.SOURCE and len(args) == 2:
        return GatewayOptions(function, protocol, args[0], _parse_port(args[1]))
    raise UsageError("")


def read_rtp_packet(
    stream: BinaryIO, buffer_size: int = MAX_UDP_SEGMENT_SIZE
) -> Optional[Tuple[Timestamp, bytes]]:
    """Read one recorded RTP packet and its timestamp; ``None`` at end of file."""
    header = stream.read(_RECORD_HEADER.size)
    if not header:
        return None
    if len(header) < _RECORD_HEADER.size:
        raise ValueError("truncated packet header")
    sec, nsec, size = _RECORD_HEADER.unpack(header)
    if size > buffer_size:
        raise ValueError("Buffer is too small to store the packet")
    if size < 0:
        raise ValueError("negative packet size")
    return (sec, nsec), stream.read(size)


def iter_rtp_packets(
    stream: BinaryIO, buffer_size: int = MAX_UDP_SEGMENT_SIZE
) -> Iterator[Tuple[Timestamp, bytes]]:
    """Yield every recorded RTP packet of ``stream`` with its timestamp."""
    while (packet := read_rtp_packet(stream, buffer_size)) is not None:
        yield packet


def ts_subtract(time1: Timestamp, time2: Timestamp) -> Timestamp:
    """Return ``time1 - time2`` as (seconds, nanoseconds), or (0, 0) if not positive."""
    sec1, nsec1 = time1
    sec2, nsec2 = time2
    if (sec1, nsec1) <= (sec2, nsec2):
        return 0, 0
    sec = sec1 - sec2
    if nsec1 < nsec2:
        return sec - 1, nsec1 + _NSEC_PER_SEC - nsec2
    return sec, nsec1 - nsec2


def _paced(packets: Iterable[Tuple[Timestamp, bytes]]) -> Iterator[bytes]:
    """Yield payloads, sleeping so they come out at their recorded pace."""
    last: Optional[Timestamp] = None
    for timestamp, payload in packets:
        if last is not None:
            sec, nsec = ts_subtract(timestamp, last)
            if sec or nsec:
                time.sleep(sec + nsec / _NSEC_PER_SEC)
        last = timestamp
        yield payload


def file_to_faketcp(filename: str, host: str, port: int) -> None:
    """Stream a recorded video over UDP, stalling now and then as TCP would on a loss."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        address = (socket.gethostbyname(host), port)
        with open(filename, "rb") as stream:
            count = 0
            for payload in _paced(iter_rtp_packets(stream)):
                if ENABLE_TCP_LOSS:
                    if count == TCP_LOSS_PERIOD:
                        print("Simulating TCP loss")
                        time.sleep(TCP_LOSS_DELAY_S)
                        count = 0
                    else:
                        count += 1
                sock.sendto(payload, address)
            # An empty datagram marks the end of the stream.
            sock.sendto(b"", address)


def file_to_mictcp(filename: str) -> None:
    """Stream a recorded video to the MIC-TCP gateway on this host."""
    with MicTcpSocket(StartMode.CLIENT) as sock:
        sock.connect(SockAddr("localhost", MICTCP_PORT))
        with open(filename, "rb") as stream:
            for payload in _paced(iter_rtp_packets(stream)):
                sock.send(payload)
        # An empty message marks the end of the stream.
        sock.send(b"")


def mictcp_to_udp(host: str, port: int) -> None:
    """Accept one MIC-TCP connection and forward every message to ``host:port`` over UDP."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as udp:
        address = (socket.gethostbyname(host), port)
        with MicTcpSocket(StartMode.SERVER) as sock:
            sock.bind(SockAddr(None, MICTCP_PORT))
            sock.accept()
            while message := sock.recv(MAX_UDP_SEGMENT_SIZE):
                udp.sendto(message, address)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        options = parse_args(argv)
    except UsageError as exc:
        if str(exc):
            print(exc)
        print(USAGE)
        return 1

    try:
        if options.protocol is GatewayProtocol.TCP:
            if options.function is GatewayFunction.SOURCE:
                assert options.host is not None
                file_to_faketcp(VIDEO_FILE, options.host, options.port)
            else:
                print("No gateway needed for puits using UDP")
        elif options.function is GatewayFunction.SOURCE:
            file_to_mictcp(VIDEO_FILE)
        else:
            mictcp_to_udp("127.0.0.1", options.port)
    except (OSError, ValueError) as exc:
        print(f"gateway: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())