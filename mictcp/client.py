"""Interactive client: sends each line typed on standard input over MIC-TCP."""

from __future__ import annotations

import argparse
import sys
from typing import Iterable, Iterator, List, Optional, Sequence

from .pdu import SockAddr, StartMode
from .protocol import MicTcpSocket

MAX_SIZE = 1000


def parse_args(argv: Optional[Sequence[str]] = None) -> SockAddr:
    """Read the server host and port from the command line."""
    parser = argparse.ArgumentParser(prog="mictcp-client", description=__doc__)
    parser.add_argument("host", help="server host name")
    parser.add_argument("port", type=int, help="server MIC-TCP port")
    args = parser.parse_args(argv)
    return SockAddr(args.host, args.port)


def _messages(lines: Iterable[str]) -> Iterator[bytes]:
    """Cut lines into NUL-terminated messages that fit the line buffer."""
    limit = MAX_SIZE - 1
    for line in lines:
        encoded = line.encode()
        chunks = [encoded[start:start + limit] for start in range(0, len(encoded), limit)]
        for chunk in chunks or [b""]:
            for terminator in (b"\r", b"\n"):
                chunk = chunk.split(terminator, 1)[0]
            yield chunk + b"\0"


def run(sock: MicTcpSocket, lines: Iterable[str]) -> List[int]:
    """Send every line through ``sock``; return what each send reported."""
    results = []
    for message in _messages(lines):
        sent = sock.send(message)
        print(f"[TSOCK] mic_send called with a message of size: {len(message)}")
        print(f"[TSOCK] mic_send returned: {sent}")
        results.append(sent)
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    addr = parse_args(argv)
    try:
        sock = MicTcpSocket(StartMode.CLIENT)
    except OSError:
        print("[TSOCK] Error creating the MIC-TCP socket!")
        return 1
    print("[TSOCK] MIC-TCP socket created: OK")
    try:
        try:
            sock.connect(addr)
        except OSError:
            print("[TSOCK] Error connecting the MIC-TCP socket!")
            return 1
        print("[TSOCK] MIC-TCP socket connected: OK")
        print("[TSOCK] Enter the messages to send, CTRL+D to quit")
        run(sock, sys.stdin)
    finally:
        sock.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())