"""Server that prints every message it receives over MIC-TCP."""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional, Sequence

from .pdu import SockAddr, StartMode
from .protocol import MicTcpSocket

MAX_SIZE = 1000
LOCAL_HOST = "127.0.0.1"


def parse_args(argv: Optional[Sequence[str]] = None) -> SockAddr:
    """Read the local MIC-TCP port from the command line."""
    parser = argparse.ArgumentParser(prog="mictcp-server", description=__doc__)
    parser.add_argument("port", type=int, help="local MIC-TCP port")
    args = parser.parse_args(argv)
    return SockAddr(LOCAL_HOST, args.port)


def serve(sock: MicTcpSocket, max_messages: Optional[int] = None) -> List[bytes]:
    """Receive and print messages; stop after ``max_messages`` (never if ``None``)."""
    received: List[bytes] = []
    while max_messages is None or len(received) < max_messages:
        print("[TSOCK] Waiting for data, calling mic_recv ...")
        message = sock.recv(MAX_SIZE)
        print(f"[TSOCK] Received a message of size: {len(message)}")
        text = message.split(b"\0", 1)[0].decode(errors="replace")
        print(f"[TSOCK] Message received: {text}")
        received.append(message)
    return received


def main(argv: Optional[Sequence[str]] = None) -> int:
    addr = parse_args(argv)
    try:
        sock = MicTcpSocket(StartMode.SERVER)
    except OSError:
        print("[TSOCK] Error creating the MIC-TCP socket!")
        return 1
    print("[TSOCK] MIC-TCP socket created: OK")
    try:
        sock.bind(addr)
        print("[TSOCK] MIC-TCP socket bound: OK")
        sock.accept()
        print("[TSOCK] Accept on the MIC-TCP socket: OK")
        print("[TSOCK] Press CTRL+C to quit ...")
        serve(sock)
    except KeyboardInterrupt:
        pass
    finally:
        sock.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())