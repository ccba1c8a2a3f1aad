"""Lossy datagram layer and application receive buffer underneath MIC-TCP."""

from __future__ import annotations

import contextlib
import logging
import random
import socket
import threading
import time
from collections import deque
from typing import Callable, Deque, Optional, Tuple

from .pdu import HEADER_SIZE, Pdu, StartMode

logger = logging.getLogger(__name__)

API_CS_PORT = 8524
API_SC_PORT = 8525
MAX_DATAGRAM_SIZE = 1500
MAX_PAYLOAD_SIZE = MAX_DATAGRAM_SIZE - HEADER_SIZE
STUB_HOST = "localhost"

PduHandler = Callable[[Pdu, str], None]


class AppBuffer:
    """Thread-safe FIFO of payloads waiting for the application."""

    def __init__(self) -> None:
        self._entries: Deque[bytes] = deque()
        self._cond = threading.Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)

    def put(self, data: bytes) -> None:
        """Append a copy of ``data`` and wake any waiting reader."""
        with self._cond:
            self._entries.append(bytes(data))
            self._cond.notify_all()

    def get(self, max_size: int) -> bytes:
        """Block until a payload is available; return at most ``max_size`` bytes of it."""
        if max_size < 0:
            raise ValueError("max_size must not be negative")
        with self._cond:
            self._cond.wait_for(lambda: self._entries)
            entry = self._entries.popleft()
        return entry[:max_size]


class IpLayer:
    """A UDP socket on localhost that emulates an IP layer losing packets."""

    def __init__(
        self,
        mode: StartMode,
        cs_port: int = API_CS_PORT,
        sc_port: int = API_SC_PORT,
    ) -> None:
        self.mode = StartMode(mode)
        self.loss_rate = 0
        self.rng = random.Random()
        self.app_buffer = AppBuffer()
        self._closed = False
        self._listener: Optional[threading.Thread] = None
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

        if self.mode is StartMode.SERVER:
            self.remote_port = sc_port
            try:
                self._sock.bind(("", cs_port))
            except OSError:
                self._sock.close()
                raise
        else:
            self.remote_port = cs_port
            # A client that cannot take its port still works for sending.
            with contextlib.suppress(OSError):
                self._sock.bind(("", sc_port))

    def __enter__(self) -> "IpLayer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("IP layer is closed")

    def start(self, handler: PduHandler) -> None:
        """Start the receive thread, passing each PDU and its sender to ``handler``."""
        self._ensure_open()
        if self._listener is not None:
            raise RuntimeError("receive thread already started")
        self._listener = threading.Thread(
            target=self._listen, args=(handler,), name="mictcp-listener", daemon=True
        )
        self._listener.start()

    def _listen(self, handler: PduHandler) -> None:
        logger.info("starting network receive thread")
        while not self._closed:
            try:
                received = self.ip_recv(0)
            except (OSError, RuntimeError):
                if self._closed:
                    break
                logger.error("error in recv")
                continue
            if received is None:
                if not self._closed:
                    logger.error("error in recv")
                continue
            pdu, remote_host = received
            handler(pdu, remote_host)

    def set_loss_rate(self, rate: int) -> None:
        """Set the percentage of sent packets that are dropped."""
        if rate < 0:
            raise ValueError("loss rate must not be negative")
        self.loss_rate = rate

    def ip_send(self, pdu: Pdu, host: str) -> int:
        """Send ``pdu`` to ``host``, possibly dropping it; return the payload size."""
        self._ensure_open()
        datagram = pdu.to_bytes()
        sent = len(datagram)
        if self.rng.random() >= self.loss_rate / 100:
            address = socket.gethostbyname(host)
            sent = self._sock.sendto(datagram, (address, self.remote_port))
            logger.info("sent IP packet of size %d to %s", sent, host)
        else:
            logger.info("packet lost")
        return sent - HEADER_SIZE

    def ip_recv(
        self, timeout_ms: int = 0, max_payload: int = MAX_PAYLOAD_SIZE
    ) -> Optional[Tuple[Pdu, str]]:
        """Receive one PDU, waiting at most ``timeout_ms`` (0 waits forever).

        Returns ``(pdu, remote_host)``, or ``None`` on timeout or a malformed datagram.
        """
        self._ensure_open()
        self._sock.settimeout(timeout_ms / 1000 if timeout_ms else None)
        try:
            data, _ = self._sock.recvfrom(HEADER_SIZE + max_payload)
        except socket.timeout:
            return None
        if len(data) < HEADER_SIZE:
            return None
        logger.info("received IP packet of size %d from %s", len(data), STUB_HOST)
        return Pdu.from_bytes(data), STUB_HOST

    def app_buffer_get(self, max_size: int) -> bytes:
        """Take the oldest buffered payload, truncated to ``max_size`` bytes."""
        return self.app_buffer.get(max_size)

    def app_buffer_put(self, data: bytes) -> None:
        """Queue ``data`` for the application."""
        self.app_buffer.put(data)

    def close(self) -> None:
        """Close the socket and let the receive thread finish."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._sock.close()


def now_usec() -> int:
    """Wall-clock time in microseconds."""
    return time.time_ns() // 1000


def now_msec() -> int:
    """Wall-clock time in milliseconds."""
    return now_usec() // 1000


def format_header(pdu: Pdu) -> str:
    """Describe the ports and numbers of a PDU's header."""
    header = pdu.header
    return (
        f"SP: {header.source_port}, DP: {header.dest_port}, "
        f"SEQ: {header.seq_num}, ACK: {header.ack_num}"
    )