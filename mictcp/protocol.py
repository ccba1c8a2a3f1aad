"""MIC-TCP sockets: connection set-up and stop-and-wait transfer with tolerated losses."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from .core import IpLayer
from .pdu import Header, Pdu, ProtocolState, SockAddr, StartMode

logger = logging.getLogger(__name__)

WINDOW_SIZE = 100
LOSS_RATE = 20
CLIENT_ALLOWED_LOSS_RATE = 5
SERVER_ALLOWED_LOSS_RATE = 2
TIMER_MS = 10
DEFAULT_LOCAL_ADDR = SockAddr("127.0.0.1", 33000)


class LossWindow:
    """Sliding record of recent sends, used to decide whether a loss may be accepted.

    Every slot starts as a loss so that the first messages are always retransmitted.
    """

    def __init__(self, allowed_rate: int, size: int = WINDOW_SIZE) -> None:
        if size <= 0:
            raise ValueError("window size must be positive")
        if allowed_rate < 0:
            raise ValueError("allowed loss rate must not be negative")
        self.allowed_rate = allowed_rate
        self._values = [1] * size
        self._index = 0

    @property
    def size(self) -> int:
        return len(self._values)

    @property
    def losses(self) -> int:
        """Number of losses currently recorded in the window."""
        return sum(self._values)

    def push(self, value: bool) -> None:
        """Record a loss (true) or a success (false), replacing the oldest entry."""
        self._values[self._index] = int(bool(value))
        self._index = (self._index + 1) % len(self._values)

    def is_loss_allowed(self) -> bool:
        """Tell whether one more loss keeps the window within the allowed rate."""
        count = 1 + sum(self._values) - self._values[self._index]
        rate = count / len(self._values)
        logger.debug("losses: %d, loss rate: %f", count, rate)
        return rate <= self.allowed_rate / 100


class MicTcpSocket:
    """One MIC-TCP endpoint running over an :class:`IpLayer`."""

    def __init__(self, mode: StartMode, ip_layer: Optional[IpLayer] = None) -> None:
        self.mode = StartMode(mode)
        self.ip_layer = ip_layer if ip_layer is not None else IpLayer(self.mode)
        self.ip_layer.set_loss_rate(LOSS_RATE)
        self.local_addr = DEFAULT_LOCAL_ADDR
        self.remote_addr: Optional[SockAddr] = None
        default_rate = (
            SERVER_ALLOWED_LOSS_RATE
            if self.mode is StartMode.SERVER
            else CLIENT_ALLOWED_LOSS_RATE
        )
        self.window = LossWindow(default_rate)
        self._state = ProtocolState.IDLE
        self._cond = threading.Condition()
        self._pe = 0
        self._pa = 0
        if self.mode is StartMode.SERVER:
            self.ip_layer.start(self.process_received_pdu)

    def __enter__(self) -> "MicTcpSocket":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def state(self) -> ProtocolState:
        with self._cond:
            return self._state

    @property
    def allowed_loss_rate(self) -> int:
        return self.window.allowed_rate

    def bind(self, addr: SockAddr) -> None:
        """Give the socket its local address."""
        self.local_addr = addr

    def accept(self) -> SockAddr:
        """Wait until a client has completed the handshake; return its address."""
        self.window = LossWindow(SERVER_ALLOWED_LOSS_RATE)
        with self._cond:
            self._state = ProtocolState.WAIT_FOR_SYN
            self._cond.wait_for(lambda: self._state is ProtocolState.ESTABLISHED)
            assert self.remote_addr is not None
            remote = self.remote_addr
        logger.info("allowed loss rate: %d", self.window.allowed_rate)
        return remote

    def connect(self, addr: SockAddr) -> None:
        """Open a connection to ``addr``, agreeing on the tolerated loss rate."""
        self.window = LossWindow(CLIENT_ALLOWED_LOSS_RATE)
        self.remote_addr = addr
        syn = Pdu(
            Header(source_port=self.local_addr.port, dest_port=addr.port, syn=True),
            bytes([self.window.allowed_rate]),
        )
        self.ip_layer.ip_send(syn, addr.host)
        while True:
            received = self.ip_layer.ip_recv(TIMER_MS, max_payload=1)
            if received is not None:
                synack, _ = received
                header = synack.header
                if (
                    header.dest_port == self.local_addr.port
                    and header.ack
                    and header.syn
                    and synack.payload
                ):
                    break
            self.ip_layer.ip_send(syn, addr.host)

        # The server has the final say on the tolerated loss rate.
        self.window.allowed_rate = synack.payload[0]
        ack = Pdu(Header(source_port=self.local_addr.port, dest_port=addr.port, ack=True))
        self.ip_layer.ip_send(ack, addr.host)
        with self._cond:
            self._state = ProtocolState.ESTABLISHED
        logger.info("final allowed loss rate: %d", self.window.allowed_rate)

    def _is_expected_ack(self, received: Optional[Tuple[Pdu, str]]) -> bool:
        if received is None:
            return False
        header = received[0].header
        return (
            header.dest_port == self.local_addr.port
            and header.ack
            and header.ack_num != self._pe
        )

    def send(self, data: bytes) -> int:
        """Send ``data`` and wait for its acknowledgement.

        Returns the number of bytes sent, or 0 when the loss was tolerated.
        """
        if self.remote_addr is None:
            raise RuntimeError("socket is not connected")
        remote = self.remote_addr
        pdu = Pdu(
            Header(
                source_port=self.local_addr.port,
                dest_port=remote.port,
                seq_num=self._pe,
            ),
            data,
        )
        sent = self.ip_layer.ip_send(pdu, remote.host)
        while not self._is_expected_ack(self.ip_layer.ip_recv(TIMER_MS, max_payload=0)):
            if self.window.is_loss_allowed():
                logger.info("loss accepted")
                self.window.push(True)
                return 0
            logger.info("loss refused, retransmitting")
            sent = self.ip_layer.ip_send(pdu, remote.host)
        self.window.push(False)
        self._pe ^= 1
        return sent

    def recv(self, max_size: int) -> bytes:
        """Block until a message has arrived; return at most ``max_size`` bytes of it."""
        return self.ip_layer.app_buffer_get(max_size)

    def close(self) -> None:
        """Close the socket and its IP layer."""
        with self._cond:
            self._state = ProtocolState.CLOSED
        self.ip_layer.close()

    def _synack(self) -> Pdu:
        assert self.remote_addr is not None
        return Pdu(
            Header(
                source_port=self.local_addr.port,
                dest_port=self.remote_addr.port,
                syn=True,
                ack=True,
            ),
            bytes([self.window.allowed_rate]),
        )

    def process_received_pdu(self, pdu: Pdu, remote_host: str) -> None:
        """React to a PDU arriving from ``remote_host`` according to the current state."""
        header = pdu.header
        if header.dest_port != self.local_addr.port:
            return
        with self._cond:
            state = self._state
            if state is ProtocolState.ESTABLISHED:
                if header.ack:
                    return
                if header.seq_num == self._pa:
                    self.ip_layer.app_buffer_put(pdu.payload)
                    self._pa ^= 1
                ack = Pdu(
                    Header(
                        source_port=self.local_addr.port,
                        dest_port=header.source_port,
                        ack_num=self._pa,
                        ack=True,
                    )
                )
                self.ip_layer.ip_send(ack, remote_host)
            elif state is ProtocolState.WAIT_FOR_SYN:
                if not header.syn:
                    return
                self.remote_addr = SockAddr(remote_host, header.source_port)
                self._state = ProtocolState.SYNACK_SENT
                # The more restrictive of the two rates is kept.
                if pdu.payload and pdu.payload[0] <= self.window.allowed_rate:
                    self.window.allowed_rate = pdu.payload[0]
                self.ip_layer.ip_send(self._synack(), remote_host)
            elif state is ProtocolState.SYNACK_SENT:
                assert self.remote_addr is not None
                if header.syn:
                    # Our SYN-ACK was lost: send it again.
                    self.ip_layer.ip_send(self._synack(), self.remote_addr.host)
                elif header.ack:
                    self._state = ProtocolState.ESTABLISHED
                    self._cond.notify_all()