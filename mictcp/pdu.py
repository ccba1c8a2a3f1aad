"""MIC-TCP protocol data units: states, addresses, headers and their wire form."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import Optional

# Two ports, two 32-bit numbers, three one-byte flags and one pad byte.
_HEADER_STRUCT = struct.Struct("!HHIIBBBx")

HEADER_SIZE = _HEADER_STRUCT.size


class ProtocolState(enum.Enum):
    """States a MIC-TCP socket goes through."""

    IDLE = enum.auto()
    CLOSED = enum.auto()
    SYNACK_SENT = enum.auto()
    WAIT_FOR_SYN = enum.auto()
    ESTABLISHED = enum.auto()
    CLOSING = enum.auto()


class StartMode(enum.Enum):
    """Role in which the protocol stack is started."""

    CLIENT = enum.auto()
    SERVER = enum.auto()


@dataclass(frozen=True)
class SockAddr:
    """A socket address: a host name (or ``None`` for any) and a port."""

    host: Optional[str]
    port: int


@dataclass(frozen=True)
class Header:
    """The fixed-size header of a MIC-TCP PDU."""

    source_port: int = 0
    dest_port: int = 0
    seq_num: int = 0
    ack_num: int = 0
    syn: bool = False
    ack: bool = False
    fin: bool = False

    def pack(self) -> bytes:
        """Encode the header into its ``HEADER_SIZE`` wire bytes."""
        try:
            return _HEADER_STRUCT.pack(
                self.source_port,
                self.dest_port,
                self.seq_num,
                self.ack_num,
                int(self.syn),
                int(self.ack),
                int(self.fin),
            )
        except struct.error as exc:
            raise ValueError(f"header field out of range: {exc}") from exc

    @classmethod
    def unpack(cls, data: bytes) -> "Header":
        """Decode a header from the first ``HEADER_SIZE`` bytes of ``data``."""
        if len(data) < HEADER_SIZE:
            raise ValueError(
                f"header needs {HEADER_SIZE} bytes, got {len(data)}"
            )
        source, dest, seq, ack_num, syn, ack, fin = _HEADER_STRUCT.unpack_from(data)
        return cls(source, dest, seq, ack_num, bool(syn), bool(ack), bool(fin))


@dataclass(frozen=True)
class Pdu:
    """A MIC-TCP PDU: a header followed by the application payload."""

    header: Header = field(default_factory=Header)
    payload: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", bytes(self.payload))

    def to_bytes(self) -> bytes:
        """Return the datagram carrying this PDU."""
        return self.header.pack() + self.payload

    @classmethod
    def from_bytes(cls, data: bytes) -> "Pdu":
        """Parse a datagram into a PDU."""
        return cls(Header.unpack(data), bytes(data[HEADER_SIZE:]))