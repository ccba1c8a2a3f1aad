"""A TCP-like transport with partial reliability over UDP, with chat and video gateway tools."""

__version__ = "0.1.0"