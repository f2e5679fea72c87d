"""Clojure socket REPL client.

This package provides:
- ProcessSupervisor: finds or launches the REPL backend and dials it
- ReplClient: one shared connection, one exchange at a time
- EdnCodec / BencodeCodec: prepl and nREPL wire protocols
- read_buffered: deadline-bounded reading of replies
- render: turns response records into reply text
"""

from .buffering import ReadPolicy, read_buffered
from .client import ReplClient, open_client
from .codec import BencodeCodec, EdnCodec, ReplCodec, get_codec
from .errors import (
    BackendUnavailableError,
    ConnectionClosedError,
    DecodeError,
    NothingReceivedError,
    ReplError,
    ReplIOError,
)
from .models import ReplRequest, ResponseRecord
from .normalize import render
from .supervisor import Connection, ProcessSupervisor

__all__ = [
    "ReadPolicy",
    "read_buffered",
    "ReplClient",
    "open_client",
    "BencodeCodec",
    "EdnCodec",
    "ReplCodec",
    "get_codec",
    "BackendUnavailableError",
    "ConnectionClosedError",
    "DecodeError",
    "NothingReceivedError",
    "ReplError",
    "ReplIOError",
    "ReplRequest",
    "ResponseRecord",
    "render",
    "Connection",
    "ProcessSupervisor",
]
