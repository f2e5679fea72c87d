"""Wire codecs for the two Clojure socket REPL protocols.

- ``prepl``: the request is one line of code, every reply event is one EDN map
  per line (``{:tag :ret :val "3" :ns "user" :ms 1 :form "(+ 1 2)"}``)
- ``nrepl``: requests and replies are bencoded dictionaries; evaluations run
  in a session cloned once per connection
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from . import bencode, edn
from .errors import DecodeError
from .models import NREPL_FIELDS, OP_CLONE, PREPL_FIELDS, ReplRequest, ResponseRecord
from .normalize import record_from_wire, wire_value

logger = logging.getLogger(__name__)

# Commands
COMMAND_REQUIRE_REPL = "(require '[clojure.repl :refer :all])"
COMMAND_SET_PRINT_LENGTH = "(set! *print-length* 20)"

# Evaluated once per fresh REPL context, in order
INIT_COMMANDS = (
    COMMAND_REQUIRE_REPL,
    COMMAND_SET_PRINT_LENGTH,
)


class ReplCodec(Protocol):
    """Protocol for REPL wire codecs."""

    name: str
    init_commands: tuple[str, ...]

    def encode(self, request: ReplRequest) -> bytes:
        """Serialize a request to the bytes written on the socket."""
        ...

    def decode(self, buffer: bytes) -> list[ResponseRecord]:
        """Decode everything received for one request, in arrival order."""
        ...

    def launch_args(self, executable: str, host: str, port: int) -> list[str]:
        """Command line that starts a backend listening on host:port."""
        ...

    def session_request(self) -> ReplRequest | None:
        """Request that opens a long-lived session, or None if not needed."""
        ...

    def bind_session(self, records: list[ResponseRecord]) -> str:
        """Remember the session announced in ``records`` and return its id."""
        ...


class EdnCodec:
    """Newline-delimited EDN stream (Clojure prepl).

    A prepl connection is its own session, so there is nothing to open.
    """

    name = "prepl"
    init_commands = INIT_COMMANDS

    def encode(self, request: ReplRequest) -> bytes:
        return (request.code + "\n").encode("utf-8")

    def decode(self, buffer: bytes) -> list[ResponseRecord]:
        text = edn.cleanse(buffer.decode("utf-8", errors="replace"))

        records: list[ResponseRecord] = []
        failed = 0
        for line in text.split("\n"):
            if not line.strip():
                continue
            try:
                records.append(record_from_wire(wire_value(edn.loads(line)), PREPL_FIELDS))
            except DecodeError as e:
                failed += 1
                logger.warning("Skipping unparsable response line %r: %s", line[:200], e)

        if not records and failed:
            raise DecodeError(f"none of {failed} response line(s) could be parsed")
        return records

    def launch_args(self, executable: str, host: str, port: int) -> list[str]:
        server = (
            f'{{:address "{host}" :port {port} '
            ":accept clojure.core.server/io-prepl}"
        )
        return [executable, f"-J-Dclojure.server.jvm={server}"]

    def session_request(self) -> ReplRequest | None:
        return None

    def bind_session(self, records: list[ResponseRecord]) -> str:
        raise NotImplementedError("prepl has no sessions")


class BencodeCodec:
    """Bencoded request/response maps (nREPL).

    Without a session nREPL evaluates every request in a throwaway one, so
    bindings such as ``*ns*`` and ``*print-length*`` would not persist. Once
    ``bind_session`` has run, every request carries the cloned session id.
    """

    name = "nrepl"
    init_commands = INIT_COMMANDS

    def __init__(self) -> None:
        self.session: str | None = None

    def encode(self, request: ReplRequest) -> bytes:
        message: dict[str, Any] = {"op": request.op}
        if request.code:
            message["code"] = request.code
        if self.session:
            message["session"] = self.session
        return bencode.encode(message)

    def decode(self, buffer: bytes) -> list[ResponseRecord]:
        values: list[Any] = []
        try:
            for value in bencode.iter_decode(buffer):
                values.append(value)
        except DecodeError as e:
            if not values:
                raise
            # A read deadline can cut the last message short
            logger.warning("Dropping undecodable tail after %d message(s): %s", len(values), e)

        records: list[ResponseRecord] = []
        for value in values:
            try:
                records.append(record_from_wire(wire_value(value), NREPL_FIELDS))
            except DecodeError as e:
                logger.warning("Skipping unexpected response message %r: %s", value, e)

        if values and not records:
            raise DecodeError(f"none of {len(values)} response message(s) could be read")
        return records

    def launch_args(self, executable: str, host: str, port: int) -> list[str]:
        return [executable, "repl", ":headless", ":host", host, ":port", str(port)]

    def session_request(self) -> ReplRequest | None:
        return ReplRequest(op=OP_CLONE)

    def bind_session(self, records: list[ResponseRecord]) -> str:
        for r in records:
            if r.new_session:
                self.session = r.new_session
                logger.info("Using nREPL session %s", self.session)
                return self.session
        raise DecodeError("clone reply carries no new-session")


CODECS: dict[str, type[EdnCodec] | type[BencodeCodec]] = {
    EdnCodec.name: EdnCodec,
    BencodeCodec.name: BencodeCodec,
}


def get_codec(name: str) -> ReplCodec:
    """Return a codec instance by protocol name."""
    try:
        return CODECS[name]()
    except KeyError:
        raise ValueError(
            f"unknown REPL protocol {name!r} (expected one of: {', '.join(CODECS)})"
        ) from None
