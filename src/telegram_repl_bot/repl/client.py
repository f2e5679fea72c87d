"""Connection manager for a Clojure socket REPL.

One TCP connection is shared by every caller; an exclusive lock is held for
each full exchange (write, buffered read, decode), so at most one exchange is
ever in flight.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..settings import BotSettings
from .buffering import ReadPolicy, read_buffered
from .codec import ReplCodec
from .errors import ConnectionClosedError, ReplError, ReplIOError
from .models import ReplRequest, ResponseRecord
from .supervisor import Connection, ProcessSupervisor

logger = logging.getLogger(__name__)

# Commands
COMMAND_PUBLICS = '(clojure.string/join ", " (map first (ns-publics (ns-name *ns*))))'
COMMAND_RESET = "(map #(ns-unmap *ns* %) (keys (ns-interns *ns*)))"
COMMAND_SHUTDOWN = "(System/exit 0)"


def load_file_command(path: str | Path) -> str:
    """Clojure expression that loads the file at ``path``."""
    escaped = str(path).replace("\\", "\\\\").replace('"', '\\"')
    return f'(load-file "{escaped}")'


class ReplClient:
    """Serializes requests from many callers onto one REPL connection."""

    def __init__(
        self,
        conn: Connection,
        codec: ReplCodec,
        *,
        policy: ReadPolicy | None = None,
        verbose: bool = False,
    ) -> None:
        self._conn = conn
        self.codec = codec
        self.policy = policy or ReadPolicy()
        self.verbose = verbose

        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def eval(self, code: str) -> list[ResponseRecord]:
        """Evaluate code and return the decoded records in arrival order."""
        async with self._lock:
            if self.verbose:
                logger.info("Will evaluate `%s`", code)

            records = await self._exchange(ReplRequest(code=code))

            if self.verbose:
                logger.info("Evaluated `%s`: %s", code, records)
            return records

    async def load_file(self, path: str | Path) -> list[ResponseRecord]:
        """Load a local source file into the REPL."""
        async with self._lock:
            if self.verbose:
                logger.info("Will load file `%s`", path)

            records = await self._exchange(ReplRequest(code=load_file_command(path)))

            if self.verbose:
                logger.info("Loaded file `%s`: %s", path, records)
            return records

    async def reset(self) -> list[ResponseRecord]:
        """Unmap every var interned in the current namespace."""
        return await self.eval(COMMAND_RESET)

    async def publics(self) -> list[ResponseRecord]:
        """List public vars of the current namespace."""
        return await self.eval(COMMAND_PUBLICS)

    async def initialize(self) -> None:
        """Run the codec's setup commands; failures are logged, not raised."""
        for cmd in self.codec.init_commands:
            try:
                await self.eval(cmd)
            except ReplError as e:
                logger.warning("Failed to evaluate `%s`: %s", cmd, e)

    async def open_session(self) -> bool:
        """Open a long-lived session where the protocol needs one.

        Returns True if a fresh session was opened. Failures are logged and
        leave the client sessionless.
        """
        request = self.codec.session_request()
        if request is None:
            return False

        async with self._lock:
            try:
                records = await self._exchange(request)
                self.codec.bind_session(records)
            except ReplError as e:
                logger.warning("Failed to open REPL session: %s", e)
                return False
        return True

    async def shutdown(self) -> None:
        """Ask the REPL to exit, then close the connection exactly once."""
        async with self._lock:
            if self._closed:
                return

            logger.info("Sending shutdown command to REPL...")
            try:
                await self._exchange(ReplRequest(code=COMMAND_SHUTDOWN))
            except ReplError as e:
                logger.warning("Failed to send shutdown command to REPL: %s", e)

            logger.info("Closing connection to REPL...")
            self._closed = True
            writer = self._conn.writer
            try:
                writer.close()
                await writer.wait_closed()
            except OSError as e:
                logger.warning("Failed to close connection to REPL: %s", e)

    async def _exchange(self, request: ReplRequest) -> list[ResponseRecord]:
        """Write one request and decode whatever arrives before the deadline.

        Must be called with the lock held.
        """
        if self._closed:
            raise ConnectionClosedError("connection to REPL is closed")

        payload = self.codec.encode(request)
        if self.verbose:
            logger.info("Writing request: %r", payload)

        writer = self._conn.writer
        try:
            writer.write(payload)
            await writer.drain()
        except OSError as e:
            logger.error("Error while writing request: %s", e)
            raise ReplIOError(f"failed to write request: {e}") from e

        buffer = await read_buffered(self._conn.reader, self.policy)
        if self.verbose:
            logger.info("Read buffer: %r", buffer)

        return self.codec.decode(buffer)


async def open_client(settings: BotSettings, supervisor: ProcessSupervisor) -> ReplClient:
    """Acquire a backend connection and wrap it in a client.

    The setup commands run when the backend was just launched or a fresh
    session was opened, since both start with default bindings.
    """
    conn = await supervisor.acquire_connection()
    client = ReplClient(
        conn,
        supervisor.codec,
        policy=ReadPolicy(
            timeout=settings.read_timeout,
            retries=settings.read_retries,
            chunk_size=settings.read_chunk_size,
        ),
        verbose=settings.is_verbose,
    )
    opened = await client.open_session()
    if conn.launched or opened:
        await client.initialize()
    return client
