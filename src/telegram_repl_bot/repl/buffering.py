"""Bounded, deadline-based reading of REPL replies.

The prepl stream has no length framing, so a reply is considered complete
once the read deadline for the exchange has passed or the attempt budget is
spent. This always waits out the deadline in exchange for protocol simplicity.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from .errors import NothingReceivedError, ReplIOError

logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT = 1.0
DEFAULT_READ_RETRIES = 10
DEFAULT_CHUNK_SIZE = 10 * 1024


class ChunkReader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


@dataclass(frozen=True)
class ReadPolicy:
    """How long and how often to read for one exchange."""

    timeout: float = DEFAULT_READ_TIMEOUT  # seconds, deadline for the exchange
    retries: int = DEFAULT_READ_RETRIES
    chunk_size: int = DEFAULT_CHUNK_SIZE


async def read_buffered(reader: ChunkReader, policy: ReadPolicy) -> bytes:
    """Read into one buffer until the deadline passes or attempts run out.

    Timeouts and end-of-stream are tolerated; any other OS error stops the
    loop and is raised as ``ReplIOError``. An empty buffer raises
    ``NothingReceivedError``.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + policy.timeout
    buffer = bytearray()

    for attempt in range(policy.retries):
        remaining = deadline - loop.time()
        if remaining <= 0:
            # Deadline already passed: the attempt times out immediately
            continue
        try:
            chunk = await asyncio.wait_for(reader.read(policy.chunk_size), remaining)
        except asyncio.TimeoutError:
            continue
        except OSError as e:
            logger.error("Error while reading bytes (attempt %d): %s", attempt + 1, e)
            if buffer:
                break
            raise ReplIOError(f"failed to read from REPL: {e}") from e
        if chunk:
            buffer.extend(chunk)

    if not buffer:
        raise NothingReceivedError()
    return bytes(buffer)
