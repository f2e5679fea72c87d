"""Find or launch the REPL backend and dial its socket.

Attaching to a running REPL and cold-starting a new one share one path: dial
for the connect window, launch once, then dial for the boot window. A cold
start therefore always pays the connect window first.
"""

from __future__ import annotations

import asyncio
import logging
from asyncio.subprocess import Process
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..settings import BotSettings
from .codec import ReplCodec
from .errors import BackendUnavailableError, ReplError

logger = logging.getLogger(__name__)

DIAL_INTERVAL = 1.0  # seconds between dial attempts

Dialer = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]
Spawner = Callable[..., Awaitable[Process]]


@dataclass
class Connection:
    """An open byte stream to the backend."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    launched: bool = False  # True if this process started the backend


async def open_tcp(host: str, port: int) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection(host, port)


class ProcessSupervisor:
    """Locates or launches the REPL backend and returns a connection to it.

    Usage:
        supervisor = ProcessSupervisor(settings, codec)
        conn = await supervisor.acquire_connection()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        settings: BotSettings,
        codec: ReplCodec,
        *,
        dial: Dialer = open_tcp,
        spawn: Spawner = asyncio.create_subprocess_exec,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.codec = codec
        self._dial = dial
        self._spawn = spawn
        self._sleep = sleep

        self._process: Process | None = None
        self._launch_task: asyncio.Task[int] | None = None

    @property
    def launch_task(self) -> asyncio.Task[int] | None:
        return self._launch_task

    async def acquire_connection(self) -> Connection:
        """Connect to an existing backend, or launch one and connect to it.

        Raises:
            BackendUnavailableError: neither window produced a connection
        """
        addr = self.settings.repl_address

        streams = await self._poll(self.settings.connect_timeout)
        if streams is not None:
            logger.info("There is an existing REPL on %s", addr)
            return Connection(*streams)

        logger.info(
            "Failed to connect to an existing REPL, trying to launch: %s",
            self.settings.executable,
        )
        self._launch_task = asyncio.create_task(self._launch())
        self._launch_task.add_done_callback(_log_launch_result)

        logger.info("Waiting for REPL to boot up...")
        streams = await self._poll(self.settings.bootup_timeout, watch=self._launch_task)
        if streams is None:
            raise BackendUnavailableError(f"failed to connect to launched REPL: {addr}")

        logger.info("Connected to REPL on %s", addr)
        return Connection(*streams, launched=True)

    async def _poll(
        self, window: int, watch: asyncio.Task[int] | None = None
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter] | None:
        """Dial once per second for ``window`` seconds."""
        host, port = self.settings.repl_host, self.settings.repl_port
        for attempt in range(window):
            await self._sleep(DIAL_INTERVAL)
            try:
                return await self._dial(host, port)
            except OSError as e:
                logger.debug("Dial %d/%d to %s:%d failed: %s", attempt + 1, window, host, port, e)

            if watch is not None and watch.done():
                exc = watch.exception()
                if exc is not None:
                    raise BackendUnavailableError(f"failed to launch REPL: {exc}") from exc
                raise BackendUnavailableError(
                    f"REPL exited with status {watch.result()} before accepting connections"
                )
        return None

    async def _launch(self) -> int:
        """Start the backend and wait for it to exit; return its exit status."""
        args = self.codec.launch_args(
            self.settings.executable, self.settings.repl_host, self.settings.repl_port
        )
        logger.debug("Launching: %s", " ".join(args))
        self._process = await self._spawn(*args, stdin=asyncio.subprocess.DEVNULL)

        returncode = await self._process.wait()
        if returncode != 0:
            logger.error("REPL exited with status %d", returncode)
            raise ReplError(f"REPL exited with status {returncode}")
        logger.info("REPL exited")
        return returncode

    async def stop(self, timeout: float = 5.0) -> None:
        """Wait for a launched backend to exit, terminating it if it lingers."""
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
            return
        except asyncio.TimeoutError:
            logger.warning("REPL did not exit in %ss, terminating", timeout)

        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=2)
        except asyncio.TimeoutError:
            proc.kill()
        except ProcessLookupError:
            pass  # Already dead


def _log_launch_result(task: asyncio.Task[int]) -> None:
    if task.cancelled():
        return
    if (exc := task.exception()) is not None:
        logger.error("REPL launcher failed: %s", exc)
