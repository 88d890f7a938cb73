import asyncio
import contextlib
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from coach.context import Context

from coach.services.manager import BaseAsyncLoggingService

LEVEL_ORDER = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


class LogChannel:
    """Subsystem tags attached to log lines."""

    DISCORD = "DISCORD"
    STT = "STT"
    BOT = "BOT"
    OPENAI = "OPENAI"
    TTS = "TTS"
    FFMPEG = "FFMPEG"


# -------------------------------------------------------------- #
# Async Logging Service
# -------------------------------------------------------------- #


class AsyncLoggingService(BaseAsyncLoggingService):
    """Async logging service with file locking to prevent concurrent writes."""

    def __init__(
        self,
        context: "Context",
        log_dir: str = "logs",
        log_file: str | None = None,
        use_timestamp: bool = True,
        console_output: bool = True,
        min_level: str = "INFO",
        channels: list[str] | None = None,
    ):
        """Initialize the async logging service.

        Args:
            context: Context instance containing server and services
            log_dir: Directory to store log files
            log_file: Name of the log file (if None and use_timestamp is True,
                     a timestamped filename will be generated)
            use_timestamp: If True and log_file is None, create a timestamped log file.
                          If False, uses "app.log" as default.
            console_output: If True, all log messages are also printed to console (stdout).
            min_level: Messages below this level are dropped.
            channels: If non-empty, only messages tagged with one of these channels
                      (or untagged messages) are kept.
        """
        super().__init__(context)
        self.log_dir = Path(log_dir)
        self.console_output = console_output
        self.min_level = LEVEL_ORDER.get(min_level.upper(), LEVEL_ORDER["INFO"])
        self.channels = {channel.upper() for channel in channels or []}

        # Generate log file name
        if log_file is None:
            if use_timestamp:
                timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
                self.log_file = f"coach_{timestamp}.log"
            else:
                self.log_file = "coach.log"
        else:
            self.log_file = log_file

        self.log_path = self.log_dir / self.log_file

        # Create lock for serializing writes
        self._write_lock = asyncio.Lock()

        # Queue for pending log messages
        self._log_queue: asyncio.Queue = asyncio.Queue()
        self._writer_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        """Initialize logging service on start."""
        await super().on_start(services)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._writer_task = asyncio.create_task(self._process_log_queue())

        await self.info(f"AsyncLoggingService initialized. Logging to: {self.log_path}")

    async def on_close(self) -> None:
        """Clean up on close."""
        await super().on_close()

        if self._writer_task:
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
            self._writer_task = None

        await self._flush_queue()

    # -------------------------------------------------------------- #
    # Public Logging Methods
    # -------------------------------------------------------------- #

    def is_enabled(self, level: str, channel: str | None = None) -> bool:
        """Check whether a message at this level and channel passes the filters."""
        if LEVEL_ORDER.get(level, 0) < self.min_level:
            return False
        if self.channels and channel is not None and channel.upper() not in self.channels:
            return False
        return True

    def format_message(self, message: str, level: str, channel: str | None = None) -> str:
        timestamp = datetime.now().isoformat()
        if channel:
            return f"[{timestamp}] [{level}] [{channel}] {message}"
        return f"[{timestamp}] [{level}] {message}"

    async def log(self, message: str, level: str = "INFO", channel: str | None = None) -> None:
        """Queue a log message.

        Args:
            message: The log message
            level: Log level (INFO, DEBUG, WARNING, ERROR, CRITICAL)
            channel: Optional subsystem tag, see LogChannel
        """
        if not self.is_enabled(level, channel):
            return

        await self._log_queue.put(self.format_message(message, level, channel))

    async def debug(self, message: str, channel: str | None = None) -> None:
        await self.log(message, "DEBUG", channel)

    async def info(self, message: str, channel: str | None = None) -> None:
        await self.log(message, "INFO", channel)

    async def warning(self, message: str, channel: str | None = None) -> None:
        await self.log(message, "WARNING", channel)

    async def error(self, message: str, channel: str | None = None) -> None:
        await self.log(message, "ERROR", channel)

    async def critical(self, message: str, channel: str | None = None) -> None:
        await self.log(message, "CRITICAL", channel)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _process_log_queue(self) -> None:
        """Process log messages from the queue continuously."""
        try:
            while True:
                message = await self._log_queue.get()
                await self._write_to_file(message)
                self._log_queue.task_done()
        except asyncio.CancelledError:
            pass

    async def _write_to_file(self, message: str) -> None:
        """Write a message to the log file with locking."""
        if self.console_output:
            print(message, file=sys.stdout, flush=True)

        async with self._write_lock:
            try:
                async with aiofiles.open(self.log_path, mode="a") as f:
                    await f.write(message + "\n")
            except Exception as e:
                print(f"[ERROR] Failed to write to log file: {e}", file=sys.stderr, flush=True)

    async def _flush_queue(self) -> None:
        """Flush all remaining messages from the queue."""
        while not self._log_queue.empty():
            try:
                message = self._log_queue.get_nowait()
                await self._write_to_file(message)
            except asyncio.QueueEmpty:
                break
