"""Polling watcher feeding log lines and definition changes to the detector."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .detector import DefinitionSignal, ErrorDetector, LogSignal

logger = logging.getLogger(__name__)


class SourceWatcher:
    """Monitors a logs directory and a workflows directory.

    Log files are tailed by byte offset; a file that shrinks is treated as
    rotated and read again from the start. Workflow definitions (``*.json``)
    are re-validated whenever their modification time changes.
    """

    def __init__(
        self,
        detector: ErrorDetector,
        logs_dir: Optional[Path] = None,
        workflows_dir: Optional[Path] = None,
        poll_interval: float = 2.0,
        log_extensions: Optional[list[str]] = None,
        skip_existing_logs: bool = False,
    ):
        """Initialize the watcher.

        Args:
            detector: Detector receiving the signals
            logs_dir: Directory of execution log files
            workflows_dir: Directory of workflow definition files
            poll_interval: Seconds between polls
            log_extensions: File suffixes treated as logs
            skip_existing_logs: Start new log files at their end instead of the beginning
        """
        self.detector = detector
        self.logs_dir = Path(logs_dir) if logs_dir else None
        self.workflows_dir = Path(workflows_dir) if workflows_dir else None
        self.poll_interval = poll_interval
        self.log_extensions = log_extensions or [".log", ".jsonl", ".txt"]
        self.skip_existing_logs = skip_existing_logs

        # file path -> last read byte offset
        self.file_offsets: dict[Path, int] = {}
        # definition path -> last seen mtime
        self.definition_mtimes: dict[Path, float] = {}

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task:
        """Start polling in a background task."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Stop polling and wait for the loop to exit."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        logger.info("Source watcher started")
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Watcher loop error: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """Check all sources once.

        Returns:
            Number of new error records produced
        """
        produced = 0
        if self.logs_dir and self.logs_dir.is_dir():
            for log_file in sorted(self.logs_dir.iterdir()):
                if log_file.is_file() and log_file.suffix in self.log_extensions:
                    produced += await self._process_log(log_file)
        if self.workflows_dir and self.workflows_dir.is_dir():
            for definition in sorted(self.workflows_dir.glob("*.json")):
                produced += await self._process_definition(definition)
        return produced

    async def _process_log(self, log_file: Path) -> int:
        try:
            lines = await asyncio.to_thread(self._read_new_lines, log_file)
        except OSError as e:
            logger.warning(f"Error reading {log_file.name}: {e}")
            return 0

        produced = 0
        for line in lines:
            records = await self.detector.observe_all(LogSignal(line=line, source=str(log_file)))
            produced += len(records)
        return produced

    def _read_new_lines(self, log_file: Path) -> list[str]:
        size = log_file.stat().st_size
        if log_file not in self.file_offsets:
            logger.info(f"New log file detected: {log_file.name}")
            self.file_offsets[log_file] = size if self.skip_existing_logs else 0
        offset = self.file_offsets[log_file]
        if size < offset:
            logger.info(f"Log file {log_file.name} was truncated, rereading")
            offset = 0
        if size == offset:
            return []

        with open(log_file, "rb") as f:
            f.seek(offset)
            data = f.read()
        # Keep an incomplete trailing line for the next poll
        cut = data.rfind(b"\n")
        if cut == -1:
            return []
        self.file_offsets[log_file] = offset + cut + 1
        text = data[: cut + 1].decode("utf-8", errors="replace")
        return [line for line in text.splitlines() if line.strip()]

    async def _process_definition(self, path: Path) -> int:
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            logger.warning(f"Could not stat {path.name}: {e}")
            return 0
        if self.definition_mtimes.get(path) == mtime:
            return 0
        self.definition_mtimes[path] = mtime
        records = await self.detector.observe_all(DefinitionSignal(path=path))
        return len(records)
