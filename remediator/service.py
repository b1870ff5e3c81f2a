"""Remediation service.

Builds every component from a RemediationConfig and connects them:

    SourceWatcher -> ErrorDetector -> queue -> IterationController
                                                  |-> ProblemAnalyzer
                                                  |-> CodeFixer
                                                  |-> ExecutionEngine
                                                  '-> KnowledgeStore
"""

import asyncio
import logging
from typing import Any, Optional

from .analysis import ProblemAnalyzer
from .clock import Clock, SystemClock
from .config import RemediationConfig
from .definitions import DefinitionStore, FileDefinitionStore
from .detection import DetectionEvent, ErrorDetector, InMemorySeenStore, SourceWatcher
from .engine import ExecutionEngine, LocalExecutionEngine
from .events import EventEmitter
from .fixing import CodeFixer
from .iteration import IterationController
from .knowledge import KnowledgeStore
from .llm import ClaudeModelService, ModelService

logger = logging.getLogger(__name__)

EVENT_LOG_NAME = "events.jsonl"


class RemediationService:
    """Runs detection and remediation for one project directory.

    Example:
        service = RemediationService(load_config(project_dir))
        await service.start()
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: RemediationConfig,
        model_service: Optional[ModelService] = None,
        engine: Optional[ExecutionEngine] = None,
        definitions: Optional[DefinitionStore] = None,
        knowledge: Optional[KnowledgeStore] = None,
        emitter: Optional[EventEmitter] = None,
        clock: Optional[Clock] = None,
        use_model: bool = True,
    ):
        """Initialize the service.

        Args:
            config: Remediation configuration
            model_service: External model; a Claude service is created when an
                API key is available and use_model is set
            engine: Execution engine, local subprocesses by default
            definitions: Definition store, the workflows directory by default
            knowledge: Knowledge store, persisted under the state directory by default
            emitter: Event emitter, logging to the state directory by default
            clock: Time source shared by detector and controller
            use_model: Allow creating a model service
        """
        self.config = config
        self.clock = clock or SystemClock()
        state_dir = config.paths.resolve(config.project_dir)["state_dir"]

        if model_service is None and use_model:
            if config.model.api_key or ClaudeModelService.is_available():
                model_service = ClaudeModelService(config.model)
            else:
                logger.info("No model API key configured, analyses will use the fallback")
        self.model_service = model_service

        self.emitter = emitter or EventEmitter(event_log=state_dir / EVENT_LOG_NAME)
        self.knowledge = knowledge or KnowledgeStore.from_config(config)
        self.definitions = definitions or FileDefinitionStore(config.workflows_dir)
        self.engine = engine or LocalExecutionEngine()

        self.queue: asyncio.Queue[DetectionEvent] = asyncio.Queue()
        self.detector = ErrorDetector(
            queue=self.queue,
            emitter=self.emitter,
            seen_store=InMemorySeenStore(config.detection.seen_capacity),
            clock=self.clock,
            bucket_seconds=config.detection.dedup_bucket_seconds,
            node_binary=getattr(self.engine, "node_binary", None),
        )
        self.watcher = SourceWatcher(
            self.detector,
            logs_dir=config.logs_dir,
            workflows_dir=config.workflows_dir,
            poll_interval=config.detection.poll_interval,
            log_extensions=config.detection.log_extensions,
        )
        self.analyzer = ProblemAnalyzer(self.knowledge, self.model_service, self.definitions)
        self.fixer = CodeFixer.from_config(config, self.knowledge, self.definitions, self.model_service)
        self.controller = IterationController(
            self.analyzer,
            self.fixer,
            self.engine,
            self.knowledge,
            emitter=self.emitter,
            settings=config.iteration,
            clock=self.clock,
        )

        self._consumer: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self, watch: bool = True) -> None:
        """Start consuming detections, and polling the sources when watch is set."""
        if self.running:
            return
        self._consumer = asyncio.create_task(self._consume(), name="remediation-consumer")
        if watch:
            self.watcher.start()
        logger.info(f"Remediation service started for {self.config.project_dir}")

    async def _consume(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                if event.needs_fixing:
                    self.controller.submit(event.record)
                else:
                    logger.debug(f"Not remediating {event.record.id} ({event.record.type.value})")
            finally:
                self.queue.task_done()

    async def scan(self) -> dict[str, Any]:
        """Poll the sources once and wait for every resulting loop to end.

        Returns:
            Service status after the scan
        """
        started_here = not self.running
        if started_here:
            await self.start(watch=False)
        try:
            found = await self.watcher.poll_once()
            logger.info(f"Scan found {found} new errors")
            await self.queue.join()
            await self.controller.wait_idle()
        finally:
            if started_here:
                await self.stop()
        return self.get_status()

    async def stop(self) -> None:
        """Stop polling, end running loops and release the model client."""
        await self.watcher.stop()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        await self.controller.shutdown()
        close = getattr(self.model_service, "close", None)
        if close is not None:
            await close()
        logger.info("Remediation service stopped")

    def get_status(self) -> dict[str, Any]:
        """Statistics of every component."""
        status: dict[str, Any] = {
            "running": self.running,
            "detector": self.detector.get_stats(),
            "analyzer": self.analyzer.get_stats(),
            "fixer": self.fixer.get_stats(),
            "controller": self.controller.get_stats(),
            "knowledge": self.knowledge.get_stats(),
            "events": self.emitter.get_stats(),
        }
        model_stats = getattr(self.model_service, "get_stats", None)
        if model_stats is not None:
            status["model"] = model_stats()
        return status
