"""Pytest fixtures for remediator tests."""

import pytest

from remediator.analysis import ProblemAnalyzer
from remediator.config import IterationSettings
from remediator.definitions import InMemoryDefinitionStore
from remediator.events import EventEmitter
from remediator.fixing import CodeFixer
from remediator.iteration import IterationController
from remediator.knowledge import KnowledgeStore

from tests.helpers.fakes import FakeClock, FakeEngine, FakeModelService, make_definition, make_record


@pytest.fixture
def clock():
    """Manually driven clock."""
    return FakeClock()


@pytest.fixture
def knowledge():
    """Seeded in-memory knowledge store."""
    return KnowledgeStore()


@pytest.fixture
def knowledge_dir(tmp_path):
    """Directory for a persisted knowledge store."""
    return tmp_path / "knowledge"


@pytest.fixture
def definitions():
    """Definition store holding one workflow with a broken code node."""
    return InMemoryDefinitionStore({"wf-1": make_definition()})


@pytest.fixture
def model_service():
    """Model service with no queued responses (every call fails)."""
    return FakeModelService()


@pytest.fixture
def engine():
    """Execution engine where every phase passes."""
    return FakeEngine()


@pytest.fixture
def emitter():
    """In-memory event emitter."""
    return EventEmitter()


@pytest.fixture
def record():
    """A JavaScript error in the code node of wf-1."""
    return make_record()


@pytest.fixture
def iteration_settings():
    """Default bounds with real delays (the fake clock makes them instant)."""
    return IterationSettings()


@pytest.fixture
def make_controller(knowledge, definitions, model_service, engine, emitter, clock, iteration_settings):
    """Factory building a controller over the shared fakes."""

    def _make(**overrides):
        analyzer = ProblemAnalyzer(knowledge, model_service, definitions)
        fixer = CodeFixer(knowledge, definitions, model_service)
        kwargs = dict(
            analyzer=analyzer,
            fixer=fixer,
            engine=engine,
            knowledge=knowledge,
            emitter=emitter,
            settings=iteration_settings,
            clock=clock,
        )
        kwargs.update(overrides)
        return IterationController(**kwargs)

    return _make
