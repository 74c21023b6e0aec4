import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Local-only store, no fixture seeding and no external API keys for tests
os.environ["OPENAI_API_KEY"] = ""
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["DATABASE_URL"] = ""
os.environ["SEED_FIXTURES"] = "false"

from medflow.database import NullPersistenceAdapter
from medflow.main import app
from medflow.models.clinical_file import ClinicalFile
from medflow.models.patient import Patient
from medflow.services.audit import AuditSink
from medflow.services.cache import ResultCache
from medflow.services.classification import ClassificationClient
from medflow.services.record_store import RecordStore
from medflow.services.seed import fixture_patients
from medflow.services.workflow import PatientWorkflow


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingAdapter(NullPersistenceAdapter):
    """Configured adapter that records writes and lets tests drive the feed."""

    configured = True

    def __init__(self, fail_puts: bool = False) -> None:
        self.fail_puts = fail_puts
        self.puts: list[tuple[str, dict]] = []
        self.appends: list[tuple[str, dict]] = []
        self.listeners: list = []

    def subscribe(self, on_change):
        self.listeners.append(on_change)
        return lambda: self.listeners.remove(on_change)

    def emit(self, documents: list[dict]) -> None:
        for listener in list(self.listeners):
            listener(documents)

    async def put(self, id, document):
        if self.fail_puts:
            raise ConnectionError("backend unreachable")
        self.puts.append((id, document))

    async def append(self, collection, event):
        self.appends.append((collection, event))


class FakeEndpoint:
    """Stand-in AI endpoint returning canned responses per prompt kind."""

    def __init__(self, responses: dict | None = None, error: Exception | None = None) -> None:
        self.responses = responses or {}
        self.error = error
        self.calls: list = []

    async def generate(self, kind, payload):
        self.calls.append((kind, payload))
        if self.error is not None:
            raise self.error
        return self.responses[kind]


def make_patient(patient_id: str = "PAT-T1", registration_time: str = "2025-01-01T09:00:00+00:00", **fields) -> Patient:
    return Patient(
        id=patient_id,
        name=fields.pop("name", "Test Patient"),
        registration_time=registration_time,
        clinical_file=ClinicalFile(id=f"CF-{patient_id}", patient_id=patient_id),
        **fields,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def endpoint():
    return FakeEndpoint()


@pytest_asyncio.fixture
async def store():
    """Local-only store with the demo fixtures loaded."""
    record_store = RecordStore(NullPersistenceAdapter(), seed=fixture_patients)
    await record_store.start()
    yield record_store
    await record_store.stop()


@pytest.fixture
def workflow(store, endpoint):
    audit = AuditSink(store.adapter, clock=lambda: "2025-01-01T10:00:00+00:00")
    classifier = ClassificationClient(endpoint, ResultCache())
    return PatientWorkflow(store, audit, classifier)


@pytest.fixture
def client():
    """Synchronous TestClient; entering it runs the app lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def async_client(store, workflow):
    """Async httpx client wired to the fixture store and workflow."""
    app.state.store = store
    app.state.audit = workflow.audit
    app.state.workflow = workflow
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
