import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from medflow.config import CLASSIFICATION_CACHE_TTL_SECONDS, LOG_LEVEL, SEED_FIXTURES
from medflow.database import create_persistence_adapter
from medflow.errors import (
    AIGenerationError,
    PatientNotFoundError,
    RecordNotFoundError,
    UnknownFieldError,
)
from medflow.models.requests import StoreHealth
from medflow.routers import audit, patients, stream
from medflow.routers.deps import get_store
from medflow.services.audit import AuditSink
from medflow.services.cache import ResultCache
from medflow.services.classification import ClassificationClient
from medflow.services.llm import LLMClient
from medflow.services.record_store import RecordStore
from medflow.services.seed import fixture_patients
from medflow.services.workflow import PatientWorkflow

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting MedFlow Records...")
    adapter = await create_persistence_adapter()
    store = RecordStore(adapter, seed=fixture_patients if SEED_FIXTURES else None)
    audit_sink = AuditSink(adapter)
    classifier = ClassificationClient(LLMClient(), ResultCache(ttl_seconds=CLASSIFICATION_CACHE_TTL_SECONDS))

    app.state.store = store
    app.state.audit = audit_sink
    app.state.workflow = PatientWorkflow(store, audit_sink, classifier)

    await store.start()
    logger.info("Record store ready (%s mode, %d patients)", store.mode.value, len(store))
    yield
    await store.stop()
    await audit_sink.flush()
    await adapter.close()
    logger.info("MedFlow Records shut down")


app = FastAPI(
    title="MedFlow Records",
    description="Patient record synchronization and derived clinical state",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(stream.router)
app.include_router(patients.router)
app.include_router(audit.router)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(PatientNotFoundError)
@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: LookupError):
    return _error(404, exc)


@app.exception_handler(UnknownFieldError)
async def unknown_field_handler(request: Request, exc: UnknownFieldError):
    return _error(422, exc)


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors(include_url=False, include_context=False, include_input=False)})


@app.exception_handler(ValueError)
async def invariant_handler(request: Request, exc: ValueError):
    # Status regression, signed records, unacknowledged inconsistencies.
    return _error(409, exc)


@app.exception_handler(AIGenerationError)
async def ai_generation_handler(request: Request, exc: AIGenerationError):
    logger.warning("Returning 502 for failed %s generation", exc.kind)
    return _error(502, exc)


@app.get("/api/health", response_model=StoreHealth)
async def health(store: RecordStore = Depends(get_store)):
    return StoreHealth(
        mode=store.mode.value if store.mode else None,
        loaded=store.loaded,
        patients=len(store),
        sync_errors=len(store.sync_errors),
    )
