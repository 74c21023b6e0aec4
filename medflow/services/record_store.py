import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any

from pydantic import BaseModel, ValidationError

from medflow.database import PersistenceAdapter
from medflow.errors import (
    ClinicalFileSignedError,
    DuplicatePatientError,
    ImmutableFieldError,
    InvalidStatusTransitionError,
    PatientNotFoundError,
    VitalsHistoryError,
)
from medflow.models.clinical_file import SECTION_MODELS
from medflow.models.patient import Patient, is_forward_transition
from medflow.models.vitals import VitalsRecord
from medflow.services.merge import merge_section
from medflow.services.triage import classify_vitals

logger = logging.getLogger(__name__)

Listener = Callable[[list[Patient]], None]
Updater = Callable[[Patient], Patient]
SectionPatch = Mapping[str, Any] | Callable[[Patient], Mapping[str, Any]]

APPENDABLE_COLLECTIONS = ("timeline", "orders", "results", "rounds", "vitals_history")

DEFAULT_LOAD_TIMEOUT_SECONDS = 5.0


def _check_vitals(current: Patient, updated: Patient) -> None:
    # Existing records stay in place, new ones go on top, and the snapshot
    # always equals the newest record.
    added = len(updated.vitals_history) - len(current.vitals_history)
    if added < 0 or updated.vitals_history[added:] != current.vitals_history:
        raise VitalsHistoryError(current.id, "vitals history is append-only")
    latest = updated.vitals_history[0].measurements if updated.vitals_history else None
    if (added or updated.vitals != current.vitals) and updated.vitals != latest:
        raise VitalsHistoryError(current.id, "vitals must match the latest vitals record")


class StoreMode(str, Enum):
    LOCAL = "local"
    CONNECTED = "connected"


@dataclass(frozen=True)
class SyncError:
    patient_id: str
    message: str


class RecordStore:
    """Owns the in-memory patient collection.

    Mutations run synchronously against the latest local state, notify
    listeners, and only then hand the resulting document to the persistence
    adapter as a background task. In connected mode the adapter's change feed
    is the source of truth and its deliveries replace local entries, except
    for patients that still have writes queued.

    Lifecycle: construct once per process, ``await start()`` before use,
    ``await stop()`` on shutdown.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        seed: Callable[[], list[Patient]] | None = None,
        load_timeout: float = DEFAULT_LOAD_TIMEOUT_SECONDS,
    ) -> None:
        self.adapter = adapter
        self.mode: StoreMode | None = None
        self.sync_errors: list[SyncError] = []
        self._seed = seed
        self._load_timeout = load_timeout
        self._patients: dict[str, Patient] = {}
        self._listeners: list[Listener] = []
        self._loaded = asyncio.Event()
        self._first_delivery_seen = False
        self._unsubscribe_feed: Callable[[], None] | None = None
        self._pending: set[asyncio.Task] = set()
        self._chains: dict[str, asyncio.Task] = {}
        self._last_documents: list[dict[str, Any]] | None = None
        self._deferred: set[str] = set()

    # --- lifecycle ---

    async def start(self) -> None:
        if self.mode is not None:
            return
        if self.adapter.configured:
            self.mode = StoreMode.CONNECTED
            logger.info("Record store running in connected mode")
            self._unsubscribe_feed = self.adapter.subscribe(self._on_feed)
            try:
                await asyncio.wait_for(self._loaded.wait(), timeout=self._load_timeout)
            except TimeoutError:
                logger.warning("No change feed delivery within %.1fs; continuing without initial state", self._load_timeout)
        else:
            self.mode = StoreMode.LOCAL
            logger.info("Record store running in local-only mode")
            if self._seed is not None:
                self._patients = {p.id: p for p in self._seed()}
                logger.info("Seeded %d fixture patients", len(self._patients))
            self._mark_loaded()

    async def stop(self) -> None:
        if self._unsubscribe_feed is not None:
            self._unsubscribe_feed()
            self._unsubscribe_feed = None
        await self.flush()
        self._listeners.clear()

    async def flush(self) -> None:
        """Wait until every submitted forward has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def loaded(self) -> bool:
        return self._loaded.is_set()

    # --- reads ---

    @property
    def patients(self) -> list[Patient]:
        return list(self._patients.values())

    def get(self, patient_id: str) -> Patient:
        patient = self._patients.get(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    def __contains__(self, patient_id: str) -> bool:
        return patient_id in self._patients

    def __len__(self) -> int:
        return len(self._patients)

    # --- listeners ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        if self.loaded:
            self._call(listener, self.patients)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        snapshot = self.patients
        for listener in list(self._listeners):
            self._call(listener, snapshot)

    @staticmethod
    def _call(listener: Listener, snapshot: list[Patient]) -> None:
        try:
            listener(snapshot)
        except Exception as exc:
            logger.error("Record store listener failed: %s", exc)

    def _mark_loaded(self) -> None:
        first = not self.loaded
        self._loaded.set()
        if first:
            self._notify()

    # --- mutations ---

    def insert(self, patient: Patient) -> Patient:
        if patient.id in self._patients:
            raise DuplicatePatientError(patient.id)
        self._patients = {patient.id: patient, **self._patients}
        self._notify()
        self._submit_forward(patient)
        return patient

    def mutate(self, patient_id: str, updater: Updater) -> Patient:
        """Apply ``updater`` to the latest local copy of a patient.

        The updater receives a private deep copy, so it may either mutate it
        in place or return a new instance. Invariant violations are raised
        before anything is stored.
        """
        current = self.get(patient_id)
        result = updater(current.model_copy(deep=True))
        updated = Patient.model_validate(result.model_dump())

        if updated.id != patient_id:
            raise ImmutableFieldError(f"Patient id cannot change ({patient_id} -> {updated.id})")
        if not is_forward_transition(current.status, updated.status):
            raise InvalidStatusTransitionError(patient_id, current.status.value, updated.status.value)
        _check_vitals(current, updated)

        self._patients[patient_id] = updated
        self._notify()
        self._submit_forward(updated)
        return updated

    def append(self, patient_id: str, collection: str, item: BaseModel) -> Patient:
        """Prepend ``item`` to one of the patient's newest-first collections."""
        if collection not in APPENDABLE_COLLECTIONS:
            raise ValueError(f"Cannot append to '{collection}'")
        if collection == "vitals_history" and not isinstance(item, VitalsRecord):
            raise TypeError("vitals_history only accepts VitalsRecord items")

        def _updater(patient: Patient) -> Patient:
            update: dict[str, Any] = {collection: [item, *getattr(patient, collection)]}
            if isinstance(item, VitalsRecord):
                update["vitals"] = item.measurements
                update["triage"] = classify_vitals(item.measurements)
            return patient.model_copy(update=update)

        return self.mutate(patient_id, _updater)

    def update_clinical_section(self, patient_id: str, section: str, patch: SectionPatch) -> Patient:
        """Merge a partial update into one clinical-file section.

        ``patch`` may be a callable that builds the patch from the latest
        patient state, for read-modify-write of list fields.
        """
        if section not in SECTION_MODELS:
            raise ValueError(f"Unknown clinical file section '{section}'")

        def _updater(patient: Patient) -> Patient:
            if patient.clinical_file.status == "signed":
                raise ClinicalFileSignedError(patient.id)
            values = patch(patient) if callable(patch) else patch
            sections = patient.clinical_file.sections
            merged = merge_section(getattr(sections, section), values, name=section)
            setattr(sections, section, merged)
            # Findings were about the old content, so a fresh cross-check is needed.
            patient.clinical_file.cross_check_inconsistencies = None
            return patient

        return self.mutate(patient_id, _updater)

    # --- persistence ---

    def _submit_forward(self, patient: Patient) -> asyncio.Task | None:
        if not self.adapter.configured:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop; patient %s was not forwarded", patient.id)
            self.sync_errors.append(SyncError(patient.id, "no running event loop"))
            return None

        previous = self._chains.get(patient.id)
        document = patient.model_dump(mode="json")
        task = loop.create_task(self._forward(patient.id, document, previous))
        self._chains[patient.id] = task
        self._pending.add(task)
        task.add_done_callback(partial(self._forward_done, patient.id))
        return task

    async def _forward(self, patient_id: str, document: dict[str, Any], previous: asyncio.Task | None) -> None:
        # Forwards for one patient reach the adapter in submission order.
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        try:
            await self.adapter.put(patient_id, document)
        except Exception as exc:
            logger.error("Failed to persist patient %s: %s", patient_id, exc)
            self.sync_errors.append(SyncError(patient_id, str(exc)))

    def _forward_done(self, patient_id: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._chains.get(patient_id) is not task:
            return
        del self._chains[patient_id]
        # Deliveries ignored while writes were queued are applied now.
        if patient_id in self._deferred:
            self._deferred.discard(patient_id)
            if self._last_documents is not None:
                self._reconcile(self._last_documents)

    def _on_feed(self, documents: list[dict[str, Any]]) -> None:
        first_delivery = not self._first_delivery_seen
        self._first_delivery_seen = True

        if not documents and first_delivery and self._seed is not None:
            seeded = self._seed()
            logger.info("Remote collection empty; seeding %d fixture patients", len(seeded))
            self._patients = {p.id: p for p in seeded}
            for patient in seeded:
                self._submit_forward(patient)
            self._mark_loaded()
            return

        self._last_documents = documents
        self._reconcile(documents)
        self._mark_loaded()

    def _reconcile(self, documents: list[dict[str, Any]]) -> None:
        """Replace local state with a feed delivery.

        A patient with queued forwards keeps its local entry, because the
        delivery can only reflect some of those writes. The delivery is
        re-applied once the queue for that patient drains.
        """
        delivered: dict[str, Patient] = {}
        for doc in documents:
            try:
                patient = Patient.model_validate(doc)
            except ValidationError as exc:
                logger.warning("Skipping malformed patient document %s: %s", doc.get("id"), exc)
                existing = self._patients.get(doc.get("id", ""))
                if existing is not None:
                    delivered[existing.id] = existing
                continue
            delivered[patient.id] = patient

        pending = {pid: patient for pid, patient in self._patients.items() if pid in self._chains}
        self._deferred.update(pending)
        reconciled = {pid: patient for pid, patient in pending.items() if pid not in delivered}
        for pid, patient in delivered.items():
            reconciled[pid] = pending.get(pid, patient)

        if list(reconciled.items()) == list(self._patients.items()):
            return
        self._patients = reconciled
        if self.loaded:
            self._notify()
