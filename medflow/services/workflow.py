import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from medflow.errors import (
    CrossCheckRequiredError,
    ImmutableFieldError,
    InvalidOrderTransitionError,
    RecordNotFoundError,
    RoundSignedError,
    UnacknowledgedInconsistenciesError,
)
from medflow.models.ai import ConsistencyIssue, DischargeSummaryDraft, SOAPDraft, SOAPSuggestion, SuggestedOrder
from medflow.models.audit import AuditAction, AuditEntity
from medflow.models.clinical_file import Allergy, ClinicalFile
from medflow.models.patient import (
    Checklist,
    ChecklistItem,
    DischargeSummary,
    Order,
    OrderCreate,
    OrderMeta,
    Patient,
    PatientCreate,
    PatientStatus,
    Round,
    RoundUpdate,
    SOAPNote,
    TeamNote,
    is_forward_order_transition,
)
from medflow.models.user import User
from medflow.models.vitals import Triage, VitalsMeasurements, VitalsRecord, VitalsSource
from medflow.services.audit import AuditSink
from medflow.services.classification import ClassificationClient
from medflow.services.record_store import RecordStore

logger = logging.getLogger(__name__)

SYSTEM_USER = User(id="user-system", name="System", role="Admin")

# Orders may not be re-pointed to another order id or patient.
_FIXED_ORDER_FIELDS = ("order_id", "patient_id", "created_by", "created_at")


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10].upper()}"


class PatientWorkflow:
    """Clinical actions performed by one user against the record store."""

    def __init__(
        self,
        store: RecordStore,
        audit: AuditSink,
        classifier: ClassificationClient,
        user: User = SYSTEM_USER,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self.store = store
        self.audit = audit
        self.classifier = classifier
        self.user = user
        self._clock = clock

    def as_user(self, user: User) -> "PatientWorkflow":
        return PatientWorkflow(self.store, self.audit, self.classifier, user=user, clock=self._clock)

    def _audit(
        self,
        patient_id: str,
        action: AuditAction,
        entity: AuditEntity,
        entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.audit.record(
            user_id=self.user.id,
            patient_id=patient_id,
            action=action,
            entity=entity,
            entity_id=entity_id,
            payload=payload,
        )

    # --- Registration, vitals, status ---

    async def register_patient(self, data: PatientCreate) -> Patient:
        patient_id = new_id("PAT")
        ai_triage = None
        if data.chief_complaints:
            ai_triage = await self.classifier.classify(data.chief_complaints[0].complaint)

        patient = Patient(
            id=patient_id,
            name=data.name,
            age=data.age,
            gender=data.gender,
            contact=data.contact,
            chief_complaints=data.chief_complaints,
            registration_time=self._clock(),
            status=PatientStatus.WAITING_FOR_TRIAGE,
            triage=Triage(),
            ai_triage=ai_triage,
            clinical_file=ClinicalFile(id=f"CF-{patient_id}", patient_id=patient_id),
        )
        self.store.insert(patient)
        self._audit(patient_id, "create", "patient_record", patient_id)
        logger.info("Registered patient %s", patient_id)
        return patient

    def record_vitals(
        self,
        patient_id: str,
        measurements: VitalsMeasurements,
        source: VitalsSource = "manual",
        observations: str | None = None,
    ) -> Patient:
        record = VitalsRecord(
            vital_id=new_id("VIT"),
            patient_id=patient_id,
            recorded_by=self.user.id,
            recorded_at=self._clock(),
            source=source,
            measurements=measurements,
            observations=observations,
        )
        patient = self.store.append(patient_id, "vitals_history", record)
        self._audit(
            patient_id, "create", "vitals", record.vital_id,
            {"triage": patient.triage.level.value, "reasons": patient.triage.reasons},
        )
        return patient

    def update_status(self, patient_id: str, status: PatientStatus) -> Patient:
        patient = self.store.mutate(patient_id, lambda p: p.model_copy(update={"status": status}))
        self._audit(patient_id, "modify", "patient_record", patient_id, {"field": "status", "value": status.value})
        return patient

    # --- Clinical file ---

    def update_clinical_file_section(self, patient_id: str, section: str, patch: Mapping[str, Any]) -> Patient:
        patient = self.store.update_clinical_section(patient_id, section, patch)
        entity: AuditEntity = "history_section" if section == "history" else "clinical_file"
        self._audit(patient_id, "modify", entity, patient.clinical_file.id, {"section": section, "fields": sorted(patch)})
        return patient

    def add_allergy(self, patient_id: str, allergy: Allergy) -> Patient:
        def _patch(patient: Patient) -> dict[str, Any]:
            existing = patient.clinical_file.sections.history.allergy_history or []
            return {"allergy_history": [a.model_dump() for a in existing] + [allergy.model_dump()]}

        patient = self.store.update_clinical_section(patient_id, "history", _patch)
        self._audit(patient_id, "modify", "history_section", patient.clinical_file.id, {"allergy": allergy.substance})
        return patient

    async def cross_check_clinical_file(self, patient_id: str) -> list[ConsistencyIssue]:
        issues = await self.classifier.cross_check_clinical_file(self.store.get(patient_id))

        def _store(patient: Patient) -> Patient:
            patient.clinical_file.cross_check_inconsistencies = issues
            return patient

        self.store.mutate(patient_id, _store)
        self._audit(patient_id, "view", "clinical_file", None, {"inconsistencies": len(issues)})
        return issues

    def sign_off_clinical_file(self, patient_id: str, acknowledged_inconsistencies: Iterable[str] = ()) -> Patient:
        """Sign the clinical file.

        A cross-check must have run, and every issue it raised must be in
        ``acknowledged_inconsistencies`` (matched on the issue's problem text).
        """
        acknowledged = set(acknowledged_inconsistencies)

        def _sign(patient: Patient) -> Patient:
            issues = patient.clinical_file.cross_check_inconsistencies
            if issues is None:
                raise CrossCheckRequiredError(patient.id)
            outstanding = [issue.problem for issue in issues if issue.problem not in acknowledged]
            if outstanding:
                raise UnacknowledgedInconsistenciesError(patient.id, outstanding)
            if patient.clinical_file.status == "signed":
                return patient
            patient.clinical_file.status = "signed"
            patient.clinical_file.signed_at = self._clock()
            patient.clinical_file.signed_by = self.user.id
            return patient

        patient = self.store.mutate(patient_id, _sign)
        self._audit(
            patient_id, "signoff", "clinical_file", patient.clinical_file.id,
            {"acknowledged": sorted(acknowledged)} if acknowledged else None,
        )
        return patient

    # --- Timeline ---

    def add_note(self, patient_id: str, content: str, is_escalation: bool = False) -> Patient:
        note = TeamNote(
            id=new_id("NOTE"),
            patient_id=patient_id,
            author=self.user.name,
            author_id=self.user.id,
            role=self.user.role,
            timestamp=self._clock(),
            content=content,
            is_escalation=is_escalation,
        )
        patient = self.store.append(patient_id, "timeline", note)
        self._audit(patient_id, "create", "team_note", note.id, {"escalation": True} if is_escalation else None)
        return patient

    def add_soap_note(self, patient_id: str, soap: SOAPDraft, transcript: str | None = None) -> Patient:
        note = SOAPNote(
            id=new_id("SOAP"),
            patient_id=patient_id,
            author=self.user.name,
            author_id=self.user.id,
            role=self.user.role,
            timestamp=self._clock(),
            transcript=transcript,
            **soap.model_dump(include=set(SOAPDraft.model_fields)),
        )
        patient = self.store.append(patient_id, "timeline", note)
        self._audit(patient_id, "create", "soap_note", note.id)
        return patient

    async def draft_soap(self, transcript: str) -> SOAPSuggestion:
        return await self.classifier.draft_soap(transcript)

    def add_checklist(self, patient_id: str, title: str, items: Iterable[str]) -> Patient:
        checklist = Checklist(
            id=new_id("CHK"),
            patient_id=patient_id,
            author=self.user.name,
            author_id=self.user.id,
            role=self.user.role,
            timestamp=self._clock(),
            title=title,
            items=[ChecklistItem(text=text) for text in items],
        )
        patient = self.store.append(patient_id, "timeline", checklist)
        self._audit(patient_id, "create", "checklist", checklist.id)
        return patient

    # --- Orders ---

    def _meta(self) -> OrderMeta:
        return OrderMeta(last_modified=self._clock(), modified_by=self.user.id)

    def add_order(self, patient_id: str, data: OrderCreate) -> Order:
        order = Order(
            order_id=new_id("ORD"),
            patient_id=patient_id,
            created_by=self.user.id,
            created_at=self._clock(),
            status="draft",
            **data.model_dump(),
        )
        self.store.append(patient_id, "orders", order)
        self._audit(patient_id, "create", "order", order.order_id)
        return order

    def update_order(self, patient_id: str, order_id: str, updates: Mapping[str, Any]) -> Order:
        fixed = [key for key in _FIXED_ORDER_FIELDS if key in updates]
        if fixed:
            raise ImmutableFieldError(f"Order fields cannot change: {', '.join(fixed)}")

        def _update(patient: Patient) -> Patient:
            for index, order in enumerate(patient.orders):
                if order.order_id == order_id:
                    values = {**order.model_dump(), **updates, "meta": self._meta().model_dump()}
                    updated = Order.model_validate(values)
                    if not is_forward_order_transition(order.status, updated.status):
                        raise InvalidOrderTransitionError(order_id, order.status, updated.status)
                    patient.orders[index] = updated
                    return patient
            raise RecordNotFoundError("Order", order_id, patient_id)

        patient = self.store.mutate(patient_id, _update)
        order = next(o for o in patient.orders if o.order_id == order_id)
        action: AuditAction = "cancel" if order.status == "cancelled" else "modify"
        self._audit(patient_id, action, "order", order_id, {"updates": dict(updates)})
        return order

    def _send_drafts(self, patient_id: str, selector: Callable[[Order], bool]) -> list[str]:
        sent: list[str] = []

        def _send(patient: Patient) -> Patient:
            sent.clear()
            for index, order in enumerate(patient.orders):
                if order.status == "draft" and selector(order):
                    patient.orders[index] = order.model_copy(update={"status": "sent", "meta": self._meta()})
                    sent.append(order.order_id)
            return patient

        self.store.mutate(patient_id, _send)
        return list(sent)

    def send_all_drafts(self, patient_id: str, category: str | None = None) -> list[str]:
        sent = self._send_drafts(patient_id, lambda o: category is None or o.category == category)
        if sent:
            self._audit(patient_id, "modify", "order", None, {"sent": sent})
        return sent

    def accept_ai_orders(self, patient_id: str, order_ids: Iterable[str]) -> list[str]:
        wanted = set(order_ids)
        sent = self._send_drafts(patient_id, lambda o: o.order_id in wanted)
        if sent:
            self._audit(patient_id, "accept", "order", None, {"sent": sent})
        return sent

    async def suggest_orders(self, patient_id: str) -> list[SuggestedOrder]:
        return await self.classifier.suggest_orders(self.store.get(patient_id))

    # --- Rounds ---

    @staticmethod
    def _find_round(patient: Patient, round_id: str) -> int:
        for index, rnd in enumerate(patient.rounds):
            if rnd.round_id == round_id:
                return index
        raise RecordNotFoundError("Round", round_id, patient.id)

    def create_draft_round(self, patient_id: str) -> Round:
        existing = next((r for r in self.store.get(patient_id).rounds if r.status == "draft"), None)
        if existing is not None:
            return existing
        draft = Round(
            round_id=new_id(f"RND-{patient_id}"),
            patient_id=patient_id,
            doctor_id=self.user.id,
            created_at=self._clock(),
        )
        self.store.append(patient_id, "rounds", draft)
        self._audit(patient_id, "create", "round", draft.round_id)
        return draft

    def update_draft_round(self, patient_id: str, round_id: str, updates: RoundUpdate) -> Round:
        def _update(patient: Patient) -> Patient:
            index = self._find_round(patient, round_id)
            current = patient.rounds[index]
            if current.status == "signed":
                raise RoundSignedError(round_id)
            patient.rounds[index] = Round.model_validate(
                {**current.model_dump(), **updates.model_dump(exclude_unset=True)}
            )
            return patient

        patient = self.store.mutate(patient_id, _update)
        return patient.rounds[self._find_round(patient, round_id)]

    async def get_round_contradictions(self, patient_id: str, round_id: str) -> list[str]:
        patient = self.store.get(patient_id)
        round_draft = patient.rounds[self._find_round(patient, round_id)]
        result = await self.classifier.cross_check_round(patient, round_draft)
        return result.contradictions

    def sign_off_round(self, patient_id: str, round_id: str, acknowledged_contradictions: Iterable[str] = ()) -> Round:
        acknowledged = list(acknowledged_contradictions)

        def _sign(patient: Patient) -> Patient:
            index = self._find_round(patient, round_id)
            current = patient.rounds[index]
            if current.status == "signed":
                raise RoundSignedError(round_id)
            patient.rounds[index] = current.model_copy(update={
                "status": "signed",
                "signed_by": self.user.id,
                "signed_at": self._clock(),
                "acknowledged_contradictions": acknowledged,
            })
            return patient

        patient = self.store.mutate(patient_id, _sign)
        self._audit(patient_id, "signoff", "round", round_id, {"acknowledged": acknowledged} if acknowledged else None)
        return patient.rounds[self._find_round(patient, round_id)]

    # --- Discharge ---

    async def generate_discharge_summary(self, patient_id: str) -> DischargeSummary:
        draft = await self.classifier.draft_discharge_summary(self.store.get(patient_id))
        summary = DischargeSummary(
            **draft.model_dump(),
            id=new_id("DS"),
            patient_id=patient_id,
            doctor_id=self.user.id,
            status="draft",
            generated_at=self._clock(),
        )
        self.store.mutate(patient_id, lambda p: p.model_copy(update={"discharge_summary": summary}))
        self._audit(patient_id, "create", "discharge_summary", summary.id)
        return summary

    def save_discharge_summary(self, patient_id: str, edits: DischargeSummaryDraft) -> DischargeSummary:
        def _save(patient: Patient) -> Patient:
            current = patient.discharge_summary
            if current is None:
                raise RecordNotFoundError("Discharge summary", "draft", patient.id)
            if current.status == "finalized":
                raise ImmutableFieldError(f"Discharge summary {current.id} is finalized")
            patient.discharge_summary = current.model_copy(update=edits.model_dump(exclude_unset=True))
            return patient

        patient = self.store.mutate(patient_id, _save)
        summary = patient.discharge_summary
        self._audit(patient_id, "modify", "discharge_summary", summary.id)
        return summary

    def finalize_discharge(self, patient_id: str) -> Patient:
        def _finalize(patient: Patient) -> Patient:
            current = patient.discharge_summary
            if current is None:
                raise RecordNotFoundError("Discharge summary", "draft", patient.id)
            if current.status == "finalized":
                raise ImmutableFieldError(f"Discharge summary {current.id} is already finalized")
            patient.discharge_summary = current.model_copy(update={"status": "finalized", "finalized_at": self._clock()})
            patient.status = PatientStatus.DISCHARGED
            return patient

        patient = self.store.mutate(patient_id, _finalize)
        self._audit(
            patient_id, "create", "housekeeping_task", None,
            {"task": "Terminal Clean", "bed_id": "Unassigned", "priority": "High"},
        )
        self._audit(patient_id, "finalize", "discharge_summary", patient.discharge_summary.id)
        logger.info("Discharged patient %s", patient_id)
        return patient
