import logging
from typing import Any

from fastapi import APIRouter, Depends

from medflow.models.ai import ConsistencyIssue, DischargeSummaryDraft, SOAPDraft, SOAPSuggestion, SuggestedOrder
from medflow.models.clinical_file import Allergy, SectionName
from medflow.models.patient import DischargeSummary, Order, OrderCreate, Patient, PatientCreate, Round, RoundUpdate
from medflow.models.requests import (
    AcceptOrdersRequest,
    ChecklistCreate,
    ClinicalFileSignOff,
    NoteCreate,
    RoundSignOff,
    SendDraftsRequest,
    SentOrders,
    SOAPNoteCreate,
    StatusUpdate,
    TranscriptRequest,
    VitalsSubmission,
)
from medflow.routers.deps import get_store, get_workflow
from medflow.services.record_store import RecordStore
from medflow.services.workflow import PatientWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patients", tags=["patients"])


@router.get("", response_model=list[Patient])
async def list_patients(store: RecordStore = Depends(get_store)):
    """All patients, newest registration first."""
    return store.patients


@router.post("", response_model=Patient, status_code=201)
async def register_patient(body: PatientCreate, workflow: PatientWorkflow = Depends(get_workflow)):
    """Register a patient. The AI department suggestion is advisory and may be the default."""
    return await workflow.register_patient(body)


@router.get("/{patient_id}", response_model=Patient)
async def get_patient(patient_id: str, store: RecordStore = Depends(get_store)):
    return store.get(patient_id)


@router.post("/{patient_id}/vitals", response_model=Patient)
async def record_vitals(patient_id: str, body: VitalsSubmission, workflow: PatientWorkflow = Depends(get_workflow)):
    """Record a vitals set and recompute the rule-based triage."""
    return workflow.record_vitals(patient_id, body.measurements, body.source, body.observations)


@router.patch("/{patient_id}/status", response_model=Patient)
async def update_status(patient_id: str, body: StatusUpdate, workflow: PatientWorkflow = Depends(get_workflow)):
    return workflow.update_status(patient_id, body.status)


# --- Clinical file ---

@router.patch("/{patient_id}/clinical-file/{section}", response_model=Patient)
async def update_clinical_file_section(
    patient_id: str,
    section: SectionName,
    body: dict[str, Any],
    workflow: PatientWorkflow = Depends(get_workflow),
):
    """Merge a partial update into one section without touching its other fields."""
    return workflow.update_clinical_file_section(patient_id, section, body)


@router.post("/{patient_id}/clinical-file/allergies", response_model=Patient)
async def add_allergy(patient_id: str, body: Allergy, workflow: PatientWorkflow = Depends(get_workflow)):
    return workflow.add_allergy(patient_id, body)


@router.post("/{patient_id}/clinical-file/cross-check", response_model=list[ConsistencyIssue])
async def cross_check_clinical_file(patient_id: str, workflow: PatientWorkflow = Depends(get_workflow)):
    return await workflow.cross_check_clinical_file(patient_id)


@router.post("/{patient_id}/clinical-file/sign-off", response_model=Patient)
async def sign_off_clinical_file(
    patient_id: str,
    body: ClinicalFileSignOff,
    workflow: PatientWorkflow = Depends(get_workflow),
):
    return workflow.sign_off_clinical_file(patient_id, body.acknowledged_inconsistencies)


# --- Timeline ---

@router.post("/{patient_id}/notes", response_model=Patient)
async def add_note(patient_id: str, body: NoteCreate, workflow: PatientWorkflow = Depends(get_workflow)):
    return workflow.add_note(patient_id, body.content, body.is_escalation)


@router.post("/{patient_id}/soap-notes", response_model=Patient)
async def add_soap_note(patient_id: str, body: SOAPNoteCreate, workflow: PatientWorkflow = Depends(get_workflow)):
    soap = SOAPDraft(s=body.s, o=body.o, a=body.a, p=body.p)
    return workflow.add_soap_note(patient_id, soap, body.transcript)


@router.post("/{patient_id}/soap-notes/draft", response_model=SOAPSuggestion)
async def draft_soap_note(
    patient_id: str,
    body: TranscriptRequest,
    store: RecordStore = Depends(get_store),
    workflow: PatientWorkflow = Depends(get_workflow),
):
    """Draft a SOAP note from a consultation transcript. Nothing is saved."""
    store.get(patient_id)
    return await workflow.draft_soap(body.transcript)


@router.post("/{patient_id}/checklists", response_model=Patient)
async def add_checklist(patient_id: str, body: ChecklistCreate, workflow: PatientWorkflow = Depends(get_workflow)):
    return workflow.add_checklist(patient_id, body.title, body.items)


# --- Orders ---

@router.post("/{patient_id}/orders", response_model=Order, status_code=201)
async def add_order(patient_id: str, body: OrderCreate, workflow: PatientWorkflow = Depends(get_workflow)):
    return workflow.add_order(patient_id, body)


@router.patch("/{patient_id}/orders/{order_id}", response_model=Order)
async def update_order(
    patient_id: str,
    order_id: str,
    body: dict[str, Any],
    workflow: PatientWorkflow = Depends(get_workflow),
):
    return workflow.update_order(patient_id, order_id, body)


@router.post("/{patient_id}/orders/send", response_model=SentOrders)
async def send_all_drafts(patient_id: str, body: SendDraftsRequest, workflow: PatientWorkflow = Depends(get_workflow)):
    return SentOrders(sent=workflow.send_all_drafts(patient_id, body.category))


@router.post("/{patient_id}/orders/accept", response_model=SentOrders)
async def accept_ai_orders(patient_id: str, body: AcceptOrdersRequest, workflow: PatientWorkflow = Depends(get_workflow)):
    return SentOrders(sent=workflow.accept_ai_orders(patient_id, body.order_ids))


@router.post("/{patient_id}/orders/suggestions", response_model=list[SuggestedOrder])
async def suggest_orders(patient_id: str, workflow: PatientWorkflow = Depends(get_workflow)):
    """AI order suggestions. Returned for review, never applied."""
    return await workflow.suggest_orders(patient_id)


# --- Rounds ---

@router.post("/{patient_id}/rounds", response_model=Round)
async def create_draft_round(patient_id: str, workflow: PatientWorkflow = Depends(get_workflow)):
    """Open a draft round, or return the one already open."""
    return workflow.create_draft_round(patient_id)


@router.patch("/{patient_id}/rounds/{round_id}", response_model=Round)
async def update_draft_round(
    patient_id: str,
    round_id: str,
    body: RoundUpdate,
    workflow: PatientWorkflow = Depends(get_workflow),
):
    return workflow.update_draft_round(patient_id, round_id, body)


@router.post("/{patient_id}/rounds/{round_id}/contradictions", response_model=list[str])
async def get_round_contradictions(patient_id: str, round_id: str, workflow: PatientWorkflow = Depends(get_workflow)):
    return await workflow.get_round_contradictions(patient_id, round_id)


@router.post("/{patient_id}/rounds/{round_id}/sign-off", response_model=Round)
async def sign_off_round(
    patient_id: str,
    round_id: str,
    body: RoundSignOff,
    workflow: PatientWorkflow = Depends(get_workflow),
):
    return workflow.sign_off_round(patient_id, round_id, body.acknowledged_contradictions)


# --- Discharge ---

@router.post("/{patient_id}/discharge-summary", response_model=DischargeSummary)
async def generate_discharge_summary(patient_id: str, workflow: PatientWorkflow = Depends(get_workflow)):
    return await workflow.generate_discharge_summary(patient_id)


@router.patch("/{patient_id}/discharge-summary", response_model=DischargeSummary)
async def save_discharge_summary(
    patient_id: str,
    body: DischargeSummaryDraft,
    workflow: PatientWorkflow = Depends(get_workflow),
):
    return workflow.save_discharge_summary(patient_id, body)


@router.post("/{patient_id}/discharge", response_model=Patient)
async def finalize_discharge(patient_id: str, workflow: PatientWorkflow = Depends(get_workflow)):
    """Finalize the discharge summary and mark the patient Discharged."""
    return workflow.finalize_discharge(patient_id)
