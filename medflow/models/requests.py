from pydantic import BaseModel

from medflow.models.ai import SOAPDraft
from medflow.models.patient import OrderCategory, PatientStatus
from medflow.models.vitals import VitalsMeasurements, VitalsSource


class VitalsSubmission(BaseModel):
    measurements: VitalsMeasurements
    source: VitalsSource = "manual"
    observations: str | None = None


class StatusUpdate(BaseModel):
    status: PatientStatus


class ClinicalFileSignOff(BaseModel):
    acknowledged_inconsistencies: list[str] = []


class NoteCreate(BaseModel):
    content: str
    is_escalation: bool = False


class SOAPNoteCreate(SOAPDraft):
    transcript: str | None = None


class TranscriptRequest(BaseModel):
    transcript: str


class ChecklistCreate(BaseModel):
    title: str
    items: list[str] = []


class SendDraftsRequest(BaseModel):
    category: OrderCategory | None = None


class AcceptOrdersRequest(BaseModel):
    order_ids: list[str]


class SentOrders(BaseModel):
    sent: list[str]


class RoundSignOff(BaseModel):
    acknowledged_contradictions: list[str] = []


class StoreHealth(BaseModel):
    mode: str | None
    loaded: bool
    patients: int
    sync_errors: int
