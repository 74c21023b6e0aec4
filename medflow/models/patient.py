from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from medflow.models.ai import AITriageSuggestion, DischargeSummaryDraft
from medflow.models.clinical_file import ClinicalFile
from medflow.models.vitals import Triage, VitalsMeasurements, VitalsRecord


class PatientStatus(str, Enum):
    WAITING_FOR_TRIAGE = "Waiting for Triage"
    WAITING_FOR_DOCTOR = "Waiting for Doctor"
    IN_TREATMENT = "In Treatment"
    DISCHARGED = "Discharged"


# Forward-only: a patient may skip ahead but never move back.
STATUS_ORDER = [
    PatientStatus.WAITING_FOR_TRIAGE,
    PatientStatus.WAITING_FOR_DOCTOR,
    PatientStatus.IN_TREATMENT,
    PatientStatus.DISCHARGED,
]


def is_forward_transition(current: PatientStatus, requested: PatientStatus) -> bool:
    return STATUS_ORDER.index(requested) >= STATUS_ORDER.index(current)


class ChiefComplaint(BaseModel):
    complaint: str
    duration_value: int | None = None
    duration_unit: Literal["hours", "days", "weeks", "months", "years"] | None = None


# --- Orders, results, rounds ---

OrderCategory = Literal["investigation", "radiology", "medication", "procedure", "nursing", "referral"]
OrderPriority = Literal["routine", "urgent", "STAT"]
OrderStatus = Literal["draft", "sent", "scheduled", "in_progress", "completed", "resulted", "cancelled"]

# Orders only move down this list. Cancelling is allowed until the work is completed.
ORDER_STATUS_ORDER = ["draft", "sent", "scheduled", "in_progress", "completed", "resulted"]
_CANCELLABLE = ("draft", "sent", "scheduled", "in_progress")


def is_forward_order_transition(current: str, requested: str) -> bool:
    if current == requested:
        return True
    if requested == "cancelled":
        return current in _CANCELLABLE
    if current == "cancelled":
        return False
    return ORDER_STATUS_ORDER.index(requested) > ORDER_STATUS_ORDER.index(current)


class OrderMeta(BaseModel):
    last_modified: str
    modified_by: str


class Order(BaseModel):
    order_id: str
    patient_id: str
    created_by: str
    created_at: str
    category: OrderCategory = "investigation"
    sub_type: str = ""
    code: str | None = None
    label: str = ""
    payload: dict[str, Any] = {}
    priority: OrderPriority = "routine"
    status: OrderStatus = "draft"
    scheduled_for: str | None = None
    ai_rationale: str | None = None
    meta: OrderMeta | None = None


class Result(BaseModel):
    result_id: str
    patient_id: str
    order_id: str
    type: Literal["lab", "imaging"] = "lab"
    name: str = ""
    timestamp: str
    status: Literal["final", "preliminary"] = "preliminary"
    is_abnormal: bool = False
    value: str = ""
    unit: str | None = None
    reference_range: str | None = None
    report_url: str | None = None


class RoundPlan(BaseModel):
    text: str = ""
    linked_orders: list[str] = []


class Round(BaseModel):
    round_id: str
    patient_id: str
    doctor_id: str
    created_at: str
    status: Literal["draft", "signed"] = "draft"
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: RoundPlan = RoundPlan()
    linked_results: list[str] = []
    acknowledged_contradictions: list[str] = []
    signed_by: str | None = None
    signed_at: str | None = None


# --- Timeline ---

class TeamNote(BaseModel):
    type: Literal["TeamNote"] = "TeamNote"
    id: str
    patient_id: str
    author: str
    author_id: str
    role: str
    timestamp: str
    content: str
    is_escalation: bool = False


class SOAPNote(BaseModel):
    type: Literal["SOAP"] = "SOAP"
    id: str
    patient_id: str
    author: str
    author_id: str
    role: str
    timestamp: str
    transcript: str | None = None
    s: str = ""
    o: str = ""
    a: str = ""
    p: str = ""


class ChecklistItem(BaseModel):
    text: str
    checked: bool = False


class Checklist(BaseModel):
    type: Literal["Checklist"] = "Checklist"
    id: str
    patient_id: str
    author: str
    author_id: str
    role: str
    timestamp: str
    title: str
    items: list[ChecklistItem] = []


TimelineEvent = Annotated[TeamNote | SOAPNote | Checklist, Field(discriminator="type")]


class DischargeSummary(DischargeSummaryDraft):
    id: str
    patient_id: str
    doctor_id: str
    status: Literal["draft", "finalized"] = "draft"
    generated_at: str
    finalized_at: str | None = None


# --- Aggregate ---

class Patient(BaseModel):
    id: str
    name: str
    age: int | None = None
    gender: Literal["Male", "Female", "Other"] | None = None
    contact: str | None = None
    chief_complaints: list[ChiefComplaint] = []
    registration_time: str
    status: PatientStatus = PatientStatus.WAITING_FOR_TRIAGE
    triage: Triage = Triage()
    ai_triage: AITriageSuggestion | None = None
    vitals: VitalsMeasurements | None = None
    vitals_history: list[VitalsRecord] = []     # newest first
    clinical_file: ClinicalFile
    orders: list[Order] = []
    results: list[Result] = []
    rounds: list[Round] = []
    timeline: list[TimelineEvent] = []
    discharge_summary: DischargeSummary | None = None
    handover_summary: str | None = None

    @property
    def primary_complaint(self) -> str:
        return self.chief_complaints[0].complaint if self.chief_complaints else ""


class PatientCreate(BaseModel):
    name: str
    age: int | None = None
    gender: Literal["Male", "Female", "Other"] | None = None
    contact: str | None = None
    chief_complaints: list[ChiefComplaint] = []


class OrderCreate(BaseModel):
    category: OrderCategory = "investigation"
    sub_type: str = ""
    code: str | None = None
    label: str = ""
    payload: dict[str, Any] = {}
    priority: OrderPriority = "routine"
    scheduled_for: str | None = None
    ai_rationale: str | None = None


class RoundUpdate(BaseModel):
    """Editable fields of a draft round; unset fields are left alone."""
    subjective: str | None = None
    objective: str | None = None
    assessment: str | None = None
    plan: RoundPlan | None = None
    linked_results: list[str] | None = None
