from enum import Enum

from pydantic import BaseModel, Field

from medflow.models.vitals import TriageLevel


class Department(str, Enum):
    CARDIOLOGY = "Cardiology"
    ORTHOPEDICS = "Orthopedics"
    GENERAL_MEDICINE = "General Medicine"
    OBSTETRICS = "Obstetrics"
    NEUROLOGY = "Neurology"
    EMERGENCY = "Emergency"
    UNKNOWN = "Unknown"


class ComplaintClassification(BaseModel):
    """Structured output of the complaint classifier."""
    department: Department = Department.UNKNOWN
    suggested_triage: TriageLevel = TriageLevel.NONE
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class AITriageSuggestion(ComplaintClassification):
    """Advisory department/triage pair shown next to the rule-based triage."""
    from_cache: bool = False


class ConsistencyIssue(BaseModel):
    section: str = ""
    problem: str = ""
    severity: str = "moderate"
    suggested_fix: str = ""


class ConsistencyReport(BaseModel):
    issues: list[ConsistencyIssue] = []


class SuggestedOrder(BaseModel):
    category: str = "investigation"
    label: str = ""
    sub_type: str = ""
    priority: str = "routine"
    rationale: str = ""


class OrderSuggestions(BaseModel):
    orders: list[SuggestedOrder] = []


class SOAPDraft(BaseModel):
    s: str = ""
    o: str = ""
    a: str = ""
    p: str = ""


class SOAPSuggestion(SOAPDraft):
    """AI-drafted SOAP note, not yet saved to the timeline."""
    from_cache: bool = False


class RoundCrossCheck(BaseModel):
    contradictions: list[str] = []
    missing_followups: list[str] = []


class DischargeSummaryDraft(BaseModel):
    final_diagnosis: str = ""
    brief_history: str = ""
    hospital_course: str = ""
    treatment_given: str = ""
    condition_at_discharge: str = ""
    discharge_medications: list[str] = []
    follow_up_instructions: str = ""
