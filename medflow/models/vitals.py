from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict


class TriageLevel(str, Enum):
    RED = "Red"
    YELLOW = "Yellow"
    GREEN = "Green"
    NONE = "None"


class Triage(BaseModel):
    """Rule-derived urgency. Authoritative state, recomputed on every vitals submission."""
    level: TriageLevel = TriageLevel.NONE
    reasons: list[str] = []


class VitalsMeasurements(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    temp_c: float | None = None
    pulse: float | None = None              # beats per minute
    rr: float | None = None                 # breaths per minute
    bp_sys: float | None = None             # mmHg
    bp_dia: float | None = None             # mmHg
    spo2: float | None = None               # percent
    glucose_mg_dl: float | None = None
    pain_score: int | None = None           # 0-10
    urine_output_ml: float | None = None


VitalsSource = Literal["manual", "device", "nurse", "monitor"]


class VitalsRecord(BaseModel):
    """One vitals submission. Never edited after creation."""
    model_config = ConfigDict(frozen=True)

    vital_id: str
    patient_id: str
    recorded_by: str
    recorded_at: str
    source: VitalsSource = "manual"
    measurements: VitalsMeasurements
    observations: str | None = None
