from typing import Literal

from pydantic import BaseModel, ConfigDict

from medflow.models.ai import ConsistencyIssue
from medflow.models.vitals import VitalsMeasurements


class Allergy(BaseModel):
    substance: str = ""
    reaction: str = ""
    severity: Literal["Mild", "Moderate", "Severe", ""] = ""


class HistorySection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chief_complaint: str | None = None
    duration: str | None = None
    hpi: str | None = None
    associated_symptoms: list[str] | None = None
    past_medical_history: str | None = None
    past_surgical_history: str | None = None
    drug_history: str | None = None
    allergy_history: list[Allergy] | None = None
    family_history: str | None = None
    personal_social_history: str | None = None
    menstrual_obstetric_history: str | None = None
    socioeconomic_lifestyle: str | None = None
    review_of_systems: dict[str, bool | str] | None = None


class GPEFlags(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pallor: bool = False
    icterus: bool = False
    cyanosis: bool = False
    clubbing: bool = False
    lymphadenopathy: bool = False
    edema: bool = False


class GPESection(BaseModel):
    """General physical examination."""
    model_config = ConfigDict(extra="forbid")

    general_appearance: Literal["well", "ill", "toxic", "cachectic", ""] | None = None
    vitals: VitalsMeasurements | None = None
    build: Literal["normal", "obese", "cachectic", ""] | None = None
    hydration: Literal["normal", "mild", "moderate", "severe", ""] | None = None
    flags: GPEFlags | None = None
    height_cm: float | None = None
    weight_kg: float | None = None
    bmi: float | None = None
    remarks: str | None = None
    ai_generated_summary: str | None = None


class SystemExam(BaseModel):
    model_config = ConfigDict(extra="forbid")

    autofill: bool | None = None
    inspection: str | None = None
    palpation: str | None = None
    percussion: str | None = None
    auscultation: str | None = None
    summary: str | None = None


class SystemicExamSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cvs: SystemExam | None = None
    rs: SystemExam | None = None
    cns: SystemExam | None = None
    abdomen: SystemExam | None = None
    msk: SystemExam | None = None
    skin: SystemExam | None = None
    other: SystemExam | None = None


SectionName = Literal["history", "gpe", "systemic"]

SECTION_MODELS: dict[str, type[BaseModel]] = {
    "history": HistorySection,
    "gpe": GPESection,
    "systemic": SystemicExamSection,
}


class ClinicalFileSections(BaseModel):
    history: HistorySection = HistorySection()
    gpe: GPESection = GPESection()
    systemic: SystemicExamSection = SystemicExamSection()


class ClinicalFile(BaseModel):
    id: str
    patient_id: str
    status: Literal["draft", "signed"] = "draft"
    signed_at: str | None = None
    signed_by: str | None = None
    ai_summary: str | None = None
    missing_info: list[str] = []
    # None until a cross-check has run; an empty list means it ran clean.
    cross_check_inconsistencies: list[ConsistencyIssue] | None = None
    sections: ClinicalFileSections = ClinicalFileSections()
