from datetime import UTC, datetime, timedelta

from medflow.models.ai import AITriageSuggestion, Department
from medflow.models.clinical_file import (
    ClinicalFile,
    ClinicalFileSections,
    GPEFlags,
    GPESection,
    HistorySection,
)
from medflow.models.patient import ChiefComplaint, Order, Patient, PatientStatus
from medflow.models.vitals import TriageLevel, VitalsMeasurements, VitalsRecord
from medflow.services.triage import classify_vitals

SEED_RECORDER_ID = "user-nurse-seed"

# Fixed reference point so every seeding run produces identical documents.
SEED_EPOCH = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)


def _patient(
    patient_id: str,
    name: str,
    age: int,
    gender: str,
    contact: str,
    complaint: str,
    duration_days: int,
    status: PatientStatus,
    registered_at: datetime,
    measurements: VitalsMeasurements,
    ai_triage: AITriageSuggestion,
    history: HistorySection,
    gpe: GPESection,
    orders: list[Order] | None = None,
    handover_summary: str | None = None,
) -> Patient:
    recorded_at = (registered_at + timedelta(minutes=5)).isoformat()
    vitals_record = VitalsRecord(
        vital_id=f"VIT-{patient_id}-1",
        patient_id=patient_id,
        recorded_by=SEED_RECORDER_ID,
        recorded_at=recorded_at,
        source="nurse",
        measurements=measurements,
    )
    return Patient(
        id=patient_id,
        name=name,
        age=age,
        gender=gender,
        contact=contact,
        chief_complaints=[ChiefComplaint(complaint=complaint, duration_value=duration_days, duration_unit="days")],
        registration_time=registered_at.isoformat(),
        status=status,
        triage=classify_vitals(measurements),
        ai_triage=ai_triage,
        vitals=measurements,
        vitals_history=[vitals_record],
        clinical_file=ClinicalFile(
            id=f"CF-{patient_id}",
            patient_id=patient_id,
            sections=ClinicalFileSections(history=history, gpe=gpe),
        ),
        orders=orders or [],
        handover_summary=handover_summary,
    )


def fixture_patients(epoch: datetime = SEED_EPOCH) -> list[Patient]:
    """Demo patients used to seed an empty collection, newest registration first."""
    patients = [
        _patient(
            "PAT-001",
            "James Wilson",
            45,
            "Male",
            "555-0101",
            "Chest pain and shortness of breath",
            2,
            PatientStatus.IN_TREATMENT,
            epoch - timedelta(minutes=30),
            VitalsMeasurements(pulse=92, bp_sys=145, bp_dia=90, spo2=96, temp_c=37.2, rr=20, pain_score=4),
            AITriageSuggestion(department=Department.CARDIOLOGY, suggested_triage=TriageLevel.RED, confidence=0.9),
            HistorySection(
                hpi="History of hypertension and hyperlipidemia. Two days of worsening chest pain.",
                past_medical_history="Hypertension, hyperlipidemia",
            ),
            GPESection(
                remarks="Chest clear on auscultation. Heart sounds S1+S2 normal. No murmurs.",
                flags=GPEFlags(),
            ),
            orders=[
                Order(
                    order_id="ORD-101",
                    patient_id="PAT-001",
                    created_by="user-doc-1",
                    created_at=(epoch - timedelta(minutes=20)).isoformat(),
                    category="investigation",
                    label="Troponin I",
                    priority="urgent",
                    status="sent",
                ),
            ],
            handover_summary="Stable overnight. Awaiting Troponin results. Pain controlled.",
        ),
        _patient(
            "PAT-002",
            "Sarah Chen",
            28,
            "Female",
            "555-0102",
            "Abdominal pain",
            2,
            PatientStatus.WAITING_FOR_DOCTOR,
            epoch - timedelta(minutes=45),
            VitalsMeasurements(pulse=88, bp_sys=110, bp_dia=70, spo2=99, temp_c=36.8, rr=16, pain_score=6),
            AITriageSuggestion(department=Department.EMERGENCY, suggested_triage=TriageLevel.YELLOW, confidence=0.8),
            HistorySection(hpi="Periumbilical pain migrating to the right iliac fossa."),
            GPESection(flags=GPEFlags()),
        ),
        _patient(
            "PAT-003",
            "Ethan Brooks",
            24,
            "Male",
            "555-0103",
            "Fell off a ladder, arm deformed and painful",
            1,
            PatientStatus.WAITING_FOR_TRIAGE,
            epoch - timedelta(minutes=60),
            VitalsMeasurements(pulse=132, bp_sys=118, bp_dia=76, spo2=97, temp_c=36.9, rr=22, pain_score=9),
            AITriageSuggestion(department=Department.ORTHOPEDICS, suggested_triage=TriageLevel.RED, confidence=0.95),
            HistorySection(hpi="Fall from about two metres onto outstretched right arm."),
            GPESection(flags=GPEFlags(pallor=True)),
        ),
        _patient(
            "PAT-004",
            "Maria Lopez",
            68,
            "Female",
            "555-0104",
            "Worsening breathlessness and confusion",
            3,
            PatientStatus.WAITING_FOR_TRIAGE,
            epoch - timedelta(minutes=75),
            VitalsMeasurements(pulse=104, bp_sys=96, bp_dia=60, spo2=87, temp_c=38.4, rr=28),
            AITriageSuggestion(department=Department.GENERAL_MEDICINE, suggested_triage=TriageLevel.RED, confidence=0.85),
            HistorySection(
                hpi="Three days of productive cough, fever and increasing confusion noted by family.",
                past_medical_history="COPD, atrial fibrillation",
            ),
            GPESection(flags=GPEFlags(cyanosis=True)),
        ),
    ]
    return patients
