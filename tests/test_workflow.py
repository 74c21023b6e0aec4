"""Tests for clinical workflow actions on top of the record store."""

import pytest

from medflow.errors import (
    AIGenerationError,
    ClinicalFileSignedError,
    CrossCheckRequiredError,
    ImmutableFieldError,
    InvalidOrderTransitionError,
    InvalidStatusTransitionError,
    RecordNotFoundError,
    RoundSignedError,
    UnacknowledgedInconsistenciesError,
)
from medflow.models.ai import Department, DischargeSummaryDraft, SOAPDraft
from medflow.models.clinical_file import Allergy
from medflow.models.patient import ChiefComplaint, OrderCreate, PatientCreate, PatientStatus, RoundPlan, RoundUpdate
from medflow.models.user import User
from medflow.models.vitals import TriageLevel, VitalsMeasurements
from medflow.services.llm import PromptKind

DOCTOR = User(id="doc-7", name="Dr Rao", role="Doctor")

ISSUE = {"section": "history", "problem": "Penicillin allergy but amoxicillin listed", "severity": "high", "suggested_fix": "Review"}

DISCHARGE = {
    "final_diagnosis": "Acute appendicitis",
    "brief_history": "RIF pain for two days",
    "hospital_course": "Laparoscopic appendicectomy, uneventful",
    "treatment_given": "IV antibiotics",
    "condition_at_discharge": "Stable",
    "discharge_medications": ["Paracetamol 1 g QID"],
    "follow_up_instructions": "Clinic in 1 week",
}


def _actions(audit):
    return [(e.action, e.entity) for e in audit.events]


class TestRegistration:
    async def test_register_with_ai_suggestion(self, workflow, endpoint):
        endpoint.responses[PromptKind.CLASSIFY_COMPLAINT] = {
            "department": "Cardiology", "suggested_triage": "Red", "confidence": 0.8,
        }
        patient = await workflow.register_patient(PatientCreate(
            name="New Person", age=50, gender="Male",
            chief_complaints=[ChiefComplaint(complaint="Chest pain", duration_value=1, duration_unit="hours")],
        ))
        assert patient.status == PatientStatus.WAITING_FOR_TRIAGE
        assert patient.triage.level == TriageLevel.NONE
        assert patient.ai_triage.department == Department.CARDIOLOGY
        assert patient.clinical_file.patient_id == patient.id
        assert workflow.store.patients[0].id == patient.id
        assert ("create", "patient_record") in _actions(workflow.audit)

    async def test_register_survives_ai_failure(self, workflow, endpoint):
        endpoint.error = RuntimeError("offline")
        patient = await workflow.register_patient(PatientCreate(
            name="Offline", chief_complaints=[ChiefComplaint(complaint="Cough")],
        ))
        assert patient.ai_triage.department == Department.UNKNOWN
        assert patient.ai_triage.confidence == 0.0

    async def test_ai_suggestion_never_changes_triage(self, workflow, endpoint):
        endpoint.responses[PromptKind.CLASSIFY_COMPLAINT] = {
            "department": "Emergency", "suggested_triage": "Red", "confidence": 1.0,
        }
        patient = await workflow.register_patient(PatientCreate(
            name="X", chief_complaints=[ChiefComplaint(complaint="Collapse")],
        ))
        assert patient.triage.level == TriageLevel.NONE
        assert patient.status == PatientStatus.WAITING_FOR_TRIAGE

    async def test_register_without_complaint_skips_ai(self, workflow, endpoint):
        patient = await workflow.register_patient(PatientCreate(name="Walk-in"))
        assert patient.ai_triage is None
        assert endpoint.calls == []


class TestVitalsAndStatus:
    async def test_record_vitals_recomputes_triage(self, workflow):
        patient = workflow.as_user(DOCTOR).record_vitals(
            "PAT-002", VitalsMeasurements(spo2=97, pulse=130, bp_sys=110, rr=18), source="monitor",
        )
        assert patient.triage.level == TriageLevel.YELLOW
        assert patient.triage.reasons == ["High Heart Rate (130 bpm)"]
        assert patient.vitals_history[0].recorded_by == "doc-7"
        assert patient.vitals_history[0].source == "monitor"
        event = workflow.audit.events[0]
        assert (event.action, event.entity) == ("create", "vitals")
        assert event.payload["triage"] == "Yellow"

    async def test_update_status_forward(self, workflow):
        patient = workflow.update_status("PAT-003", PatientStatus.WAITING_FOR_DOCTOR)
        assert patient.status == PatientStatus.WAITING_FOR_DOCTOR
        assert workflow.audit.events[0].payload == {"field": "status", "value": "Waiting for Doctor"}

    async def test_update_status_backwards_rejected(self, workflow):
        with pytest.raises(InvalidStatusTransitionError):
            workflow.update_status("PAT-001", PatientStatus.WAITING_FOR_TRIAGE)
        assert workflow.audit.events == []


class TestClinicalFile:
    async def test_section_update_is_audited(self, workflow):
        patient = workflow.update_clinical_file_section("PAT-002", "history", {"drug_history": "None"})
        assert patient.clinical_file.sections.history.hpi.startswith("Periumbilical")
        assert workflow.audit.events[0].entity == "history_section"

    async def test_add_allergy_appends(self, workflow):
        workflow.add_allergy("PAT-001", Allergy(substance="Penicillin", reaction="Rash", severity="Moderate"))
        patient = workflow.add_allergy("PAT-001", Allergy(substance="Latex"))
        substances = [a.substance for a in patient.clinical_file.sections.history.allergy_history]
        assert substances == ["Penicillin", "Latex"]
        assert patient.clinical_file.sections.history.hpi.startswith("History of hypertension")

    async def test_sign_off_requires_cross_check(self, workflow):
        with pytest.raises(CrossCheckRequiredError):
            workflow.sign_off_clinical_file("PAT-001")

    async def test_clean_cross_check_does_not_auto_sign(self, workflow, endpoint):
        endpoint.responses[PromptKind.CONSISTENCY_CHECK] = {"issues": []}
        issues = await workflow.cross_check_clinical_file("PAT-001")
        assert issues == []
        patient = workflow.store.get("PAT-001")
        assert patient.clinical_file.cross_check_inconsistencies == []
        assert patient.clinical_file.status == "draft"

        signed = workflow.as_user(DOCTOR).sign_off_clinical_file("PAT-001")
        assert signed.clinical_file.status == "signed"
        assert signed.clinical_file.signed_by == "doc-7"

    async def test_unacknowledged_inconsistencies_block_sign_off(self, workflow, endpoint):
        endpoint.responses[PromptKind.CONSISTENCY_CHECK] = {"issues": [ISSUE]}
        await workflow.cross_check_clinical_file("PAT-001")

        with pytest.raises(UnacknowledgedInconsistenciesError) as exc_info:
            workflow.sign_off_clinical_file("PAT-001", ["something else"])
        assert exc_info.value.outstanding == [ISSUE["problem"]]
        assert workflow.store.get("PAT-001").clinical_file.status == "draft"

        signed = workflow.sign_off_clinical_file("PAT-001", [ISSUE["problem"]])
        assert signed.clinical_file.status == "signed"
        assert ("signoff", "clinical_file") in _actions(workflow.audit)

    async def test_signed_file_is_read_only(self, workflow, endpoint):
        endpoint.responses[PromptKind.CONSISTENCY_CHECK] = {"issues": []}
        await workflow.cross_check_clinical_file("PAT-002")
        workflow.sign_off_clinical_file("PAT-002")
        with pytest.raises(ClinicalFileSignedError):
            workflow.update_clinical_file_section("PAT-002", "gpe", {"remarks": "late"})

    async def test_edit_after_cross_check_needs_new_check(self, workflow, endpoint):
        endpoint.responses[PromptKind.CONSISTENCY_CHECK] = {"issues": []}
        await workflow.cross_check_clinical_file("PAT-001")
        workflow.update_clinical_file_section("PAT-001", "history", {"hpi": "Pain now radiates to the left arm"})

        with pytest.raises(CrossCheckRequiredError):
            workflow.sign_off_clinical_file("PAT-001")
        assert workflow.store.get("PAT-001").clinical_file.status == "draft"

        await workflow.cross_check_clinical_file("PAT-001")
        assert workflow.sign_off_clinical_file("PAT-001").clinical_file.status == "signed"

    async def test_cross_check_failure_raises(self, workflow, endpoint):
        endpoint.error = RuntimeError("AI down")
        with pytest.raises(AIGenerationError):
            await workflow.cross_check_clinical_file("PAT-001")
        assert workflow.store.get("PAT-001").clinical_file.cross_check_inconsistencies is None


class TestTimeline:
    async def test_add_note(self, workflow):
        patient = workflow.as_user(DOCTOR).add_note("PAT-001", "Escalate to cardiology", is_escalation=True)
        note = patient.timeline[0]
        assert note.type == "TeamNote"
        assert note.author == "Dr Rao"
        assert note.is_escalation is True

    async def test_add_soap_note(self, workflow):
        patient = workflow.add_soap_note("PAT-001", SOAPDraft(s="better", o="afebrile", a="improving", p="continue"), "transcript")
        assert patient.timeline[0].type == "SOAP"
        assert patient.timeline[0].a == "improving"
        assert workflow.audit.events[0].entity == "soap_note"

    async def test_add_checklist(self, workflow):
        patient = workflow.add_checklist("PAT-001", "Pre-op", ["Consent", "NBM"])
        checklist = patient.timeline[0]
        assert checklist.type == "Checklist"
        assert [i.text for i in checklist.items] == ["Consent", "NBM"]
        assert not any(i.checked for i in checklist.items)


class TestOrders:
    async def test_add_order_is_draft_and_newest_first(self, workflow):
        order = workflow.add_order("PAT-001", OrderCreate(label="ECG", priority="STAT"))
        patient = workflow.store.get("PAT-001")
        assert order.status == "draft"
        assert patient.orders[0].order_id == order.order_id
        assert patient.orders[1].order_id == "ORD-101"

    async def test_update_order_sets_meta(self, workflow):
        order = workflow.as_user(DOCTOR).add_order("PAT-001", OrderCreate(label="CBC"))
        updated = workflow.as_user(DOCTOR).update_order("PAT-001", order.order_id, {"priority": "urgent"})
        assert updated.priority == "urgent"
        assert updated.label == "CBC"
        assert updated.meta.modified_by == "doc-7"

    async def test_cancel_is_audited_as_cancel(self, workflow):
        order = workflow.add_order("PAT-001", OrderCreate(label="CXR", category="radiology"))
        workflow.update_order("PAT-001", order.order_id, {"status": "cancelled"})
        assert workflow.audit.events[0].action == "cancel"

    async def test_update_unknown_order(self, workflow):
        with pytest.raises(RecordNotFoundError):
            workflow.update_order("PAT-001", "ORD-404", {"priority": "urgent"})

    async def test_order_id_is_fixed(self, workflow):
        with pytest.raises(ImmutableFieldError):
            workflow.update_order("PAT-001", "ORD-101", {"order_id": "ORD-999"})

    async def test_sent_order_cannot_return_to_draft(self, workflow):
        with pytest.raises(InvalidOrderTransitionError):
            workflow.update_order("PAT-001", "ORD-101", {"status": "draft"})
        assert workflow.store.get("PAT-001").orders[0].status == "sent"

    async def test_completed_order_cannot_be_cancelled(self, workflow):
        workflow.update_order("PAT-001", "ORD-101", {"status": "completed"})
        with pytest.raises(InvalidOrderTransitionError):
            workflow.update_order("PAT-001", "ORD-101", {"status": "cancelled"})

    async def test_send_all_drafts_by_category(self, workflow):
        lab = workflow.add_order("PAT-002", OrderCreate(label="CBC", category="investigation"))
        scan = workflow.add_order("PAT-002", OrderCreate(label="USG", category="radiology"))
        sent = workflow.send_all_drafts("PAT-002", "radiology")
        assert sent == [scan.order_id]
        statuses = {o.order_id: o.status for o in workflow.store.get("PAT-002").orders}
        assert statuses == {lab.order_id: "draft", scan.order_id: "sent"}

    async def test_send_all_drafts_without_category(self, workflow):
        workflow.add_order("PAT-002", OrderCreate(label="CBC"))
        workflow.add_order("PAT-002", OrderCreate(label="USG", category="radiology"))
        assert len(workflow.send_all_drafts("PAT-002")) == 2
        assert all(o.status == "sent" for o in workflow.store.get("PAT-002").orders)

    async def test_accept_ai_orders_only_sends_drafts(self, workflow):
        order = workflow.add_order("PAT-001", OrderCreate(label="Lipid profile", ai_rationale="Hyperlipidemia"))
        sent = workflow.accept_ai_orders("PAT-001", [order.order_id, "ORD-101"])
        assert sent == [order.order_id]
        assert workflow.audit.events[0].action == "accept"

    async def test_suggest_orders_does_not_apply(self, workflow, endpoint):
        endpoint.responses[PromptKind.SUGGEST_ORDERS] = {"orders": [{"label": "Troponin", "priority": "urgent"}]}
        suggestions = await workflow.suggest_orders("PAT-001")
        assert [s.label for s in suggestions] == ["Troponin"]
        assert len(workflow.store.get("PAT-001").orders) == 1


class TestRounds:
    async def test_create_draft_round_is_idempotent(self, workflow):
        first = workflow.create_draft_round("PAT-001")
        second = workflow.create_draft_round("PAT-001")
        assert first.round_id == second.round_id
        assert len(workflow.store.get("PAT-001").rounds) == 1

    async def test_update_and_sign_round(self, workflow):
        rnd = workflow.create_draft_round("PAT-001")
        updated = workflow.update_draft_round("PAT-001", rnd.round_id, RoundUpdate(
            assessment="ACS ruled out", plan=RoundPlan(text="Discharge tomorrow", linked_orders=["ORD-101"]),
        ))
        assert updated.assessment == "ACS ruled out"
        assert updated.plan.linked_orders == ["ORD-101"]
        assert updated.subjective == ""

        signed = workflow.as_user(DOCTOR).sign_off_round("PAT-001", rnd.round_id, ["Troponin pending"])
        assert signed.status == "signed"
        assert signed.signed_by == "doc-7"
        assert signed.acknowledged_contradictions == ["Troponin pending"]

        with pytest.raises(RoundSignedError):
            workflow.update_draft_round("PAT-001", rnd.round_id, RoundUpdate(assessment="changed"))

    async def test_new_draft_after_sign_off(self, workflow):
        rnd = workflow.create_draft_round("PAT-001")
        workflow.sign_off_round("PAT-001", rnd.round_id)
        fresh = workflow.create_draft_round("PAT-001")
        assert fresh.round_id != rnd.round_id

    async def test_round_contradictions(self, workflow, endpoint):
        endpoint.responses[PromptKind.ROUND_CROSS_CHECK] = {"contradictions": ["Plan omits troponin"], "missing_followups": []}
        rnd = workflow.create_draft_round("PAT-001")
        assert await workflow.get_round_contradictions("PAT-001", rnd.round_id) == ["Plan omits troponin"]

    async def test_unknown_round(self, workflow):
        with pytest.raises(RecordNotFoundError):
            workflow.sign_off_round("PAT-001", "RND-404")


class TestDischarge:
    async def test_generate_save_and_finalize(self, workflow, endpoint):
        endpoint.responses[PromptKind.DISCHARGE_SUMMARY] = DISCHARGE
        summary = await workflow.generate_discharge_summary("PAT-002")
        assert summary.status == "draft"
        assert summary.final_diagnosis == "Acute appendicitis"

        saved = workflow.save_discharge_summary("PAT-002", DischargeSummaryDraft(follow_up_instructions="Clinic in 10 days"))
        assert saved.follow_up_instructions == "Clinic in 10 days"
        assert saved.final_diagnosis == "Acute appendicitis"

        patient = workflow.finalize_discharge("PAT-002")
        assert patient.status == PatientStatus.DISCHARGED
        assert patient.discharge_summary.status == "finalized"
        assert patient.discharge_summary.finalized_at is not None
        assert _actions(workflow.audit)[:2] == [("finalize", "discharge_summary"), ("create", "housekeeping_task")]

    async def test_generation_failure_keeps_record(self, workflow, endpoint):
        endpoint.error = RuntimeError("timeout")
        with pytest.raises(AIGenerationError):
            await workflow.generate_discharge_summary("PAT-002")
        assert workflow.store.get("PAT-002").discharge_summary is None

    async def test_finalize_without_summary(self, workflow):
        with pytest.raises(RecordNotFoundError):
            workflow.finalize_discharge("PAT-002")

    async def test_finalized_summary_is_read_only(self, workflow, endpoint):
        endpoint.responses[PromptKind.DISCHARGE_SUMMARY] = DISCHARGE
        await workflow.generate_discharge_summary("PAT-002")
        workflow.finalize_discharge("PAT-002")
        with pytest.raises(ImmutableFieldError):
            workflow.save_discharge_summary("PAT-002", DischargeSummaryDraft(final_diagnosis="changed"))

    async def test_finalize_twice_rejected(self, workflow, endpoint):
        endpoint.responses[PromptKind.DISCHARGE_SUMMARY] = DISCHARGE
        await workflow.generate_discharge_summary("PAT-002")
        first = workflow.finalize_discharge("PAT-002")
        events = len(workflow.audit.events)

        with pytest.raises(ImmutableFieldError):
            workflow.finalize_discharge("PAT-002")
        assert len(workflow.audit.events) == events
        assert workflow.store.get("PAT-002").discharge_summary.finalized_at == first.discharge_summary.finalized_at
