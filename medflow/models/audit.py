from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

AuditAction = Literal[
    "accept", "modify", "reject", "view", "create", "signoff", "cancel", "finalize",
]
AuditEntity = Literal[
    "patient_record",
    "history_section",
    "order",
    "soap_note",
    "team_note",
    "checklist",
    "clinical_file",
    "round",
    "discharge_summary",
    "vitals",
    "housekeeping_task",
]


class AuditEventInput(BaseModel):
    user_id: str
    patient_id: str
    action: AuditAction
    entity: AuditEntity
    entity_id: str | None = None
    payload: dict[str, Any] | None = None


class AuditEvent(AuditEventInput):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: str
