from fastapi import APIRouter, Depends, Query

from medflow.models.audit import AuditEvent
from medflow.routers.deps import get_audit
from medflow.services.audit import AuditSink

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=list[AuditEvent])
async def list_audit_events(
    patient_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    audit: AuditSink = Depends(get_audit),
):
    """Audit trail, newest first."""
    events = audit.for_patient(patient_id) if patient_id else audit.events
    return events[:limit]
