from fastapi import Depends, Header, Request

from medflow.models.user import User
from medflow.services.audit import AuditSink
from medflow.services.record_store import RecordStore
from medflow.services.workflow import SYSTEM_USER, PatientWorkflow


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_audit(request: Request) -> AuditSink:
    return request.app.state.audit


def get_current_user(
    x_user_id: str | None = Header(None),
    x_user_name: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> User:
    """Acting user from request headers. Authentication happens upstream."""
    if not x_user_id:
        return SYSTEM_USER
    return User(id=x_user_id, name=x_user_name or x_user_id, role=x_user_role or "Doctor")


def get_workflow(request: Request, user: User = Depends(get_current_user)) -> PatientWorkflow:
    return request.app.state.workflow.as_user(user)
