from collections.abc import Iterator

from fastapi import BackgroundTasks, Depends
from sqlalchemy.orm import Session, sessionmaker

from stockflow.db.session import SessionLocal
from stockflow.services.audit_service import AuditRecorder
from stockflow.services.messaging_provider import NotificationSender, get_notification_sender


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_audit_recorder(
    background_tasks: BackgroundTasks,
    session_factory: sessionmaker = Depends(get_session_factory),
) -> AuditRecorder:
    # Audit rows are written after the response, in a session of their own.
    return AuditRecorder(session_factory, schedule=background_tasks.add_task)


def get_sender() -> NotificationSender:
    return get_notification_sender()
