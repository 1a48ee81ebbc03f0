"""Audit trail for scheduling actions.

Recording is fire-and-forget: a failing sink is logged and never aborts the
business operation that triggered it.
"""

import logging
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy.orm import Session, sessionmaker

from medsched.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(
        self,
        action: str,
        actor_id: int | None,
        resource_type: str,
        resource_id: int | None,
        detail: str,
    ) -> None: ...


class DatabaseAuditSink:
    """Writes audit rows through its own session, apart from the scheduling one."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = datetime.now) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        action: str,
        actor_id: int | None,
        resource_type: str,
        resource_id: int | None,
        detail: str,
    ) -> None:
        db: Session = self._session_factory()
        try:
            db.add(
                AuditLog(
                    action=action,
                    actor_id=actor_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    detail=detail,
                    created_at=self._clock(),
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def record_safely(
    sink: AuditSink | None,
    action: str,
    actor_id: int | None,
    resource_type: str,
    resource_id: int | None,
    detail: str,
) -> None:
    if sink is None:
        return
    try:
        sink.record(action, actor_id, resource_type, resource_id, detail)
    except Exception:
        logger.exception('Failed to record audit event %s for %s %s', action, resource_type, resource_id)
    else:
        logger.debug('Audit event recorded: %s - %s - %s', action, resource_type, resource_id)
