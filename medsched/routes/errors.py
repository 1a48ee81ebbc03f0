"""Translation of scheduling and database failures into HTTP errors."""

import logging
from contextlib import contextmanager

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medsched.database import ensure_appointment_schema, ensure_availability_schema
from medsched.scheduling.errors import ErrorKind, SchedulingError

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNKNOWN_USER: status.HTTP_404_NOT_FOUND,
    ErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.OVERLAP: status.HTTP_409_CONFLICT,
    ErrorKind.SCHEDULING_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INACTIVE_USER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_RANGE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.DOCTOR_UNAVAILABLE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
}


def http_error(exc: SchedulingError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        detail=exc.message,
    )


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@contextmanager
def scheduling_errors(db: Session):
    """Re-raise failures of the wrapped block as ``HTTPException``."""
    try:
        yield
    except SchedulingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error('Database error while handling request: %s', exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
