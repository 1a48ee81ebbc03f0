"""Audit log model definitions."""

from sqlalchemy import Column, DateTime, Integer, String, Text
from medsched.database import Base


class AuditLog(Base):
    """One recorded action against a scheduling resource."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    action = Column(String, nullable=False, index=True)
    actor_id = Column(Integer)
    resource_type = Column(String, nullable=False)
    resource_id = Column(Integer)
    detail = Column(Text)
    created_at = Column(DateTime, nullable=False)
