"""User model definitions."""

from enum import Enum

from sqlalchemy import Boolean, Column, Integer, String
from medsched.database import Base


class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # admin/doctor/patient
    is_active = Column(Boolean, nullable=False, default=True)
    # Global switch a doctor flips when they stop taking bookings altogether.
    is_available = Column(Boolean, nullable=False, default=True)

    def has_role(self, role: UserRole) -> bool:
        return (self.role or "").strip().lower() == role.value
