import os

from dotenv import load_dotenv


load_dotenv()

def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medsched.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Scheduling
NEXT_SLOT_HORIZON_DAYS = int(os.getenv("NEXT_SLOT_HORIZON_DAYS", "30"))
DEFAULT_SLOT_DURATION_MINUTES = 30
MIN_SLOT_DURATION_MINUTES = 15
MAX_SLOT_DURATION_MINUTES = 120
DEFAULT_MAX_APPOINTMENTS_PER_DAY = 20
MAX_APPOINTMENTS_PER_DAY_LIMIT = 50
MIN_APPOINTMENT_MINUTES = 15
MAX_APPOINTMENT_MINUTES = 480
MAX_REASON_LENGTH = 500
MAX_APPOINTMENT_NOTES_LENGTH = 1000

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if NEXT_SLOT_HORIZON_DAYS <= 0:
        raise RuntimeError("NEXT_SLOT_HORIZON_DAYS must be positive.")
