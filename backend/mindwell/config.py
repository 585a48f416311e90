# backend/mindwell/config.py
import os
from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, ""))
    except ValueError:
        return default


ASYNC_DATABASE_URL = os.getenv("ASYNC_DATABASE_URL", "sqlite+aiosqlite:///./mindwell.db")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-secret-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 30)

# Rescheduled sessions skip "Scheduled" and land directly in "Confirmed".
AUTO_CONFIRM_ON_RESCHEDULE = _env_flag("AUTO_CONFIRM_ON_RESCHEDULE", True)

DEFAULT_SESSION_DURATION = _env_int("DEFAULT_SESSION_DURATION", 50)
DEFAULT_SESSION_TYPE = os.getenv("DEFAULT_SESSION_TYPE", "Video")

# Kafka is optional; without a bootstrap address notifications stay in the database only.
KAFKA_BOOTSTRAP = os.getenv("KAFKA_BOOTSTRAP") or None
KAFKA_TOPIC_NOTIFICATIONS = os.getenv("KAFKA_TOPIC_NOTIFICATIONS", "mindwell.notifications")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
SERVICE_NAME = os.getenv("SERVICE_NAME", "mindwell-backend")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
