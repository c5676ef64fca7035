import os


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Suggestion search
SUGGESTION_WINDOW_DAYS = _get_int(os.getenv("SUGGESTION_WINDOW_DAYS"), 30)
SUGGESTION_LIMIT = _get_int(os.getenv("SUGGESTION_LIMIT"), 5)

# Ranking weights. Proximity is a fixed placeholder, not a calendar distance.
RANK_WEIGHT_URGENCY = _get_float(os.getenv("RANK_WEIGHT_URGENCY"), 0.3)
RANK_WEIGHT_DOCTOR_PREFERENCE = _get_float(os.getenv("RANK_WEIGHT_DOCTOR_PREFERENCE"), 0.2)
RANK_WEIGHT_PROXIMITY = _get_float(os.getenv("RANK_WEIGHT_PROXIMITY"), 0.1)
RANK_WEIGHT_AVAILABILITY = _get_float(os.getenv("RANK_WEIGHT_AVAILABILITY"), 0.2)
RANK_WEIGHT_SPECIALTY = _get_float(os.getenv("RANK_WEIGHT_SPECIALTY"), 0.2)
RANK_PROXIMITY_PLACEHOLDER = _get_float(os.getenv("RANK_PROXIMITY_PLACEHOLDER"), 0.3)
RANK_PREFERENCE_FALLBACK = _get_float(os.getenv("RANK_PREFERENCE_FALLBACK"), 0.2)
RANK_SPECIALTY_FALLBACK = _get_float(os.getenv("RANK_SPECIALTY_FALLBACK"), 0.5)

# Store retry policy
STORE_RETRY_ATTEMPTS = _get_int(os.getenv("STORE_RETRY_ATTEMPTS"), 1)
STORE_RETRY_BACKOFF_SECONDS = _get_float(os.getenv("STORE_RETRY_BACKOFF_SECONDS"), 0.2)

DEFAULT_URGENCY = 3
MIN_URGENCY = 1
MAX_URGENCY = 5
MAX_APPOINTMENT_NOTES_LENGTH = _get_int(os.getenv("MAX_APPOINTMENT_NOTES_LENGTH"), 600)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if STORE_RETRY_ATTEMPTS < 0:
        raise RuntimeError("STORE_RETRY_ATTEMPTS cannot be negative.")
