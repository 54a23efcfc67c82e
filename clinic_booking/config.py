import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_booking.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Patient session tokens are issued by the identity service with the same SECRET_KEY
AUTH_TOKEN_MAX_AGE_SECONDS = int(os.getenv("AUTH_TOKEN_MAX_AGE_SECONDS", "86400"))

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
# Public URL of this API, used to build gateway redirect URLs
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")

# PayMongo Configuration
PAYMONGO_SECRET_KEY = os.getenv("PAYMONGO_SECRET_KEY")
PAYMONGO_WEBHOOK_SECRET = os.getenv("PAYMONGO_WEBHOOK_SECRET")
PAYMONGO_API_URL = os.getenv("PAYMONGO_API_URL", "https://api.paymongo.com/v1")
PAYMONGO_PAYMENT_METHODS = [
    m.strip()
    for m in os.getenv("PAYMONGO_PAYMENT_METHODS", "gcash,grab_pay,paymaya,card").split(",")
    if m.strip()
]
PAYMONGO_TIMEOUT_SECONDS = float(os.getenv("PAYMONGO_TIMEOUT_SECONDS", "30"))

# Clinic / booking policy
CLINIC_NAME = os.getenv("CLINIC_NAME", "District Smile Dental Clinic")
CLINIC_ADDRESS = os.getenv("CLINIC_ADDRESS", "")
CLINIC_PHONE = os.getenv("CLINIC_PHONE", "")
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Asia/Manila")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "PHP")
PAYMENT_WINDOW_MINUTES = int(os.getenv("PAYMENT_WINDOW_MINUTES", "15"))
CANCELLATION_LEAD_HOURS = int(os.getenv("CANCELLATION_LEAD_HOURS", "12"))
BOOKING_HORIZON_MONTHS = int(os.getenv("BOOKING_HORIZON_MONTHS", "3"))
ONE_ACTIVE_BOOKING_PER_PATIENT = (
    os.getenv("ONE_ACTIVE_BOOKING_PER_PATIENT", "true").lower() == "true"
)

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv(
    "EMAIL_FROM_ADDRESS", "District Smile Dental <noreply@districtsmiles.online>"
)

# Redis-backed helpers
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
SLOTS_CACHE_TTL_SECONDS = int(os.getenv("SLOTS_CACHE_TTL_SECONDS", "300"))
DATES_CACHE_TTL_SECONDS = int(os.getenv("DATES_CACHE_TTL_SECONDS", "900"))

# Redis (cache, rate limiting, arq worker)
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"
