import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dentcare.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))

# Frontend base URL for redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]

# Google Calendar OAuth Configuration
# OAuth flow: Google → Frontend → Frontend sends code to Backend API
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", f"{FRONTEND_URL}/auth/google-calendar")
GOOGLE_CALENDAR_TIMEZONE = os.getenv("GOOGLE_CALENDAR_TIMEZONE", "Europe/Lisbon")
GOOGLE_API_TIMEOUT = float(os.getenv("GOOGLE_API_TIMEOUT", "15"))

# Stripe price IDs (products are created in the Stripe Dashboard)
STRIPE_PRICE_BASIC_MONTHLY = os.getenv("STRIPE_PRICE_BASIC_MONTHLY", "price_basic_monthly")
STRIPE_PRICE_PRO_MONTHLY = os.getenv("STRIPE_PRICE_PRO_MONTHLY", "price_pro_monthly")
STRIPE_PRICE_ENTERPRISE_MONTHLY = os.getenv(
    "STRIPE_PRICE_ENTERPRISE_MONTHLY", "price_enterprise_monthly"
)

# Response cache: "memory" (per process) or "redis" (shared between workers)
CACHE_BACKEND = os.getenv("CACHE_BACKEND", "memory").lower()
CACHE_DEFAULT_TTL = int(os.getenv("CACHE_DEFAULT_TTL", "300"))  # seconds
CACHE_SWEEP_INTERVAL = int(os.getenv("CACHE_SWEEP_INTERVAL", "60"))  # seconds
REDIS_URL = os.getenv("REDIS_URL")

# Appointment scheduling defaults (clinic local time)
CLINIC_OPENING_HOUR = int(os.getenv("CLINIC_OPENING_HOUR", "7"))
CLINIC_CLOSING_HOUR = int(os.getenv("CLINIC_CLOSING_HOUR", "20"))
# Python weekday numbers: 0=Monday ... 6=Sunday
CLINIC_OPEN_WEEKDAYS = [
    int(day) for day in os.getenv("CLINIC_OPEN_WEEKDAYS", "0,1,2,3,4,5").split(",") if day.strip()
]
APPOINTMENT_MIN_DURATION_MINUTES = int(os.getenv("APPOINTMENT_MIN_DURATION_MINUTES", "15"))
APPOINTMENT_MAX_DURATION_MINUTES = int(os.getenv("APPOINTMENT_MAX_DURATION_MINUTES", "240"))
APPOINTMENT_MIN_NOTICE_MINUTES = int(os.getenv("APPOINTMENT_MIN_NOTICE_MINUTES", "30"))
SLOT_INTERVAL_MINUTES = int(os.getenv("SLOT_INTERVAL_MINUTES", "30"))
WORKING_HOURS_PER_DAY = float(os.getenv("WORKING_HOURS_PER_DAY", "9"))

# GDPR deadlines
DATA_SUBJECT_REQUEST_DEADLINE_DAYS = int(os.getenv("DATA_SUBJECT_REQUEST_DEADLINE_DAYS", "30"))
BREACH_NOTIFICATION_HOURS = int(os.getenv("BREACH_NOTIFICATION_HOURS", "72"))
