import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./consultations.db")

# Clinic day and slot grid
APPOINTMENT_SLOT_MINUTES = int(os.getenv("APPOINTMENT_SLOT_MINUTES", "15"))
CLINIC_DAY_START = os.getenv("CLINIC_DAY_START", "09:00")
CLINIC_DAY_END = os.getenv("CLINIC_DAY_END", "17:00")

# How long a PENDING payment may hold a slot before a new attempt can expire it
PAYMENT_PENDING_GRACE_MINUTES = int(os.getenv("PAYMENT_PENDING_GRACE_MINUTES", "10"))
DEFAULT_CONSULTATION_FEE = float(os.getenv("DEFAULT_CONSULTATION_FEE", "500"))
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")

ORDER_ID_PREFIX = os.getenv("ORDER_ID_PREFIX", "NAMCF")
TRACKING_CODE_PREFIX = os.getenv("TRACKING_CODE_PREFIX", "NAM")

# Cashfree Payment Gateway Configuration
CASHFREE_APP_ID = os.getenv("CASHFREE_APP_ID")
CASHFREE_SECRET_KEY = os.getenv("CASHFREE_SECRET_KEY")
# "test"/"sandbox" or "prod"/"production"/"live" - default to test for safety
CASHFREE_ENV = os.getenv("CASHFREE_ENV", "test")
CASHFREE_TIMEOUT_SECONDS = float(os.getenv("CASHFREE_TIMEOUT_SECONDS", "10"))
# Cashfree requires a customer phone on every order
DEFAULT_PATIENT_PHONE = os.getenv("DEFAULT_PATIENT_PHONE", "9999999999")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Naman Hospital <noreply@namanhospital.in>")


def ensure_https_url(raw: str, label: str = "URL") -> str:
    """Normalize a provider-facing URL to HTTPS (Cashfree rejects plain HTTP)"""
    if not raw:
        raise RuntimeError(f"{label} is not configured")

    trimmed = raw.strip().rstrip("/")
    if trimmed.startswith("https://"):
        return trimmed

    if trimmed.startswith("http://"):
        upgraded = "https://" + trimmed[len("http://") :]
        logger.warning(f"{label} must be HTTPS. Upgrading to {upgraded}")
        return upgraded

    prefixed = f"https://{trimmed}"
    logger.warning(f"{label} missing protocol. Using {prefixed}")
    return prefixed


# Frontend base URL for payment return redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "https://localhost:5173")
PAYMENT_RETURN_BASE_URL = ensure_https_url(
    os.getenv("FRONTEND_PAYMENT_URL") or FRONTEND_URL, "FRONTEND_URL"
)

# Public URL the provider calls back on
BACKEND_PUBLIC_URL = os.getenv(
    "BACKEND_PUBLIC_URL", f"http://localhost:{os.getenv('PORT', '5001')}"
).rstrip("/")
PAYMENT_WEBHOOK_URL = ensure_https_url(
    os.getenv("PAYMENT_WEBHOOK_URL") or f"{BACKEND_PUBLIC_URL}/payments/cashfree-webhook",
    "PAYMENT_WEBHOOK_URL",
)
