import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Base directory of the project (parent of 'app')
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Data Directories
DATA_DIR = BASE_DIR / "data"
UPLOADS_DIR = DATA_DIR / "uploads"

# Database Directory
DB_DIR = BASE_DIR / "db"

# Ensure DB directory exists
os.makedirs(DB_DIR, exist_ok=True)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


# =============================================================================
# Application
# =============================================================================

APP_NAME = "RTO Compliance Hub"
APP_VERSION = "1.0.0"
API_PREFIX = "/api/v1"

DEBUG = _env_bool("DEBUG")
APP_URL = os.getenv("APP_URL", "http://localhost:8000")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "text").lower()

# Bootstrap administrator (password generated when unset)
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@rto-compliance-hub.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")


def get_cors_allow_origins() -> list[str]:
    """Comma separated CORS_ALLOW_ORIGINS, defaulting to the dashboard dev server."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", FRONTEND_URL)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


# =============================================================================
# Rate limiting and CSRF
# =============================================================================

RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "100/minute")
LOGIN_RATE_LIMIT = os.getenv("LOGIN_RATE_LIMIT", "5/15 minutes")
PASSWORD_RESET_RATE_LIMIT = os.getenv("PASSWORD_RESET_RATE_LIMIT", "3/hour")

CSRF_PROTECTION = _env_bool("CSRF_PROTECTION")
CSRF_TOKEN_EXPIRE_SECONDS = int(os.getenv("CSRF_TOKEN_EXPIRE_SECONDS", "3600"))


# =============================================================================
# Email
# =============================================================================

EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "smtp").lower()
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "noreply@rto-compliance-hub.com")
EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "RTO Compliance Hub")

SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_SECURE = _env_bool("SMTP_SECURE")
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")

EMAIL_MAX_RETRIES = int(os.getenv("EMAIL_MAX_RETRIES", "3"))
EMAIL_RETRY_DELAY_SECONDS = int(os.getenv("EMAIL_RETRY_DELAY_SECONDS", "60"))
EMAIL_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("EMAIL_RATE_LIMIT_WINDOW_SECONDS", "3600"))
EMAIL_RATE_LIMIT_MAX_PER_WINDOW = int(os.getenv("EMAIL_RATE_LIMIT_MAX_PER_WINDOW", "100"))
EMAIL_RATE_LIMIT_MAX_PER_RECIPIENT = int(os.getenv("EMAIL_RATE_LIMIT_MAX_PER_RECIPIENT", "10"))


# =============================================================================
# Scheduler
# =============================================================================

SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "true")
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "Australia/Sydney")


# =============================================================================
# Integrations
# =============================================================================

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", f"{APP_URL}{API_PREFIX}/files/google-drive/auth/callback"
)
GOOGLE_DRIVE_ROOT_FOLDER_ID = os.getenv("GOOGLE_DRIVE_ROOT_FOLDER_ID")

XERO_CLIENT_ID = os.getenv("XERO_CLIENT_ID", "")
XERO_CLIENT_SECRET = os.getenv("XERO_CLIENT_SECRET", "")
XERO_REDIRECT_URI = os.getenv("XERO_REDIRECT_URI", f"{APP_URL}{API_PREFIX}/sync/xero/callback")
XERO_SCOPES = os.getenv(
    "XERO_SCOPES", "offline_access payroll.employees.read payroll.settings.read"
)

ACCELERATE_API_URL = os.getenv("ACCELERATE_API_URL", "https://api.acceleratelms.com/v1")
ACCELERATE_API_KEY = os.getenv("ACCELERATE_API_KEY", "")
ACCELERATE_ORGANIZATION_ID = os.getenv("ACCELERATE_ORGANIZATION_ID", "")

# HMAC-SHA256 secret for X-JotForm-Signature; unsigned webhooks are accepted when empty
JOTFORM_WEBHOOK_SECRET = os.getenv("JOTFORM_WEBHOOK_SECRET", "")

# Secret for OAuth tokens stored in the database
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "")
