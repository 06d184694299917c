import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Base URL the emailed links point at (auth callback, password reset)
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")

PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))

# Lifetime of one-time codes sent by email (invite, magic link, recovery)
AUTH_CODE_TTL_MINUTES = int(os.getenv("AUTH_CODE_TTL_MINUTES", "60"))
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "168"))

# Resend email configuration; without a key emails are only logged
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv(
    "EMAIL_FROM_ADDRESS", "Daycare Scheduling <noreply@shiftcover.app>"
)

# Optional first platform admin, created at startup if both are set
PLATFORM_ADMIN_EMAIL = os.getenv("PLATFORM_ADMIN_EMAIL")
PLATFORM_ADMIN_PASSWORD = os.getenv("PLATFORM_ADMIN_PASSWORD")
