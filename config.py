import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to app.py as interviewslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "interviewslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity collaborator: signs the forwarded user id with this secret
    IDENTITY_SHARED_SECRET = os.getenv("IDENTITY_SHARED_SECRET", "dev-identity-secret")
    IDENTITY_USER_HEADER = "X-User-Id"
    IDENTITY_SIGNATURE_HEADER = "X-User-Signature"

    # Reservation holds
    HOLD_TTL_SECONDS = _env_int("HOLD_TTL_SECONDS", 15 * 60)
    HOLD_REUSE_EXISTING = os.getenv("HOLD_REUSE_EXISTING", "true").lower() == "true"
    SLOT_TXN_RETRIES = _env_int("SLOT_TXN_RETRIES", 3)
    # hold -> booking conversion; the unit is already reserved
    CONVERT_TXN_RETRIES = _env_int("CONVERT_TXN_RETRIES", 10)

    # Payments
    PAYMENT_MAX_ATTEMPTS = _env_int("PAYMENT_MAX_ATTEMPTS", 2)  # first try + one retry
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "inr")
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL")
    STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL")
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = _env_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300)

    # Cancellation / pay-later policy
    CANCEL_CUTOFF_HOURS = _env_int("CANCEL_CUTOFF_HOURS", 12)
    PAY_LATER_DEADLINE_HOURS = _env_int("PAY_LATER_DEADLINE_HOURS", 24)

    # e.g. "https://meet.example.com/{booking_id}"; empty means admin assigns links
    MEETING_LINK_TEMPLATE = os.getenv("MEETING_LINK_TEMPLATE", "")

    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = _env_int("SMTP_PORT", 587)
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
