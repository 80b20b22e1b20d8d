"""
Runtime configuration for the Food Delivery API

Everything is read from the environment once at import time.
"""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

JWT_SECRET = os.getenv("JWT_SECRET", "dev_secret_change_me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", 60 * 24 * 14))  # 14 days
RESET_TOKEN_EXPIRE_MIN = int(os.getenv("RESET_TOKEN_EXPIRE_MIN", 15))
VERIFY_TOKEN_EXPIRE_MIN = int(os.getenv("VERIFY_TOKEN_EXPIRE_MIN", 60 * 24))

REQUIRE_EMAIL_VERIFICATION = _flag("REQUIRE_EMAIL_VERIFICATION")
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", 5))
LOGIN_LOCKOUT_MIN = int(os.getenv("LOGIN_LOCKOUT_MIN", 15))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8000")
SESSION_SECRET = os.getenv("SESSION_SECRET", JWT_SECRET)
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))

# Synthetic admin alerts, never enable in production
DEMO_NOTIFICATIONS = _flag("DEMO_NOTIFICATIONS")
DEMO_NOTIFICATION_INTERVAL = float(os.getenv("DEMO_NOTIFICATION_INTERVAL", 45))
DEMO_NOTIFICATION_PROBABILITY = float(os.getenv("DEMO_NOTIFICATION_PROBABILITY", 0.08))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Seeded on startup when both are set
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

# Order pricing, applied server side
DELIVERY_FEE_CENTS = int(os.getenv("DELIVERY_FEE_CENTS", 299))
TAX_RATE = float(os.getenv("TAX_RATE", 0.08))
ESTIMATED_DELIVERY_MIN = int(os.getenv("ESTIMATED_DELIVERY_MIN", 45))

# How often stale admin notification sessions are closed, in seconds
SESSION_SWEEP_INTERVAL = float(os.getenv("SESSION_SWEEP_INTERVAL", 300))
