# core/config.py
import os
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


# Short, human sentences for the Daraja result codes users actually hit.
# Unknown codes fall back to the gateway's own ResultDesc.
DEFAULT_RESULT_MESSAGES: Dict[str, str] = {
    "1": "Insufficient balance in your M-Pesa account",
    "17": "M-Pesa transaction limit reached. Try a smaller amount",
    "1001": "Another M-Pesa transaction is in progress on your phone. Try again shortly",
    "1019": "The payment request expired before it was completed",
    "1025": "M-Pesa could not send the prompt to your phone. Try again",
    "1032": "Payment was cancelled by user",
    "1037": "Unable to reach your phone. Please ensure it's connected and try again",
    "2001": "Wrong M-Pesa PIN entered",
}


class Settings(BaseSettings):
    # ────────────────────────────────
    # 1. APP & ENVIRONMENT
    # ────────────────────────────────
    PROJECT_NAME: str = "Tikiti"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)
    BACKEND_URL: str = "http://127.0.0.1:8000"
    CORS_ORIGINS: List[str] = [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "https://tikiti.co.ke",
    ]

    # ────────────────────────────────
    # 2. FIREBASE / FIRESTORE
    # ────────────────────────────────
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = Field(
        default=None,
        description="Path to Firebase service account JSON"
    )
    TIKITI_FIREBASE_KEY: Optional[str] = Field(
        default=None,
        description="Base64-encoded Firebase service account JSON"
    )
    SUBSCRIPTIONS_COLLECTION: str = "subscriptions"

    # ────────────────────────────────
    # 3. M-PESA (Daraja)
    # ────────────────────────────────
    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_BASE_URL: str = "https://sandbox.safaricom.co.ke"
    MPESA_CALLBACK_URL: str = Field(
        default_factory=lambda: f"{os.getenv('BACKEND_URL', 'http://127.0.0.1:8000')}/api/subscriptions/mpesa/callback"
    )
    MPESA_TRANSACTION_TYPE: str = "CustomerPayBillOnline"
    MPESA_COUNTRY_CODE: str = "254"
    MPESA_TRANSACTION_DESC: str = "Subscription Payment"

    MPESA_TOKEN_TIMEOUT: float = 10.0
    MPESA_REQUEST_TIMEOUT: float = 30.0
    MPESA_TOKEN_RETRIES: int = 3
    MPESA_TOKEN_RETRY_DELAY: float = 2.0
    MPESA_TOKEN_SAFETY_MARGIN: int = Field(default=60, ge=30)

    MPESA_RESULT_MESSAGES: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_RESULT_MESSAGES)
    )

    # ────────────────────────────────
    # 4. EXPIRY SWEEP
    # ────────────────────────────────
    RUN_EXPIRY_LOOP: bool = True
    EXPIRY_SWEEP_INTERVAL: int = 300  # seconds

    # ────────────────────────────────
    # 5. TASK QUEUE (Celery)
    # ────────────────────────────────
    CELERY_BROKER_URL: str = Field(default="redis://localhost:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://localhost:6379/0")

    class Config:
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"


REQUIRED_MPESA_SETTINGS = (
    "MPESA_CONSUMER_KEY",
    "MPESA_CONSUMER_SECRET",
    "MPESA_SHORTCODE",
    "MPESA_PASSKEY",
    "MPESA_BASE_URL",
    "MPESA_CALLBACK_URL",
)


def validate_mpesa_settings(config: Optional[Settings] = None) -> List[str]:
    """Return the names of M-Pesa settings that are missing or empty."""
    config = config or settings
    return [name for name in REQUIRED_MPESA_SETTINGS if not getattr(config, name, None)]


# Create singleton
settings = Settings()
