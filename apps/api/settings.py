from pydantic_settings import BaseSettings
from pydantic import Field
import os
from pathlib import Path
import dotenv

# Always load apps/.env (relative to this file), regardless of where the process is started.
_APPS_DIR = Path(__file__).resolve().parents[1]
dotenv.load_dotenv(dotenv_path=_APPS_DIR / ".env", override=False)


class Settings(BaseSettings):
    APP_HOST: str = Field(default=os.getenv("APP_HOST", "0.0.0.0"))
    APP_PORT: int = Field(default=int(os.getenv("APP_PORT", "8000")))
    FRONTEND_BASE_URL: str = Field(default=os.getenv("FRONTEND_BASE_URL", "http://localhost:5173"))
    LOG_LEVEL: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Firebase Admin SDK
    # Path to the service account JSON. Defaults to apps/serviceAccountKey.json.
    FIREBASE_SERVICE_ACCOUNT_PATH: str = Field(
        default=os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH", str(_APPS_DIR / "serviceAccountKey.json"))
    )

    # Invoice numbering
    # Rendered as <PREFIX>-<sequence zero padded to PAD digits>, per tenant.
    INVOICE_NUMBER_PREFIX: str = Field(default=os.getenv("INVOICE_NUMBER_PREFIX", "INV"))
    INVOICE_NUMBER_PAD: int = Field(default=int(os.getenv("INVOICE_NUMBER_PAD", "6")))

    # Draft invoice defaults
    INVOICE_PAYMENT_TERMS: str = Field(default=os.getenv("INVOICE_PAYMENT_TERMS", "Net 30"))
    INVOICE_DUE_DAYS: int = Field(default=int(os.getenv("INVOICE_DUE_DAYS", "30")))

    # Broker credit check (external). When empty, the stored customer approval is used.
    BROKER_CREDIT_CHECK_URL: str = Field(default=os.getenv("BROKER_CREDIT_CHECK_URL", ""))
    BROKER_CREDIT_CHECK_API_KEY: str = Field(default=os.getenv("BROKER_CREDIT_CHECK_API_KEY", ""))
    BROKER_CREDIT_CHECK_TIMEOUT_SECONDS: float = Field(
        default=float(os.getenv("BROKER_CREDIT_CHECK_TIMEOUT_SECONDS", "15"))
    )

    # Replays compensating deletes that failed during a saga.
    ENABLE_COMPENSATION_SWEEP: bool = Field(
        default=(os.getenv("ENABLE_COMPENSATION_SWEEP", "true").strip().lower() == "true")
    )
    AUDIT_COMPENSATION_SWEEP_MINUTES: int = Field(default=int(os.getenv("AUDIT_COMPENSATION_SWEEP_MINUTES", "10")))
    AUDIT_COMPENSATION_MAX_ATTEMPTS: int = Field(default=int(os.getenv("AUDIT_COMPENSATION_MAX_ATTEMPTS", "20")))

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra fields like VITE_API_URL


settings = Settings()
