import os
from dataclasses import dataclass
from typing import Optional

from bookvault.proof import SignalLayout


@dataclass(frozen=True)
class Settings:
    db_url: str
    jwt_secret: str
    jwt_algorithm: str
    vkey_path: str
    payment_poll_interval: float
    payment_poll_attempts: int
    storage_bucket: str
    storage_endpoint: Optional[str]
    storage_region: str
    storage_access_key: Optional[str]
    storage_secret_key: Optional[str]
    presign_expiry: int
    webhook_secret: str
    signal_layout: SignalLayout


def _optional_index(value: str) -> Optional[int]:
    # An empty value means the proof exposes no root signal.
    return int(value) if value.strip() else None


def load_settings() -> Settings:
    """Read service configuration from BOOKVAULT_* environment variables."""
    return Settings(
        db_url=os.getenv("BOOKVAULT_DB_URL", "sqlite:///./bookvault.db"),
        jwt_secret=os.getenv("BOOKVAULT_JWT_SECRET", "dev-secret-change-me"),
        jwt_algorithm=os.getenv("BOOKVAULT_JWT_ALGORITHM", "HS256"),
        vkey_path=os.getenv("BOOKVAULT_VKEY_PATH", os.path.join("zkp", "verification_key.json")),
        payment_poll_interval=float(os.getenv("BOOKVAULT_PAYMENT_POLL_INTERVAL", "1.0")),
        payment_poll_attempts=int(os.getenv("BOOKVAULT_PAYMENT_POLL_ATTEMPTS", "10")),
        storage_bucket=os.getenv("BOOKVAULT_STORAGE_BUCKET", "books"),
        storage_endpoint=os.getenv("BOOKVAULT_STORAGE_ENDPOINT") or None,
        storage_region=os.getenv("BOOKVAULT_STORAGE_REGION", "auto"),
        storage_access_key=os.getenv("BOOKVAULT_STORAGE_ACCESS_KEY") or None,
        storage_secret_key=os.getenv("BOOKVAULT_STORAGE_SECRET_KEY") or None,
        presign_expiry=int(os.getenv("BOOKVAULT_PRESIGN_EXPIRY", "300")),
        webhook_secret=os.getenv("BOOKVAULT_WEBHOOK_SECRET", "dev-webhook-secret"),
        signal_layout=SignalLayout(
            nullifier=int(os.getenv("BOOKVAULT_SIGNAL_NULLIFIER", "0")),
            root=_optional_index(os.getenv("BOOKVAULT_SIGNAL_ROOT", "1")),
            commitment=int(os.getenv("BOOKVAULT_SIGNAL_COMMITMENT", "2")),
        ),
    )
