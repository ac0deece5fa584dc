import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text

from .db import Base

PENDING = "pending"
PAID = "paid"
VERIFIED = "verified"
COMPLETED = "completed"
FAILED = "failed"

STATUS_ORDER = (PENDING, PAID, VERIFIED, COMPLETED)
TERMINAL_STATUSES = (COMPLETED, FAILED)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, index=True, nullable=False)
    commitment = Column(Text, nullable=False)  # decimal field element, never rewritten
    price_cents = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=PENDING)
    nullifier_hash = Column(String, unique=True, nullable=True)
    payment_ref = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(String, nullable=False, default=_now)


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=True)
    price_cents = Column(Integer, nullable=False)
    file_key = Column(String, nullable=False)  # object-storage key of the encrypted blob
    secret_key = Column(String, nullable=False)  # hex AES-256 key for the blob
