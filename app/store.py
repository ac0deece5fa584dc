"""
Persisted purchase and catalog records.

Every status change is a conditional UPDATE keyed on the expected current status,
so concurrent sessions on one purchase cannot both advance it. The UNIQUE
constraint on purchases.nullifier_hash is the replay guard for submitted proofs.
"""
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bookvault.errors import InvalidState, PersistenceFailure

from . import models

log = logging.getLogger(__name__)


class ConsumeOutcome(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_USED = "already_used"
    STATUS_MISMATCH = "status_mismatch"


@dataclass(frozen=True)
class PurchaseRecord:
    id: str
    user_id: str
    commitment: str
    price_cents: int
    status: str
    nullifier_hash: Optional[str]
    payment_ref: Optional[str]


@dataclass(frozen=True)
class BookRecord:
    id: int
    title: str
    author: Optional[str]
    price_cents: int
    file_key: str
    secret_key: bytes


def _purchase_record(row: models.Purchase) -> PurchaseRecord:
    return PurchaseRecord(
        id=row.id,
        user_id=row.user_id,
        commitment=row.commitment,
        price_cents=row.price_cents,
        status=row.status,
        nullifier_hash=row.nullifier_hash,
        payment_ref=row.payment_ref,
    )


def _book_record(row: models.Book) -> BookRecord:
    return BookRecord(
        id=row.id,
        title=row.title,
        author=row.author,
        price_cents=row.price_cents,
        file_key=row.file_key,
        secret_key=bytes.fromhex(row.secret_key),
    )


def check_transition(current: str, new: str) -> None:
    """Raise InvalidState unless `new` is the next status after `current` (or `failed`)."""
    if current in models.TERMINAL_STATUSES:
        raise InvalidState(f"purchase is already {current}")
    if new == models.FAILED:
        return
    order = models.STATUS_ORDER
    if current not in order or new not in order or order.index(new) != order.index(current) + 1:
        raise InvalidState(f"illegal transition {current} -> {new}")


class PurchaseStore:
    """Blocking store facade. Async callers go through run_in_threadpool."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    # Purchases

    def create_purchase(self, user_id: str, commitment: str, price_cents: int, payment_ref: Optional[str] = None) -> PurchaseRecord:
        row = models.Purchase(
            user_id=user_id,
            commitment=commitment,
            price_cents=price_cents,
            status=models.PENDING,
            payment_ref=payment_ref or uuid.uuid4().hex,
        )
        with self._session_factory() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return _purchase_record(row)

    def get_purchase(self, purchase_id: str, user_id: Optional[str] = None) -> Optional[PurchaseRecord]:
        with self._session_factory() as db:
            query = db.query(models.Purchase).filter(models.Purchase.id == purchase_id)
            if user_id is not None:
                query = query.filter(models.Purchase.user_id == user_id)
            row = query.first()
            return _purchase_record(row) if row else None

    def get_status(self, purchase_id: str) -> Optional[str]:
        with self._session_factory() as db:
            row = db.query(models.Purchase.status).filter(models.Purchase.id == purchase_id).first()
            return row[0] if row else None

    def transition(self, purchase_id: str, expected: str, new: str) -> bool:
        """Move `expected -> new` only if the persisted status still equals `expected`."""
        check_transition(expected, new)
        with self._session_factory() as db:
            try:
                updated = (
                    db.query(models.Purchase)
                    .filter(models.Purchase.id == purchase_id, models.Purchase.status == expected)
                    .update({models.Purchase.status: new}, synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceFailure(f"status update {expected} -> {new} failed") from exc
        return updated == 1

    def consume(self, purchase_id: str, expected_prior_status: str, nullifier: str) -> ConsumeOutcome:
        """Record the proof's nullifier and mark the purchase verified in one conditional update."""
        check_transition(expected_prior_status, models.VERIFIED)
        with self._session_factory() as db:
            try:
                updated = (
                    db.query(models.Purchase)
                    .filter(models.Purchase.id == purchase_id, models.Purchase.status == expected_prior_status)
                    .update(
                        {models.Purchase.status: models.VERIFIED, models.Purchase.nullifier_hash: nullifier},
                        synchronize_session=False,
                    )
                )
                db.commit()
            except IntegrityError:
                db.rollback()
                log.warning("nullifier reuse rejected for purchase %s", purchase_id)
                return ConsumeOutcome.ALREADY_USED
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceFailure("nullifier could not be recorded") from exc
            if updated == 1:
                return ConsumeOutcome.ACCEPTED
            seen = db.query(models.Purchase.id).filter(models.Purchase.nullifier_hash == nullifier).first()
        return ConsumeOutcome.ALREADY_USED if seen else ConsumeOutcome.STATUS_MISMATCH

    def _transition_by_ref(self, payment_ref: str, expected: str, new: str) -> Optional[str]:
        with self._session_factory() as db:
            row = db.query(models.Purchase.id).filter(models.Purchase.payment_ref == payment_ref).first()
        if not row:
            return None
        return row[0] if self.transition(row[0], expected, new) else None

    def mark_paid_by_ref(self, payment_ref: str) -> Optional[str]:
        """Payment-confirmation hook. Returns the purchase id when it moved pending -> paid."""
        return self._transition_by_ref(payment_ref, models.PENDING, models.PAID)

    def mark_failed_by_ref(self, payment_ref: str) -> Optional[str]:
        return self._transition_by_ref(payment_ref, models.PENDING, models.FAILED)

    # Catalog

    def add_book(self, title: str, price_cents: int, file_key: str, secret_key: bytes, author: Optional[str] = None) -> BookRecord:
        row = models.Book(
            title=title,
            author=author,
            price_cents=price_cents,
            file_key=file_key,
            secret_key=secret_key.hex(),
        )
        with self._session_factory() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return _book_record(row)

    def list_books(self) -> List[BookRecord]:
        """Catalog ordered by id; position in this list is the OT index."""
        with self._session_factory() as db:
            rows = db.query(models.Book).order_by(models.Book.id).all()
            return [_book_record(r) for r in rows]

    def price_exists(self, price_cents: int) -> bool:
        with self._session_factory() as db:
            return db.query(models.Book.id).filter(models.Book.price_cents == price_cents).first() is not None
