"""
Per-connection purchase session.

AWAITING_INIT -> AWAITING_PAYMENT -> AWAITING_PROOF -> OT_STARTING -> OT_ROUNDS
-> AWAITING_KEY_REQUEST -> AWAITING_COMPLETION_ACK -> CLOSED

The session owns the oblivious-transfer sender for its connection. Nothing here is
shared with other connections except the store, which only sees conditional updates.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect

from bookvault.errors import (
    AlreadyUsed,
    InvalidIndex,
    InvalidState,
    PersistenceFailure,
    ProtocolError,
    Timeout,
    Unauthorized,
)
from bookvault.messages import (
    DownloadAck,
    DownloadRef,
    ErrorNotice,
    Init,
    OtAckBegin,
    OtBegin,
    OtDeliver,
    OtRoundBegin,
    OtRoundChallenge,
    OtRoundReply,
    OtRoundsComplete,
    ReadyForProof,
    RequestDownloadRef,
    SubmitProof,
    decode_hex,
    encode,
    parse_inbound,
)
from bookvault.ot import ObliviousSender
from bookvault.proof import Groth16Verifier

from . import models
from .storage import ObjectStorage
from .store import BookRecord, ConsumeOutcome, PurchaseRecord, PurchaseStore

log = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


class SessionState(str, Enum):
    AWAITING_INIT = "awaiting_init"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_PROOF = "awaiting_proof"
    OT_STARTING = "ot_starting"
    OT_ROUNDS = "ot_rounds"
    AWAITING_KEY_REQUEST = "awaiting_key_request"
    AWAITING_COMPLETION_ACK = "awaiting_completion_ack"
    CLOSED = "closed"


class Channel(Protocol):
    async def receive_text(self) -> str: ...

    async def send_json(self, data) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class PurchaseSession:
    def __init__(
        self,
        channel: Channel,
        purchase_id: str,
        *,
        store: PurchaseStore,
        verifier: Groth16Verifier,
        storage: ObjectStorage,
        authenticate: Callable[[str], str],
        poll_interval: float = 1.0,
        poll_attempts: int = 10,
    ):
        self.channel = channel
        self.purchase_id = purchase_id
        self.state = SessionState.AWAITING_INIT
        self._store = store
        self._verifier = verifier
        self._storage = storage
        self._authenticate = authenticate
        self._poll_interval = poll_interval
        self._poll_attempts = poll_attempts
        self._purchase: Optional[PurchaseRecord] = None
        self._books: list[BookRecord] = []
        self._sender: Optional[ObliviousSender] = None
        self._payment_task: Optional[asyncio.Task] = None
        self._handlers = {
            Init: (self._on_init, (SessionState.AWAITING_INIT,)),
            SubmitProof: (self._on_submit_proof, (SessionState.AWAITING_PROOF,)),
            OtAckBegin: (self._on_ot_ack_begin, (SessionState.OT_STARTING,)),
            OtRoundReply: (self._on_round_reply, (SessionState.OT_ROUNDS,)),
            OtRoundsComplete: (self._on_rounds_complete, (SessionState.OT_ROUNDS,)),
            RequestDownloadRef: (
                self._on_request_download_ref,
                (SessionState.AWAITING_KEY_REQUEST, SessionState.AWAITING_COMPLETION_ACK),
            ),
            DownloadAck: (self._on_download_ack, (SessionState.AWAITING_COMPLETION_ACK,)),
        }

    async def run(self) -> None:
        log.info("purchase session opened for %s", self.purchase_id)
        try:
            while self.state is not SessionState.CLOSED:
                raw = await self.channel.receive_text()
                if self.state is SessionState.CLOSED:
                    break
                await self._handle(raw)
        except WebSocketDisconnect:
            log.info("purchase session %s disconnected in state %s", self.purchase_id, self.state.value)
        finally:
            self._discard()

    async def _handle(self, raw: str) -> None:
        try:
            message = parse_inbound(raw)
            handler, allowed = self._handlers[type(message)]
            if self.state not in allowed:
                raise InvalidState(f"{message.type} not accepted in state {self.state.value}")
            await handler(message)
        except InvalidIndex as exc:
            await self._send(ErrorNotice(code=exc.code, reason=exc.reason))
        except ProtocolError as exc:
            await self._fail(exc)
        except Exception:  # pylint: disable=broad-except
            log.exception("unexpected failure in purchase session %s", self.purchase_id)
            await self._fail(ProtocolError())

    # Handlers

    async def _on_init(self, message: Init) -> None:
        user_id = self._authenticate(message.token)
        purchase = await run_in_threadpool(self._store.get_purchase, self.purchase_id, user_id)
        if purchase is None:
            raise Unauthorized("purchase does not belong to token subject")
        self._purchase = purchase
        if purchase.status == models.PAID:
            await self._ready_for_proof()
        elif purchase.status == models.PENDING:
            log.info("purchase %s pending, waiting for payment confirmation", self.purchase_id)
            self.state = SessionState.AWAITING_PAYMENT
            self._payment_task = asyncio.create_task(self._await_payment())
        else:
            raise InvalidState(f"purchase status is {purchase.status}")

    async def _await_payment(self) -> None:
        try:
            for _ in range(self._poll_attempts):
                await asyncio.sleep(self._poll_interval)
                status = await run_in_threadpool(self._store.get_status, self.purchase_id)
                if self.state is not SessionState.AWAITING_PAYMENT:
                    return
                if status == models.PAID:
                    await self._ready_for_proof()
                    return
                if status != models.PENDING:
                    raise InvalidState(f"purchase status is {status}")
            raise Timeout(f"no payment confirmation after {self._poll_attempts} checks")
        except ProtocolError as exc:
            await self._fail(exc)
        except Exception:  # pylint: disable=broad-except
            log.exception("payment poll failed for purchase %s", self.purchase_id)
            await self._fail(ProtocolError())

    async def _ready_for_proof(self) -> None:
        self.state = SessionState.AWAITING_PROOF
        await self._send(ReadyForProof())

    async def _on_submit_proof(self, message: SubmitProof) -> None:
        claim = await run_in_threadpool(
            self._verifier.verify, message.proof, message.public_signals, self._purchase.commitment
        )
        outcome = await run_in_threadpool(self._store.consume, self.purchase_id, models.PAID, claim.nullifier)
        if outcome is ConsumeOutcome.ALREADY_USED:
            raise AlreadyUsed("nullifier already recorded")
        if outcome is ConsumeOutcome.STATUS_MISMATCH:
            raise InvalidState("purchase was advanced by another session")
        log.info("purchase %s verified", self.purchase_id)

        self._books = await run_in_threadpool(self._store.list_books)
        self._sender = ObliviousSender([book.secret_key for book in self._books])
        self.state = SessionState.OT_STARTING
        await self._send(OtBegin(item_count=self._sender.item_count))

    async def _on_ot_ack_begin(self, message: OtAckBegin) -> None:
        first_round = self._sender.begin()
        self.state = SessionState.OT_ROUNDS
        if first_round is None:
            await self._deliver()
        else:
            await self._send(OtRoundBegin(round=first_round))

    async def _on_round_reply(self, message: OtRoundReply) -> None:
        peer_public = decode_hex(message.public_key, "public_key")
        challenge = self._sender.respond(message.round, peer_public)
        await self._send(OtRoundChallenge.from_challenge(challenge))
        if self._sender.next_round is not None:
            await self._send(OtRoundBegin(round=self._sender.next_round))

    async def _on_rounds_complete(self, message: OtRoundsComplete) -> None:
        await self._deliver()

    async def _deliver(self) -> None:
        delivered = self._sender.deliver_all()
        self.state = SessionState.AWAITING_KEY_REQUEST
        await self._send(OtDeliver(encrypted_secrets=[blob.hex() for blob in delivered]))
        log.info("purchase %s: encrypted catalog keys delivered", self.purchase_id)

    async def _on_request_download_ref(self, message: RequestDownloadRef) -> None:
        if not 0 <= message.index < len(self._books):
            raise InvalidIndex()
        url = self._storage.presign(self._books[message.index].file_key)
        self.state = SessionState.AWAITING_COMPLETION_ACK
        await self._send(DownloadRef(url=url, expires_in=self._storage.expires_in))

    async def _on_download_ack(self, message: DownloadAck) -> None:
        try:
            moved = await run_in_threadpool(
                self._store.transition, self.purchase_id, models.VERIFIED, models.COMPLETED
            )
        except PersistenceFailure as exc:
            log.error("purchase %s delivered but completion was not saved: %s", self.purchase_id, exc.detail)
            await self._close(exc.code, exc.reason)
            return
        if not moved:
            log.error("purchase %s delivered but was no longer verified", self.purchase_id)
            await self._close(PersistenceFailure.code, PersistenceFailure.reason)
            return
        log.info("purchase %s completed", self.purchase_id)
        await self._close(NORMAL_CLOSURE, "purchase completed")

    # Plumbing

    async def _send(self, message: BaseModel) -> None:
        if self.state is not SessionState.CLOSED:
            await self.channel.send_json(encode(message))

    async def _fail(self, exc: ProtocolError) -> None:
        log.warning(
            "purchase session %s failed in state %s: %s (%s)",
            self.purchase_id,
            self.state.value,
            type(exc).__name__,
            exc.detail,
        )
        await self._close(exc.code, exc.reason)

    async def _close(self, code: int, reason: str) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._discard()
        try:
            await self.channel.close(code=code, reason=reason)
        except RuntimeError:
            log.debug("purchase session %s: channel already closed", self.purchase_id)

    def _discard(self) -> None:
        if self._payment_task is not None and self._payment_task is not asyncio.current_task():
            self._payment_task.cancel()
        self._payment_task = None
        if self._sender is not None:
            self._sender.abort()
            self._sender = None
