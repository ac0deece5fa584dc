import hashlib
import hmac
import json
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from bookvault.auth import verify_token
from bookvault.errors import Unauthorized
from bookvault.proof import Groth16Verifier, VerificationKey

from .config import load_settings
from .db import init_db, make_engine, make_session_factory
from .session import PurchaseSession
from .storage import ObjectStorage
from .store import PurchaseStore

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    engine = make_engine(settings.db_url)
    init_db(engine)
    app.state.settings = settings
    app.state.store = PurchaseStore(make_session_factory(engine))
    app.state.verifier = Groth16Verifier(VerificationKey.load(settings.vkey_path), settings.signal_layout)
    app.state.storage = ObjectStorage(
        bucket=settings.storage_bucket,
        endpoint_url=settings.storage_endpoint,
        region=settings.storage_region,
        access_key=settings.storage_access_key,
        secret_key=settings.storage_secret_key,
        expires_in=settings.presign_expiry,
    )
    log.info("bookvault service started (db=%s)", engine.url.render_as_string(hide_password=True))
    yield
    engine.dispose()


app = FastAPI(title="BookVault API", version="0.1", lifespan=lifespan)
bearer = HTTPBearer(auto_error=False)


class BookOut(BaseModel):
    id: int
    title: str
    author: Optional[str] = None
    price_cents: int


class OrderIn(BaseModel):
    commitment: str
    price_cents: int


class OrderOut(BaseModel):
    order_id: str
    payment_ref: str


class PaymentEventIn(BaseModel):
    payment_ref: str
    event: Literal["payment_succeeded", "payment_failed"]


def get_store(request: Request) -> PurchaseStore:
    return request.app.state.store


def current_user(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    settings = request.app.state.settings
    try:
        return verify_token(credentials.credentials if credentials else None, settings.jwt_secret, settings.jwt_algorithm)
    except Unauthorized as exc:
        raise HTTPException(status_code=401, detail="Invalid or missing token") from exc


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/books", response_model=List[BookOut])
def list_books(store: PurchaseStore = Depends(get_store)):
    return [BookOut(id=b.id, title=b.title, author=b.author, price_cents=b.price_cents) for b in store.list_books()]


@app.post("/api/orders", response_model=OrderOut)
def create_order(payload: OrderIn, user_id: str = Depends(current_user), store: PurchaseStore = Depends(get_store)):
    if not payload.commitment or payload.price_cents <= 0:
        raise HTTPException(status_code=400, detail="commitment and price_cents are required")
    if not store.price_exists(payload.price_cents):
        raise HTTPException(status_code=400, detail="Invalid payment amount")
    purchase = store.create_purchase(user_id, payload.commitment, payload.price_cents)
    log.info("order %s created for user %s", purchase.id, user_id)
    return OrderOut(order_id=purchase.id, payment_ref=purchase.payment_ref)


def sign_webhook(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@app.post("/webhooks/payment")
async def payment_webhook(request: Request, store: PurchaseStore = Depends(get_store)):
    body = await request.body()
    signature = request.headers.get("x-webhook-signature")
    expected = sign_webhook(body, request.app.state.settings.webhook_secret)
    if not signature or not hmac.compare_digest(signature, expected):
        raise HTTPException(status_code=400, detail="Missing or invalid webhook signature")
    try:
        event = PaymentEventIn.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail="Malformed payment event") from exc

    if event.event == "payment_succeeded":
        purchase_id = await run_in_threadpool(store.mark_paid_by_ref, event.payment_ref)
    else:
        purchase_id = await run_in_threadpool(store.mark_failed_by_ref, event.payment_ref)
    if purchase_id is None:
        log.warning("payment event %s for %s matched no pending purchase", event.event, event.payment_ref)
    else:
        log.info("purchase %s updated by %s", purchase_id, event.event)
    return {"received": True}


@app.websocket("/ws/api/purchase/{purchase_id}")
async def purchase_socket(websocket: WebSocket, purchase_id: str):
    await websocket.accept()
    state = websocket.app.state
    settings = state.settings
    session = PurchaseSession(
        websocket,
        purchase_id,
        store=state.store,
        verifier=state.verifier,
        storage=state.storage,
        authenticate=partial(verify_token, secret=settings.jwt_secret, algorithm=settings.jwt_algorithm),
        poll_interval=settings.payment_poll_interval,
        poll_attempts=settings.payment_poll_attempts,
    )
    await session.run()
