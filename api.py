"""
License Oracle — FastAPI Server
================================

Hosts the Telegram webhook and a small REST surface over the same session.

Endpoints:
    POST /telegram/webhook          Telegram Bot API update receiver
    POST /verify?requester_id=...   Upload a licence photo for verification
    PUT  /accounts/{requester_id}   Register a TON wallet address
    GET  /records                   All verification records
    GET  /records/{requester_id}    One requester's record
    GET  /agents                    Agent directory (cached, ?refresh=true to bypass)
    POST /ask                       Ask the current agent a question
    GET  /health                    Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field

from license_oracle import __version__
from license_oracle.bot import ChatBot
from license_oracle.config import configure_logging, load_settings
from license_oracle.exceptions import ConfigurationError
from license_oracle.models import (
    AgentAnswer,
    AgentDescriptor,
    RecognitionResult,
    VerificationRecord,
    VerificationStatus,
)
from license_oracle.session import OracleSession
from license_oracle.telegram import TelegramClient, TelegramUpdate
from license_oracle.validators import is_valid_account

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1_048_576


# ─── Application Lifespan ───────────────────────────────────────────

_session: OracleSession | None = None
_bot: ChatBot | None = None
_webhook_secret: str | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the session from the environment, derive the wallet, warm the agent cache."""
    global _session, _bot, _webhook_secret  # noqa: PLW0603
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error("%s", e)
        raise SystemExit(1) from None
    configure_logging(settings.log_level)

    _session = OracleSession.from_settings(settings)
    await _session.start()
    telegram = TelegramClient(settings.telegram_bot_token, base_url=settings.telegram_api_url)
    _bot = ChatBot(_session, telegram)
    _webhook_secret = settings.telegram_webhook_secret
    yield
    await telegram.aclose()
    await _session.aclose()
    _session = _bot = _webhook_secret = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="License Oracle API",
    description=(
        "Driver-licence verification oracle. OCR extraction, deterministic "
        "adjudication, best-effort TON ledger recording and an OpenServ agent bridge."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class AccountRequest(BaseModel):
    account: str = Field(
        ...,
        description="TON wallet address (EQ/UQ/0Q prefix + 46 characters).",
        json_schema_extra={"example": "EQCx" + "A" * 44},
    )


class AccountResponse(BaseModel):
    requester_id: str
    account: str


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, description="Question for the current agent.")


class VerifyResponse(BaseModel):
    """Pipeline outcome returned by /verify."""

    status: VerificationStatus
    saved: bool
    message: str
    recognition: Optional[RecognitionResult] = None
    record: Optional[VerificationRecord] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    records: int
    ledger_mode: str
    current_agent: str


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_session() -> OracleSession:
    if _session is None:
        raise HTTPException(status_code=503, detail="Session not initialised")
    return _session


def _get_bot() -> ChatBot:
    if _bot is None:
        raise HTTPException(status_code=503, detail="Bot not initialised")
    return _bot


# ─── Telegram ────────────────────────────────────────────────────────


@app.post(
    "/telegram/webhook",
    summary="Receive a Telegram update",
    tags=["Telegram"],
    responses={403: {"description": "Secret token mismatch"}},
)
async def telegram_webhook(
    update: TelegramUpdate,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
) -> dict:
    """Acknowledge immediately; the update is handled after the response is sent."""
    if _webhook_secret and x_telegram_bot_api_secret_token != _webhook_secret:
        raise HTTPException(status_code=403, detail="Invalid secret token")

    bot = _get_bot()
    background_tasks.add_task(bot.handle_update, update)
    return {"ok": True}


# ─── Verification ────────────────────────────────────────────────────


@app.post(
    "/verify",
    summary="Verify a licence photo",
    tags=["Verification"],
    responses={
        413: {"description": "File too large (max 10 MB)"},
        422: {"description": "Empty upload"},
        503: {"description": "Session not yet initialised"},
    },
)
async def verify_license(
    file: UploadFile,
    requester_id: str = Query(..., min_length=1),
) -> VerifyResponse:
    """Run the photo through recognition, adjudication and ledger recording.

    The requester must have registered an account via `PUT /accounts/{requester_id}`
    first, otherwise the outcome status is `NO_ACCOUNT`.
    """
    if file.size and file.size > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 10 MB)")

    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 10 MB)")
    if not content:
        raise HTTPException(status_code=422, detail="Uploaded file is empty")

    session = _get_session()
    outcome = await session.pipeline.run(content, requester_id)
    return VerifyResponse(
        status=outcome.status,
        saved=outcome.saved,
        message=outcome.message,
        recognition=outcome.recognition,
        record=outcome.record,
    )


@app.put(
    "/accounts/{requester_id}",
    summary="Register a wallet address",
    tags=["Verification"],
    responses={422: {"description": "Malformed TON address"}},
)
def set_account(requester_id: str, request: AccountRequest) -> AccountResponse:
    if not is_valid_account(request.account):
        raise HTTPException(status_code=422, detail="Invalid TON wallet address format")

    session = _get_session()
    account = request.account.strip()
    session.accounts.set(requester_id, account)
    return AccountResponse(requester_id=requester_id, account=account)


@app.get("/records", summary="All verification records", tags=["Verification"])
def list_records() -> dict[str, VerificationRecord]:
    return _get_session().records.get_all()


@app.get(
    "/records/{requester_id}",
    summary="One requester's verification record",
    tags=["Verification"],
    responses={404: {"description": "No record for this requester"}},
)
def get_record(requester_id: str) -> VerificationRecord:
    record = _get_session().records.get(requester_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No record for {requester_id}")
    return record


# ─── Agents ──────────────────────────────────────────────────────────


@app.get("/agents", summary="List workspace agents", tags=["Agents"])
async def list_agents(refresh: bool = False) -> list[AgentDescriptor]:
    directory = _get_session().directory
    if refresh:
        return await directory.refresh()
    return await directory.list_agents()


@app.post("/ask", summary="Ask the current agent", tags=["Agents"])
async def ask_agent(request: AskRequest) -> AgentAnswer:
    """Blocks until the agent answers or the polling window closes."""
    return await _get_session().broker.ask(request.question)


# ─── System ──────────────────────────────────────────────────────────


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Session not yet initialised"}},
)
async def health_check() -> HealthResponse:
    session = _get_session()
    return HealthResponse(
        status="healthy",
        version=__version__,
        records=session.records.size(),
        ledger_mode="active" if session.recorder.configured else "demo",
        current_agent=await session.directory.agent_name(),
    )
