"""
FastAPI application exposing the swap intent lifecycle.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import Settings
from ..engine import SwapEngine
from ..exceptions import ErrorCode, NotFoundError, SealedSwapError, ValidationError
from ..utils import is_valid_address, is_valid_hash, sanitize_for_log
from ..version import __version__
from . import schemas
from .auth import OperatorGuard

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "health": "GET /health",
    "info": "GET /api/info",
    "quote": "POST /swap/quote",
    "intent": "POST /swap/intent",
    "commit": "POST /swap/commit/simple",
    "reveal": "POST /swap/reveal",
    "status": "GET /swap/status/{intentHash}",
    "recover": "GET /swap/recover/{sessionId}",
    "updateSession": "PATCH /swap/session/{sessionId}",
    "removeSession": "DELETE /swap/session/{sessionId}",
    "userSessions": "GET /swap/sessions/{user}",
    "prepareAccounts": "POST /swap/prepare-accounts",
    "validateAccounts": "POST /swap/validate-accounts",
    "swapHealth": "GET /swap/health",
    "initializeFeeAccounts": "POST /fee/initialize-accounts",
    "settle": "POST /fee/settle",
    "feeAccounts": "GET /fee/accounts/{tokenMint}",
    "feeHealth": "GET /fee/health",
}


def _require_hash(value: str) -> str:
    if not is_valid_hash(value):
        raise ValidationError("Invalid intent hash", errors=["intentHash: must be 64 hex characters"])
    return value.lower()


def _require_address(value: str, field: str) -> str:
    if not is_valid_address(value):
        raise ValidationError(f"Invalid {field}", errors=[f"{field}: invalid address {value!r}"])
    return value


def create_app(engine: SwapEngine, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application around an engine.

    Args:
        engine: Wired SwapEngine
        settings: Settings (defaults to the engine's)

    Returns:
        FastAPI app
    """
    settings = settings or engine.settings
    guard = OperatorGuard(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine.start()
        logger.info(f"sealedswap {__version__} started ({settings.env_tier})")
        yield
        engine.shutdown()

    app = FastAPI(title="sealedswap", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SealedSwapError)
    async def _sealedswap_error(request: Request, exc: SealedSwapError):
        # Client errors always carry their details; server-side details only in development
        include = exc.http_status < 500 or settings.is_development
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code.value}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict(include_details=include))

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
        ]
        error = ValidationError("Validation failed", errors=errors)
        return JSONResponse(status_code=error.http_status, content=error.to_dict())

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error = SealedSwapError("Internal server error", details=str(exc) if settings.is_development else None)
        return JSONResponse(status_code=500, content=error.to_dict())

    # Service

    @app.get("/health")
    def health():
        body = engine.health()
        return JSONResponse(status_code=200 if body["status"] == "healthy" else 503, content=body)

    @app.get("/api/info")
    def info():
        return {
            "name": "sealedswap",
            "version": __version__,
            "environment": settings.env_tier,
            "programId": str(engine.chain.program_id),
            "endpoints": ENDPOINTS,
        }

    # Swap lifecycle

    @app.post("/swap/quote")
    def quote(req: schemas.QuoteRequest):
        return engine.quote(req.from_mint, req.to_mint, req.amount, req.slippage_bps)

    @app.post("/swap/intent", response_model=schemas.IntentResponse)
    def create_intent(req: schemas.IntentRequest):
        return engine.create_intent(
            req.route.model_dump(by_alias=True),
            req.trade_meta.model_dump(),
            session_id=req.session_id,
        )

    @app.post("/swap/commit/simple", response_model=schemas.CommitResponse)
    def commit(req: schemas.CommitRequest):
        logger.info(f"Commit requested: {sanitize_for_log(req.model_dump(by_alias=True))}")
        return engine.commit(
            _require_hash(req.intent_hash),
            req.nonce,
            req.expiry,
            enable_relay=req.enable_relay,
            webhook_url=req.webhook_url,
            session_id=req.session_id,
        )

    @app.post("/swap/reveal", response_model=schemas.RevealResponse)
    def reveal(req: schemas.RevealRequest):
        logger.info(f"Reveal requested for {req.expected_hash[:10]}...")
        return engine.reveal(req.intent.model_dump(), req.expected_hash, req.signature)

    @app.get("/swap/status/{intent_hash}", response_model=schemas.StatusResponse)
    def status(intent_hash: str):
        return engine.status(_require_hash(intent_hash))

    @app.get("/swap/recover/{session_id}", response_model=schemas.RecoverResponse)
    def recover(session_id: str):
        return engine.recover(session_id)

    @app.patch("/swap/session/{session_id}")
    def update_session(session_id: str, req: schemas.SessionUpdateRequest):
        changes = req.model_dump(exclude_unset=True)
        if not engine.update_session(session_id, **changes):
            raise NotFoundError("Session not found or expired", code=ErrorCode.SESSION_NOT_FOUND)
        return {"updated": True}

    @app.delete("/swap/session/{session_id}")
    def remove_session(session_id: str):
        return {"removed": engine.remove_session(session_id)}

    @app.get("/swap/sessions/{user}", response_model=schemas.SessionListResponse)
    def user_sessions(user: str):
        return {"user": user, "sessions": engine.list_sessions(user)}

    @app.post("/swap/prepare-accounts", response_model=schemas.PrepareAccountsResponse)
    def prepare_accounts(req: schemas.PrepareAccountsRequest):
        return engine.prepare_accounts(
            _require_address(req.user, "user"),
            _require_address(req.token_in, "tokenIn"),
            _require_address(req.token_out, "tokenOut"),
            create=req.create,
        )

    @app.post("/swap/validate-accounts", response_model=schemas.ValidateAccountsResponse)
    def validate_accounts(req: schemas.ValidateAccountsRequest):
        if req.amount_in <= 0:
            raise ValidationError("Validation failed", errors=["amountIn: must be a positive integer"])
        return engine.validate_accounts(
            _require_address(req.user, "user"),
            _require_address(req.token_in, "tokenIn"),
            _require_address(req.token_out, "tokenOut"),
            req.amount_in,
        )

    @app.get("/swap/health")
    def swap_health():
        body = engine.swap_health()
        return JSONResponse(status_code=200 if body["status"] == "healthy" else 503, content=body)

    # Fee management

    @app.post("/fee/initialize-accounts", response_model=schemas.InitializeFeeAccountsResponse)
    def initialize_fee_accounts(req: schemas.InitializeFeeAccountsRequest, _claims=Depends(guard)):
        return engine.initialize_fee_accounts(_require_address(req.token_mint, "tokenMint"))

    @app.post("/fee/settle", response_model=schemas.SettleResponse)
    def settle(req: schemas.SettleRequest, _claims=Depends(guard)):
        if req.fee_amount <= 0:
            raise ValidationError("Validation failed", errors=["feeAmount: must be a positive integer"])
        return engine.settle_fees(_require_address(req.token_mint, "tokenMint"), req.fee_amount)

    @app.get("/fee/accounts/{token_mint}")
    def fee_accounts(token_mint: str):
        return engine.fee_accounts(_require_address(token_mint, "tokenMint"))

    @app.get("/fee/health")
    def fee_health():
        return engine.fee_health()

    return app
