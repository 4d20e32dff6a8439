import logging
import math
import os
from datetime import datetime
from typing import List

from fastapi import FastAPI, Depends, HTTPException, Request, Path, Query, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import catalog, ledger, redemption, tokens
from .config import settings
from .db import Base, engine, get_db
from .errors import InvalidInput, RedemptionError, Reason, MESSAGES
from .models import Token
from .schemas import TokenCodeRequest, SpinResponse, WheelSlotOut, WheelStats, ErrorResponse
from .schemas import ValidateResponse, CheckHistoryResponse
from .schemas import AdminLoginRequest, AdminLoginResponse
from .schemas import TokenIssueRequest, TokenIssueResponse, TokenOut, TokenHistoryResponse, TokenStats
from .schemas import DeleteResponse, Pagination
from .schemas import PrizeIn, PrizeUpdate, PrizeOut
from .schemas import SpinResultOut, ResultsPage, ResultStats, DashboardStats
from .security import require_admin, verify_admin_password, make_admin_token
from .security import rate_limit, mark_fail, clear_fail

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root = logging.getLogger("spinwheel")
    root.handlers = [handler]
    root.setLevel(settings.log_level.upper())
    root.propagate = False


configure_logging()

app = FastAPI(title="Spin Wheel API")

# CORS: explicit origins from .env plus an optional regex
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_origin_regex=settings.allowed_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Dev convenience: create tables if they don't exist
Base.metadata.create_all(bind=engine)


@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail), "code": "HTTP_ERROR"})


@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"message": "Validation error", "code": "VALIDATION_ERROR", "errors": jsonable_encoder(exc.errors())})


@app.exception_handler(RedemptionError)
async def redemption_exc_handler(request: Request, exc: RedemptionError):
    reason = exc.public_reason
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "code": reason.name, "reason": reason.value},
    )


@app.exception_handler(OperationalError)
async def db_exc_handler(request: Request, exc: OperationalError):
    logger.error("Database unavailable: %s", exc)
    return JSONResponse(
        status_code=503,
        content={
            "message": MESSAGES[Reason.TRANSIENT_FAILURE],
            "code": Reason.TRANSIENT_FAILURE.name,
            "reason": Reason.TRANSIENT_FAILURE.value,
        },
    )


def client_context(request: Request) -> tokens.ClientContext:
    return tokens.ClientContext(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def token_out(t: Token, now: datetime | None = None) -> TokenOut:
    return TokenOut(
        id=t.id,
        code=t.code,
        status=tokens.effective_status(t, now).value,
        expires_at=tokens.as_utc(t.expires_at),
        created_at=tokens.as_utc(t.created_at),
        created_by=t.created_by,
        used_at=tokens.as_utc(t.used_at),
        used_user_agent=t.used_user_agent,
        used_ip_address=t.used_ip_address,
        deleted_at=tokens.as_utc(t.deleted_at),
    )


def pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(
        current_page=page,
        total_pages=math.ceil(total / limit) if limit else 0,
        total=total,
        has_more=page * limit < total,
    )


@app.get("/health")
def health():
    return {"ok": True}


# --- Public wheel ---

@app.get("/api/wheel/health")
def wheel_health():
    return {"status": "OK", "timestamp": tokens.utcnow()}


@app.get("/api/wheel/prizes", response_model=List[WheelSlotOut])
def wheel_prizes(db: Session = Depends(get_db)):
    """Wheel slots in the order the draw uses; index N here is display_index N of a spin."""
    layout = catalog.build_layout(db)
    return [
        WheelSlotOut(
            index=s.index,
            prize_id=s.prize.id if s.prize else None,
            name=s.name,
            description=s.description,
            color=s.color,
            probability=s.weight,
            is_win=s.is_win,
        )
        for s in layout.slots
    ]


@app.post(
    "/api/wheel/spin",
    response_model=SpinResponse,
    responses={c: {"model": ErrorResponse} for c in (400, 404, 409, 410, 503)},
)
def spin(payload: TokenCodeRequest, request: Request, db: Session = Depends(get_db)):
    outcome = redemption.redeem(db, payload.token_code, client_context(request))
    slot = outcome.slot
    return SpinResponse(
        message="Spin successful" if slot.is_win else "No prize this time",
        prize_id=slot.prize.id if slot.prize else None,
        prize_name=slot.name,
        prize_description=slot.description,
        prize_color=slot.color,
        is_win=slot.is_win,
        display_index=slot.index,
        slot_count=outcome.slot_count,
        spin_id=outcome.spin.id if outcome.spin else None,
        token_code=outcome.token.code,
        token_used_at=tokens.as_utc(outcome.token.used_at),
    )


@app.get("/api/wheel/stats", response_model=WheelStats)
def wheel_stats(db: Session = Depends(get_db)):
    counts = tokens.status_counts(db)
    return WheelStats(
        total_spins=ledger.count(db),
        total_prizes=len(catalog.list_active(db)),
        total_active_tokens=counts["active_tokens"],
        timestamp=tokens.utcnow(),
    )


# --- Public token checks (read-only) ---

@app.post("/api/tokens/validate", response_model=ValidateResponse)
def validate_token(payload: TokenCodeRequest, db: Session = Depends(get_db)):
    token = redemption.check(db, payload.token_code)
    return ValidateResponse(
        token_id=token.id,
        expires_at=tokens.as_utc(token.expires_at),
        status=tokens.TokenStatus.ACTIVE.value,
    )


@app.post("/api/tokens/check-history", response_model=CheckHistoryResponse)
def check_history(payload: TokenCodeRequest, db: Session = Depends(get_db)):
    code = tokens.normalize_code(payload.token_code)
    if not code:
        raise InvalidInput(message="Token code is required")
    token = tokens.find_by_code(db, code)
    if not token:
        return CheckHistoryResponse(exists=False, message="Token code never existed")

    st = tokens.effective_status(token)
    messages = {
        tokens.TokenStatus.DELETED: "This token was deleted/deactivated",
        tokens.TokenStatus.USED: "This token was already used",
        tokens.TokenStatus.EXPIRED: "This token has expired",
        tokens.TokenStatus.ACTIVE: "Token is valid and available",
    }
    return CheckHistoryResponse(
        exists=True,
        message=messages[st],
        status=st.value,
        is_used=token.is_used,
        is_deleted=token.is_deleted,
        created_at=tokens.as_utc(token.created_at),
        expires_at=tokens.as_utc(token.expires_at),
        used_at=tokens.as_utc(token.used_at),
        deleted_at=tokens.as_utc(token.deleted_at),
    )


# --- Admin auth ---

@app.post("/api/admin/login", response_model=AdminLoginResponse)
def admin_login(body: AdminLoginRequest, request: Request):
    ip = request.client.host if request.client else "unknown"
    rate_limit(ip)

    if not verify_admin_password(body.password):
        mark_fail(ip)
        raise HTTPException(status_code=401, detail="Wrong password")

    clear_fail(ip)
    return AdminLoginResponse(token=make_admin_token())


# --- Admin tokens ---

@app.post("/api/admin/tokens", response_model=TokenIssueResponse, status_code=status.HTTP_201_CREATED)
def admin_issue_tokens(payload: TokenIssueRequest, db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    issued = tokens.issue_batch(db, payload.quantity, admin)
    now = tokens.utcnow()
    return TokenIssueResponse(
        message=f"{len(issued)} token(s) created successfully",
        tokens=[token_out(t, now) for t in issued],
    )


@app.get("/api/admin/tokens", response_model=List[TokenOut])
def admin_list_tokens(db: Session = Depends(get_db), _=Depends(require_admin)):
    now = tokens.utcnow()
    return [token_out(t, now) for t in tokens.list_tokens(db)]


@app.get("/api/admin/tokens/history", response_model=TokenHistoryResponse)
def admin_token_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    rows, total = tokens.usage_history(db, page, limit)
    now = tokens.utcnow()
    return TokenHistoryResponse(tokens=[token_out(t, now) for t in rows], pagination=pagination(page, limit, total))


@app.get("/api/admin/tokens/stats", response_model=TokenStats)
def admin_token_stats(db: Session = Depends(get_db), _=Depends(require_admin)):
    return TokenStats(**tokens.status_counts(db))


@app.delete("/api/admin/tokens/hard-cleanup-expired", response_model=DeleteResponse)
def admin_hard_cleanup(db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    n = tokens.hard_purge(db)
    logger.info("Hard cleanup requested by %s", admin)
    return DeleteResponse(message=f"Permanently deleted {n} expired tokens", deleted_count=n)


@app.delete("/api/admin/tokens/soft-cleanup-expired", response_model=DeleteResponse)
def admin_soft_cleanup(db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    n = tokens.bulk_soft_delete(db, "expired", admin)
    return DeleteResponse(message=f"Hidden {n} expired tokens (soft delete)", deleted_count=n)


@app.delete("/api/admin/tokens/bulk/{kind}", response_model=DeleteResponse)
def admin_bulk_delete(kind: str, db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    n = tokens.bulk_soft_delete(db, kind, admin)
    return DeleteResponse(message=f"Hidden {n} tokens (soft delete)", deleted_count=n)


@app.delete("/api/admin/tokens/{token_id}", response_model=DeleteResponse)
def admin_delete_token(
    token_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    token = tokens.soft_delete(db, token_id, admin)
    if not token:
        raise HTTPException(status_code=404, detail="Token not found")
    return DeleteResponse(message="Token deleted successfully (soft delete)", code=token.code)


# --- Admin prizes ---

@app.get("/api/admin/prizes", response_model=List[PrizeOut])
def admin_list_prizes(db: Session = Depends(get_db), _=Depends(require_admin)):
    return catalog.list_all(db)


@app.post("/api/admin/prizes", response_model=PrizeOut, status_code=status.HTTP_201_CREATED)
def admin_create_prize(payload: PrizeIn, db: Session = Depends(get_db), _=Depends(require_admin)):
    return catalog.create_prize(db, payload.model_dump())


@app.put("/api/admin/prizes/{prize_id}", response_model=PrizeOut)
def admin_update_prize(
    payload: PrizeUpdate,
    prize_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    p = catalog.get_prize(db, prize_id)
    if not p:
        raise HTTPException(status_code=404, detail="Prize not found")
    return catalog.update_prize(db, p, payload.model_dump(exclude_unset=True))


@app.delete("/api/admin/prizes/{prize_id}")
def admin_delete_prize(
    prize_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    p = catalog.get_prize(db, prize_id)
    if not p:
        raise HTTPException(status_code=404, detail="Prize not found")
    if catalog.prize_in_use(db, prize_id):
        raise HTTPException(
            status_code=409,
            detail="Prize has recorded spin results; deactivate it instead.",
        )
    catalog.delete_prize(db, p)
    return {"ok": True}


# --- Admin results & dashboard ---

@app.get("/api/admin/results", response_model=ResultsPage)
def admin_results(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    rows, total = ledger.list_page(db, page, limit)
    out = [
        SpinResultOut(
            id=r.id,
            token_code=r.token_code,
            prize_id=r.prize_id,
            prize_name=p.name if p else None,
            prize_color=p.color if p else None,
            user_agent=r.user_agent,
            ip_address=r.ip_address,
            created_at=tokens.as_utc(r.created_at),
        )
        for r, p in rows
    ]
    return ResultsPage(results=out, pagination=pagination(page, limit, total))


@app.get("/api/admin/results/stats", response_model=ResultStats)
def admin_result_stats(db: Session = Depends(get_db), _=Depends(require_admin)):
    return ResultStats(**ledger.stats(db))


@app.get("/api/admin/stats", response_model=DashboardStats)
def admin_stats(db: Session = Depends(get_db), _=Depends(require_admin)):
    counts = tokens.status_counts(db)
    return DashboardStats(
        total_tokens=counts["total_tokens"],
        used_tokens=counts["used_tokens"],
        expired_tokens=counts["expired_tokens"],
        available_tokens=counts["available_tokens"],
        total_spins=ledger.count(db),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spinwheel.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=False,
    )
