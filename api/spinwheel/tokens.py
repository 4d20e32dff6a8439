"""
Token store: issuing, looking up, claiming and retiring redemption codes.

``claim`` is the only function that marks a token used. It is a single
conditional UPDATE keyed on the unused-unexpired-undeleted predicate, so the
database decides which of several concurrent requests wins.
"""
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .config import settings
from .errors import InvalidInput, Reason, RedemptionRejected, TransientFailure
from .models import RetiredCode, Token

logger = logging.getLogger(__name__)

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_RE = re.compile(r"^[A-Z0-9]+$")


class TokenStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    DELETED = "deleted"


@dataclass(frozen=True)
class ClientContext:
    user_agent: str | None = None
    ip_address: str | None = None


def utcnow() -> datetime:
    """UTC-aware 'now' to keep comparisons consistent with timestamptz from Postgres."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def gen_code(length: int | None = None) -> str:
    # 8 characters like "K7F9X2BD"
    return "".join(secrets.choice(ALPHABET) for _ in range(length or settings.token_code_length))


def normalize_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def is_well_formed(code: str) -> bool:
    return len(code) == settings.token_code_length and bool(CODE_RE.match(code))


def effective_status(token: Token, now: datetime | None = None) -> TokenStatus:
    """Deleted > Used > Expired > Active."""
    if token.is_deleted:
        return TokenStatus.DELETED
    if token.is_used:
        return TokenStatus.USED
    if (now or utcnow()) >= as_utc(token.expires_at):
        return TokenStatus.EXPIRED
    return TokenStatus.ACTIVE


REJECTION_FOR_STATUS = {
    TokenStatus.DELETED: Reason.ALREADY_DELETED,
    TokenStatus.USED: Reason.ALREADY_USED,
    TokenStatus.EXPIRED: Reason.EXPIRED,
}


def find_by_code(db: Session, code: str) -> Token | None:
    return db.execute(
        select(Token)
        .where(Token.code == normalize_code(code))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def code_taken(db: Session, code: str) -> bool:
    """True if the code belongs to any token ever issued, deleted and purged ones included."""
    if db.query(Token.id).filter(Token.code == code).first():
        return True
    return db.get(RetiredCode, code) is not None


# --- Redemption ---

def claim(db: Session, code: str, context: ClientContext) -> Token:
    """Atomically mark an active token used.

    Raises ``RedemptionRejected`` with the reason the claim failed, or
    ``TransientFailure`` if the database could not be reached.
    """
    code = normalize_code(code)
    started = utcnow()
    stmt = (
        update(Token)
        .where(
            Token.code == code,
            Token.is_used == False,
            Token.is_deleted == False,
            Token.expires_at > started,
        )
        .values(
            is_used=True,
            used_at=started,
            used_user_agent=context.user_agent,
            used_ip_address=context.ip_address,
        )
        .execution_options(synchronize_session=False)
    )
    try:
        claimed = db.execute(stmt).rowcount == 1
        db.commit()
    except OperationalError as exc:
        db.rollback()
        logger.warning("Claim of %s failed on the database: %s", code, exc)
        raise TransientFailure() from exc

    token = find_by_code(db, code)
    if claimed:
        logger.info("Token %s claimed", code)
        return token

    reason = _failure_reason(token, started)
    if reason is Reason.RACE_LOST:
        logger.info("Token %s lost claim to a concurrent request", code)
    raise RedemptionRejected(reason)


def _failure_reason(token: Token | None, started: datetime) -> Reason:
    if token is None:
        return Reason.NOT_FOUND
    status = effective_status(token, started)
    if status is TokenStatus.USED and as_utc(token.used_at) >= started:
        return Reason.RACE_LOST
    if status is TokenStatus.ACTIVE:
        # it expired or was claimed between our timestamp and the update
        return Reason.RACE_LOST
    return REJECTION_FOR_STATUS[status]


# --- Issuance ---

def create_token(
    db: Session,
    code: str,
    created_by: str,
    expires_at: datetime | None = None,
) -> Token:
    code = normalize_code(code)
    if not is_well_formed(code):
        raise InvalidInput(message=f"Token code must be {settings.token_code_length} letters or digits")
    if code_taken(db, code):
        raise InvalidInput(message="Token code has already been issued")
    token = Token(
        code=code,
        created_by=created_by,
        expires_at=expires_at or utcnow() + timedelta(hours=settings.token_ttl_hours),
    )
    db.add(token)
    try:
        db.commit()
    except IntegrityError:
        # lost a collision to a concurrent issuer
        db.rollback()
        raise InvalidInput(message="Token code has already been issued")
    db.refresh(token)
    return token


def issue_batch(db: Session, quantity: int, created_by: str) -> list[Token]:
    if quantity < 1 or quantity > settings.max_issue_quantity:
        raise InvalidInput(message=f"Quantity must be between 1 and {settings.max_issue_quantity}")

    expires_at = utcnow() + timedelta(hours=settings.token_ttl_hours)
    issued: list[Token] = []
    for _ in range(quantity):
        token = None
        for _attempt in range(100):
            try:
                token = create_token(db, gen_code(), created_by, expires_at=expires_at)
                break
            except InvalidInput:
                continue
        if token is None:
            raise RuntimeError("Cannot generate a unique token code after 100 attempts")
        issued.append(token)

    logger.info("Issued %d tokens by %s", len(issued), created_by)
    return issued


# --- Deletion ---

BULK_KINDS = ("expired", "used", "all-unused")


def _bulk_filter(kind: str, now: datetime):
    if kind == "expired":
        return (Token.is_used == False, Token.expires_at <= now)
    if kind == "used":
        return (Token.is_used == True,)
    if kind == "all-unused":
        return (Token.is_used == False,)
    raise InvalidInput(message="Invalid deletion type")


def soft_delete(db: Session, token_id: int, actor: str) -> Token | None:
    """Hide a token but keep its row so the code can never be issued again."""
    res = db.execute(
        update(Token)
        .where(Token.id == token_id, Token.is_deleted == False)
        .values(is_deleted=True, deleted_at=utcnow(), deleted_by=actor)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount != 1:
        return None
    token = db.execute(
        select(Token).where(Token.id == token_id).execution_options(populate_existing=True)
    ).scalar_one()
    logger.info("Soft deleted token %s by %s", token.code, actor)
    return token


def bulk_soft_delete(db: Session, kind: str, actor: str) -> int:
    now = utcnow()
    res = db.execute(
        update(Token)
        .where(Token.is_deleted == False, *_bulk_filter(kind, now))
        .values(is_deleted=True, deleted_at=now, deleted_by=actor)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Bulk soft deleted %d %s tokens by %s", res.rowcount, kind, actor)
    return res.rowcount


def hard_purge(db: Session) -> int:
    """Permanently remove unused, expired tokens; their codes are retired, not freed."""
    now = utcnow()
    predicate = (Token.is_used == False, Token.expires_at <= now)
    codes = db.execute(select(Token.code).where(*predicate)).scalars().all()
    if not codes:
        return 0
    for code in codes:
        db.merge(RetiredCode(code=code, retired_at=now))
    res = db.execute(
        delete(Token)
        .where(Token.code.in_(codes), *predicate)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Hard purged %d expired tokens", res.rowcount)
    return res.rowcount


# --- Reporting ---

def list_tokens(db: Session) -> list[Token]:
    return db.query(Token).filter(Token.is_deleted == False).order_by(Token.created_at.desc(), Token.id.desc()).all()


def usage_history(db: Session, page: int = 1, limit: int = 50) -> tuple[list[Token], int]:
    q = db.query(Token).filter(Token.is_used == True, Token.is_deleted == False)
    total = q.count()
    rows = q.order_by(Token.used_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total


def status_counts(db: Session) -> dict[str, int]:
    now = utcnow()

    def count(*where) -> int:
        return db.query(func.count(Token.id)).filter(*where).scalar() or 0

    active = count(Token.is_used == False, Token.is_deleted == False, Token.expires_at > now)
    return {
        "total_tokens": count(Token.is_deleted == False),
        "active_tokens": active,
        "used_tokens": count(Token.is_used == True, Token.is_deleted == False),
        "expired_tokens": count(Token.is_used == False, Token.is_deleted == False, Token.expires_at <= now),
        "deleted_tokens": count(Token.is_deleted == True),
        "total_ever_created": count(),
        "available_tokens": active,
    }
