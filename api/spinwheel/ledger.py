"""
Append-only record of completed spins.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import Prize, SpinResult
from .tokens import ClientContext


def append(db: Session, token_code: str, prize_id: int, context: ClientContext) -> SpinResult:
    row = SpinResult(
        token_code=token_code,
        prize_id=prize_id,
        user_agent=context.user_agent,
        ip_address=context.ip_address,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def for_token(db: Session, token_code: str) -> list[SpinResult]:
    return db.query(SpinResult).filter(SpinResult.token_code == token_code).all()


def count(db: Session) -> int:
    return db.query(func.count(SpinResult.id)).scalar() or 0


def list_page(db: Session, page: int = 1, limit: int = 50) -> tuple[list[tuple[SpinResult, Prize | None]], int]:
    """Newest first, joined with the prize each result points at."""
    total = count(db)
    rows = (
        db.query(SpinResult, Prize)
          .join(Prize, SpinResult.prize_id == Prize.id, isouter=True)
          .order_by(SpinResult.created_at.desc(), SpinResult.id.desc())
          .offset((page - 1) * limit)
          .limit(limit)
          .all()
    )
    return [(r, p) for r, p in rows], total


def stats(db: Session) -> dict:
    per_prize = (
        db.query(Prize.name, func.count(SpinResult.id))
          .select_from(SpinResult)
          .join(Prize, SpinResult.prize_id == Prize.id, isouter=True)
          .group_by(Prize.name)
          .all()
    )
    prize_stats = {(name or "Unknown"): n for name, n in per_prize}
    most_popular = max(prize_stats, key=prize_stats.get) if prize_stats else None
    unique_tokens = db.query(func.count(func.distinct(SpinResult.token_code))).scalar() or 0
    return {
        "total_spins": count(db),
        "unique_tokens": unique_tokens,
        "prize_stats": prize_stats,
        "most_popular_prize": most_popular,
    }
