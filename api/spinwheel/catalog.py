"""
Prize catalog and the fixed-slot wheel layout built on top of it.

``list_active`` defines the one ordering everything else uses: position
ascending (unset positions last), then creation order. ``build_layout``
turns that list into the slots a display wheel shows and the selector draws
from, so the slot a spin lands on is the slot the wheel displays.
"""
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import settings
from .models import Prize, SpinResult

logger = logging.getLogger(__name__)

NO_WIN_NAME = "Try again"
NO_WIN_COLOR = "#6B7280"


def list_active(db: Session) -> list[Prize]:
    return (
        db.query(Prize)
          .filter(Prize.is_active == True)
          .order_by(
              Prize.position.is_(None),
              Prize.position.asc(),
              Prize.created_at.asc(),
              Prize.id.asc(),
          )
          .all()
    )


@dataclass(frozen=True)
class WheelSlot:
    index: int
    prize: Prize | None
    weight: float
    is_fallback: bool

    @property
    def is_win(self) -> bool:
        return self.prize is not None

    @property
    def name(self) -> str:
        return self.prize.name if self.prize else NO_WIN_NAME

    @property
    def description(self) -> str | None:
        return self.prize.description if self.prize else None

    @property
    def color(self) -> str:
        return self.prize.color if self.prize else NO_WIN_COLOR


@dataclass(frozen=True)
class WheelLayout:
    slots: list[WheelSlot]
    # active prizes that did not fit on a fixed-size wheel
    hidden: list[Prize]

    @property
    def prizes(self) -> list[Prize]:
        return [s.prize for s in self.slots if s.prize is not None]

    def __len__(self) -> int:
        return len(self.slots)


def layout_for(prizes: list[Prize], slot_count: int) -> WheelLayout:
    """Fit ordered prizes onto a wheel of ``slot_count`` slots.

    With ``slot_count`` 0 every prize gets a slot. Otherwise prizes past the
    last slot are left off the wheel, and so out of the draw, while staying
    active in storage; empty slots become no-win placeholders with weight 0.
    """
    shown, hidden = prizes, []
    if slot_count > 0:
        shown, hidden = prizes[:slot_count], prizes[slot_count:]
        if hidden:
            logger.warning(
                "%d active prizes exceed the %d wheel slots and are not drawable: %s",
                len(hidden), slot_count, [p.name for p in hidden],
            )

    slots = [
        WheelSlot(index=i, prize=p, weight=max(float(p.probability or 0), 0.0), is_fallback=False)
        for i, p in enumerate(shown)
    ]
    for i in range(len(slots), slot_count):
        slots.append(WheelSlot(index=i, prize=None, weight=0.0, is_fallback=True))
    return WheelLayout(slots=slots, hidden=hidden)


def build_layout(db: Session, slot_count: int | None = None) -> WheelLayout:
    return layout_for(list_active(db), settings.wheel_slots if slot_count is None else slot_count)


# --- Admin CRUD ---

PRIZE_FIELDS = ("name", "description", "probability", "color", "is_active", "position")


def list_all(db: Session) -> list[Prize]:
    return db.query(Prize).order_by(Prize.created_at.desc(), Prize.id.desc()).all()


def get_prize(db: Session, prize_id: int) -> Prize | None:
    return db.get(Prize, prize_id)


def create_prize(db: Session, data: dict[str, Any]) -> Prize:
    prize = Prize(**{k: v for k, v in data.items() if k in PRIZE_FIELDS and v is not None})
    db.add(prize)
    db.commit()
    db.refresh(prize)
    logger.info("Created prize %s (%s)", prize.id, prize.name)
    return prize


def update_prize(db: Session, prize: Prize, data: dict[str, Any]) -> Prize:
    for k, v in data.items():
        if k in PRIZE_FIELDS:
            setattr(prize, k, v)
    db.commit()
    db.refresh(prize)
    return prize


def prize_in_use(db: Session, prize_id: int) -> bool:
    n = db.query(func.count(SpinResult.id)).filter(SpinResult.prize_id == prize_id).scalar() or 0
    return n > 0


def delete_prize(db: Session, prize: Prize) -> None:
    db.delete(prize)
    db.commit()
    logger.info("Deleted prize %s (%s)", prize.id, prize.name)
