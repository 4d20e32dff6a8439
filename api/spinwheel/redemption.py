r"""
Token redemption: claim a token, draw a prize, record the result.

    PENDING -> VALIDATED -> CLAIMED -> RESOLVED
         \          \           \
          +----------+-----------+--> REJECTED(reason)

The claim is irreversible. A failure after CLAIMED leaves the token used with
no recorded prize; it is never un-claimed.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import catalog, ledger, tokens
from .catalog import WheelSlot
from .errors import InvalidInput, NoSelectableOutcome, Reason, RedemptionError, RedemptionRejected, SpinNotRecorded
from .models import SpinResult, Token
from .selector import select

logger = logging.getLogger(__name__)


class State(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    CLAIMED = "claimed"
    RESOLVED = "resolved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Outcome:
    token: Token
    slot: WheelSlot
    slot_count: int
    spin: SpinResult | None


class Redemption:
    def __init__(
        self,
        db: Session,
        raw_code: str | None,
        context: tokens.ClientContext,
        random: Callable[[], float] | None = None,
    ):
        self.db = db
        self.raw_code = raw_code
        self.code = tokens.normalize_code(raw_code)
        self.context = context
        self.random = random
        self.state = State.PENDING
        self.reason: Reason | None = None

    def _advance(self, state: State) -> None:
        logger.debug("Redemption %s: %s -> %s", self.code, self.state.value, state.value)
        self.state = state

    def _reject(self, exc: RedemptionError) -> RedemptionError:
        logger.info("Redemption %s rejected in %s: %s", self.code or "<empty>", self.state.value, exc.reason.value)
        self.reason = exc.reason
        self.state = State.REJECTED
        return exc

    def run(self) -> Outcome:
        if not self.code:
            raise self._reject(InvalidInput(message="Token code is required"))
        if not tokens.is_well_formed(self.code):
            raise self._reject(RedemptionRejected(Reason.NOT_FOUND))
        self._advance(State.VALIDATED)

        try:
            token = tokens.claim(self.db, self.code, self.context)
        except RedemptionError as exc:
            raise self._reject(exc)
        self._advance(State.CLAIMED)

        try:
            outcome = self._resolve(token)
        except RedemptionError as exc:
            logger.warning("Token %s consumed without a prize", self.code)
            raise self._reject(exc)
        except SQLAlchemyError as exc:
            # the claim is committed; a database error here is not retryable
            logger.exception("Token %s consumed but the spin could not be stored", self.code)
            self.db.rollback()
            raise self._reject(SpinNotRecorded()) from exc
        except Exception:
            logger.exception("Token %s consumed but resolving the spin failed", self.code)
            raise
        self._advance(State.RESOLVED)
        return outcome

    def _resolve(self, token: Token) -> Outcome:
        layout = catalog.build_layout(self.db)
        if not layout.prizes:
            raise NoSelectableOutcome()

        if self.random is not None:
            chosen = select(layout.slots, random=self.random)
        else:
            chosen = select(layout.slots)
        slot = chosen.candidate

        spin = None
        if slot.is_win:
            spin = ledger.append(self.db, token.code, slot.prize.id, self.context)
            logger.info("Token %s won %r at slot %d", token.code, slot.name, slot.index)
        else:
            logger.info("Token %s landed on no-win slot %d", token.code, slot.index)
        return Outcome(token=token, slot=slot, slot_count=len(layout), spin=spin)


def redeem(
    db: Session,
    raw_code: str | None,
    context: tokens.ClientContext,
    random: Callable[[], float] | None = None,
) -> Outcome:
    return Redemption(db, raw_code, context, random=random).run()


def check(db: Session, raw_code: str | None) -> Token:
    """Read-only validity check; raises the rejection a redemption would get right now.

    This is what a caller should use after a redemption timed out, rather
    than submitting the same code again.
    """
    code = tokens.normalize_code(raw_code)
    if not code:
        raise InvalidInput(message="Token code is required")
    token = tokens.find_by_code(db, code)
    if token is None:
        raise RedemptionRejected(Reason.NOT_FOUND)
    status = tokens.effective_status(token)
    if status is not tokens.TokenStatus.ACTIVE:
        raise RedemptionRejected(tokens.REJECTION_FOR_STATUS[status])
    return token
