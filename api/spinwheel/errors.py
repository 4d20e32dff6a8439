"""
Failure taxonomy for token redemption.

Every rejection carries a ``Reason`` so the transport layer can pick a status
code and message without knowing which persistence error happened underneath.
"""
from enum import Enum


class Reason(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    ALREADY_DELETED = "already_deleted"
    EXPIRED = "expired"
    RACE_LOST = "race_lost"
    NO_SELECTABLE_OUTCOME = "no_selectable_outcome"
    INVALID_INPUT = "invalid_input"
    TRANSIENT_FAILURE = "transient_failure"
    CONSUMED_WITHOUT_PRIZE = "consumed_without_prize"


HTTP_STATUS = {
    Reason.NOT_FOUND: 404,
    Reason.ALREADY_USED: 409,
    Reason.RACE_LOST: 409,
    Reason.EXPIRED: 410,
    Reason.ALREADY_DELETED: 410,
    Reason.NO_SELECTABLE_OUTCOME: 400,
    Reason.INVALID_INPUT: 400,
    Reason.TRANSIENT_FAILURE: 503,
    Reason.CONSUMED_WITHOUT_PRIZE: 500,
}

MESSAGES = {
    Reason.NOT_FOUND: "Token not found",
    Reason.ALREADY_USED: "Token has already been used",
    Reason.ALREADY_DELETED: "Token has been deactivated",
    Reason.EXPIRED: "Token has expired",
    Reason.NO_SELECTABLE_OUTCOME: "No prizes available",
    Reason.INVALID_INPUT: "Invalid input",
    Reason.TRANSIENT_FAILURE: "Service temporarily unavailable, please retry",
    Reason.CONSUMED_WITHOUT_PRIZE: "Token was used but the spin could not be completed",
}


class RedemptionError(Exception):
    reason: Reason = Reason.INVALID_INPUT

    def __init__(self, reason: Reason | None = None, message: str | None = None):
        if reason is not None:
            self.reason = reason
        self.message = message or MESSAGES[self.public_reason]
        super().__init__(self.message)

    @property
    def public_reason(self) -> Reason:
        # a lost race is indistinguishable from an earlier use once it has happened
        if self.reason is Reason.RACE_LOST:
            return Reason.ALREADY_USED
        return self.reason

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.reason]


class RedemptionRejected(RedemptionError):
    """Token could not be claimed: not found, used, deleted, expired or race lost."""


class InvalidInput(RedemptionError):
    reason = Reason.INVALID_INPUT


class NoSelectableOutcome(RedemptionError):
    reason = Reason.NO_SELECTABLE_OUTCOME


class TransientFailure(RedemptionError):
    """Persistence was unreachable before any claim succeeded; safe to retry with the same code."""
    reason = Reason.TRANSIENT_FAILURE


class SpinNotRecorded(RedemptionError):
    """The token was claimed but the result could not be stored; retrying the code will not help."""
    reason = Reason.CONSUMED_WITHOUT_PRIZE
