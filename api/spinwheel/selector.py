"""
Weighted selection over an ordered sequence of candidates.

The order of ``candidates`` is the display order of the wheel: the index
returned with a selection is the slot a display should land on, and the
same order decides ties when a cumulative boundary falls exactly on the draw.
"""
import secrets
from dataclasses import dataclass
from typing import Callable, Generic, Protocol, Sequence, TypeVar

from .errors import NoSelectableOutcome

_sysrand = secrets.SystemRandom()


class Weighted(Protocol):
    weight: float
    is_fallback: bool


C = TypeVar("C", bound=Weighted)


@dataclass(frozen=True)
class Selection(Generic[C]):
    candidate: C
    index: int


def total_weight(candidates: Sequence[Weighted]) -> float:
    return sum(max(float(c.weight), 0.0) for c in candidates)


def select(
    candidates: Sequence[C],
    random: Callable[[], float] = _sysrand.random,
) -> Selection[C]:
    """Pick one candidate with probability proportional to its weight.

    ``random`` must return a float in [0, 1). When no candidate has a positive
    weight, one of the candidates flagged ``is_fallback`` is chosen uniformly;
    if there are none, ``NoSelectableOutcome`` is raised.
    """
    total = total_weight(candidates)

    if total <= 0:
        fallback = [i for i, c in enumerate(candidates) if c.is_fallback]
        if not fallback:
            raise NoSelectableOutcome()
        i = fallback[min(int(random() * len(fallback)), len(fallback) - 1)]
        return Selection(candidates[i], i)

    r = random() * total
    cum = 0.0
    last_positive = None
    for i, c in enumerate(candidates):
        w = float(c.weight)
        if w <= 0:
            continue
        cum += w
        last_positive = i
        if r <= cum:
            return Selection(c, i)

    # float accumulation can leave cum a hair below total
    return Selection(candidates[last_positive], last_positive)
