"""
Tally value type and threshold evaluation.

Thresholds are measured against votes cast, not committee size: abstentions
count toward the total but never toward "yes".
"""
from __future__ import annotations

from dataclasses import dataclass

from app.gavel.constants import (
    CHOICE_ABSTAIN,
    CHOICE_NO,
    CHOICE_YES,
    THRESHOLD_SIMPLE_MAJORITY,
    THRESHOLD_TWO_THIRDS,
    THRESHOLD_UNANIMOUS,
    THRESHOLDS,
)
from app.gavel.errors import ValidationError


@dataclass(frozen=True)
class Tally:
    yes: int = 0
    no: int = 0
    abstain: int = 0

    @property
    def total(self) -> int:
        return self.yes + self.no + self.abstain

    def bump(self, choice: str, delta: int) -> "Tally":
        """Return a copy with ``choice``'s bucket moved by ``delta``, floored at zero."""
        counts = self.to_dict()
        counts[choice] = max(0, counts[choice] + delta)
        return Tally(**counts)

    def to_dict(self) -> dict[str, int]:
        return {CHOICE_YES: self.yes, CHOICE_NO: self.no, CHOICE_ABSTAIN: self.abstain}

    @classmethod
    def of(cls, motion) -> "Tally":
        return cls(
            yes=motion.tally_yes or 0,
            no=motion.tally_no or 0,
            abstain=motion.tally_abstain or 0,
        )


@dataclass(frozen=True)
class Evaluation:
    required: int
    passing: bool
    total: int

    def to_dict(self) -> dict:
        return {"required": self.required, "passing": self.passing, "total": self.total}


def normalize_threshold(raw: str | None) -> str:
    """
    Map free-form threshold names onto the canonical policies.

    Case-insensitive substring match on "two" and "unanim"; unknown or empty
    values mean Simple Majority.
    """
    value = (raw or "").strip().lower()
    if "two" in value:
        return THRESHOLD_TWO_THIRDS
    if "unanim" in value:
        return THRESHOLD_UNANIMOUS
    return THRESHOLD_SIMPLE_MAJORITY


def parse_threshold(raw: str | None) -> str:
    """Strict variant for user input: only the canonical names (any case) are accepted."""
    value = (raw or "").strip()
    for name in THRESHOLDS:
        if value.lower() == name.lower():
            return name
    raise ValidationError(f"Unknown vote threshold {raw!r}; expected one of: {', '.join(THRESHOLDS)}")


def evaluate(tally: Tally, threshold: str | None) -> Evaluation:
    total = tally.total
    if total == 0:
        return Evaluation(required=1, passing=False, total=0)

    policy = normalize_threshold(threshold)
    if policy == THRESHOLD_TWO_THIRDS:
        # ceil(2/3 * total) without floats
        required = -(-2 * total // 3)
        passing = tally.yes >= required
    elif policy == THRESHOLD_UNANIMOUS:
        required = total
        passing = tally.yes == total
    else:
        required = total // 2 + 1
        passing = tally.yes >= required
    return Evaluation(required=required, passing=passing, total=total)
