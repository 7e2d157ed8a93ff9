# Overview: Severity classification of variances against configured cutoffs.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..errors import ValidationError
from ..money import to_decimal


SEVERITY_OK = "ok"
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"

# critical first
SEVERITY_RANK = {
    SEVERITY_CRITICAL: 0,
    SEVERITY_WARNING: 1,
    SEVERITY_OK: 2,
}


@dataclass(frozen=True)
class ThresholdPolicy:
    """
    Two cutoffs, red_cutoff > yellow_cutoff > 0.

    |variance| <  yellow            -> ok
    yellow <= |variance| < red      -> warning
    |variance| >= red               -> critical
    """
    yellow_cutoff: Decimal
    red_cutoff: Decimal

    def __post_init__(self):
        yellow = to_decimal(self.yellow_cutoff, "yellow_cutoff")
        red = to_decimal(self.red_cutoff, "red_cutoff")
        if not (red > yellow > 0):
            raise ValidationError(
                "cutoffs must satisfy red_cutoff > yellow_cutoff > 0",
                yellow_cutoff=yellow,
                red_cutoff=red,
            )
        object.__setattr__(self, "yellow_cutoff", yellow)
        object.__setattr__(self, "red_cutoff", red)

    def classify(self, variance) -> str:
        magnitude = abs(to_decimal(variance, "variance"))
        if magnitude >= self.red_cutoff:
            return SEVERITY_CRITICAL
        if magnitude >= self.yellow_cutoff:
            return SEVERITY_WARNING
        return SEVERITY_OK


def money_policy() -> ThresholdPolicy:
    """Cutoffs for cash variance, from app config."""
    cfg = current_app.config
    return ThresholdPolicy(cfg["MONEY_VARIANCE_YELLOW"], cfg["MONEY_VARIANCE_RED"])


def volume_policy() -> ThresholdPolicy:
    """Cutoffs for liter variance, from app config."""
    cfg = current_app.config
    return ThresholdPolicy(cfg["VOLUME_VARIANCE_YELLOW"], cfg["VOLUME_VARIANCE_RED"])
