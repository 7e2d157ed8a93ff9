from decimal import Decimal

import pytest

from stationledger.errors import ValidationError
from stationledger.services.thresholds import (
    SEVERITY_CRITICAL,
    SEVERITY_OK,
    SEVERITY_WARNING,
    ThresholdPolicy,
    money_policy,
    volume_policy,
)


def test_classify_uses_absolute_variance():
    policy = ThresholdPolicy(Decimal("200"), Decimal("500"))

    assert policy.classify(Decimal("150")) == SEVERITY_OK
    assert policy.classify(Decimal("-150")) == SEVERITY_OK
    assert policy.classify(Decimal("-320")) == SEVERITY_WARNING
    assert policy.classify(Decimal("320")) == SEVERITY_WARNING
    assert policy.classify(Decimal("-600")) == SEVERITY_CRITICAL


def test_cutoffs_are_inclusive_lower_bounds():
    policy = ThresholdPolicy(Decimal("10"), Decimal("50"))

    assert policy.classify(Decimal("9.999")) == SEVERITY_OK
    assert policy.classify(Decimal("10")) == SEVERITY_WARNING
    assert policy.classify(Decimal("49.999")) == SEVERITY_WARNING
    assert policy.classify(Decimal("50")) == SEVERITY_CRITICAL
    assert policy.classify(0) == SEVERITY_OK


@pytest.mark.parametrize(
    "yellow,red",
    [
        (Decimal("500"), Decimal("200")),
        (Decimal("200"), Decimal("200")),
        (Decimal("0"), Decimal("10")),
        (Decimal("-5"), Decimal("10")),
    ],
)
def test_invalid_cutoffs_rejected(yellow, red):
    with pytest.raises(ValidationError):
        ThresholdPolicy(yellow, red)


def test_configured_policies(app):
    money = money_policy()
    volume = volume_policy()

    assert (money.yellow_cutoff, money.red_cutoff) == (Decimal("200"), Decimal("500"))
    assert (volume.yellow_cutoff, volume.red_cutoff) == (Decimal("10"), Decimal("50"))
