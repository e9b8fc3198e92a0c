"""
tests.test_fees

Service-tier fee calculation.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from dealguard.db.models import ServiceTier
from dealguard.domain.fees import calculate_fee, to_egp
from dealguard.errors import ValidationError


def test_governance_is_flat() -> None:
    result = calculate_fee(ServiceTier.governance_advisory)
    assert result.fee_egp == Decimal("5000.00")
    assert result.value_egp is None


def test_document_custody_percentage_plus_storage() -> None:
    result = calculate_fee(ServiceTier.document_custody, Decimal("1000000"), "EGP")
    assert result.fee_egp == Decimal("9500.00")
    assert [line["amount"] for line in result.breakdown] == ["7500.00", "2000.00"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (Decimal("100000"), Decimal("25000.00")),  # 3% = 3,000 -> minimum applies
        (Decimal("4000000"), Decimal("120000.00")),
        (Decimal("5000000"), Decimal("100000.00")),
        (Decimal("10000000"), Decimal("150000.00")),
    ],
)
def test_financial_escrow_brackets(value: Decimal, expected: Decimal) -> None:
    assert calculate_fee(ServiceTier.financial_escrow, value, "EGP").fee_egp == expected


def test_currency_conversion() -> None:
    assert to_egp(Decimal("100"), "usd") == Decimal("4950.0")
    # Unknown currencies are taken at par.
    assert to_egp(Decimal("100"), "XYZ") == Decimal("100")
    result = calculate_fee(ServiceTier.financial_escrow, Decimal("200000"), "USD")
    assert result.value_egp == Decimal("9900000.00")
    assert result.fee_egp == Decimal("198000.00")


def test_value_required_for_percentage_tiers() -> None:
    with pytest.raises(ValidationError):
        calculate_fee(ServiceTier.document_custody, None)
    with pytest.raises(ValidationError):
        calculate_fee(ServiceTier.financial_escrow, Decimal("0"))


def test_unknown_tier() -> None:
    with pytest.raises(ValidationError):
        calculate_fee("PLATINUM", Decimal("10"))
