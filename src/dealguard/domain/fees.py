"""
dealguard.domain.fees

Service-tier fee calculator.

Responsibilities:
- Convert an estimated deal value into EGP using the fixed rate table.
- Compute the platform fee for a service tier with a line-item breakdown.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from dealguard.db.models import ServiceTier
from dealguard.errors import ValidationError

EGP_RATES: dict[str, Decimal] = {
    "EGP": Decimal("1"),
    "USD": Decimal("49.5"),
    "EUR": Decimal("53.2"),
    "GBP": Decimal("62.1"),
    "AED": Decimal("13.5"),
    "SAR": Decimal("13.2"),
}

GOVERNANCE_FLAT_FEE = Decimal("5000")
CUSTODY_RATE = Decimal("0.0075")
CUSTODY_STORAGE_FEE = Decimal("2000")
ESCROW_MINIMUM_FEE = Decimal("25000")

# (upper bound exclusive in EGP, rate); None = no upper bound.
ESCROW_BRACKETS: tuple[tuple[Decimal | None, Decimal], ...] = (
    (Decimal("5000000"), Decimal("0.03")),
    (Decimal("10000000"), Decimal("0.02")),
    (None, Decimal("0.015")),
)

_CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class FeeResult:
    tier: ServiceTier
    currency: str
    value_egp: Decimal | None
    fee_egp: Decimal
    breakdown: list[dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "tier": str(self.tier),
            "currency": self.currency,
            "value_egp": None if self.value_egp is None else str(self.value_egp),
            "fee_egp": str(self.fee_egp),
            "breakdown": self.breakdown,
        }


def to_egp(amount: Decimal, currency: str) -> Decimal:
    # Unknown currencies are treated at par.
    rate = EGP_RATES.get(currency.upper(), Decimal("1"))
    return amount * rate


def calculate_fee(
    tier: ServiceTier | str, estimated_value: Decimal | None = None, currency: str = "EGP"
) -> FeeResult:
    try:
        tier = ServiceTier(tier)
    except ValueError as e:
        raise ValidationError(f"unknown service tier: {tier}") from e

    currency = currency.upper()

    if tier == ServiceTier.governance_advisory:
        value_egp = None if estimated_value is None else _money(to_egp(estimated_value, currency))
        return FeeResult(
            tier=tier,
            currency=currency,
            value_egp=value_egp,
            fee_egp=_money(GOVERNANCE_FLAT_FEE),
            breakdown=[{"item": "flat advisory fee", "amount": str(_money(GOVERNANCE_FLAT_FEE))}],
        )

    if estimated_value is None or estimated_value <= 0:
        raise ValidationError(f"{tier} requires a positive estimated value")

    value_egp = to_egp(estimated_value, currency)

    if tier == ServiceTier.document_custody:
        custody = _money(value_egp * CUSTODY_RATE)
        storage = _money(CUSTODY_STORAGE_FEE)
        return FeeResult(
            tier=tier,
            currency=currency,
            value_egp=_money(value_egp),
            fee_egp=custody + storage,
            breakdown=[
                {"item": "custody fee (0.75%)", "amount": str(custody)},
                {"item": "storage fee", "amount": str(storage)},
            ],
        )

    rate = next(r for bound, r in ESCROW_BRACKETS if bound is None or value_egp < bound)
    percentage = _money(value_egp * rate)
    breakdown = [{"item": f"escrow fee ({(rate * 100).normalize()}%)", "amount": str(percentage)}]
    fee = percentage
    if fee < ESCROW_MINIMUM_FEE:
        breakdown.append(
            {"item": "minimum fee adjustment", "amount": str(_money(ESCROW_MINIMUM_FEE - fee))}
        )
        fee = _money(ESCROW_MINIMUM_FEE)
    return FeeResult(
        tier=tier,
        currency=currency,
        value_egp=_money(value_egp),
        fee_egp=fee,
        breakdown=breakdown,
    )
