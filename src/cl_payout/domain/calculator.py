"""Proportional payout computation with exact rational arithmetic.

    share_i = cycle_profit * amount_i / total_amount * pct_i
    pool    = round_half_up(sum(share_i))

Each share is rounded half-up to the cent; the residual between the pool and
the sum of rounded shares goes to the largest participation (earliest on a
tie), so the shares always add up to the pool exactly.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction

from src.cl_common.errors import InvalidProfitShareError
from src.cl_common.money import round_half_up
from src.cl_participation.domain.models import Participation


@dataclass
class PayoutLine:
    participation_id: str
    user_id: str | None
    character_name: str
    amount_cents: int
    profit_share_pct: Decimal
    profit_share_cents: int
    total_payout_cents: int


@dataclass
class PayoutPlan:
    cycle_profit_cents: int
    total_capital_cents: int
    pool_cents: int                       # sum of profit shares
    lines: list[PayoutLine] = field(default_factory=list)

    @property
    def total_payout_cents(self) -> int:
        return sum(line.total_payout_cents for line in self.lines)


def validate_pct(value: Decimal | float | str) -> Decimal:
    try:
        pct = Decimal(str(value))
    except ArithmeticError:
        raise InvalidProfitShareError(value) from None
    if not pct.is_finite() or pct < 0 or pct > 1:
        raise InvalidProfitShareError(value)
    return pct


def _residual_index(participations: list[Participation]) -> int:
    best = 0
    for i, p in enumerate(participations):
        if p.amount_cents > participations[best].amount_cents:
            best = i
    return best


def compute_payouts(
    participations: list[Participation],
    cycle_profit_cents: int,
    pct_override: Decimal | None = None,
) -> PayoutPlan:
    """participations must be ordered by created_at, id (residual tie-break)."""
    total = sum(p.amount_cents for p in participations)
    if not participations or total <= 0:
        return PayoutPlan(cycle_profit_cents=cycle_profit_cents, total_capital_cents=total, pool_cents=0)

    pcts = [
        validate_pct(pct_override if pct_override is not None else p.profit_share_pct)
        for p in participations
    ]
    exact = [
        Fraction(cycle_profit_cents) * p.amount_cents / total * Fraction(pct)
        for p, pct in zip(participations, pcts)
    ]
    pool = round_half_up(sum(exact, Fraction(0)))
    shares = [round_half_up(x) for x in exact]
    shares[_residual_index(participations)] += pool - sum(shares)

    lines = [
        PayoutLine(
            participation_id=p.id,
            user_id=p.user_id,
            character_name=p.character_name,
            amount_cents=p.amount_cents,
            profit_share_pct=pct,
            profit_share_cents=share,
            # a loss can eat at most the contributed capital
            total_payout_cents=max(0, p.amount_cents + share),
        )
        for p, pct, share in zip(participations, pcts, shares)
    ]
    return PayoutPlan(
        cycle_profit_cents=cycle_profit_cents,
        total_capital_cents=total,
        pool_cents=pool,
        lines=lines,
    )
