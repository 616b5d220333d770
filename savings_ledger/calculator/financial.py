"""
Financial Calculator

Pure functions for savings planning: required payments, compounding
simulations, projections and time-to-target estimates.

DESIGN DECISION: Everything is Decimal and nothing touches storage.
Inputs are assumed validated (non-negative, finite) by the caller.

Conventions shared by every function:
- Monthly rate r = annual_rate_pct / 100 / 12
- Horizon n = years * 12, truncated to whole months, so that
  monthly_payment_needed and simulate always agree on the horizon
- Each month interest (total * r) is added first, then the contribution
"""

import calendar
from datetime import date
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Iterator, Optional, Union

from savings_ledger.models.planning import (
    LumpSumImpact,
    ProjectionPoint,
    SavingsSimulation,
    ScenarioComparison,
    TimeToGoal,
)


Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

# Projections stop once the balance passes this amount
PROJECTION_CEILING = Decimal("1000000000")

# Longest search horizon for time_to_goal (100 years)
MAX_GOAL_MONTHS = 1200

SCENARIO_PRESETS: list[tuple[str, Decimal]] = [
    ("No interest", Decimal("0")),
    ("Low interest (1%)", Decimal("1")),
    ("Medium interest (3%)", Decimal("3")),
    ("High interest (5%)", Decimal("5")),
]


def to_decimal(value: Number) -> Decimal:
    """Convert through str so floats keep their printed value."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def monthly_rate(annual_rate_pct: Number) -> Decimal:
    return to_decimal(annual_rate_pct) / 100 / 12


def horizon_months(years: Number) -> int:
    """Whole months in a horizon given in (possibly fractional) years."""
    return int(to_decimal(years) * 12)


def add_months(d: date, months: int) -> date:
    """
    Shift a date by whole months.

    The day is clamped to the last day of the resulting month,
    so Jan 31 + 1 month is Feb 28 (or 29).
    """
    index = d.month - 1 + months
    year = d.year + index // 12
    month = index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(d.day, last_day))


def months_between(start: date, end: date) -> int:
    """Calendar months from start to end, ignoring the day of month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def monthly_payment_needed(
    target: Number,
    initial: Number,
    annual_rate_pct: Number,
    years: Number,
) -> Decimal:
    """
    Payment P such that initial*(1+r)^n + P*((1+r)^n - 1)/r == target.

    Returns target when the horizon is empty (due immediately) and
    never returns a negative payment.
    """
    target = to_decimal(target)
    initial = to_decimal(initial)
    n = horizon_months(years)

    if n <= 0:
        return target

    r = monthly_rate(annual_rate_pct)
    if r == 0:
        payment = (target - initial) / n
    else:
        factor = (1 + r) ** n
        payment = (target - initial * factor) / ((factor - 1) / r)

    return max(Decimal("0"), payment)


def simulate(
    initial: Number,
    monthly: Number,
    annual_rate_pct: Number,
    years: Number,
) -> SavingsSimulation:
    """Compound month by month over the horizon and summarize."""
    initial = to_decimal(initial)
    monthly = to_decimal(monthly)
    rate_pct = to_decimal(annual_rate_pct)
    r = monthly_rate(rate_pct)
    n = horizon_months(years)

    total = initial
    total_interest = Decimal("0")
    for _ in range(n):
        interest = total * r
        total += interest + monthly
        total_interest += interest

    return SavingsSimulation(
        initial_amount=initial,
        monthly_contribution=monthly,
        annual_interest_rate=rate_pct,
        years=to_decimal(years),
        months=max(n, 0),
        total_contributions=initial + monthly * max(n, 0),
        total_interest=total_interest,
        final_amount=total,
    )


def projection(
    initial: Number,
    monthly: Number,
    annual_rate_pct: Number,
    months: int = 60,
    start: Optional[date] = None,
) -> Iterator[ProjectionPoint]:
    """
    Yield the balance at the end of each month.

    Same recurrence as simulate. Stops after `months` points or once
    the total passes PROJECTION_CEILING, whichever comes first.
    """
    start = start or date.today()
    monthly = to_decimal(monthly)
    r = monthly_rate(annual_rate_pct)
    total = to_decimal(initial)
    principal = total

    for month in range(1, months + 1):
        interest = total * r
        total += interest + monthly
        principal += monthly

        yield ProjectionPoint(
            month=month,
            date=add_months(start, month),
            contribution=monthly,
            interest=interest,
            total=total,
            principal=principal,
        )

        if total > PROJECTION_CEILING:
            return


def achievement_date(
    target: Number,
    current: Number,
    monthly: Number,
    today: Optional[date] = None,
) -> Optional[date]:
    """
    Date the target is reached at a flat monthly rate, without interest.

    None means never: nothing is being saved.
    """
    today = today or date.today()
    monthly = to_decimal(monthly)
    if monthly <= 0:
        return None

    remaining = to_decimal(target) - to_decimal(current)
    if remaining <= 0:
        return today

    months = int((remaining / monthly).to_integral_value(rounding=ROUND_CEILING))
    return add_months(today, months)


def compare_scenarios(
    initial: Number,
    target: Number,
    years: Number,
) -> list[ScenarioComparison]:
    """Required monthly effort for each interest-rate preset."""
    scenarios = []
    for label, rate in SCENARIO_PRESETS:
        payment = monthly_payment_needed(target, initial, rate, years)
        sim = simulate(initial, payment, rate, years)
        scenarios.append(ScenarioComparison(
            label=label,
            annual_interest_rate=rate,
            monthly_contribution=round_cents(payment),
            final_amount=round_cents(sim.final_amount),
            total_contributions=round_cents(sim.total_contributions),
            total_interest=round_cents(sim.total_interest),
        ))
    return scenarios


def lump_sum_impact(
    initial: Number,
    monthly: Number,
    annual_rate_pct: Number,
    lump_sum: Number,
    years: Number,
) -> LumpSumImpact:
    with_lump = simulate(
        to_decimal(initial) + to_decimal(lump_sum), monthly, annual_rate_pct, years
    ).final_amount
    without_lump = simulate(initial, monthly, annual_rate_pct, years).final_amount
    return LumpSumImpact(
        with_lump_sum=with_lump,
        without_lump_sum=without_lump,
        difference=with_lump - without_lump,
    )


def time_to_goal(
    target: Number,
    current: Number,
    monthly: Number,
    annual_rate_pct: Number,
    today: Optional[date] = None,
    max_months: int = MAX_GOAL_MONTHS,
) -> Optional[TimeToGoal]:
    """
    Months of saving, with interest, until the target is reached.

    None when nothing is saved or the target is out of reach
    within max_months.
    """
    today = today or date.today()
    monthly = to_decimal(monthly)
    if monthly <= 0:
        return None

    target = to_decimal(target)
    r = monthly_rate(annual_rate_pct)
    balance = to_decimal(current)
    months = 0
    while balance < target:
        if months >= max_months:
            return None
        balance += balance * r + monthly
        months += 1

    return TimeToGoal(
        total_months=months,
        years=months // 12,
        months=months % 12,
        date=add_months(today, months),
    )


def required_monthly_savings(
    target: Number,
    current: Number,
    target_date: date,
    today: Optional[date] = None,
) -> Decimal:
    """
    Flat amount per month to close the gap by target_date.

    At least one month is assumed, even for past dates. Rounded up
    to the cent so the schedule never falls short.
    """
    today = today or date.today()
    months = max(1, months_between(today, target_date))
    remaining = max(Decimal("0"), to_decimal(target) - to_decimal(current))
    return (remaining / months).quantize(CENT, rounding=ROUND_CEILING)
