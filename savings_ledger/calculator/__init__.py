"""Financial calculator package."""

from savings_ledger.calculator.financial import (
    SCENARIO_PRESETS,
    achievement_date,
    add_months,
    compare_scenarios,
    lump_sum_impact,
    monthly_payment_needed,
    months_between,
    projection,
    required_monthly_savings,
    round_cents,
    simulate,
    time_to_goal,
    to_decimal,
)

__all__ = [
    "SCENARIO_PRESETS",
    "achievement_date",
    "add_months",
    "compare_scenarios",
    "lump_sum_impact",
    "monthly_payment_needed",
    "months_between",
    "projection",
    "required_monthly_savings",
    "round_cents",
    "simulate",
    "time_to_goal",
    "to_decimal",
]
