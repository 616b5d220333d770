"""
Planning Models

Results of the financial calculator. Plain value objects: the
calculator builds them, planning tools and the lifecycle manager read them.
"""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class SavingsSimulation(BaseModel):
    """Month-by-month compounding over a horizon, summarized."""

    initial_amount: Decimal
    monthly_contribution: Decimal
    annual_interest_rate: Decimal
    years: Decimal
    months: int = Field(ge=0)
    total_contributions: Decimal
    total_interest: Decimal
    final_amount: Decimal


class ProjectionPoint(BaseModel):
    """State of the savings balance at the end of one month."""

    month: int = Field(ge=1)
    date: date
    contribution: Decimal
    interest: Decimal
    total: Decimal
    principal: Decimal = Field(
        ...,
        description="Initial amount plus contributions so far (no interest)"
    )


class ScenarioComparison(BaseModel):
    """Required monthly effort under one interest-rate preset."""

    label: str
    annual_interest_rate: Decimal
    monthly_contribution: Decimal
    final_amount: Decimal
    total_contributions: Decimal
    total_interest: Decimal


class LumpSumImpact(BaseModel):
    with_lump_sum: Decimal
    without_lump_sum: Decimal
    difference: Decimal


class TimeToGoal(BaseModel):
    """How long until a target is reached, with interest."""

    total_months: int = Field(ge=0)
    years: int = Field(ge=0)
    months: int = Field(ge=0, lt=12)
    date: date
