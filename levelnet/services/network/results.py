"""Pydantic result models for network queries."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


ZERO = Decimal("0")


class LevelStats(BaseModel):
    """Aggregate over the active rows of one level.

    Monetary fields are rounded to 6 decimals.
    """

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1, le=21, description="Level (1 = direct referrals)")
    user_count: int = Field(default=0, ge=0)
    total_investment: Decimal = Field(default=ZERO, ge=0)
    total_earnings: Decimal = Field(default=ZERO, ge=0)
    average_investment: Decimal = Field(default=ZERO, ge=0)
    average_earnings: Decimal = Field(default=ZERO, ge=0)


class UplineEntry(BaseModel):
    """One hop of a user's upline chain."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1, le=21)
    ancestor_address: str
    registration_time: datetime | None = None
    status: str | None = None
    relationship_investment: Decimal = ZERO
    relationship_earnings: Decimal = ZERO
    has_relationship: bool = Field(
        default=False, description="Whether a materialized row backs this hop"
    )


class TeamSummary(BaseModel):
    """Whole-downline summary for one ancestor.

    Ratios are percentages rounded to 2 decimals; zero denominators give 0.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    total_team_size: int = 0
    total_team_investment: Decimal = ZERO
    total_team_earnings: Decimal = ZERO
    active_levels: int = 0
    max_level: int = 0
    roi: Decimal = ZERO
    average_investment_per_user: Decimal = ZERO
    average_earnings_per_user: Decimal = ZERO
    level_distribution_efficiency: Decimal = ZERO
    top_performing_level: int | None = Field(
        default=None, description="Level with the highest earnings; None for an empty team"
    )
    personal_investment: Decimal = ZERO
    levels: list[LevelStats] = Field(default_factory=list)


class LevelMember(BaseModel):
    """Downline member as seen from one ancestor."""

    model_config = ConfigDict(frozen=True)

    address: str
    level: int = Field(..., ge=1, le=21)
    registration_time: datetime
    status: str | None = None
    relationship_investment: Decimal = ZERO
    relationship_earnings: Decimal = ZERO
    deposit_count: int = 0
    personal_deposits: Decimal = ZERO


class TreeLevel(BaseModel):
    """Members and totals of one level of a referral tree."""

    model_config = ConfigDict(frozen=True)

    stats: LevelStats
    members: list[LevelMember] = Field(default_factory=list)


class ReferralTree(BaseModel):
    """Downline of one ancestor grouped by level (non-empty levels only)."""

    model_config = ConfigDict(frozen=True)

    root: str
    max_levels: int
    total_members: int = 0
    total_investment: Decimal = ZERO
    total_earnings: Decimal = ZERO
    levels: list[TreeLevel] = Field(default_factory=list)


class TopReferrer(BaseModel):
    """Ranking entry for the top referrers query."""

    model_config = ConfigDict(frozen=True)

    rank: int = Field(..., ge=1)
    address: str
    team_size: int = 0
    total_investment: Decimal = ZERO
    total_earnings: Decimal = ZERO
    active_levels: int = 0


class CommissionRate(BaseModel):
    """Display rate for one level."""

    model_config = ConfigDict(frozen=True)

    level: int = Field(..., ge=1, le=21)
    rate: Decimal
    description: str


class CommissionRateTable(BaseModel):
    """Display-only commission table with summary figures."""

    model_config = ConfigDict(frozen=True)

    rates: list[CommissionRate]
    total_rate: Decimal
    average_rate: Decimal
    highest_rate: Decimal
    lowest_rate: Decimal


class WalkMember(BaseModel):
    """Downline member found by the breadth-first walk.

    Deposit totals come from confirmed ledger entries.
    """

    model_config = ConfigDict(frozen=True)

    address: str
    level: int = Field(..., ge=1, le=21)
    referrer_address: str | None = None
    registration_time: datetime
    status: str
    total_deposits: Decimal = ZERO
    deposit_count: int = 0


class LevelDiscrepancy(BaseModel):
    """Per-level mismatch between the materialized store and the walk."""

    model_config = ConfigDict(frozen=True)

    level: int
    materialized_count: int
    walked_count: int
    materialized_investment: Decimal
    walked_investment: Decimal


class VerificationReport(BaseModel):
    """Result of comparing fast and slow paths for one root."""

    model_config = ConfigDict(frozen=True)

    root: str
    consistent: bool
    levels_checked: int
    discrepancies: list[LevelDiscrepancy] = Field(default_factory=list)
    missing_rows: list[str] = Field(
        default_factory=list,
        description="Walked descendants without an active materialized row",
    )
    unexpected_rows: list[str] = Field(
        default_factory=list,
        description="Materialized descendants the walk did not reach",
    )


class LedgerEntry(BaseModel):
    """One deposit ledger entry."""

    model_config = ConfigDict(frozen=True)

    tx_id: str
    user_address: str
    amount: Decimal
    asset_type: str
    status: str
    block_height: int | None = None
    investment_time: datetime


class InvestorSummary(BaseModel):
    """Confirmed deposit totals for one user."""

    model_config = ConfigDict(frozen=True)

    address: str
    total_amount: Decimal = ZERO
    deposit_count: int = 0
    average_amount: Decimal = ZERO
    last_investment: datetime | None = None


class AssetBreakdown(BaseModel):
    """Confirmed totals for one asset type."""

    model_config = ConfigDict(frozen=True)

    asset_type: str
    total_amount: Decimal = ZERO
    deposit_count: int = 0


class PlatformStatistics(BaseModel):
    """Platform-wide totals over confirmed ledger entries.

    Zero everywhere for an empty ledger.
    """

    model_config = ConfigDict(frozen=True)

    total_amount: Decimal = ZERO
    total_deposits: int = 0
    unique_investors: int = 0
    average_amount: Decimal = ZERO
    max_amount: Decimal = ZERO
    min_amount: Decimal = ZERO
    by_asset_type: list[AssetBreakdown] = Field(default_factory=list)


class TopInvestor(BaseModel):
    """Ranking entry for the top investors query."""

    model_config = ConfigDict(frozen=True)

    rank: int = Field(..., ge=1)
    address: str
    total_amount: Decimal = ZERO
    deposit_count: int = 0
    last_investment: datetime | None = None


class DailyInvestment(BaseModel):
    """Confirmed deposits on one UTC calendar day."""

    model_config = ConfigDict(frozen=True)

    day: date
    total_amount: Decimal = ZERO
    deposit_count: int = 0
    unique_investors: int = 0


class DailyReport(BaseModel):
    """New users and deposits for one UTC day plus running totals."""

    model_config = ConfigDict(frozen=True)

    day: date
    new_users: int = 0
    day_amount: Decimal = ZERO
    day_deposits: int = 0
    active_users: int = 0
    total_amount: Decimal = ZERO
    total_deposits: int = 0
    unique_investors: int = 0
