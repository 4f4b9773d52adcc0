"""
Referral network constants.

Depth limit, commission rate table and rounding quanta shared by the
materializer and the aggregation engine.
"""

from decimal import Decimal

# Maximum number of upline levels materialized for a descendant
MAX_REFERRAL_DEPTH = 21
LEVEL_RANGE = range(1, MAX_REFERRAL_DEPTH + 1)

# Display-only commission table, percent per level.
# Stored earnings come from CommissionPaid events, never from this table.
COMMISSION_RATES: dict[int, Decimal] = {
    1: Decimal("10"),
    2: Decimal("5"),
    3: Decimal("3"),
    4: Decimal("2"),
    5: Decimal("1"),
    6: Decimal("1"),
    7: Decimal("1"),
    8: Decimal("0.5"),
    9: Decimal("0.5"),
    10: Decimal("0.5"),
    11: Decimal("0.3"),
    12: Decimal("0.3"),
    13: Decimal("0.3"),
    14: Decimal("0.2"),
    15: Decimal("0.2"),
    16: Decimal("0.2"),
    17: Decimal("0.1"),
    18: Decimal("0.1"),
    19: Decimal("0.1"),
    20: Decimal("0.1"),
    21: Decimal("0.1"),
}

# Rounding quanta
MONEY_QUANT = Decimal("0.000001")  # 6 decimals for monetary aggregates
RATIO_QUANT = Decimal("0.01")  # 2 decimals for ROI / percentages

# Cache key namespace
CACHE_NAMESPACE = "levelnet"

# Default comparison limits
DEFAULT_TOP_REFERRERS_LIMIT = 10
MAX_TOP_REFERRERS_LIMIT = 100

# Ledger report limits
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 500
DEFAULT_TOP_INVESTORS_LIMIT = 10
MAX_TOP_INVESTORS_LIMIT = 100
DEFAULT_REPORT_DAYS = 30
MAX_REPORT_DAYS = 366
