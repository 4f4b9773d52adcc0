"""
Standard type definitions for database models.

Provides consistent types for token amounts and identifiers across all models.
"""

from sqlalchemy import DECIMAL

# Token amount type
# Precision: 36 digits total, 18 after decimal point
# Suitable for: deposits and commissions formatted from wei
TokenAmountType = DECIMAL(36, 18)

# Canonical wallet address length (0x + 40 hex chars)
ADDRESS_LENGTH = 42

# Transaction id length (0x + 64 hex chars, with headroom)
TX_ID_LENGTH = 100
