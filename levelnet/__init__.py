"""
levelnet - referral network materialization and aggregation engine.

Maintains the 21-level closure of a referral forest and answers
team / per-level aggregate queries from it.
"""

__version__ = "0.1.0"
