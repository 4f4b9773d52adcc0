"""Dramatiq actors for the referral network."""
