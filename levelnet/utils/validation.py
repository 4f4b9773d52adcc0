"""Input validation utilities."""

from decimal import Decimal, InvalidOperation

from eth_utils import is_hex_address

from levelnet.config.constants import MAX_REFERRAL_DEPTH
from levelnet.utils.exceptions import (
    InvalidAddressError,
    InvalidAmountError,
    InvalidRangeError,
)


# Zero address - never a valid participant
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_address(address: str | None) -> str:
    """
    Validate wallet address and return canonical lowercase form.

    Args:
        address: Wallet address in any case

    Returns:
        Lowercase address

    Raises:
        InvalidAddressError: If address is empty or malformed
    """
    if not address or not isinstance(address, str):
        raise InvalidAddressError("Wallet address is required")

    candidate = address.strip()
    if candidate[:2].lower() != "0x" or not is_hex_address(candidate):
        raise InvalidAddressError(f"Invalid wallet address format: {address!r}")

    return candidate.lower()


def normalize_optional_address(address: str | None) -> str | None:
    """
    Normalize address that may be absent.

    Empty values and the zero address mean "no referrer".
    """
    if address is None or (isinstance(address, str) and not address.strip()):
        return None

    normalized = normalize_address(address)
    if normalized == ZERO_ADDRESS:
        return None
    return normalized


def validate_level(level: int, max_level: int = MAX_REFERRAL_DEPTH) -> int:
    """
    Validate referral level.

    Args:
        level: Level to check (1 = direct referral)
        max_level: Upper bound, inclusive

    Returns:
        The level as int

    Raises:
        InvalidRangeError: If level is outside [1, max_level]
    """
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidRangeError(f"Level must be an integer, got {level!r}")
    if level < 1 or level > max_level:
        raise InvalidRangeError(
            f"Invalid level {level}. Level must be between 1 and {max_level}."
        )
    return level


def validate_amount(amount: Decimal | int | str | float) -> Decimal:
    """
    Convert amount to Decimal and check it is non-negative.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        InvalidAmountError: If amount is negative or not a number
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite():
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    if value < 0:
        raise InvalidAmountError(f"Amount must be non-negative, got {value}")
    return value
