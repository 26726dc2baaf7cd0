"""
Amount and call-parameter encoding for burn/mint calls.
"""

import re
from decimal import Decimal

from web3 import Web3

from . import errors

USDC_DECIMALS = 6
WORD_SIZE = 32  # bytes32 ABI word
ADDRESS_SIZE = 20

# Minimum protocol fee in base units (0.001 USDC)
MIN_FEE_UNITS = 1000
FEE_DIVISOR = 100  # 1%

# Finality threshold for finalized (standard) transfers
FINALITY_STANDARD = 2000

# destinationCaller value that lets any address relay the message
ANY_CALLER = Web3.to_hex(bytes(WORD_SIZE))

_AMOUNT_RE = re.compile(r"^[0-9]+(\.[0-9]{1,%d})?$" % USDC_DECIMALS)


def parse_usdc_amount(amount: str) -> int:
    """Convert a human USDC amount ("12.5") to integer base units."""
    if not isinstance(amount, str) or not _AMOUNT_RE.match(amount.strip()):
        raise errors.ValidationError(
            f"Invalid amount: {amount!r} (expected a decimal with at most {USDC_DECIMALS} places)",
            {"amount": amount}
        )
    units = int(Decimal(amount.strip()).scaleb(USDC_DECIMALS))
    if units <= 0:
        raise errors.ValidationError("Amount must be greater than zero", {"amount": amount})
    return units


def format_usdc_amount(units: int) -> str:
    return f"{Decimal(units).scaleb(-USDC_DECIMALS):.{USDC_DECIMALS}f}"


def compute_max_fee(amount_units: int, min_fee_units: int = MIN_FEE_UNITS) -> int:
    """1% of the amount, floored at ``min_fee_units``."""
    return max(amount_units // FEE_DIVISOR, min_fee_units)


def check_fee(amount_units: int, fee: int) -> None:
    """Raise ValidationError unless the fee is strictly below the amount."""
    if fee >= amount_units:
        raise errors.ValidationError(
            f"Amount too small: fee {format_usdc_amount(fee)} USDC is not below the amount",
            {"amount_units": amount_units, "fee_units": fee}
        )


def address_to_bytes32(address: str) -> str:
    """Left-pad a 20-byte address into a 0x-prefixed 32-byte hex word."""
    if not isinstance(address, str) or not Web3.is_address(address.lower()):
        raise errors.ValidationError(f"Invalid recipient address: {address!r}")
    raw = Web3.to_bytes(hexstr=address)
    if len(raw) != ADDRESS_SIZE:
        raise errors.ValidationError(f"Invalid recipient address length: {len(raw)} bytes")
    return Web3.to_hex(raw.rjust(WORD_SIZE, b"\x00"))
