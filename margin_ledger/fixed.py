"""Fixed-point helpers — U64F64-style values held in Python ints.

Shares and interest indexes are stored as raw integers scaled by ``2**64``.
All conversions between shares and native token amounts round to nearest,
ties away from zero, and go through this module so that the ledger and
client-side valuation can never disagree on rounding.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, localcontext
from fractions import Fraction

from .errors import InvariantViolation

FRACTION_BITS = 64
ONE = 1 << FRACTION_BITS

# Enough digits for a 128-bit integer times a rate with room to spare.
_PRECISION = 80


def round_div(numerator: int, denominator: int) -> int:
    """Integer division rounding to nearest, ties away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    if numerator < 0:
        return -round_div(-numerator, denominator)
    return (2 * numerator + denominator) // (2 * denominator)


def to_fixed(value: int | str | Decimal | Fraction) -> int:
    """Convert an exact number to a raw fixed-point integer."""
    frac = Fraction(value)
    return round_div(frac.numerator * ONE, frac.denominator)


def from_fixed(raw: int) -> Decimal:
    """Convert a raw fixed-point integer to a Decimal."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(raw) / Decimal(ONE)


def mul_decimal(raw: int, factor: Decimal) -> int:
    """Multiply a raw fixed-point value by a Decimal, rounding to nearest."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int((Decimal(raw) * factor).to_integral_value(rounding=ROUND_HALF_UP))


def shares_to_native(shares: int, index: int) -> int:
    """``shares * index`` in native units; both arguments are raw fixed-point."""
    if shares < 0 or index < 0:
        raise InvariantViolation(
            f"Negative fixed-point input: shares={shares} index={index}"
        )
    return round_div(shares * index, ONE * ONE)


def native_to_shares(native: int, index: int) -> int:
    """Raw fixed-point share count worth ``native`` at ``index``."""
    if native < 0:
        raise InvariantViolation(f"Negative native amount: {native}")
    if index <= 0:
        raise InvariantViolation(f"Non-positive index: {index}")
    return round_div(native * ONE * ONE, index)


def ui_to_native(amount: Decimal | int | str, decimals: int) -> int:
    """Convert a UI amount (e.g. 1.5 BTC) to native units, rounding to nearest."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = Decimal(amount).scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_HALF_UP))


def ui_to_native_floor(amount: Decimal, decimals: int) -> int:
    """Like :func:`ui_to_native` but never rounds up."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int(Decimal(amount).scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def native_to_ui(native: int, decimals: int) -> Decimal:
    """Convert a native amount to UI units."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(native).scaleb(-decimals)
