"""Formatting helpers with no dependencies on the rest of the package.

Covers currency display, identifier generation and HTML escaping. Identifier
helpers accept the moment they should encode so that callers (and tests) can
produce deterministic values.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from decimal import Decimal
from typing import Collection, Optional

from .constants import INVOICE_NUMBER_PREFIX, TRADE_IN_VIN_PREFIX


_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

_HTML_REPLACEMENTS = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#039;"),
)


def format_usd(amount: Decimal | int | float | None) -> str:
    """Render ``amount`` as US dollars, e.g. ``$32,000.00`` or ``-$12.50``.

    ``None`` renders as ``$0.00``.
    """

    value = Decimal(str(amount)) if amount is not None else Decimal("0")
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_rate(rate: Decimal) -> str:
    """Render a fractional rate as a whole percentage (``0.07`` -> ``7%``)."""

    return f"{(rate * 100).quantize(Decimal('1'))}%"


def to_base36(number: int) -> str:
    """Encode a non-negative integer in lower-case base 36."""

    if number < 0:
        raise ValueError("Only non-negative integers can be encoded")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def _epoch_millis(when: Optional[datetime]) -> int:
    moment = when if when is not None else datetime.now(UTC)
    return int(moment.timestamp() * 1000)


def generate_id(prefix: str = "id", *, when: Optional[datetime] = None) -> str:
    """Return a random record identifier such as ``veh_3f9a1c2b7d4e_lx2k9w1a``."""

    return f"{prefix}_{secrets.token_hex(6)}_{to_base36(_epoch_millis(when))}"


def _time_coded(prefix: str, when: Optional[datetime], taken: Collection[str]) -> str:
    millis = _epoch_millis(when)
    candidate = f"{prefix}{to_base36(millis).upper()}"
    while candidate in taken:
        millis += 1
        candidate = f"{prefix}{to_base36(millis).upper()}"
    return candidate


def generate_invoice_number(*, when: Optional[datetime] = None, taken: Collection[str] = ()) -> str:
    """Produce an ``INV-`` number from the clock, skipping values in ``taken``."""

    return _time_coded(INVOICE_NUMBER_PREFIX, when, taken)


def generate_trade_in_vin(*, when: Optional[datetime] = None, taken: Collection[str] = ()) -> str:
    """Produce a ``TRADE-`` VIN that cannot match a manufacturer VIN."""

    return _time_coded(TRADE_IN_VIN_PREFIX, when, taken)


def escape_html(value: object) -> str:
    """Escape text for safe inclusion in HTML bodies and attributes."""

    text = "" if value is None else str(value)
    for raw, escaped in _HTML_REPLACEMENTS:
        text = text.replace(raw, escaped)
    return text


__all__ = [
    "format_usd",
    "format_rate",
    "to_base36",
    "generate_id",
    "generate_invoice_number",
    "generate_trade_in_vin",
    "escape_html",
]
