"""
Monetary value parsing.

Ledger values arrive as strings in either decimal convention
("1500,00", "1.500,00", "1,500.00", "R$ 1.500,00") or as numbers.
"""

from __future__ import annotations

import re
from typing import Any

_STRIP = re.compile(r"[R$\s]")


def parse_monetary_value(value: Any) -> float:
    """Parse a monetary value, keeping its sign.

    The right-most of "," and "." is taken as the decimal separator; the
    other one is treated as a thousands separator. Unparseable input is 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)

    text = _STRIP.sub("", str(value))
    if not text:
        return 0.0

    negative = text.startswith("-")
    text = text.lstrip("+-")

    last_comma = text.rfind(",")
    last_period = text.rfind(".")
    if last_comma > last_period:
        text = text.replace(".", "").replace(",", ".")
    elif last_period > last_comma:
        text = text.replace(",", "")

    try:
        number = float(text)
    except ValueError:
        return 0.0
    return -number if negative else number
