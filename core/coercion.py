"""
coercion.py
------------
Lenient numeric coercion for values coming out of provider payloads and
CSV/JSON tables. Anything that is not a finite number is "absent" (None).
"""

import numpy as np
import pandas as pd
from typing import Any


_CONTAINERS = (dict, list, tuple, set, np.ndarray)


def to_number(value: Any) -> float | None:
    """
    Coerce a raw value to a finite float.

    Accepts ints, floats, numpy scalars and numeric strings ("12.5", " 7 ").
    Returns None for None, NaN/NA, inf, booleans, containers and
    unparseable strings.
    """
    if value is None or isinstance(value, (bool, np.bool_) + _CONTAINERS):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    elif pd.isna(value):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not np.isfinite(number):
        return None
    return number


def to_positive_number(value: Any) -> float | None:
    """Like to_number(), but anything <= 0 is also treated as absent."""
    number = to_number(value)
    if number is None or number <= 0:
        return None
    return number


def to_amount(value: Any) -> float:
    """Non-negative amount; malformed values become 0.0."""
    number = to_number(value)
    return abs(number) if number is not None else 0.0


def is_blank(value: Any) -> bool:
    """True for None, NaN/NA and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, _CONTAINERS):
        return False
    return bool(pd.isna(value))
