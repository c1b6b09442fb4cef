"""Numeric coercion: anything in, finite float or None out."""

import math
from typing import Any, Optional


def coerce(x: Any) -> Optional[float]:
    """Convert numeric-looking input to a finite float.

    Strings are stripped before parsing. Booleans are not numbers here.
    Returns None for missing, unparseable, NaN or infinite input; never raises.
    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, str):
        x = x.strip()
        if not x:
            return None
    try:
        value = float(x)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(value):
        return None
    return value
