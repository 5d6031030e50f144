"""
Lenient numeric coercion for provider and filing values.
"""

from __future__ import annotations

import math
from typing import Any, Optional


def to_number(raw: Any) -> Optional[float]:
    """
    Float from values like "1,234", "$12.50", "8.5%" or 42.

    Returns None for empty, malformed, NaN or infinite input.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        s = str(raw).strip().replace(",", "").replace("$", "").replace("%", "")
        if not s:
            return None
        try:
            value = float(s)
        except ValueError:
            return None
    return value if math.isfinite(value) else None
