"""
Deterministic filing selection.

Pure functions only: no I/O, no clock.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, Sequence

from ownership_pipeline.schemas import FilingRecord


EPOCH = date(1970, 1, 1)

INSIDER_FORMS = frozenset({"3", "4", "5", "3/A", "4/A", "5/A"})
BENEFICIAL_FORMS = frozenset(
    {
        "SC 13D",
        "SC 13G",
        "SC 13D/A",
        "SC 13G/A",
        "SCHEDULE 13D",
        "SCHEDULE 13G",
        "SCHEDULE 13D/A",
        "SCHEDULE 13G/A",
    }
)
INSTITUTIONAL_FORMS = frozenset({"13F-HR", "13F-HR/A"})


def _parse_date_safe(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(s.strip()[:10])
    except Exception:
        return None


def _normalize_form(form: str) -> str:
    return (form or "").upper().strip()


def select_filings(
    filings: Sequence[FilingRecord],
    form_types: Iterable[str],
    max_count: int,
) -> List[FilingRecord]:
    """
    Most recent `max_count` filings whose form is in `form_types`.

    Ordered by filing date descending. Dates that do not parse sort as the
    epoch (i.e. last); equal dates keep their original relative order.
    """
    if max_count <= 0:
        return []
    wanted = {_normalize_form(f) for f in form_types}
    matching = [f for f in filings if _normalize_form(f.form_type) in wanted]
    # list.sort is stable, including with reverse=True.
    matching.sort(key=lambda f: _parse_date_safe(f.filing_date) or EPOCH, reverse=True)
    return matching[:max_count]
