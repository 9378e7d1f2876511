"""
measures/months_cover.py

Forward projection of how many future months a stock quantity sustains.

Given a closing stock and the projected issuance of each following month
(in order), the stock is consumed month by month:

    cover = full months covered
          + min(1, remaining stock / issuance of the next month)

Months with non-positive issuance are ignored.  When the stock outlasts
every known month the remainder is spread over the average issuance of the
covered months.  Results are rounded to two decimals.
"""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_HORIZON_MONTHS = 12
DEFAULT_COVER_MONTHS = 12.0


def project_months_cover(
    closing_stock: float,
    issuances: Iterable[float],
    default: float = DEFAULT_COVER_MONTHS,
) -> float:
    """
    Return months of cover for *closing_stock* against monthly *issuances*.

    Returns ``0.0`` for non-positive stock and *default* when no month has
    positive issuance.
    """
    if not closing_stock or closing_stock <= 0:
        return 0.0

    valid = [float(v) for v in issuances if v is not None and v > 0]
    if not valid:
        return float(default)

    cumulative: list[float] = []
    running = 0.0
    for issued in valid:
        running += issued
        cumulative.append(running)

    last_full: int | None = None
    for index, consumed in enumerate(cumulative):
        if consumed <= closing_stock:
            last_full = index
        else:
            break

    if last_full is None:
        cover = closing_stock / valid[0]
    else:
        full_months = last_full + 1
        remaining = closing_stock - cumulative[last_full]
        if full_months < len(valid):
            cover = full_months + min(1.0, remaining / valid[full_months])
        else:
            average = cumulative[last_full] / full_months
            cover = full_months + remaining / average if average > 0 else float(full_months)

    return round(cover, 2)
