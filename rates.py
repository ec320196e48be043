"""Billing rate resolution and money rounding."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from store import AppState, client_by_id, project_by_id

MS_PER_HOUR = 3_600_000

_CENT = Decimal('0.01')


def round2(value: float) -> float:
    """Round half-up to 2 decimal places (0.125 -> 0.13)."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def hours_from_ms(duration_ms: int) -> float:
    """Convert milliseconds to hours, rounded to 2 decimals."""
    return round2(duration_ms / MS_PER_HOUR)


def effective_rate(state: AppState, project_id: Optional[str] = None,
                   client_id: Optional[str] = None) -> float:
    """Hourly rate for work on a project/client.

    The project's rate wins when it is set and non-zero, then the client's
    default rate, then 0.
    """
    project = project_by_id(state, project_id) if project_id else None
    if project is not None and project.rate:
        return float(project.rate)
    client = client_by_id(state, client_id) if client_id else None
    if client is not None and client.rate:
        return float(client.rate)
    return 0.0
