"""Report aggregation over time entries."""

from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from models import UNASSIGNED_LABEL, TimeEntry
from rates import hours_from_ms
from store import AppState, client_by_id, project_by_id

BY_CLIENT = 'client'
BY_PROJECT = 'project'


def range_bounds(from_date: Optional[date] = None,
                 to_date: Optional[date] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn calendar dates into instants; the end date counts through its last moment."""
    lower = datetime.combine(from_date, time.min) if from_date else None
    upper = datetime.combine(to_date, time.max) if to_date else None
    return lower, upper


def in_range(entry: TimeEntry, lower: Optional[datetime], upper: Optional[datetime]) -> bool:
    if lower is not None and entry.start < lower:
        return False
    finish = entry.end if entry.end is not None else entry.start
    if upper is not None and finish > upper:
        return False
    return True


def filter_by_range(entries: Iterable[TimeEntry], from_date: Optional[date] = None,
                    to_date: Optional[date] = None) -> List[TimeEntry]:
    """Entries that start on/after from_date and finish by the end of to_date."""
    lower, upper = range_bounds(from_date, to_date)
    return [e for e in entries if in_range(e, lower, upper)]


def _aggregate(entries: Iterable[TimeEntry], key) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for entry in entries:
        k = key(entry)
        totals[k] = totals.get(k, 0) + entry.duration_ms
    return totals


def aggregate_by_client(entries: Iterable[TimeEntry]) -> Dict[str, int]:
    """Total duration in ms per client id."""
    return _aggregate(entries, lambda e: e.client_id)


def aggregate_by_project(entries: Iterable[TimeEntry]) -> Dict[str, int]:
    """Total duration in ms per project id."""
    return _aggregate(entries, lambda e: e.project_id)


def ranked(totals: Dict[str, int]) -> List[Tuple[str, int, float]]:
    """Sort totals longest first, with each bucket's share of the longest one."""
    if not totals:
        return []
    longest = max(1, max(totals.values()))
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [(key, duration, min(1.0, duration / longest)) for key, duration in ordered]


def report_rows(state: AppState, totals: Dict[str, int], by: str = BY_CLIENT) -> List[Dict]:
    """Display rows for a report, names resolved against the state."""
    lookup = client_by_id if by == BY_CLIENT else project_by_id
    rows = []
    for key, duration, share in ranked(totals):
        entity = lookup(state, key)
        rows.append({
            'id': key,
            'name': entity.name if entity is not None else UNASSIGNED_LABEL,
            'duration_ms': duration,
            'hours': hours_from_ms(duration),
            'share': share,
        })
    return rows


def time_summary(entries: Iterable[TimeEntry], now: Optional[datetime] = None) -> Dict[str, float]:
    """Hours worked today, this week (from Monday) and billable overall."""
    now = now or datetime.now()
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_start = today_start - timedelta(days=now.weekday())

    today_ms = week_ms = billable_ms = total_ms = 0
    for entry in entries:
        total_ms += entry.duration_ms
        if entry.billable:
            billable_ms += entry.duration_ms
        if entry.start >= week_start:
            week_ms += entry.duration_ms
            if entry.start >= today_start:
                today_ms += entry.duration_ms

    return {
        'today_hours': hours_from_ms(today_ms),
        'week_hours': hours_from_ms(week_ms),
        'billable_hours': hours_from_ms(billable_ms),
        'total_hours': hours_from_ms(total_ms),
    }
