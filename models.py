"""Entity types for clients, projects, time entries and invoices.

Entities are frozen dataclasses so a state snapshot can be shared between
readers without copying.  Instants are naive local datetimes, durations are
whole milliseconds.  ``to_dict``/``from_dict`` convert to and from the JSON
document written by ``db``.
"""

import math
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

import ids

UNASSIGNED_CLIENT = 'unassigned_client'
UNASSIGNED_PROJECT = 'unassigned_project'
UNASSIGNED_LABEL = 'Unassigned'

_ONE_MS = timedelta(milliseconds=1)


class ValidationError(ValueError):
    """Input rejected before it reaches the store."""


class InvoiceStatus(str, Enum):
    DRAFT = 'draft'
    SENT = 'sent'
    PAID = 'paid'
    OVERDUE = 'overdue'


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    email: Optional[str] = None
    rate: Optional[float] = None
    active: bool = True


@dataclass(frozen=True)
class Project:
    id: str
    client_id: str
    name: str
    rate: Optional[float] = None
    archived: bool = False


@dataclass(frozen=True)
class TimeEntry:
    id: str
    client_id: str
    project_id: str
    start: datetime
    end: Optional[datetime] = None
    duration_ms: int = 0
    notes: str = ''
    tags: Tuple[str, ...] = ()
    billable: bool = True


@dataclass(frozen=True)
class LineItem:
    project_id: str
    description: str
    hours: float
    rate: float
    amount: float


@dataclass(frozen=True)
class Invoice:
    id: str
    number: str
    client_id: str
    date: date
    due_date: Optional[date] = None
    tax_rate: float = 0.0
    status: InvoiceStatus = InvoiceStatus.DRAFT
    line_items: Tuple[LineItem, ...] = ()
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0


@dataclass(frozen=True)
class ActiveTimer:
    start: datetime
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    notes: str = ''
    billable: bool = True


@dataclass(frozen=True)
class TimerSelection:
    """What the user picked before pressing start."""
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    notes: str = ''
    billable: bool = True


def duration_between(start: datetime, end: Optional[datetime]) -> int:
    """Milliseconds from start to end, never negative."""
    if end is None:
        return 0
    return max(0, (end - start) // _ONE_MS)


# === Factories (validation happens here, before any state change) ===

def _optional_rate(rate) -> Optional[float]:
    if rate is None or rate == '':
        return None
    try:
        value = float(rate)
    except (TypeError, ValueError):
        raise ValidationError(f"Rate must be a number, got {rate!r}")
    if not math.isfinite(value):
        raise ValidationError(f"Rate must be a finite number, got {rate!r}")
    if value < 0:
        raise ValidationError("Rate cannot be negative")
    return value


def new_client(name: str, email: Optional[str] = None, rate=None, active: bool = True) -> Client:
    """Build a new client. Raises ValidationError when the name is blank."""
    name = (name or '').strip()
    if not name:
        raise ValidationError("Client name is required")
    email = (email or '').strip() or None
    return Client(id=ids.new_id(ids.CLIENT), name=name, email=email,
                  rate=_optional_rate(rate), active=active)


def new_project(client_id: str, name: str, rate=None, archived: bool = False) -> Project:
    """Build a new project. A zero rate means "use the client's rate"."""
    name = (name or '').strip()
    if not name:
        raise ValidationError("Project name is required")
    if not client_id:
        raise ValidationError("Project needs a client")
    return Project(id=ids.new_id(ids.PROJECT), client_id=client_id, name=name,
                   rate=_optional_rate(rate) or None, archived=archived)


def new_entry(
    client_id: str,
    project_id: str,
    start: Optional[datetime],
    end: Optional[datetime] = None,
    notes: str = '',
    billable: bool = True,
    tags: Tuple[str, ...] = ()
) -> TimeEntry:
    """Build a manual time entry. Without an end the entry is zero-length."""
    if not client_id:
        raise ValidationError("Time entry needs a client")
    if not project_id:
        raise ValidationError("Time entry needs a project")
    if start is None:
        raise ValidationError("Time entry needs a start time")
    if end is None:
        end = start
    return TimeEntry(
        id=ids.new_id(ids.ENTRY),
        client_id=client_id,
        project_id=project_id,
        start=start,
        end=end,
        duration_ms=duration_between(start, end),
        notes=notes or '',
        tags=tuple(tags),
        billable=billable,
    )


def edit_client(client: Client, **changes) -> Client:
    """Return a copy of ``client`` with changes applied, validated like a new one."""
    edited = replace(client, **changes)
    checked = new_client(edited.name, edited.email, edited.rate, edited.active)
    return replace(checked, id=client.id)


def edit_project(project: Project, **changes) -> Project:
    edited = replace(project, **changes)
    checked = new_project(edited.client_id, edited.name, edited.rate, edited.archived)
    return replace(checked, id=project.id)


def edit_entry(entry: TimeEntry, **changes) -> TimeEntry:
    """Return a copy of ``entry`` with changes applied and duration re-derived."""
    edited = replace(entry, **changes)
    end = edited.end if edited.end is not None else edited.start
    return replace(edited, end=end, duration_ms=duration_between(edited.start, end))


# === Serialization ===

def _format_instant(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_instant(value) -> Optional[datetime]:
    """Parse an ISO string or epoch milliseconds into a naive local datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000)
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def _parse_date(value) -> Optional[date]:
    if value is None or value == '':
        return None
    return date.fromisoformat(str(value)[:10])


def _float_or_none(value) -> Optional[float]:
    if value is None:
        return None
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return number


def to_dict(entity) -> dict:
    """Convert any entity to a JSON-ready dict."""
    if isinstance(entity, Client):
        return {'id': entity.id, 'name': entity.name, 'email': entity.email,
                'rate': entity.rate, 'active': entity.active}
    if isinstance(entity, Project):
        return {'id': entity.id, 'client_id': entity.client_id, 'name': entity.name,
                'rate': entity.rate, 'archived': entity.archived}
    if isinstance(entity, TimeEntry):
        return {
            'id': entity.id,
            'client_id': entity.client_id,
            'project_id': entity.project_id,
            'start': _format_instant(entity.start),
            'end': _format_instant(entity.end),
            'duration_ms': entity.duration_ms,
            'notes': entity.notes,
            'tags': list(entity.tags),
            'billable': entity.billable,
        }
    if isinstance(entity, Invoice):
        return {
            'id': entity.id,
            'number': entity.number,
            'client_id': entity.client_id,
            'date': entity.date.isoformat(),
            'due_date': entity.due_date.isoformat() if entity.due_date else None,
            'tax_rate': entity.tax_rate,
            'status': entity.status.value,
            'line_items': [
                {'project_id': line.project_id, 'description': line.description,
                 'hours': line.hours, 'rate': line.rate, 'amount': line.amount}
                for line in entity.line_items
            ],
            'subtotal': entity.subtotal,
            'tax': entity.tax,
            'total': entity.total,
        }
    if isinstance(entity, ActiveTimer):
        return {'start': _format_instant(entity.start), 'client_id': entity.client_id,
                'project_id': entity.project_id, 'notes': entity.notes,
                'billable': entity.billable}
    raise TypeError(f"Cannot serialize {type(entity).__name__}")


def client_from_dict(data: dict) -> Client:
    return Client(
        id=str(data['id']),
        name=str(data['name']),
        email=data.get('email') or None,
        rate=_float_or_none(data.get('rate')),
        active=bool(data.get('active', True)),
    )


def project_from_dict(data: dict) -> Project:
    return Project(
        id=str(data['id']),
        client_id=str(data['client_id']),
        name=str(data['name']),
        rate=_float_or_none(data.get('rate')),
        archived=bool(data.get('archived', False)),
    )


def entry_from_dict(data: dict) -> TimeEntry:
    start = parse_instant(data['start'])
    if start is None:
        raise ValueError(f"Entry {data.get('id')} has no start")
    return TimeEntry(
        id=str(data['id']),
        client_id=str(data['client_id']),
        project_id=str(data['project_id']),
        start=start,
        end=parse_instant(data.get('end')),
        duration_ms=max(0, int(data.get('duration_ms') or 0)),
        notes=data.get('notes') or '',
        tags=tuple(data.get('tags') or ()),
        billable=bool(data.get('billable', True)),
    )


def invoice_from_dict(data: dict) -> Invoice:
    return Invoice(
        id=str(data['id']),
        number=str(data['number']),
        client_id=str(data['client_id']),
        date=date.fromisoformat(str(data['date'])[:10]),
        due_date=_parse_date(data.get('due_date')),
        tax_rate=float(data.get('tax_rate') or 0),
        status=InvoiceStatus(data.get('status', 'draft')),
        line_items=tuple(
            LineItem(
                project_id=str(line['project_id']),
                description=str(line['description']),
                hours=float(line['hours']),
                rate=float(line['rate']),
                amount=float(line['amount']),
            )
            for line in data.get('line_items') or ()
        ),
        subtotal=float(data['subtotal']),
        tax=float(data['tax']),
        total=float(data['total']),
    )


def timer_from_dict(data: Optional[dict]) -> Optional[ActiveTimer]:
    if not data:
        return None
    return ActiveTimer(
        start=parse_instant(data['start']),
        client_id=data.get('client_id'),
        project_id=data.get('project_id'),
        notes=data.get('notes') or '',
        billable=bool(data.get('billable', True)),
    )
