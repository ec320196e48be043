"""Entity store: immutable app state and the transitions that change it.

Every transition is a pure function ``(state, ...) -> state`` that never
raises.  Requests that cannot be applied (unknown id, duplicate id, second
timer start) return the state unchanged.  ``reduce`` maps action objects
onto the same functions so callers can queue intents as data.

Adds prepend, so listings taken straight from the state are newest first.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Tuple

import ids
from logger import log
from models import (
    ActiveTimer, Client, Invoice, Project, TimeEntry, TimerSelection,
    UNASSIGNED_CLIENT, UNASSIGNED_PROJECT, duration_between,
)


@dataclass(frozen=True)
class AppState:
    clients: Tuple[Client, ...] = ()
    projects: Tuple[Project, ...] = ()
    entries: Tuple[TimeEntry, ...] = ()
    invoices: Tuple[Invoice, ...] = ()
    running_timer: Optional[ActiveTimer] = None


def initial_state() -> AppState:
    return AppState()


# === Helpers ===

def _has_id(items, item_id: str) -> bool:
    return any(item.id == item_id for item in items)


def _prepend(state: AppState, field: str, item, kind: str) -> AppState:
    items = getattr(state, field)
    if _has_id(items, item.id):
        log.warning(f"Ignoring add of {kind} '{item.id}': id already exists")
        return state
    return replace(state, **{field: (item,) + items})


def _replace_by_id(state: AppState, field: str, item) -> AppState:
    items = getattr(state, field)
    if not _has_id(items, item.id):
        log.debug(f"Ignoring update of unknown id '{item.id}'")
        return state
    updated = tuple(item if existing.id == item.id else existing for existing in items)
    return replace(state, **{field: updated})


def _remove_by_id(state: AppState, field: str, item_id: str) -> AppState:
    items = getattr(state, field)
    if not _has_id(items, item_id):
        return state
    return replace(state, **{field: tuple(i for i in items if i.id != item_id)})


def _normalized_entry(entry: TimeEntry) -> TimeEntry:
    """Keep the stored duration consistent with start/end and never negative."""
    if entry.end is not None:
        duration = duration_between(entry.start, entry.end)
    else:
        duration = max(0, entry.duration_ms)
    if duration != entry.duration_ms:
        return replace(entry, duration_ms=duration)
    return entry


# === Clients ===

def add_client(state: AppState, client: Client) -> AppState:
    return _prepend(state, 'clients', client, 'client')


def update_client(state: AppState, client: Client) -> AppState:
    return _replace_by_id(state, 'clients', client)


def delete_client(state: AppState, client_id: str) -> AppState:
    """Remove a client together with its projects and time entries.

    A running timer keeps going but loses its reference to the client.
    """
    if not _has_id(state.clients, client_id):
        return state
    timer = state.running_timer
    if timer is not None and timer.client_id == client_id:
        timer = replace(timer, client_id=None, project_id=None)
    return replace(
        state,
        running_timer=timer,
        clients=tuple(c for c in state.clients if c.id != client_id),
        projects=tuple(p for p in state.projects if p.client_id != client_id),
        entries=tuple(e for e in state.entries if e.client_id != client_id),
    )


# === Projects ===

def add_project(state: AppState, project: Project) -> AppState:
    return _prepend(state, 'projects', project, 'project')


def update_project(state: AppState, project: Project) -> AppState:
    return _replace_by_id(state, 'projects', project)


def delete_project(state: AppState, project_id: str) -> AppState:
    """Remove a project and its time entries. The client stays."""
    if not _has_id(state.projects, project_id):
        return state
    timer = state.running_timer
    if timer is not None and timer.project_id == project_id:
        timer = replace(timer, project_id=None)
    return replace(
        state,
        running_timer=timer,
        projects=tuple(p for p in state.projects if p.id != project_id),
        entries=tuple(e for e in state.entries if e.project_id != project_id),
    )


# === Time entries ===

def add_entry(state: AppState, entry: TimeEntry) -> AppState:
    return _prepend(state, 'entries', _normalized_entry(entry), 'entry')


def update_entry(state: AppState, entry: TimeEntry) -> AppState:
    return _replace_by_id(state, 'entries', _normalized_entry(entry))


def delete_entry(state: AppState, entry_id: str) -> AppState:
    return _remove_by_id(state, 'entries', entry_id)


# === Active timer ===

def start_timer(state: AppState, selection: TimerSelection, start: datetime) -> AppState:
    """Install the active timer. A running timer is never overwritten."""
    if state.running_timer is not None:
        return state
    timer = ActiveTimer(
        start=start,
        client_id=selection.client_id,
        project_id=selection.project_id,
        notes=selection.notes,
        billable=selection.billable,
    )
    return replace(state, running_timer=timer)


def stop_timer(state: AppState, end: datetime, entry_id: Optional[str] = None) -> AppState:
    """Turn the active timer into a time entry and clear it."""
    timer = state.running_timer
    if timer is None:
        return state
    entry = TimeEntry(
        id=entry_id or ids.new_id(ids.ENTRY),
        client_id=timer.client_id or UNASSIGNED_CLIENT,
        project_id=timer.project_id or UNASSIGNED_PROJECT,
        start=timer.start,
        end=end,
        duration_ms=duration_between(timer.start, end),
        notes=timer.notes,
        tags=(),
        billable=timer.billable,
    )
    return replace(state, running_timer=None, entries=(entry,) + state.entries)


def reset_timer(state: AppState) -> AppState:
    if state.running_timer is None:
        return state
    return replace(state, running_timer=None)


# === Invoices ===

def add_invoice(state: AppState, invoice: Invoice) -> AppState:
    return _prepend(state, 'invoices', invoice, 'invoice')


def update_invoice(state: AppState, invoice: Invoice) -> AppState:
    return _replace_by_id(state, 'invoices', invoice)


def delete_invoice(state: AppState, invoice_id: str) -> AppState:
    return _remove_by_id(state, 'invoices', invoice_id)


# === Actions ===

@dataclass(frozen=True)
class Init:
    snapshot: AppState


@dataclass(frozen=True)
class AddClient:
    client: Client


@dataclass(frozen=True)
class UpdateClient:
    client: Client


@dataclass(frozen=True)
class DeleteClient:
    id: str


@dataclass(frozen=True)
class AddProject:
    project: Project


@dataclass(frozen=True)
class UpdateProject:
    project: Project


@dataclass(frozen=True)
class DeleteProject:
    id: str


@dataclass(frozen=True)
class AddEntry:
    entry: TimeEntry


@dataclass(frozen=True)
class UpdateEntry:
    entry: TimeEntry


@dataclass(frozen=True)
class DeleteEntry:
    id: str


@dataclass(frozen=True)
class StartTimer:
    selection: TimerSelection
    start: datetime


@dataclass(frozen=True)
class StopTimer:
    end: datetime
    entry_id: Optional[str] = None


@dataclass(frozen=True)
class ResetTimer:
    pass


@dataclass(frozen=True)
class AddInvoice:
    invoice: Invoice


@dataclass(frozen=True)
class UpdateInvoice:
    invoice: Invoice


@dataclass(frozen=True)
class DeleteInvoice:
    id: str


_HANDLERS = {
    Init: lambda state, a: a.snapshot,
    AddClient: lambda state, a: add_client(state, a.client),
    UpdateClient: lambda state, a: update_client(state, a.client),
    DeleteClient: lambda state, a: delete_client(state, a.id),
    AddProject: lambda state, a: add_project(state, a.project),
    UpdateProject: lambda state, a: update_project(state, a.project),
    DeleteProject: lambda state, a: delete_project(state, a.id),
    AddEntry: lambda state, a: add_entry(state, a.entry),
    UpdateEntry: lambda state, a: update_entry(state, a.entry),
    DeleteEntry: lambda state, a: delete_entry(state, a.id),
    StartTimer: lambda state, a: start_timer(state, a.selection, a.start),
    StopTimer: lambda state, a: stop_timer(state, a.end, a.entry_id),
    ResetTimer: lambda state, a: reset_timer(state),
    AddInvoice: lambda state, a: add_invoice(state, a.invoice),
    UpdateInvoice: lambda state, a: update_invoice(state, a.invoice),
    DeleteInvoice: lambda state, a: delete_invoice(state, a.id),
}


def reduce(state: AppState, action) -> AppState:
    """Apply one action and return the resulting state."""
    handler = _HANDLERS.get(type(action))
    if handler is None:
        log.warning(f"Ignoring unknown action {action!r}")
        return state
    log.debug(f"Applying {type(action).__name__}")
    return handler(state, action)


# === Queries ===

def client_by_id(state: AppState, client_id: Optional[str]) -> Optional[Client]:
    return next((c for c in state.clients if c.id == client_id), None)


def project_by_id(state: AppState, project_id: Optional[str]) -> Optional[Project]:
    return next((p for p in state.projects if p.id == project_id), None)


def entry_by_id(state: AppState, entry_id: str) -> Optional[TimeEntry]:
    return next((e for e in state.entries if e.id == entry_id), None)


def invoice_by_id(state: AppState, invoice_id: str) -> Optional[Invoice]:
    return next((i for i in state.invoices if i.id == invoice_id), None)


def active_clients(state: AppState) -> Tuple[Client, ...]:
    return tuple(c for c in state.clients if c.active)


def selectable_projects(state: AppState, client_id: Optional[str] = None) -> Tuple[Project, ...]:
    """Non-archived projects, limited to one client when given."""
    return tuple(
        p for p in state.projects
        if not p.archived and (not client_id or p.client_id == client_id)
    )


def recent_entries(state: AppState, limit: int = 10) -> Tuple[TimeEntry, ...]:
    return state.entries[:limit]
