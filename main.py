"""Command-line entry point for the time ledger."""

import argparse
import logging
import sys
import time
from datetime import date
from typing import Optional

import db
import reports
import timer_engine
from csv_export import build_export, write_export
from invoice_bridge import invoice_print_data
from logger import get_logger, log
from models import (
    InvoiceStatus, TimerSelection, ValidationError, edit_client, edit_entry, edit_project,
    new_client, new_entry, new_project, parse_instant,
)
from store import (
    AddClient, AddEntry, AddProject, AppState, DeleteClient, DeleteEntry, DeleteInvoice,
    DeleteProject, UpdateClient, UpdateEntry, UpdateProject, active_clients, entry_by_id,
    invoice_by_id, project_by_id, recent_entries, selectable_projects,
)
from tracker import Tracker


def _find_client(state: AppState, ref: Optional[str]):
    """Look a client up by id, then by case-insensitive name."""
    if not ref:
        return None
    for client in state.clients:
        if client.id == ref:
            return client
    lowered = ref.lower()
    return next((c for c in state.clients if c.name.lower() == lowered), None)


def _find_project(state: AppState, ref: Optional[str], client_id: Optional[str] = None):
    if not ref:
        return None
    project = project_by_id(state, ref)
    if project is not None:
        return project
    lowered = ref.lower()
    return next(
        (p for p in state.projects
         if p.name.lower() == lowered and (client_id is None or p.client_id == client_id)),
        None
    )


def _find_invoice(state: AppState, ref: str):
    """Look an invoice up by id or by number."""
    return invoice_by_id(state, ref) or next((i for i in state.invoices if i.number == ref), None)


# === Commands ===

def cmd_clients(tracker: Tracker, args) -> int:
    state = tracker.state
    clients = state.clients if args.all else active_clients(state)
    if not clients:
        print("No clients yet.")
        return 0
    for client in clients:
        rate = timer_engine.format_currency(client.rate or 0)
        flag = "" if client.active else " (archived)"
        print(f"{client.id}  {client.name}{flag}  {rate}/h")
        if args.all:
            projects = [p for p in state.projects if p.client_id == client.id]
        else:
            projects = selectable_projects(state, client.id)
        for project in projects:
            override = f"  {timer_engine.format_currency(project.rate)}/h" if project.rate else ""
            flag = " (archived)" if project.archived else ""
            print(f"    {project.id}  {project.name}{flag}{override}")
    return 0


def cmd_add_client(tracker: Tracker, args) -> int:
    client = new_client(args.name, email=args.email, rate=args.rate)
    tracker.dispatch(AddClient(client))
    print(client.id)
    return 0


def cmd_add_project(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    if client is None:
        print(f"Client not found: {args.client}", file=sys.stderr)
        return 1
    project = new_project(client.id, args.name, rate=args.rate)
    tracker.dispatch(AddProject(project))
    print(project.id)
    return 0


def cmd_add_entry(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    project = _find_project(tracker.state, args.project, client.id if client else None)
    entry = new_entry(
        client.id if client else None,
        project.id if project else None,
        args.start,
        args.end,
        notes=args.notes,
        billable=not args.non_billable,
        tags=tuple(args.tag or ()),
    )
    tracker.dispatch(AddEntry(entry))
    print(f"{entry.id}  {timer_engine.format_seconds(entry.duration_ms // 1000)}")
    return 0


def cmd_edit_client(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    if client is None:
        print(f"Client not found: {args.client}", file=sys.stderr)
        return 1
    changes = {k: v for k, v in (('name', args.name), ('email', args.email), ('rate', args.rate))
               if v is not None}
    tracker.dispatch(UpdateClient(edit_client(client, **changes)))
    return 0


def cmd_edit_project(tracker: Tracker, args) -> int:
    project = _find_project(tracker.state, args.project)
    if project is None:
        print(f"Project not found: {args.project}", file=sys.stderr)
        return 1
    changes = {k: v for k, v in (('name', args.name), ('rate', args.rate)) if v is not None}
    tracker.dispatch(UpdateProject(edit_project(project, **changes)))
    return 0


def cmd_archive_client(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    if client is None:
        print(f"Client not found: {args.client}", file=sys.stderr)
        return 1
    tracker.dispatch(UpdateClient(edit_client(client, active=args.restore)))
    return 0


def cmd_archive_project(tracker: Tracker, args) -> int:
    project = _find_project(tracker.state, args.project)
    if project is None:
        print(f"Project not found: {args.project}", file=sys.stderr)
        return 1
    tracker.dispatch(UpdateProject(edit_project(project, archived=not args.restore)))
    return 0


def cmd_edit_entry(tracker: Tracker, args) -> int:
    entry = entry_by_id(tracker.state, args.entry_id)
    if entry is None:
        print(f"Entry not found: {args.entry_id}", file=sys.stderr)
        return 1
    changes = {}
    if args.project:
        project = _find_project(tracker.state, args.project, entry.client_id)
        if project is None:
            print(f"Project not found: {args.project}", file=sys.stderr)
            return 1
        changes.update(client_id=project.client_id, project_id=project.id)
    if args.start is not None:
        changes['start'] = args.start
    if args.end is not None:
        changes['end'] = args.end
    if args.notes is not None:
        changes['notes'] = args.notes
    if args.billable is not None:
        changes['billable'] = args.billable
    edited = edit_entry(entry, **changes)
    tracker.dispatch(UpdateEntry(edited))
    print(f"{edited.id}  {timer_engine.format_seconds(edited.duration_ms // 1000)}")
    return 0


def cmd_delete_client(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    if client is None:
        print(f"Client not found: {args.client}", file=sys.stderr)
        return 1
    before = len(tracker.state.entries)
    tracker.dispatch(DeleteClient(client.id))
    print(f"Deleted {client.name} and {before - len(tracker.state.entries)} entries")
    return 0


def cmd_delete_project(tracker: Tracker, args) -> int:
    project = _find_project(tracker.state, args.project)
    if project is None:
        print(f"Project not found: {args.project}", file=sys.stderr)
        return 1
    before = len(tracker.state.entries)
    tracker.dispatch(DeleteProject(project.id))
    print(f"Deleted {project.name} and {before - len(tracker.state.entries)} entries")
    return 0


def cmd_delete_entry(tracker: Tracker, args) -> int:
    if entry_by_id(tracker.state, args.entry_id) is None:
        print(f"Entry not found: {args.entry_id}", file=sys.stderr)
        return 1
    tracker.dispatch(DeleteEntry(args.entry_id))
    return 0


def cmd_delete_invoice(tracker: Tracker, args) -> int:
    invoice = _find_invoice(tracker.state, args.invoice)
    if invoice is None:
        print(f"Invoice not found: {args.invoice}", file=sys.stderr)
        return 1
    tracker.dispatch(DeleteInvoice(invoice.id))
    return 0


def _run_ticker(tracker: Tracker, interval_ms: int):
    """Blocking stand-in for a GUI event loop: runs scheduled ticks until Ctrl+C."""
    pending = []

    def schedule(delay_ms, callback):
        pending.append((delay_ms, callback))
        return len(pending)

    ticker = timer_engine.TimerTicker(
        get_state=lambda: tracker.state,
        schedule=schedule,
        cancel=lambda handle: pending.clear(),
        on_tick=lambda text: print(f"\r{text}", end="", flush=True),
        interval_ms=interval_ms,
    )
    ticker.sync()
    try:
        while pending:
            delay_ms, callback = pending.pop(0)
            time.sleep(delay_ms / 1000)
            callback()
    except KeyboardInterrupt:
        print()
    finally:
        ticker.stop()


def cmd_track(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    project = _find_project(tracker.state, args.project, client.id if client else None)
    selection = TimerSelection(
        client_id=client.id if client else None,
        project_id=project.id if project else None,
        notes=args.notes,
        billable=not args.non_billable,
    )
    if not tracker.start_timer(selection):
        print("A timer is already running.", file=sys.stderr)
        return 1
    print("Tracking... press Ctrl+C to stop.")
    _run_ticker(tracker, int(db.get_float_setting('tick_interval_ms')))
    entry = tracker.stop_timer()
    print(f"Recorded {timer_engine.format_seconds(entry.duration_ms // 1000)} as {entry.id}")
    return 0


def cmd_recover(tracker: Tracker, args) -> int:
    recovery = tracker.recover_from_crash()
    if recovery is None:
        print("No interrupted timer found.")
        return 0
    entry = tracker.apply_recovery(keep=args.keep, recovery_data=recovery)
    if entry is not None:
        print(f"Recovered {timer_engine.format_seconds(entry.duration_ms // 1000)} as {entry.id}")
    else:
        print("Interrupted timer discarded.")
    return 0


def cmd_recent(tracker: Tracker, args) -> int:
    limit = args.limit or int(db.get_float_setting('recent_entries_limit'))
    for entry in recent_entries(tracker.state, limit):
        billable = "billable" if entry.billable else "non-billable"
        print(f"{entry.start:%Y-%m-%d %H:%M}  "
              f"{timer_engine.format_seconds(entry.duration_ms // 1000)}  {billable}  {entry.notes}")
    return 0


def cmd_report(tracker: Tracker, args) -> int:
    entries = reports.filter_by_range(tracker.state.entries, args.date_from, args.date_to)
    if args.by == reports.BY_PROJECT:
        totals = reports.aggregate_by_project(entries)
    else:
        totals = reports.aggregate_by_client(entries)
    rows = reports.report_rows(tracker.state, totals, args.by)
    if not rows:
        print("No entries in range.")
        return 0
    for row in rows:
        bar = "#" * int(round(row['share'] * 20))
        print(f"{row['name'][:24]:<24} {timer_engine.format_hours(row['hours']):>12}  {bar}")
    summary = reports.time_summary(tracker.state.entries)
    print(f"Today {timer_engine.format_hours(summary['today_hours'])}, "
          f"this week {timer_engine.format_hours(summary['week_hours'])}")
    return 0


def cmd_invoice(tracker: Tracker, args) -> int:
    client = _find_client(tracker.state, args.client)
    tax_rate = args.tax if args.tax is not None else db.get_float_setting('default_tax_rate')
    result = tracker.create_invoice(
        client.id if client else args.client,
        args.date_from,
        args.date_to,
        tax_rate=tax_rate,
        payment_terms=db.get_setting('payment_terms', 'Net 30'),
    )
    if not result['success']:
        print(result['error'], file=sys.stderr)
        return 1
    invoice = result['invoice']
    print(f"{invoice.number}  ({invoice.id})")
    for line in invoice.line_items:
        print(f"  {line.description:<30} {line.hours:>7.2f} h x {line.rate:>8.2f} = "
              f"{timer_engine.format_currency(line.amount)}")
    print(f"  Subtotal {timer_engine.format_currency(invoice.subtotal)}  "
          f"Tax {timer_engine.format_currency(invoice.tax)}  "
          f"Total {timer_engine.format_currency(invoice.total)}")
    return 0


def cmd_invoices(tracker: Tracker, args) -> int:
    tracker.mark_overdue_invoices()
    for invoice in tracker.state.invoices:
        print(f"{invoice.id}  {invoice.number}  {invoice.status.value:<8} "
              f"{timer_engine.format_currency(invoice.total)}")
    return 0


def cmd_invoice_show(tracker: Tracker, args) -> int:
    """Print an invoice as plain text."""
    invoice = _find_invoice(tracker.state, args.invoice)
    if invoice is None:
        print(f"Invoice not found: {args.invoice}", file=sys.stderr)
        return 1
    data = invoice_print_data(tracker.state, invoice)
    print(f"INVOICE {data['invoice_number']}  [{data['status']}]")
    print(f"Bill to: {data['client_name']}" + (f" <{data['client_email']}>" if data['client_email'] else ""))
    print(f"Issued: {data['date_issued']}  Due: {data['due_date'] or '-'}")
    print()
    print(f"{'Description':<30} {'Hours':>7} {'Rate':>10} {'Amount':>12}")
    for line in data['lines']:
        print(f"{line['description'][:30]:<30} {line['hours']:>7.2f} "
              f"{timer_engine.format_currency(line['rate']):>10} "
              f"{timer_engine.format_currency(line['amount']):>12}")
    print()
    print(f"{'Subtotal':>49} {timer_engine.format_currency(data['subtotal']):>12}")
    print(f"{'Tax (' + format(data['tax_rate'], 'g') + '%)':>49} "
          f"{timer_engine.format_currency(data['tax']):>12}")
    print(f"{'Total':>49} {timer_engine.format_currency(data['total']):>12}")
    return 0


def cmd_invoice_status(tracker: Tracker, args) -> int:
    if not tracker.set_invoice_status(args.invoice_id, InvoiceStatus(args.status)):
        print(f"Could not set invoice {args.invoice_id} to {args.status}", file=sys.stderr)
        return 1
    return 0


def cmd_export(tracker: Tracker, args) -> int:
    entries = reports.filter_by_range(tracker.state.entries, args.date_from, args.date_to)
    payload = build_export(tracker.state, entries, args.filename)
    path = write_export(payload, args.out or db.get_exports_dir())
    print(f"Exported {len(entries)} entries to {path}")
    return 0


def cmd_settings(tracker: Tracker, args) -> int:
    if args.value is None:
        print(db.get_setting(args.key, db.SETTINGS_DEFAULTS.get(args.key, '')))
    else:
        db.set_setting(args.key, args.value)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timeledger", description="Local time tracking and invoicing")
    parser.add_argument('-v', '--verbose', action='store_true', help="log to the console")
    sub = parser.add_subparsers(dest='command', required=True)

    def date_range(p):
        p.add_argument('--from', dest='date_from', type=date.fromisoformat)
        p.add_argument('--to', dest='date_to', type=date.fromisoformat)

    p = sub.add_parser('clients', help="list clients and projects")
    p.add_argument('--all', action='store_true', help="include archived clients and projects")
    p.set_defaults(func=cmd_clients)

    p = sub.add_parser('add-client')
    p.add_argument('name')
    p.add_argument('--email')
    p.add_argument('--rate', type=float)
    p.set_defaults(func=cmd_add_client)

    p = sub.add_parser('add-project')
    p.add_argument('client')
    p.add_argument('name')
    p.add_argument('--rate', type=float)
    p.set_defaults(func=cmd_add_project)

    p = sub.add_parser('add-entry')
    p.add_argument('client')
    p.add_argument('project')
    p.add_argument('--start', type=parse_instant, required=True)
    p.add_argument('--end', type=parse_instant)
    p.add_argument('--notes', default='')
    p.add_argument('--tag', action='append')
    p.add_argument('--non-billable', action='store_true')
    p.set_defaults(func=cmd_add_entry)

    p = sub.add_parser('edit-entry')
    p.add_argument('entry_id')
    p.add_argument('--project')
    p.add_argument('--start', type=parse_instant)
    p.add_argument('--end', type=parse_instant)
    p.add_argument('--notes')
    billing = p.add_mutually_exclusive_group()
    billing.add_argument('--billable', dest='billable', action='store_true', default=None)
    billing.add_argument('--non-billable', dest='billable', action='store_false')
    p.set_defaults(func=cmd_edit_entry)

    p = sub.add_parser('delete-entry')
    p.add_argument('entry_id')
    p.set_defaults(func=cmd_delete_entry)

    p = sub.add_parser('edit-client')
    p.add_argument('client')
    p.add_argument('--name')
    p.add_argument('--email')
    p.add_argument('--rate', type=float)
    p.set_defaults(func=cmd_edit_client)

    p = sub.add_parser('edit-project')
    p.add_argument('project')
    p.add_argument('--name')
    p.add_argument('--rate', type=float)
    p.set_defaults(func=cmd_edit_project)

    p = sub.add_parser('archive-client', help="hide a client from listings")
    p.add_argument('client')
    p.add_argument('--restore', action='store_true')
    p.set_defaults(func=cmd_archive_client)

    p = sub.add_parser('archive-project', help="hide a project from listings")
    p.add_argument('project')
    p.add_argument('--restore', action='store_true')
    p.set_defaults(func=cmd_archive_project)

    p = sub.add_parser('delete-client', help="delete a client with its projects and entries")
    p.add_argument('client')
    p.set_defaults(func=cmd_delete_client)

    p = sub.add_parser('delete-project', help="delete a project with its entries")
    p.add_argument('project')
    p.set_defaults(func=cmd_delete_project)

    p = sub.add_parser('track', help="run a timer until Ctrl+C")
    p.add_argument('--client')
    p.add_argument('--project')
    p.add_argument('--notes', default='')
    p.add_argument('--non-billable', action='store_true')
    p.set_defaults(func=cmd_track)

    p = sub.add_parser('recover', help="handle a timer left running by a crash")
    p.add_argument('--discard', dest='keep', action='store_false')
    p.set_defaults(func=cmd_recover)

    p = sub.add_parser('recent')
    p.add_argument('--limit', type=int)
    p.set_defaults(func=cmd_recent)

    p = sub.add_parser('report')
    p.add_argument('--by', choices=[reports.BY_CLIENT, reports.BY_PROJECT], default=reports.BY_CLIENT)
    date_range(p)
    p.set_defaults(func=cmd_report)

    p = sub.add_parser('invoice', help="create a draft invoice")
    p.add_argument('client')
    p.add_argument('--tax', type=float)
    date_range(p)
    p.set_defaults(func=cmd_invoice)

    p = sub.add_parser('invoices')
    p.set_defaults(func=cmd_invoices)

    p = sub.add_parser('invoice-status')
    p.add_argument('invoice_id')
    p.add_argument('status', choices=[s.value for s in InvoiceStatus])
    p.set_defaults(func=cmd_invoice_status)

    p = sub.add_parser('invoice-show', help="print an invoice")
    p.add_argument('invoice', help="invoice id or number")
    p.set_defaults(func=cmd_invoice_show)

    p = sub.add_parser('delete-invoice')
    p.add_argument('invoice', help="invoice id or number")
    p.set_defaults(func=cmd_delete_invoice)

    p = sub.add_parser('export', help="write entries as CSV")
    p.add_argument('--filename', default='time-entries.csv')
    p.add_argument('--out')
    date_range(p)
    p.set_defaults(func=cmd_export)

    p = sub.add_parser('settings')
    p.add_argument('key')
    p.add_argument('value', nargs='?')
    p.set_defaults(func=cmd_settings)

    return parser


def run(argv=None) -> int:
    args = build_parser().parse_args(argv)
    get_logger(level=logging.DEBUG if args.verbose else logging.INFO,
               log_dir=db.get_logs_dir(), console=args.verbose)
    tracker = Tracker.from_db()
    try:
        return args.func(tracker, args)
    except ValidationError as e:
        print(str(e), file=sys.stderr)
        return 2
    except Exception:
        log.exception(f"Command '{args.command}' failed")
        raise


if __name__ == '__main__':
    sys.exit(run())
