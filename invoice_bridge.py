"""Create invoices from time entries."""

import math
from dataclasses import replace
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional

import ids
from models import UNASSIGNED_LABEL, Invoice, InvoiceStatus, LineItem, TimeEntry
from rates import effective_rate, hours_from_ms, round2
from reports import in_range, range_bounds
from store import AppState, client_by_id, project_by_id

PAYMENT_TERMS = {
    'Due on Receipt': 0,
    'Net 7': 7,
    'Net 15': 15,
    'Net 30': 30
}

# Allowed status changes; paid is final.
_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.OVERDUE},
    InvoiceStatus.OVERDUE: {InvoiceStatus.PAID},
    InvoiceStatus.PAID: set(),
}


def calculate_due_date(terms: str, issue_date: date) -> date:
    """Calculate due date from payment terms."""
    days = PAYMENT_TERMS.get(terms, 30)
    return issue_date + timedelta(days=days)


def invoice_entries(
    entries: Iterable[TimeEntry],
    client_id: str,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None
) -> List[TimeEntry]:
    """Billable entries for one client inside the date range."""
    lower, upper = range_bounds(from_date, to_date)
    return [
        e for e in entries
        if e.client_id == client_id and e.billable and in_range(e, lower, upper)
    ]


def build_invoice_lines(
    state: AppState,
    entries: Iterable[TimeEntry],
    client_id: str,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None
) -> List[LineItem]:
    """One line per project, in the order projects first appear.

    Hours are summed in milliseconds and rounded once per line. When entries
    of the same project resolve to different rates, the last non-zero rate
    is used for the whole line.
    """
    groups: Dict[str, Dict] = {}
    for entry in invoice_entries(entries, client_id, from_date, to_date):
        rate = effective_rate(state, entry.project_id, entry.client_id)
        project = project_by_id(state, entry.project_id)
        group = groups.setdefault(entry.project_id, {
            'duration_ms': 0,
            'rate': rate,
            'name': project.name if project is not None else UNASSIGNED_LABEL,
        })
        group['duration_ms'] += entry.duration_ms
        if rate:
            group['rate'] = rate

    lines = []
    for project_id, group in groups.items():
        hours = hours_from_ms(group['duration_ms'])
        rate = group['rate'] or 0.0
        lines.append(LineItem(
            project_id=project_id,
            description=f"Work on {group['name']}",
            hours=hours,
            rate=rate,
            amount=round2(hours * rate),
        ))
    return lines


def compute_totals(lines: Iterable[LineItem], tax_rate: float) -> Dict[str, float]:
    """Subtotal, tax and total for a set of lines."""
    subtotal = round2(sum(line.amount for line in lines))
    tax = round2(subtotal * tax_rate / 100)
    return {
        'subtotal': subtotal,
        'tax': tax,
        'total': round2(subtotal + tax),
    }


def next_invoice_number(state: AppState, year: int) -> str:
    """Generate next invoice number.

    Numbers count the invoices currently held, so deleting an invoice lets
    the next one reuse a number.
    """
    return f"INV-{year}-{len(state.invoices) + 1:04d}"


def create_invoice(
    state: AppState,
    client_id: Optional[str],
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    tax_rate: float = 0.0,
    issue_date: Optional[date] = None,
    due_date: Optional[date] = None,
    payment_terms: Optional[str] = None
) -> Dict:
    """Create a draft invoice from the client's billable time.

    The invoice is not added to the state; dispatch ``AddInvoice`` with it.

    Returns dict with:
        success: bool
        invoice: Invoice (if success)
        error: str (if not success)
    """
    if not client_id:
        return {'success': False, 'error': "Select a client for the invoice."}
    if client_by_id(state, client_id) is None:
        return {'success': False, 'error': f"Client {client_id} not found"}
    try:
        tax_rate = float(tax_rate or 0)
    except (TypeError, ValueError):
        return {'success': False, 'error': f"Tax rate must be a number, got {tax_rate!r}"}
    if not math.isfinite(tax_rate):
        return {'success': False, 'error': f"Tax rate must be a finite number, got {tax_rate!r}"}
    if tax_rate < 0:
        return {'success': False, 'error': "Tax rate cannot be negative"}
    if from_date and to_date and from_date > to_date:
        return {'success': False, 'error': "Start date is after end date"}

    issue_date = issue_date or date.today()
    if due_date is None:
        if to_date is not None:
            due_date = to_date
        elif payment_terms:
            due_date = calculate_due_date(payment_terms, issue_date)

    lines = build_invoice_lines(state, state.entries, client_id, from_date, to_date)
    totals = compute_totals(lines, tax_rate)

    invoice = Invoice(
        id=ids.new_id(ids.INVOICE),
        number=next_invoice_number(state, issue_date.year),
        client_id=client_id,
        date=issue_date,
        due_date=due_date,
        tax_rate=tax_rate,
        status=InvoiceStatus.DRAFT,
        line_items=tuple(lines),
        subtotal=totals['subtotal'],
        tax=totals['tax'],
        total=totals['total'],
    )
    return {'success': True, 'invoice': invoice}


# === Status lifecycle ===

def change_status(invoice: Invoice, status: InvoiceStatus) -> Invoice:
    """Return the invoice with a new status. Raises ValueError on a disallowed move."""
    status = InvoiceStatus(status)
    if status not in _TRANSITIONS[invoice.status]:
        raise ValueError(
            f"Invoice {invoice.number} cannot go from {invoice.status.value} to {status.value}"
        )
    return replace(invoice, status=status)


def mark_sent(invoice: Invoice) -> Invoice:
    return change_status(invoice, InvoiceStatus.SENT)


def mark_paid(invoice: Invoice) -> Invoice:
    return change_status(invoice, InvoiceStatus.PAID)


def mark_overdue(invoice: Invoice) -> Invoice:
    return change_status(invoice, InvoiceStatus.OVERDUE)


def overdue_invoices(state: AppState, today: Optional[date] = None) -> List[Invoice]:
    """Sent invoices whose due date has passed."""
    today = today or date.today()
    return [
        inv for inv in state.invoices
        if inv.status == InvoiceStatus.SENT and inv.due_date is not None and inv.due_date < today
    ]


# === Print data ===

def invoice_print_data(state: AppState, invoice: Invoice) -> Dict:
    """Everything a print/render step needs for one invoice."""
    client = client_by_id(state, invoice.client_id)
    return {
        'invoice_number': invoice.number,
        'status': invoice.status.value,
        'client_name': client.name if client is not None else UNASSIGNED_LABEL,
        'client_email': client.email if client is not None else None,
        'date_issued': invoice.date.isoformat(),
        'due_date': invoice.due_date.isoformat() if invoice.due_date else None,
        'tax_rate': invoice.tax_rate,
        'lines': [
            {
                'description': line.description,
                'hours': line.hours,
                'rate': line.rate,
                'amount': line.amount,
            }
            for line in invoice.line_items
        ],
        'subtotal': invoice.subtotal,
        'tax': invoice.tax,
        'total': invoice.total,
    }
