"""Owner of the live app state: applies intents and persists after each change."""

import sqlite3
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Dict, Optional

import db
import invoice_bridge
from logger import log
from models import InvoiceStatus, TimeEntry, TimerSelection
from store import (
    AddEntry, AddInvoice, AppState, ResetTimer, StartTimer, StopTimer,
    UpdateInvoice, initial_state, invoice_by_id, reduce, stop_timer,
)


class Tracker:
    """Holds the current state and is its only writer.

    ``state`` is replaced, never mutated, so anything holding an older
    snapshot keeps a consistent view.
    """

    def __init__(
        self,
        state: Optional[AppState] = None,
        persist: Optional[Callable[[AppState], None]] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.state = state if state is not None else initial_state()
        self._persist = persist
        self._clock = clock

        # Callbacks
        self.on_change: Optional[Callable[[AppState], None]] = None

    @classmethod
    def from_db(cls, clock: Callable[[], datetime] = datetime.now) -> 'Tracker':
        """Tracker loaded from and saving to the local database."""
        return cls(db.load_state(), persist=db.save_state, clock=clock)

    def dispatch(self, action) -> AppState:
        """Apply an action; persist and notify only when the state changed."""
        new_state = reduce(self.state, action)
        if new_state is self.state:
            return self.state
        self.state = new_state
        self._save()
        if self.on_change:
            self.on_change(new_state)
        return new_state

    def _save(self):
        if self._persist is None:
            return
        try:
            self._persist(self.state)
        except (sqlite3.Error, OSError):
            log.exception("Failed to persist state, keeping in-memory copy")

    # === Timer ===

    @property
    def timer_running(self) -> bool:
        return self.state.running_timer is not None

    def start_timer(self, selection: Optional[TimerSelection] = None) -> bool:
        """Start the timer. Returns False if one is already running."""
        if self.timer_running:
            log.warning("Timer already running, ignoring start")
            return False
        self.dispatch(StartTimer(selection or TimerSelection(), self._clock()))
        log.info(f"Timer started at {self.state.running_timer.start.isoformat()}")
        return True

    def stop_timer(self) -> Optional[TimeEntry]:
        """Stop the timer and return the entry it produced."""
        if not self.timer_running:
            return None
        self.dispatch(StopTimer(self._clock()))
        entry = self.state.entries[0]
        log.info(f"Timer stopped, recorded {entry.duration_ms} ms as {entry.id}")
        return entry

    def reset_timer(self):
        """Discard the running timer without recording time."""
        if self.timer_running:
            log.info("Timer reset, elapsed time discarded")
        self.dispatch(ResetTimer())

    def recover_from_crash(self) -> Optional[Dict]:
        """Timer left running by the previous session, if any."""
        return db.get_saved_timer()

    def apply_recovery(self, keep: bool, recovery_data: Dict) -> Optional[TimeEntry]:
        """Record a recovered timer as an entry ending at its last save, or drop it."""
        if not keep:
            # Saving clears the stored timer
            self._save()
            log.info("Discarded recovered timer")
            return None
        recovered = stop_timer(
            replace(self.state, running_timer=recovery_data['timer']),
            recovery_data['saved_at'],
        )
        entry = recovered.entries[0]
        self.dispatch(AddEntry(entry))
        log.info(f"Recovered timer saved as entry {entry.id}")
        return entry

    # === Invoices ===

    def create_invoice(
        self,
        client_id: Optional[str],
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        tax_rate: float = 0.0,
        payment_terms: Optional[str] = None
    ) -> Dict:
        """Build a draft invoice and add it to the state."""
        result = invoice_bridge.create_invoice(
            self.state, client_id, from_date, to_date, tax_rate,
            issue_date=self._clock().date(), payment_terms=payment_terms,
        )
        if result['success']:
            self.dispatch(AddInvoice(result['invoice']))
            log.info(f"Created invoice {result['invoice'].number} "
                     f"for {result['invoice'].total:.2f}")
        else:
            log.warning(f"Invoice not created: {result['error']}")
        return result

    def set_invoice_status(self, invoice_id: str, status: InvoiceStatus) -> bool:
        """Move an invoice along its lifecycle. Returns False if not allowed."""
        invoice = invoice_by_id(self.state, invoice_id)
        if invoice is None:
            log.warning(f"Invoice {invoice_id} not found")
            return False
        try:
            updated = invoice_bridge.change_status(invoice, status)
        except ValueError as e:
            log.warning(str(e))
            return False
        self.dispatch(UpdateInvoice(updated))
        return True

    def mark_overdue_invoices(self, today: Optional[date] = None) -> int:
        """Flag sent invoices past their due date as overdue."""
        today = today or self._clock().date()
        overdue = invoice_bridge.overdue_invoices(self.state, today)
        for invoice in overdue:
            self.dispatch(UpdateInvoice(invoice_bridge.mark_overdue(invoice)))
        return len(overdue)
