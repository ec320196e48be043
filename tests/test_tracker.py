"""Tests for the state owner: dispatch, persistence, timer and invoices."""

import sqlite3
import sys
import tempfile
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import db
from models import ActiveTimer, Client, InvoiceStatus, Project, TimerSelection
from store import AddClient, AddProject, DeleteClient, DeleteEntry, UpdateClient
from tracker import Tracker

T0 = datetime(2024, 3, 4, 9, 0)


@pytest.fixture
def temp_db(monkeypatch):
    """Create a temporary database for testing."""
    temp_dir = tempfile.mkdtemp()

    monkeypatch.setattr(db, 'get_app_dir', lambda: Path(temp_dir))
    db.DB_PATH = None

    db.init_db()

    yield temp_dir

    db.DB_PATH = None

    import shutil
    shutil.rmtree(temp_dir, ignore_errors=True)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    saved = []
    t = Tracker(persist=saved.append, clock=clock)
    t.saved = saved
    t.dispatch(AddClient(Client(id='acme', name='Acme', rate=100.0)))
    t.dispatch(AddProject(Project(id='site', client_id='acme', name='Website')))
    return t


class TestDispatch:
    """Test persistence and change notification."""

    def test_persists_each_change(self, tracker):
        assert len(tracker.saved) == 2
        assert tracker.saved[-1] is tracker.state

    def test_no_persist_when_unchanged(self, tracker):
        tracker.dispatch(AddClient(Client(id='acme', name='Duplicate')))
        tracker.dispatch(object())
        assert len(tracker.saved) == 2

    def test_unknown_update_or_delete_is_not_persisted(self, tracker):
        seen = []
        tracker.on_change = seen.append
        tracker.dispatch(UpdateClient(Client(id='nobody', name='Ghost')))
        tracker.dispatch(DeleteEntry('nope'))
        tracker.dispatch(DeleteClient('nope'))
        assert len(tracker.saved) == 2
        assert seen == []

    def test_on_change_callback(self, tracker):
        seen = []
        tracker.on_change = seen.append
        tracker.dispatch(DeleteClient('acme'))
        assert seen == [tracker.state]
        assert tracker.state.projects == ()

    def test_persist_failure_keeps_state(self, clock):
        def failing(state):
            raise sqlite3.OperationalError("database is locked")
        t = Tracker(persist=failing, clock=clock)
        t.dispatch(AddClient(Client(id='c', name='Still here')))
        assert t.state.clients[0].name == 'Still here'


class TestTimer:
    """Test starting, stopping and resetting through the tracker."""

    def test_start_stop(self, tracker, clock):
        assert tracker.start_timer(TimerSelection(client_id='acme', project_id='site'))
        assert tracker.timer_running
        clock.advance(minutes=45)
        entry = tracker.stop_timer()
        assert entry.duration_ms == 45 * 60_000
        assert entry.client_id == 'acme'
        assert tracker.state.entries[0] is entry
        assert not tracker.timer_running

    def test_second_start_refused(self, tracker, clock):
        tracker.start_timer()
        clock.advance(minutes=5)
        assert tracker.start_timer() is False
        assert tracker.state.running_timer.start == T0

    def test_stop_without_timer(self, tracker):
        assert tracker.stop_timer() is None

    def test_reset(self, tracker):
        tracker.start_timer()
        tracker.reset_timer()
        assert not tracker.timer_running
        assert tracker.state.entries == ()


class TestRecovery:
    """Test handling a timer left running by a previous session."""

    def test_apply_recovery_records_entry(self, tracker):
        data = {'timer': ActiveTimer(start=T0, client_id='acme', project_id='site', notes='late'),
                'saved_at': T0 + timedelta(hours=1)}
        entry = tracker.apply_recovery(True, data)
        assert entry.duration_ms == 3_600_000
        assert entry.end == T0 + timedelta(hours=1)
        assert entry.notes == 'late'
        assert tracker.state.entries == (entry,)
        assert tracker.state.running_timer is None

    def test_discard_records_nothing(self, tracker):
        data = {'timer': ActiveTimer(start=T0), 'saved_at': T0 + timedelta(hours=1)}
        assert tracker.apply_recovery(False, data) is None
        assert tracker.state.entries == ()

    def test_recovery_across_sessions(self, temp_db, clock):
        first = Tracker.from_db(clock=clock)
        first.dispatch(AddClient(Client(id='acme', name='Acme')))
        first.start_timer(TimerSelection(client_id='acme'))

        second = Tracker.from_db(clock=clock)
        assert not second.timer_running
        recovery = second.recover_from_crash()
        assert recovery['timer'].client_id == 'acme'

        entry = second.apply_recovery(True, recovery)
        assert entry.client_id == 'acme'
        assert db.get_saved_timer() is None
        assert db.load_state().entries[0].id == entry.id

    def test_discard_clears_saved_timer(self, temp_db, clock):
        Tracker.from_db(clock=clock).start_timer()
        second = Tracker.from_db(clock=clock)
        second.apply_recovery(False, second.recover_from_crash())
        assert db.get_saved_timer() is None


class TestInvoices:
    """Test invoice creation and status changes through the tracker."""

    @pytest.fixture
    def billed(self, tracker, clock):
        tracker.start_timer(TimerSelection(client_id='acme', project_id='site'))
        clock.advance(hours=1)
        tracker.stop_timer()
        return tracker

    def test_create_invoice_adds_to_state(self, billed):
        result = billed.create_invoice('acme', tax_rate=10)
        assert result['success']
        assert billed.state.invoices == (result['invoice'],)
        assert result['invoice'].total == 110.0
        assert result['invoice'].date == date(2024, 3, 4)

    def test_failed_invoice_leaves_state(self, billed):
        saved = len(billed.saved)
        result = billed.create_invoice('nobody')
        assert not result['success']
        assert billed.state.invoices == ()
        assert len(billed.saved) == saved

    def test_status_changes(self, billed):
        invoice = billed.create_invoice('acme')['invoice']
        assert billed.set_invoice_status(invoice.id, InvoiceStatus.PAID) is False
        assert billed.set_invoice_status(invoice.id, InvoiceStatus.SENT)
        assert billed.set_invoice_status(invoice.id, InvoiceStatus.PAID)
        assert billed.state.invoices[0].status == InvoiceStatus.PAID

    def test_unknown_invoice(self, billed):
        assert billed.set_invoice_status('missing', InvoiceStatus.SENT) is False

    def test_mark_overdue(self, billed):
        invoice = billed.create_invoice('acme', payment_terms='Net 7')['invoice']
        billed.set_invoice_status(invoice.id, InvoiceStatus.SENT)
        assert billed.mark_overdue_invoices(date(2024, 3, 11)) == 0
        assert billed.mark_overdue_invoices(date(2024, 3, 12)) == 1
        assert billed.state.invoices[0].status == InvoiceStatus.OVERDUE
