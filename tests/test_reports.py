"""Tests for report filtering and aggregation."""

import sys
from datetime import date, datetime, timedelta
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import reports
from models import Client, Project, TimeEntry
from store import AppState


def entry(entry_id, client_id, project_id, start, minutes, billable=True):
    return TimeEntry(
        id=entry_id, client_id=client_id, project_id=project_id,
        start=start, end=start + timedelta(minutes=minutes),
        duration_ms=minutes * 60_000, billable=billable,
    )


class TestDateRange:
    """Test inclusive date range filtering."""

    def test_entry_ending_at_last_moment_is_included(self):
        start = datetime(2024, 1, 31, 23, 0)
        e = TimeEntry(id='e', client_id='c', project_id='p', start=start,
                      end=datetime(2024, 1, 31, 23, 59, 59, 999000), duration_ms=3_599_999)
        result = reports.filter_by_range([e], date(2024, 1, 1), date(2024, 1, 31))
        assert result == [e]

    def test_entry_starting_at_midnight_is_included(self):
        e = entry('e', 'c', 'p', datetime(2024, 1, 1, 0, 0), 10)
        assert reports.filter_by_range([e], date(2024, 1, 1), date(2024, 1, 1)) == [e]

    def test_entry_crossing_end_is_excluded(self):
        e = entry('e', 'c', 'p', datetime(2024, 1, 31, 23, 30), 60)
        assert reports.filter_by_range([e], date(2024, 1, 1), date(2024, 1, 31)) == []

    def test_entry_before_start_is_excluded(self):
        e = entry('e', 'c', 'p', datetime(2023, 12, 31, 23, 0), 30)
        assert reports.filter_by_range([e], date(2024, 1, 1), None) == []

    def test_open_range_keeps_everything(self):
        entries = [entry('a', 'c', 'p', datetime(2020, 5, 5, 9), 5),
                   entry('b', 'c', 'p', datetime(2030, 5, 5, 9), 5)]
        assert reports.filter_by_range(entries) == entries

    def test_entry_without_end_uses_start(self):
        e = TimeEntry(id='e', client_id='c', project_id='p', start=datetime(2024, 2, 1, 12))
        assert reports.filter_by_range([e], date(2024, 2, 1), date(2024, 2, 1)) == [e]


class TestAggregation:
    """Test totals per client and per project."""

    def setup_method(self):
        t = datetime(2024, 3, 4, 9)
        self.entries = [
            entry('e1', 'c1', 'p1', t, 30),
            entry('e2', 'c1', 'p2', t, 90),
            entry('e3', 'c2', 'p3', t, 60),
            entry('e4', 'c1', 'p1', t, 15),
        ]

    def test_by_client(self):
        assert reports.aggregate_by_client(self.entries) == {
            'c1': 135 * 60_000, 'c2': 60 * 60_000,
        }

    def test_by_project(self):
        totals = reports.aggregate_by_project(self.entries)
        assert totals['p1'] == 45 * 60_000
        assert totals['p2'] == 90 * 60_000
        assert sum(totals.values()) == sum(e.duration_ms for e in self.entries)

    def test_ranked_longest_first(self):
        rows = reports.ranked({'a': 10, 'b': 40, 'c': 20})
        assert [r[0] for r in rows] == ['b', 'c', 'a']
        assert rows[0][2] == 1.0
        assert rows[1][2] == 0.5

    def test_ranked_ties_by_key(self):
        assert [r[0] for r in reports.ranked({'z': 5, 'a': 5})] == ['a', 'z']

    def test_ranked_all_zero(self):
        assert reports.ranked({'a': 0}) == [('a', 0, 0.0)]
        assert reports.ranked({}) == []


class TestReportRows:
    """Test name resolution for report rows."""

    def test_unknown_client_is_unassigned(self):
        state = AppState(clients=(Client(id='c1', name='Acme'),))
        rows = reports.report_rows(state, {'c1': 3_600_000, 'gone': 1_800_000}, reports.BY_CLIENT)
        assert rows[0]['name'] == 'Acme'
        assert rows[0]['hours'] == 1.0
        assert rows[1]['name'] == 'Unassigned'
        assert rows[1]['share'] == 0.5

    def test_project_names(self):
        state = AppState(projects=(Project(id='p1', client_id='c1', name='Website'),))
        rows = reports.report_rows(state, {'p1': 60_000}, reports.BY_PROJECT)
        assert rows[0]['name'] == 'Website'


class TestTimeSummary:
    """Test today/week/billable summary."""

    def test_summary(self):
        now = datetime(2024, 3, 6, 15, 0)  # Wednesday
        entries = [
            entry('today', 'c', 'p', datetime(2024, 3, 6, 9), 60),
            entry('monday', 'c', 'p', datetime(2024, 3, 4, 9), 120, billable=False),
            entry('last_week', 'c', 'p', datetime(2024, 3, 3, 9), 30),
        ]
        summary = reports.time_summary(entries, now)
        assert summary['today_hours'] == 1.0
        assert summary['week_hours'] == 3.0
        assert summary['billable_hours'] == 1.5
        assert summary['total_hours'] == 3.5
