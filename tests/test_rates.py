"""Tests for rate resolution and rounding."""

import sys
from pathlib import Path

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import Client, Project
from rates import effective_rate, hours_from_ms, round2
from store import AppState


@pytest.fixture
def state():
    return AppState(
        clients=(Client(id='c1', name='Acme', rate=50.0), Client(id='c2', name='Free')),
        projects=(
            Project(id='p1', client_id='c1', name='Override', rate=75.0),
            Project(id='p2', client_id='c1', name='Default'),
            Project(id='p3', client_id='c2', name='Nothing'),
            Project(id='p4', client_id='c1', name='Zero', rate=0.0),
        ),
    )


class TestEffectiveRate:
    """Test project rate over client rate over zero."""

    def test_project_override_wins(self, state):
        assert effective_rate(state, 'p1', 'c1') == 75.0

    def test_client_rate_when_project_has_none(self, state):
        assert effective_rate(state, 'p2', 'c1') == 50.0

    def test_zero_project_rate_falls_through(self, state):
        assert effective_rate(state, 'p4', 'c1') == 50.0

    def test_zero_when_neither_set(self, state):
        assert effective_rate(state, 'p3', 'c2') == 0.0

    def test_unknown_ids(self, state):
        assert effective_rate(state, 'missing', 'missing') == 0.0
        assert effective_rate(state) == 0.0


class TestRounding:
    """Test half-up rounding to cents."""

    @pytest.mark.parametrize("value,expected", [
        (0.125, 0.13),
        (2.675, 2.68),
        (1.005, 1.01),
        (10.0, 10.0),
        (0.004, 0.0),
    ])
    def test_round2(self, value, expected):
        assert round2(value) == expected

    def test_hours_from_ms(self):
        assert hours_from_ms(3_600_000) == 1.0
        assert hours_from_ms(5_400_000) == 1.5
        assert hours_from_ms(60_000) == 0.02
        assert hours_from_ms(0) == 0.0
