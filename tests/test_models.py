"""Tests for entity factories and serialization helpers."""

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import ids
import models
from models import InvoiceStatus, ValidationError

T0 = datetime(2024, 3, 4, 9, 0)


class TestIds:
    """Test id generation."""

    def test_prefix_and_uniqueness(self):
        generated = {ids.new_id(ids.CLIENT) for _ in range(200)}
        assert len(generated) == 200
        assert all(i.startswith('client_') for i in generated)


class TestFactories:
    """Test validation in the entity factories."""

    def test_new_client_trims_name(self):
        client = models.new_client("  Acme  ", email=" ", rate="50")
        assert client.name == "Acme"
        assert client.email is None
        assert client.rate == 50.0

    def test_new_client_requires_name(self):
        with pytest.raises(ValidationError):
            models.new_client("   ")

    def test_bad_rate(self):
        with pytest.raises(ValidationError):
            models.new_client("Acme", rate="lots")
        with pytest.raises(ValidationError):
            models.new_client("Acme", rate=-1)

    @pytest.mark.parametrize("rate", ["inf", "nan", float("inf"), "-inf"])
    def test_non_finite_rate(self, rate):
        with pytest.raises(ValidationError):
            models.new_client("Acme", rate=rate)
        with pytest.raises(ValidationError):
            models.new_project("c1", "Site", rate=rate)

    def test_new_project_zero_rate_means_inherit(self):
        project = models.new_project('c1', 'Site', rate=0)
        assert project.rate is None

    def test_new_project_requires_client(self):
        with pytest.raises(ValidationError):
            models.new_project('', 'Site')

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            models.new_project('c1', '')

    def test_new_entry_duration(self):
        entry = models.new_entry('c1', 'p1', T0, T0 + timedelta(minutes=45), tags=['a'])
        assert entry.duration_ms == 2_700_000
        assert entry.tags == ('a',)
        assert entry.id.startswith('entry_')

    def test_new_entry_without_end_is_zero_length(self):
        entry = models.new_entry('c1', 'p1', T0)
        assert entry.end == T0
        assert entry.duration_ms == 0

    @pytest.mark.parametrize("client_id,project_id,start", [
        (None, 'p1', T0),
        ('c1', None, T0),
        ('c1', 'p1', None),
    ])
    def test_new_entry_requires_fields(self, client_id, project_id, start):
        with pytest.raises(ValidationError):
            models.new_entry(client_id, project_id, start)

    def test_edit_entry_rederives_duration(self):
        entry = models.new_entry('c1', 'p1', T0, T0 + timedelta(hours=1))
        edited = models.edit_entry(entry, end=T0 + timedelta(hours=3), notes='longer')
        assert edited.duration_ms == 3 * 3_600_000
        assert edited.notes == 'longer'
        assert edited.id == entry.id


class TestEdits:
    """Test editing existing clients and projects."""

    def test_edit_client_keeps_id(self):
        client = models.new_client("Acme", rate=50)
        edited = models.edit_client(client, name=" Acme Ltd ", active=False)
        assert edited.id == client.id
        assert edited.name == "Acme Ltd"
        assert edited.active is False
        assert edited.rate == 50.0

    def test_edit_client_validates(self):
        client = models.new_client("Acme")
        with pytest.raises(ValidationError):
            models.edit_client(client, name="")
        with pytest.raises(ValidationError):
            models.edit_client(client, rate=float("inf"))

    def test_edit_project(self):
        project = models.new_project("c1", "Site", rate=80)
        archived = models.edit_project(project, archived=True, rate=0)
        assert archived.id == project.id
        assert archived.archived
        assert archived.rate is None


class TestParsing:
    """Test instant parsing and dict conversion."""

    def test_parse_naive_iso(self):
        assert models.parse_instant('2024-03-04T09:00:00') == T0

    def test_parse_aware_becomes_naive_local(self):
        aware = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
        parsed = models.parse_instant(aware.isoformat())
        assert parsed.tzinfo is None
        assert parsed == aware.astimezone().replace(tzinfo=None)

    def test_parse_epoch_ms(self):
        assert models.parse_instant(T0.timestamp() * 1000) == T0

    def test_parse_empty(self):
        assert models.parse_instant(None) is None
        assert models.parse_instant('') is None

    def test_entry_dict_round_trip(self):
        entry = models.new_entry('c1', 'p1', T0, T0 + timedelta(minutes=5),
                                 notes='a, "b"', tags=('x',), billable=False)
        assert models.entry_from_dict(models.to_dict(entry)) == entry

    def test_invoice_dict_keeps_status(self):
        invoice = models.Invoice(id='i1', number='INV-2024-0001', client_id='c1',
                                 date=date(2024, 3, 1), status=InvoiceStatus.SENT)
        data = models.to_dict(invoice)
        assert data['status'] == 'sent'
        assert models.invoice_from_dict(data) == invoice

    def test_non_finite_rate_on_disk_is_rejected(self):
        with pytest.raises(ValueError):
            models.client_from_dict({'id': 'c1', 'name': 'Acme', 'rate': float('inf')})

    def test_to_dict_rejects_unknown(self):
        with pytest.raises(TypeError):
            models.to_dict(object())
