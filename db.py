"""Database operations for the time ledger - snapshot persistence and settings."""

import json
import os
import sqlite3
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from logger import log
from models import (
    client_from_dict, entry_from_dict, invoice_from_dict, project_from_dict,
    timer_from_dict, to_dict,
)
from store import AppState, initial_state


def get_app_dir() -> Path:
    """Get the application directory (TIMELEDGER_HOME wins when set)."""
    home = os.getenv('TIMELEDGER_HOME')
    if home:
        return Path(home)
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def get_data_dir() -> Path:
    """Get the data directory (creates if needed)."""
    data_dir = get_app_dir() / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_exports_dir() -> Path:
    """Get the exports directory (creates if needed)."""
    exports_dir = get_app_dir() / "exports"
    exports_dir.mkdir(parents=True, exist_ok=True)
    return exports_dir


def get_logs_dir() -> Path:
    return get_data_dir() / "logs"


DB_PATH = None


def get_db_path() -> Path:
    """Get the database path."""
    global DB_PATH
    if DB_PATH is None:
        DB_PATH = get_data_dir() / "timeledger.db"
    return DB_PATH


def get_connection() -> sqlite3.Connection:
    """Get database connection with row factory."""
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row
    return conn


SETTINGS_DEFAULTS = {
    'default_tax_rate': '0',
    'payment_terms': 'Net 30',
    'tick_interval_ms': '1000',
    'recent_entries_limit': '10',
}


def init_db():
    """Initialize all database tables."""
    conn = get_connection()
    cursor = conn.cursor()

    # Whole-state snapshot, one row
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS snapshot (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            payload TEXT NOT NULL,
            saved_at TEXT NOT NULL
        )
    """)

    # Settings
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)

    # Insert default settings if not exist
    for key, value in SETTINGS_DEFAULTS.items():
        cursor.execute(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            (key, value)
        )

    conn.commit()
    conn.close()


# === Settings ===

def get_setting(key: str, default: str = '') -> str:
    """Get a setting value."""
    init_db()
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    conn.close()
    return row['value'] if row else default


def set_setting(key: str, value: str):
    """Set a setting value."""
    init_db()
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute(
        "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
        (key, str(value))
    )
    conn.commit()
    conn.close()


def get_float_setting(key: str) -> float:
    """Read a numeric setting, falling back to its default when unparsable."""
    raw = get_setting(key, SETTINGS_DEFAULTS.get(key, '0'))
    try:
        return float(raw)
    except ValueError:
        log.warning(f"Setting '{key}' has non-numeric value {raw!r}, using default")
        return float(SETTINGS_DEFAULTS.get(key, '0'))


# === Snapshot conversion ===

def snapshot_from_state(state: AppState) -> Dict[str, Any]:
    """Full JSON document for a state, running timer included."""
    return {
        'clients': [to_dict(c) for c in state.clients],
        'projects': [to_dict(p) for p in state.projects],
        'entries': [to_dict(e) for e in state.entries],
        'invoices': [to_dict(i) for i in state.invoices],
        'running_timer': to_dict(state.running_timer) if state.running_timer else None,
    }


def state_from_snapshot(data: Dict[str, Any], restore_timer: bool = False) -> AppState:
    """Rebuild a state from a snapshot document.

    The running timer is dropped unless ``restore_timer`` is set. Raises
    (KeyError, TypeError, ValueError) on malformed documents.
    """
    if not isinstance(data, dict):
        raise TypeError(f"Snapshot must be an object, got {type(data).__name__}")
    return AppState(
        clients=tuple(client_from_dict(c) for c in data.get('clients') or ()),
        projects=tuple(project_from_dict(p) for p in data.get('projects') or ()),
        entries=tuple(entry_from_dict(e) for e in data.get('entries') or ()),
        invoices=tuple(invoice_from_dict(i) for i in data.get('invoices') or ()),
        running_timer=timer_from_dict(data.get('running_timer')) if restore_timer else None,
    )


# === Load / save ===

def load_state() -> AppState:
    """Load the saved state, or an empty one when nothing usable is stored.

    A timer that was running at save time is not restored.
    """
    try:
        init_db()
        conn = get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT payload, saved_at FROM snapshot WHERE id = 1")
            row = cursor.fetchone()
        finally:
            conn.close()
    except sqlite3.Error:
        log.warning(f"Could not read '{get_db_path()}', starting with an empty state.", exc_info=True)
        return initial_state()

    if row is None:
        log.info("No saved state found, starting with an empty state.")
        return initial_state()

    try:
        state = state_from_snapshot(json.loads(row['payload']))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError,
            OverflowError, OSError):
        log.warning("Saved state is malformed, starting with an empty state.", exc_info=True)
        return initial_state()

    log.info(f"Loaded state saved at {row['saved_at']}: {len(state.clients)} clients, "
             f"{len(state.projects)} projects, {len(state.entries)} entries, "
             f"{len(state.invoices)} invoices")
    return state


def save_state(state: AppState):
    """Write the full state, running timer included."""
    init_db()
    payload = json.dumps(snapshot_from_state(state))
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT OR REPLACE INTO snapshot (id, payload, saved_at)
        VALUES (1, ?, ?)
    """, (payload, datetime.now().isoformat()))
    conn.commit()
    conn.close()
    log.debug(f"Saved state to '{get_db_path()}'")


def get_saved_timer() -> Optional[Dict[str, Any]]:
    """Timer stored with the last snapshot plus the save time, for crash recovery."""
    init_db()
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute("SELECT payload, saved_at FROM snapshot WHERE id = 1")
    row = cursor.fetchone()
    conn.close()
    if row is None:
        return None
    try:
        timer = timer_from_dict(json.loads(row['payload']).get('running_timer'))
        saved_at = datetime.fromisoformat(row['saved_at'])
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError,
            OverflowError, OSError):
        log.warning("Saved timer is malformed, ignoring it.", exc_info=True)
        return None
    if timer is None or timer.start is None:
        return None
    return {'timer': timer, 'saved_at': saved_at}
