"""CSV export of time entries."""

import csv
import io
from pathlib import Path
from typing import Iterable, NamedTuple, Optional

from models import UNASSIGNED_LABEL, TimeEntry
from rates import effective_rate, hours_from_ms, round2
from store import AppState, client_by_id, project_by_id

CSV_MIME_TYPE = "text/csv;charset=utf-8"
DEFAULT_FILENAME = "time-entries.csv"

HEADER = ["Entry ID", "Client", "Project", "Start", "End", "Duration(h)",
          "Billable", "Notes", "Rate", "Amount"]


class ExportPayload(NamedTuple):
    filename: str
    content: str
    mime_type: str


def entry_row(state: AppState, entry: TimeEntry) -> list:
    """One CSV row for an entry; missing client/project show as Unassigned."""
    client = client_by_id(state, entry.client_id)
    project = project_by_id(state, entry.project_id)
    rate = effective_rate(state, entry.project_id, entry.client_id)
    hours = hours_from_ms(entry.duration_ms)
    return [
        entry.id,
        client.name if client is not None else UNASSIGNED_LABEL,
        project.name if project is not None else UNASSIGNED_LABEL,
        entry.start.isoformat(),
        entry.end.isoformat() if entry.end is not None else "",
        f"{hours:.2f}",
        "Yes" if entry.billable else "No",
        entry.notes or "",
        f"{rate:.2f}",
        f"{round2(rate * hours):.2f}",
    ]


def to_delimited_text(state: AppState, entries: Iterable[TimeEntry]) -> str:
    """Header plus one row per entry.

    Fields with commas, quotes or line breaks are quoted with doubled quotes,
    so ``csv.reader`` gives back the exact values.
    """
    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(HEADER)
    for entry in entries:
        writer.writerow(entry_row(state, entry))
    return buffer.getvalue()


def build_export(state: AppState, entries: Iterable[TimeEntry],
                 filename: str = DEFAULT_FILENAME) -> ExportPayload:
    return ExportPayload(filename, to_delimited_text(state, entries), CSV_MIME_TYPE)


def write_export(payload: ExportPayload, directory: Optional[Path] = None) -> Path:
    """Save an export payload to disk and return the path."""
    target_dir = Path(directory) if directory is not None else Path.cwd()
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / payload.filename
    with path.open("w", newline="", encoding="utf-8") as f:
        f.write(payload.content)
    return path
