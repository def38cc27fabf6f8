"""Persistence for the previous-session record and tabular row export.

Only one record is kept on disk. Each finished session overwrites it, and
the next session reads it back for comparison.
"""

from __future__ import annotations

import csv
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, TextIO

from rehab_engine.errors import SessionStorageError
from rehab_engine.records import ROW_COLUMNS, SessionRecord, SessionRow

logger = logging.getLogger("rehab_engine.storage")

RECORD_FILENAME = "rehabData.json"
EXPORT_PREFIX = "rehab_session"


class SessionStore:
    """JSON file holding the most recent session record."""

    def __init__(self, data_dir: str | Path, filename: str = RECORD_FILENAME):
        self.data_dir = Path(data_dir).expanduser()
        self.path = self.data_dir / filename

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[SessionRecord]:
        """Read the stored record.

        Returns None when there is no record or it cannot be read; a broken
        file counts as having no previous session.
        """
        if not self.path.exists():
            logger.debug("No previous session at %s", self.path)
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return SessionRecord.from_dict(data)
        except (OSError, ValueError) as e:
            logger.warning("Previous session at %s is unreadable: %s", self.path, e)
            return None

    def save(self, record: SessionRecord):
        """Overwrite the stored record.

        Writes to a temporary file and renames it into place so a failed
        write never leaves a truncated record behind.

        Raises:
            SessionStorageError: the record could not be written.
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise SessionStorageError(f"Could not write {self.path}: {e}") from e

        logger.info("Saved session %s to %s", record.session_date, self.path)

    def clear(self):
        """Delete the stored record, if any."""
        if self.path.exists():
            self.path.unlink()


def write_rows_csv(rows: Iterable[SessionRow], stream: TextIO) -> int:
    """Write a header plus one line per row. Returns the number of rows."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow([name for name, _ in ROW_COLUMNS])
    count = 0
    for row in rows:
        writer.writerow([getter(row) for _, getter in ROW_COLUMNS])
        count += 1
    return count


def export_rows(
    rows: Iterable[SessionRow],
    directory: str | Path,
    prefix: str = EXPORT_PREFIX,
    now: Optional[datetime] = None,
) -> Optional[Path]:
    """Export rows to ``<directory>/<prefix>_YYYYMMDD_HHMMSS.csv``.

    Returns the written path, or None when there was nothing to export.
    """
    rows = list(rows)
    if not rows:
        logger.info("No rows to export.")
        return None

    now = now or datetime.now()
    directory = Path(directory).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{prefix}_{now.strftime('%Y%m%d_%H%M%S')}.csv"

    with open(path, "w", newline="", encoding="utf-8") as f:
        write_rows_csv(rows, f)

    logger.info("CSV exported to: %s", path)
    return path
