"""Append-only CSV log of accepted records.

One header line, then one line per Record. Each line is rendered in full
before the single write call that appends it, and is flushed and fsync'd
straight away, so a crash loses at most the record in flight and never
leaves half a row behind.
"""

import os
from pathlib import Path

from recorder.exceptions import PersistenceError
from recorder.logging import get_logger
from recorder.models import Record

logger = get_logger(__name__)

CSV_HEADER = "timestamp,value,delta,direction,velocity_per_minute,velocity_per_second"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _fixed(value: float) -> str:
    return f"{value:.4f}"


def format_row(record: Record) -> str:
    """Render a Record as one CSV line, including the trailing newline.

    The first record of a session has no reference point, so its delta and
    velocity fields are left empty instead of showing a misleading 0.
    """
    if record.has_previous:
        delta = _fixed(record.delta)
        per_minute = _fixed(record.velocity_per_minute)
        per_second = _fixed(record.velocity_per_second)
    else:
        delta = per_minute = per_second = ""

    fields = [
        record.timestamp.strftime(TIMESTAMP_FORMAT),
        _fixed(record.value),
        delta,
        record.direction.value,
        per_minute,
        per_second,
    ]
    return ",".join(fields) + "\n"


class CsvRecordSink:
    """Single-writer append-only CSV file.

    Usage:
        sink = CsvRecordSink("btc_velocity.csv")
        sink.open()
        sink.append(record)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._rows_written = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def rows_written(self) -> int:
        """Rows appended by this sink instance (the header is not counted)."""
        return self._rows_written

    def open(self) -> None:
        """Create the file with its header unless it already holds data."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._path.exists() and self._path.stat().st_size > 0:
                logger.info("csv_log_resumed", path=str(self._path))
                return
            self._write(CSV_HEADER + "\n")
        except OSError as exc:
            raise PersistenceError(f"cannot initialise {self._path}: {exc}") from exc
        logger.info("csv_log_created", path=str(self._path))

    def append(self, record: Record) -> None:
        """Append one Record as a complete line.

        Raises:
            PersistenceError: If the line cannot be written (disk full,
                permission denied, ...). Never retried.
        """
        line = format_row(record)
        try:
            self._write(line)
        except OSError as exc:
            raise PersistenceError(f"cannot append to {self._path}: {exc}") from exc
        self._rows_written += 1

    def _write(self, text: str) -> None:
        with open(self._path, "a", encoding="utf-8", newline="") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
