"""Persistence layer -- append-only CSV log of records."""

from recorder.storage.csv_sink import CSV_HEADER, CsvRecordSink, format_row

__all__ = ["CSV_HEADER", "CsvRecordSink", "format_row"]
