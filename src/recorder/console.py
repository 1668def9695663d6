"""Human-readable terminal output for accepted records.

Structured diagnostics go through structlog to stderr; these helpers write
the operator-facing summary lines to stdout.
"""

from recorder.models import Record

_PREVIEW_COLUMNS = [
    ("timestamp", 20),
    ("value", 12),
    ("delta", 12),
    ("dir", 8),
    ("vel/min", 14),
    ("vel/sec", 14),
]


def format_summary(record: Record, unit: str = "") -> str:
    """One-line summary of an accepted record.

    e.g. ``[LIVE] 2024-05-01 12:03:00 | $64012.5000 | 0.0125% | up | vel: $8.0000/min``
    """
    pct = "NaN" if record.pct_change is None else f"{record.pct_change:.4f}"
    return (
        f"[LIVE] {record.timestamp:%Y-%m-%d %H:%M:%S}"
        f" | {unit}{record.value:.4f}"
        f" | {pct}%"
        f" | {record.direction.value}"
        f" | vel: {unit}{record.velocity_per_minute:.4f}/min"
    )


def print_summary(record: Record, unit: str = "") -> None:
    print(format_summary(record, unit), flush=True)


def format_preview(records: list[Record], limit: int = 5) -> str:
    """Fixed-width table of the first ``limit`` records.

    Fields without a reference point are shown as NaN.
    """
    header = "".join(name.ljust(width) for name, width in _PREVIEW_COLUMNS)
    lines = ["--- Preview ---", header.rstrip()]
    for record in records[:limit]:
        if record.has_previous:
            delta = f"{record.delta:.4f}"
            per_min = f"{record.velocity_per_minute:.4f}"
            per_sec = f"{record.velocity_per_second:.4f}"
        else:
            delta = per_min = per_sec = "NaN"
        cells = [
            f"{record.timestamp:%Y-%m-%d %H:%M:%S}",
            f"{record.value:.4f}",
            delta,
            record.direction.value,
            per_min,
            per_sec,
        ]
        lines.append(
            "".join(cell.ljust(width) for cell, (_, width) in zip(cells, _PREVIEW_COLUMNS)).rstrip()
        )
    return "\n".join(lines)
