"""Pure display helpers for the dashboard.

Every function here maps raw numbers, status codes or records to a display
string. Cell values are returned as `rich` markup strings so the reconciler
can compare them with plain string equality before touching the view.
"""
import datetime
import enum
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from rich.markup import escape

from .models import LogRecord, PieceChunk, PieceStatus, ResourceItem

MB = 1024 * 1024
NAME_MAX_WIDTH = 70
PIECE_BAR_WIDTH = 20

# Column order of a torrent row. The reconciler and the table view both key
# cells by these names.
ROW_COLUMNS = ("name", "transfer", "size", "health", "pieces")

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def humanize_bytes(num_bytes: float) -> str:
    """Formats a byte count with 1024-based units, e.g. `1.5 MB`."""
    value = float(num_bytes or 0)
    if value < 1024:
        return f"{int(value)} B"
    for unit in _BYTE_UNITS[1:]:
        value /= 1024
        if value < 1024 or unit == _BYTE_UNITS[-1]:
            return f"{value:.1f} {unit}"
    return f"{value:.1f} {_BYTE_UNITS[-1]}"


def format_rate(num_bytes: float, seconds: float) -> str:
    """Formats an average transfer rate over `seconds`."""
    if not seconds or seconds <= 0:
        return "0 B/s"
    return f"{humanize_bytes(num_bytes / seconds)}/s"


def format_transfer(downloaded: int, uploaded: int) -> str:
    return f"{humanize_bytes(downloaded)} / {humanize_bytes(uploaded)}"


def format_size(size_bytes: int) -> str:
    """Returns an empty string for unknown (zero) sizes."""
    return humanize_bytes(size_bytes) if size_bytes and size_bytes > 0 else ""


def shorten_name(name: str, max_width: int = NAME_MAX_WIDTH) -> str:
    if len(name) <= max_width:
        return name
    return name[:max_width - 3] + "..."


class HealthTier(enum.Enum):
    UNHEALTHY = "unhealthy"
    WEAK = "weak"
    HEALTHY = "healthy"


_HEALTH_STYLE = {
    HealthTier.UNHEALTHY: ("red", "✖"),
    HealthTier.WEAK: ("yellow", "!"),
    HealthTier.HEALTHY: ("green", "✔"),
}


def classify_health(seeders: int) -> HealthTier:
    """Seeders drive the health tier; peers are informational only."""
    if seeders <= 0:
        return HealthTier.UNHEALTHY
    if seeders < 2:
        return HealthTier.WEAK
    return HealthTier.HEALTHY


def health_cell(peers: int, seeders: int) -> str:
    tier = classify_health(seeders)
    style, glyph = _HEALTH_STYLE[tier]
    return f"[{style}]{glyph} {seeders}/{peers}[/{style}]"


class PieceSizeAdvice(enum.Enum):
    OK = "ok"
    WARN = "warn"
    BAD = "bad"


def piece_size_advice(piece_size: int) -> PieceSizeAdvice:
    """Large pieces hurt streaming reads; 1 MiB or less is recommended."""
    if piece_size <= MB:
        return PieceSizeAdvice.OK
    if piece_size < 4 * MB:
        return PieceSizeAdvice.WARN
    return PieceSizeAdvice.BAD


_PIECE_STYLE = {
    PieceStatus.HASHING: "yellow",
    PieceStatus.PENDING: "cyan",
    PieceStatus.COMPLETE: "green",
    PieceStatus.WAITING: None,
    PieceStatus.ERROR: "red",
}


def _allocate_widths(counts: Sequence[int], total: int, width: int) -> List[int]:
    # Largest remainder, so the segments never exceed the bar width.
    total = max(total, sum(counts))
    if total <= 0:
        return [0] * len(counts)
    exact = [c * width / total for c in counts]
    widths = [int(e) for e in exact]
    budget = min(width, round(sum(exact))) - sum(widths)
    order = sorted(range(len(counts)), key=lambda i: exact[i] - widths[i], reverse=True)
    for i in order[:max(0, budget)]:
        widths[i] += 1
    return widths


def piece_bar(piece_map: Iterable[PieceChunk], total_pieces: int, width: int = PIECE_BAR_WIDTH) -> str:
    """Draws the piece map as a fixed-width bar of coloured blocks."""
    chunks = list(piece_map)
    widths = _allocate_widths([c.count for c in chunks], total_pieces, width)
    parts = []
    used = 0
    for chunk, w in zip(chunks, widths):
        if w <= 0:
            continue
        used += w
        style = _PIECE_STYLE[chunk.status]
        if style is None:
            parts.append(" " * w)
        else:
            parts.append(f"[{style}]{'█' * w}[/{style}]")
    if used < width:
        parts.append("[dim]" + "·" * (width - used) + "[/dim]")
    return "".join(parts)


def row_cells(item: ResourceItem, name_width: int = NAME_MAX_WIDTH) -> Dict[str, str]:
    """Computes every display cell of a torrent row."""
    return {
        "name": escape(shorten_name(item.display_name or item.id, name_width)),
        "transfer": format_transfer(item.downloaded, item.uploaded),
        "size": format_size(item.size_bytes),
        "health": health_cell(item.peers, item.seeders),
        "pieces": piece_bar(item.piece_map, item.total_pieces),
    }


def format_timestamp(unix_seconds: float) -> str:
    try:
        return datetime.datetime.fromtimestamp(unix_seconds).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return "-"


def format_fields(fields: Mapping[str, Any]) -> str:
    return " ".join(f"[bold]{escape(str(k))}[/bold]={escape(str(v))}" for k, v in fields.items())


LEVEL_STYLES = {
    "error": "red",
    "warn": "yellow",
    "debug": "blue",
    "info": "",
}


def log_row(record: LogRecord) -> Tuple[str, str, str, str, str]:
    """Cells of one log table row: time, level, component, message, fields."""
    return (
        format_timestamp(record.time),
        record.level,
        escape(record.component),
        escape(record.message),
        format_fields(record.fields),
    )
