"""Typed records for every payload the daemon exchanges with the dashboard.

The daemon speaks loosely-typed JSON. Each dataclass here owns a `from_json`
constructor that validates and coerces one payload shape at the boundary, so
the rest of the package never has to deal with missing keys or strings where
numbers were expected. Anything that cannot be coerced raises `PayloadError`,
except a bad entry inside a page, which is skipped so the rest still renders.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .utils import PayloadError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return default
    return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _require_mapping(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise PayloadError(f"Expected a JSON object for {what}, got {type(data).__name__}")
    return data


class PieceStatus(enum.Enum):
    """Coarse piece completion buckets, keyed by the daemon's status codes."""
    HASHING = "H"
    PENDING = "P"
    COMPLETE = "C"
    WAITING = "W"
    ERROR = "?"

    @classmethod
    def from_code(cls, code: Any) -> "PieceStatus":
        try:
            return cls(code)
        except ValueError:
            return cls.ERROR


@dataclass(frozen=True)
class PieceChunk:
    status: PieceStatus
    count: int


@dataclass(frozen=True)
class ResourceItem:
    """One torrent as listed on a route page.

    Identity is `id` (the info hash); every other field may change between
    polls.
    """
    id: str
    display_name: str
    downloaded: int = 0
    uploaded: int = 0
    size_bytes: int = 0
    peers: int = 0
    seeders: int = 0
    piece_map: Tuple[PieceChunk, ...] = ()
    total_pieces: int = 0
    piece_size: int = 0
    time_passed: float = 0.0

    @classmethod
    def from_json(cls, data: Any) -> "ResourceItem":
        data = _require_mapping(data, "torrent stats")
        item_id = _as_str(data.get("hash")).strip()
        if not item_id:
            raise PayloadError("Torrent stats entry is missing its 'hash'")
        chunks = data.get("pieceChunks") or []
        if not isinstance(chunks, list):
            chunks = []
        piece_map = tuple(
            PieceChunk(PieceStatus.from_code(c.get("status")), max(0, _as_int(c.get("numPieces"))))
            for c in chunks if isinstance(c, dict)
        )
        return cls(
            id=item_id,
            display_name=_as_str(data.get("name")),
            downloaded=max(0, _as_int(data.get("downloadedBytes"))),
            uploaded=max(0, _as_int(data.get("uploadedBytes"))),
            size_bytes=max(0, _as_int(data.get("sizeBytes"))),
            peers=max(0, _as_int(data.get("peers"))),
            seeders=max(0, _as_int(data.get("seeders"))),
            piece_map=piece_map,
            total_pieces=max(0, _as_int(data.get("totalPieces"))),
            piece_size=max(0, _as_int(data.get("pieceSize"))),
            time_passed=_as_float(data.get("timePassed")),
        )


@dataclass(frozen=True)
class RouteSummary:
    """A lightweight route listing entry from `GET /api/routes`."""
    name: str
    folder: str = ""
    total: int = 0

    @classmethod
    def from_json(cls, data: Any) -> Optional["RouteSummary"]:
        """Returns None for entries without a usable name."""
        if not isinstance(data, dict):
            return None
        name = _as_str(data.get("name") or data.get("Name")).strip()
        if not name:
            return None
        return cls(
            name=name,
            folder=_as_str(data.get("folder") or data.get("Folder")),
            total=max(0, _as_int(data.get("total", data.get("Total")))),
        )


@dataclass
class RouteGroup:
    """Client-side state for a route that the last poll listed.

    The route's current page lives in `DashboardSession.pages`.
    """
    name: str
    total_count: int = 0
    folder: str = ""


@dataclass
class PageWindow:
    """One fetched page of a route. Replaced wholesale on every fetch."""
    route_name: str
    page: int
    page_size: int
    items: List[ResourceItem]
    total_items: int

    @classmethod
    def from_json(cls, route_name: str, data: Any, requested_page: int = 1,
                  requested_size: int = DEFAULT_PAGE_SIZE) -> "PageWindow":
        data = _require_mapping(data, f"page of route '{route_name}'")
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise PayloadError(f"'items' of route '{route_name}' is not a list")
        items = []
        for entry in raw_items:
            try:
                items.append(ResourceItem.from_json(entry))
            except PayloadError as e:
                logger.warning(f"Skipping torrent in page of route '{route_name}': {e}")
        page = _as_int(data.get("page"), requested_page) or requested_page
        size = _as_int(data.get("size"), requested_size) or requested_size
        return cls(
            route_name=route_name,
            page=max(1, page),
            page_size=max(1, size),
            items=items,
            total_items=max(0, _as_int(data.get("total"), len(items))),
        )


LOG_LEVELS = ("debug", "info", "warn", "error")
_LEVEL_ALIASES = {
    "warning": "warn",
    "fatal": "error",
    "panic": "error",
    "trace": "debug",
}
RESERVED_LOG_KEYS = ("time", "level", "component", "message")


@dataclass(frozen=True)
class LogRecord:
    """One structured daemon log line."""
    time: float
    level: str
    component: str
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def normalize_level(level: Any) -> str:
        value = _as_str(level).strip().lower()
        value = _LEVEL_ALIASES.get(value, value)
        return value if value in LOG_LEVELS else "info"

    @classmethod
    def from_json(cls, data: Any) -> "LogRecord":
        data = _require_mapping(data, "log record")
        return cls(
            time=_as_float(data.get("time")),
            level=cls.normalize_level(data.get("level")),
            component=_as_str(data.get("component")),
            message=_as_str(data.get("message")),
            fields={k: v for k, v in data.items() if k not in RESERVED_LOG_KEYS},
        )


@dataclass(frozen=True)
class TorrentFile:
    path: str
    length: int

    @classmethod
    def from_json(cls, data: Any) -> "TorrentFile":
        data = _require_mapping(data, "torrent file")
        return cls(path=_as_str(data.get("path")), length=max(0, _as_int(data.get("length"))))


@dataclass(frozen=True)
class TorrentDetails:
    """Response of `GET /api/routes/{route}/torrent/{hash}`."""
    stats: ResourceItem
    folder: str = ""
    fuse_path: str = ""
    httpfs_path: str = ""

    @classmethod
    def from_json(cls, data: Any) -> "TorrentDetails":
        data = _require_mapping(data, "torrent details")
        if not data.get("stats"):
            raise PayloadError("No details available")
        stats = ResourceItem.from_json(data["stats"])
        paths = data.get("paths") if isinstance(data.get("paths"), dict) else {}
        fuse = _as_str(paths.get("fuse"))
        httpfs = _as_str(paths.get("httpfs"))
        return cls(
            stats=stats,
            folder=_as_str(data.get("folder")),
            fuse_path=f"{fuse}/{stats.display_name}" if fuse else "",
            httpfs_path=f"{httpfs}/{stats.display_name}" if httpfs else "",
        )


@dataclass(frozen=True)
class GlobalStats:
    """Daemon-wide transfer counters from `GET /api/status`."""
    downloaded: int = 0
    uploaded: int = 0
    time_passed: float = 0.0
    cache_items: int = 0
    cache_filled_mb: int = 0
    cache_capacity_mb: int = 0

    @classmethod
    def from_json(cls, data: Any) -> "GlobalStats":
        data = _require_mapping(data, "status")
        torrent_stats = data.get("torrentStats") if isinstance(data.get("torrentStats"), dict) else {}
        return cls(
            downloaded=max(0, _as_int(torrent_stats.get("downloadedBytes"))),
            uploaded=max(0, _as_int(torrent_stats.get("uploadedBytes"))),
            time_passed=_as_float(torrent_stats.get("timePassed")),
            cache_items=max(0, _as_int(data.get("cacheItems"))),
            cache_filled_mb=max(0, _as_int(data.get("cacheFilled"))),
            cache_capacity_mb=max(0, _as_int(data.get("cacheCapacity"))),
        )


@dataclass
class DashboardSession:
    """All mutable dashboard state, owned by one controller.

    Attributes:
        interval: Watch interval in seconds, refreshed from the daemon.
        routes: Route groups listed by the last applied poll.
        pages: Current page per route. Client-side only.
        global_stats: Last daemon-wide transfer counters, if fetched.
    """
    interval: float = 5
    routes: Dict[str, RouteGroup] = field(default_factory=dict)
    pages: Dict[str, int] = field(default_factory=dict)
    global_stats: Optional[GlobalStats] = None
