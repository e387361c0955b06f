from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from route_monitor.clients.base import DaemonClient
from route_monitor.models import GlobalStats, PageWindow, ResourceItem, RouteSummary, TorrentDetails, TorrentFile
from route_monitor.reconciler import CellUpdate, RowHandle, RowSink
from route_monitor.utils import ApiError


def make_item(item_id: str, seeders: int = 1, peers: int = 2, name: Optional[str] = None, **kwargs) -> ResourceItem:
    return ResourceItem(id=item_id, display_name=name or f"torrent-{item_id}", seeders=seeders, peers=peers, **kwargs)


class FakeDaemonClient(DaemonClient):
    """
    An in-memory daemon. Routes hold lists of ResourceItem; every call is
    recorded in `calls`. Set `fail[<method name>]` to an exception to make
    that method raise it.
    """
    def __init__(self):
        self.routes: Dict[str, List[ResourceItem]] = {}
        self.folders: Dict[str, str] = {}
        self.interval = 5
        self.stats = GlobalStats(downloaded=2048, uploaded=1024, time_passed=2.0)
        self.log_chunks: List[bytes] = []
        self.log_bodies: List[bytes] = []
        self.files: Dict[str, List[TorrentFile]] = {}
        self.fail: Dict[str, Exception] = {}
        self.calls: List[tuple] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.fail:
            raise self.fail[name]

    def calls_to(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def ping(self) -> None:
        self._record("ping")

    def list_routes(self) -> List[RouteSummary]:
        self._record("list_routes")
        return [RouteSummary(name, self.folders.get(name, ""), len(items)) for name, items in self.routes.items()]

    def get_watch_interval(self) -> int:
        self._record("get_watch_interval")
        return self.interval

    def set_watch_interval(self, seconds: int) -> int:
        self._record("set_watch_interval", seconds)
        self.interval = seconds
        return seconds

    def route_torrents(self, route: str, page: int, size: int) -> PageWindow:
        self._record("route_torrents", route, page, size)
        items = self.routes.get(route, [])
        start = (page - 1) * size
        return PageWindow(route, page, size, list(items[start:start + size]), len(items))

    def torrent_details(self, route: str, torrent_hash: str) -> TorrentDetails:
        self._record("torrent_details", route, torrent_hash)
        for item in self.routes.get(route, []):
            if item.id == torrent_hash:
                return TorrentDetails(stats=item, folder=self.folders.get(route, ""))
        raise ApiError(404, "torrent not found")

    def torrent_files(self, route: str, torrent_hash: str) -> List[TorrentFile]:
        self._record("torrent_files", route, torrent_hash)
        return self.files.get(torrent_hash, [])

    def delete_torrent(self, route: str, torrent_hash: str) -> None:
        self._record("delete_torrent", route, torrent_hash)
        self.routes[route] = [i for i in self.routes.get(route, []) if i.id != torrent_hash]

    def blacklist_torrent(self, route: str, torrent_hash: str) -> None:
        self._record("blacklist_torrent", route, torrent_hash)
        self.routes[route] = [i for i in self.routes.get(route, []) if i.id != torrent_hash]

    def add_magnet(self, route: str, magnet: str) -> None:
        self._record("add_magnet", route, magnet)

    def upload_torrent_file(self, route: str, path: Path) -> None:
        self._record("upload_torrent_file", route, Path(path))

    def create_route(self, name: str) -> None:
        self._record("create_route", name)
        self.routes.setdefault(name, [])

    def delete_route(self, name: str) -> None:
        self._record("delete_route", name)
        self.routes.pop(name, None)

    def global_stats(self) -> GlobalStats:
        self._record("global_stats")
        return self.stats

    def open_log_stream(self, chunk_size: int) -> Iterator[bytes]:
        self._record("open_log_stream", chunk_size)
        for chunk in self.log_chunks:
            yield chunk

    def fetch_log_snapshot(self) -> bytes:
        self._record("fetch_log_snapshot")
        if len(self.log_bodies) > 1:
            return self.log_bodies.pop(0)
        return self.log_bodies[0] if self.log_bodies else b""


class RecordingSink(RowSink):
    """A RowSink that keeps rows in dicts and counts every mutation."""
    def __init__(self):
        self.rows: Dict[str, Dict[str, RowHandle]] = {}
        self.pagers = {}
        self.folders: Dict[str, str] = {}
        self.frames = 0
        self.created: List[str] = []
        self.updated: List[tuple] = []
        self.removed: List[str] = []
        self.dropped: List[str] = []

    @property
    def mutations(self) -> int:
        return len(self.created) + len(self.updated) + len(self.removed)

    def reset_counts(self) -> None:
        self.created, self.updated, self.removed = [], [], []

    def frame(self, route: str):
        self.frames += 1
        return super().frame(route)

    def create_rows(self, route: str, row_ids: Sequence[str]) -> List[RowHandle]:
        handles = [RowHandle(row_id) for row_id in row_ids]
        table = self.rows.setdefault(route, {})
        for handle in handles:
            table[handle.row_id] = handle
            self.created.append(handle.row_id)
        return handles

    def update_cells(self, route: str, updates: Sequence[CellUpdate]) -> None:
        for update in updates:
            update.handle.cells[update.column] = update.value
            self.updated.append((update.handle.row_id, update.column))

    def remove_rows(self, route: str, row_ids: Sequence[str]) -> None:
        for row_id in row_ids:
            self.rows.get(route, {}).pop(row_id, None)
            self.removed.append(row_id)

    def show_pager(self, route: str, pager) -> None:
        self.pagers[route] = pager

    def set_folder(self, route: str, folder: str) -> None:
        self.folders[route] = folder

    def drop_route(self, route: str) -> None:
        self.rows.pop(route, None)
        self.pagers.pop(route, None)
        self.dropped.append(route)

    def cells(self, route: str) -> Dict[str, Dict[str, str]]:
        return {row_id: dict(h.cells) for row_id, h in self.rows.get(route, {}).items()}


class FakeTimer:
    """Stands in for threading.Timer; `fire()` runs the callback inline."""
    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class TimerFactory:
    """Builds FakeTimers and remembers them, newest last."""
    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, delay, function) -> FakeTimer:
        timer = FakeTimer(delay, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


class RecordingNotifier:
    def __init__(self):
        self.messages: List[tuple] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    @property
    def errors(self) -> List[str]:
        return [m for level, m in self.messages if level == "error"]

    @property
    def infos(self) -> List[str]:
        return [m for level, m in self.messages if level == "info"]
