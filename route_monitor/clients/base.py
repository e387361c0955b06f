import abc
from pathlib import Path
from typing import Iterator, List

from ..models import GlobalStats, PageWindow, RouteSummary, TorrentDetails, TorrentFile


class DaemonClient(abc.ABC):
    """
    An abstract base class for the daemon's JSON API.

    Every method raises a `DaemonError` subclass on failure; callers decide
    how to report it.
    """

    @abc.abstractmethod
    def ping(self) -> None:
        """Checks that the daemon is reachable. Raises on failure."""
        pass

    @abc.abstractmethod
    def list_routes(self) -> List[RouteSummary]:
        """Lists routes, skipping entries without a name."""
        pass

    @abc.abstractmethod
    def get_watch_interval(self) -> int:
        """Gets the configured watch interval in seconds."""
        pass

    @abc.abstractmethod
    def set_watch_interval(self, seconds: int) -> int:
        """Sets the watch interval; returns the value the daemon accepted."""
        pass

    @abc.abstractmethod
    def route_torrents(self, route: str, page: int, size: int) -> PageWindow:
        """Gets one page of a route's torrents."""
        pass

    @abc.abstractmethod
    def torrent_details(self, route: str, torrent_hash: str) -> TorrentDetails:
        pass

    @abc.abstractmethod
    def torrent_files(self, route: str, torrent_hash: str) -> List[TorrentFile]:
        pass

    @abc.abstractmethod
    def delete_torrent(self, route: str, torrent_hash: str) -> None:
        pass

    @abc.abstractmethod
    def blacklist_torrent(self, route: str, torrent_hash: str) -> None:
        pass

    @abc.abstractmethod
    def add_magnet(self, route: str, magnet: str) -> None:
        pass

    @abc.abstractmethod
    def upload_torrent_file(self, route: str, path: Path) -> None:
        pass

    @abc.abstractmethod
    def create_route(self, name: str) -> None:
        pass

    @abc.abstractmethod
    def delete_route(self, name: str) -> None:
        pass

    @abc.abstractmethod
    def global_stats(self) -> GlobalStats:
        pass

    @abc.abstractmethod
    def open_log_stream(self, chunk_size: int) -> Iterator[bytes]:
        """Yields raw chunks of the live log stream until it ends."""
        pass

    @abc.abstractmethod
    def fetch_log_snapshot(self) -> bytes:
        """Fetches the log body as it is right now."""
        pass
