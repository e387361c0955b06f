import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

import requests

from .base import DaemonClient
from ..models import GlobalStats, PageWindow, RouteSummary, TorrentDetails, TorrentFile
from ..utils import ApiError, PayloadError, TransportError, retry

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    """Quotes one URL path segment, including any '/' in route names."""
    return quote(str(value), safe="")


class HttpDaemonClient(DaemonClient):
    """
    A `requests`-based client for the daemon's HTTP API.
    """

    def __init__(self, base_url: str, timeout: float = 10, verify_cert: bool = True,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify_cert

    def _url(self, *segments: str) -> str:
        return self.base_url + "/api/" + "/".join(segments)

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        if not response.ok:
            raise ApiError(response.status_code, self._error_text(response))
        return response

    @staticmethod
    def _error_text(response: requests.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return None

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PayloadError(f"Invalid JSON from {response.url}: {e}") from e

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._json(self._request("GET", url, params=params))

    @retry(tries=3, delay=2, exceptions=(TransportError,))
    def ping(self) -> None:
        """Checks that the daemon answers, retrying while it is still starting."""
        logger.info(f"Connecting to daemon at {self.base_url}...")
        self._request("GET", self._url("watch_interval"))
        logger.info("Daemon is reachable.")

    def list_routes(self) -> List[RouteSummary]:
        data = self._get_json(self._url("routes"))
        if data is None:
            return []
        if not isinstance(data, list):
            raise PayloadError(f"Expected a list of routes, got {type(data).__name__}")
        routes = [RouteSummary.from_json(entry) for entry in data]
        return [r for r in routes if r is not None]

    def get_watch_interval(self) -> int:
        data = self._get_json(self._url("watch_interval"))
        if not isinstance(data, dict):
            raise PayloadError("Expected an object with 'interval'")
        try:
            return int(data.get("interval") or 0)
        except (TypeError, ValueError) as e:
            raise PayloadError(f"Invalid interval value: {data.get('interval')!r}") from e

    def set_watch_interval(self, seconds: int) -> int:
        response = self._request("POST", self._url("watch_interval"), json={"interval": int(seconds)})
        data = self._json(response)
        if isinstance(data, dict) and data.get("interval"):
            return int(data["interval"])
        return int(seconds)

    def route_torrents(self, route: str, page: int, size: int) -> PageWindow:
        data = self._get_json(self._url("routes", _segment(route), "torrents"),
                              params={"page": page, "size": size})
        return PageWindow.from_json(route, data, requested_page=page, requested_size=size)

    def torrent_details(self, route: str, torrent_hash: str) -> TorrentDetails:
        data = self._get_json(self._url("routes", _segment(route), "torrent", _segment(torrent_hash)))
        return TorrentDetails.from_json(data)

    def torrent_files(self, route: str, torrent_hash: str) -> List[TorrentFile]:
        data = self._get_json(self._url("routes", _segment(route), "torrent", _segment(torrent_hash), "files"))
        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, list):
            raise PayloadError("Expected an object with a 'files' list")
        return [TorrentFile.from_json(f) for f in files]

    def delete_torrent(self, route: str, torrent_hash: str) -> None:
        self._request("DELETE", self._url("routes", _segment(route), "torrent", _segment(torrent_hash)))

    def blacklist_torrent(self, route: str, torrent_hash: str) -> None:
        self._request("POST", self._url("routes", _segment(route), "torrent", _segment(torrent_hash), "blacklist"))

    def add_magnet(self, route: str, magnet: str) -> None:
        self._request("POST", self._url("routes", _segment(route), "torrent"), json={"magnet": magnet})

    def upload_torrent_file(self, route: str, path: Path) -> None:
        path = Path(path)
        try:
            handle = path.open("rb")
        except OSError as e:
            raise TransportError(f"Cannot read '{path}': {e}") from e
        with handle:
            self._request("POST", self._url("routes", _segment(route), "files"),
                          files={"file": (path.name, handle, "application/x-bittorrent")})

    def create_route(self, name: str) -> None:
        self._request("POST", self._url("routes"), json={"name": name})

    def delete_route(self, name: str) -> None:
        self._request("DELETE", self._url("routes", _segment(name)))

    def global_stats(self) -> GlobalStats:
        return GlobalStats.from_json(self._get_json(self._url("status")))

    def open_log_stream(self, chunk_size: int) -> Iterator[bytes]:
        # No read timeout: the stream is expected to stay idle between log lines.
        response = self._request("GET", self._url("log"), stream=True, timeout=(self.timeout, None))
        with response:
            try:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        yield chunk
            except requests.RequestException as e:
                raise TransportError(f"Log stream interrupted: {e}") from e

    def fetch_log_snapshot(self) -> bytes:
        return self._request("GET", self._url("log")).content
