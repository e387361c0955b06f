"""Owns the dashboard session and wires the sync engine together.

One `DashboardController` holds every piece of mutable dashboard state (the
`DashboardSession`), the interaction guard, the reconciler and the pagination
controller. The poller hands it each route listing; the controller decides
whether the view may be touched, keeps the route groups in step with the
listing, and fetches and reconciles one page per route.

User actions go through the controller too. Each one reports exactly one
notification and arms the guard's suppression window when it settles.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .clients.base import DaemonClient
from .guard import DEFAULT_SETTLE_SECONDS, InteractionGuard
from .models import DashboardSession, PageWindow, RouteGroup, RouteSummary, TorrentDetails, TorrentFile
from .pagination import PAGE_SIZE, Pager, PaginationController, count_pages
from .poller import ResourcePoller
from .reconciler import ReconcileResult, RenderedRowSet, RowSink, ViewReconciler
from .utils import DaemonError, PayloadError

logger = logging.getLogger(__name__)


class DashboardController:
    """Applies poll results and user actions to one dashboard.

    Args:
        client: The daemon client.
        sink: The rendering surface the reconciler writes to.
        notifier: Anything with `info(message)` and `error(message)`.
        guard: The interaction guard; one is created when omitted.
        page_size: Torrents per route page.
        settle_seconds: Suppression window armed after each mutating action.
        workers: Threads for per-route page fetches. With 0, routes are
            fetched one after another on the calling thread.
    """

    def __init__(self, client: DaemonClient, sink: RowSink, notifier: Any,
                 guard: Optional[InteractionGuard] = None, page_size: int = PAGE_SIZE,
                 settle_seconds: float = DEFAULT_SETTLE_SECONDS, workers: int = 4):
        self.client = client
        self.sink = sink
        self.notifier = notifier
        self.settle_seconds = settle_seconds
        self.guard = guard or InteractionGuard(settle_seconds)
        self.session = DashboardSession()
        self.reconciler = ViewReconciler(sink)
        self.pagination = PaginationController(self.session.pages, self.refresh_route, page_size)
        self.handles: Dict[str, RenderedRowSet] = {}
        self.pagers: Dict[str, Pager] = {}
        self.poller: Optional[ResourcePoller] = None
        self._lock = threading.Lock()
        self._route_locks: Dict[str, threading.Lock] = {}
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="RouteFetch") if workers > 0 else None

    def make_poller(self, timer_factory: Callable[..., threading.Timer] = threading.Timer) -> ResourcePoller:
        """Builds the poller that drives this controller."""
        self.poller = ResourcePoller(self.client, self.session, self.handle_listing,
                                     self.notifier.error, timer_factory=timer_factory)
        return self.poller

    def close(self) -> None:
        if self.poller:
            self.poller.stop()
        if self._executor:
            self._executor.shutdown(wait=False)

    def route_names(self) -> List[str]:
        with self._lock:
            return list(self.session.routes)

    def _route_lock(self, route: str) -> threading.Lock:
        with self._lock:
            return self._route_locks.setdefault(route, threading.Lock())

    def _submit(self, fn: Callable[..., Any], *args: Any) -> None:
        if self._executor is None:
            self._call_safely(fn, *args)
        else:
            self._executor.submit(self._call_safely, fn, *args)

    def _call_safely(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.error(f"Background task {getattr(fn, '__name__', fn)} failed: {e}", exc_info=True)
            self.notifier.error(f"Error rendering routes: {e}")

    # ===== Poll-driven updates =====

    def handle_listing(self, listing: Optional[List[RouteSummary]]) -> None:
        """Render step of one poll cycle.

        `None` means the listing could not be fetched; the view is left as is.
        """
        if listing is None:
            return
        if self.guard.is_busy():
            logger.debug("View is busy; discarding route listing.")
            return

        listed = {summary.name: summary for summary in listing}
        with self._lock:
            gone = [name for name in self.session.routes if name not in listed]
        for name in gone:
            self._destroy_route(name)

        with self._lock:
            for name, summary in listed.items():
                group = self.session.routes.get(name)
                if group is None:
                    group = RouteGroup(name=name)
                    self.session.routes[name] = group
                    logger.info(f"Route '{name}' appeared.")
                group.total_count = summary.total
                group.folder = summary.folder
                self.sink.set_folder(name, summary.folder)
        for name in listed:
            self.pagination.ensure_route(name)

        for name in listed:
            self._submit(self.refresh_route, name)
        self._submit(self.refresh_global_stats)

    def _destroy_route(self, name: str) -> None:
        with self._route_lock(name):
            with self._lock:
                self.session.routes.pop(name, None)
                self.handles.pop(name, None)
                self.pagers.pop(name, None)
            self.pagination.forget_route(name)
            self.sink.drop_route(name)
        with self._lock:
            self._route_locks.pop(name, None)
        logger.info(f"Route '{name}' is gone; its table was dropped.")

    def refresh_route(self, route: str) -> Optional[ReconcileResult]:
        """Fetches the route's current page and reconciles it into the view."""
        return self._refresh(route, allow_clamp=True)

    def _refresh(self, route: str, allow_clamp: bool) -> Optional[ReconcileResult]:
        if self.guard.is_busy():
            logger.debug(f"View is busy; not fetching route '{route}'.")
            return None
        page = self.pagination.current_page(route)
        size = self.pagination.page_size
        try:
            window = self.client.route_torrents(route, page, size)
        except PayloadError as e:
            self.notifier.error(f"Error getting torrents of route '{route}': {e}")
            window = PageWindow(route_name=route, page=page, page_size=size, items=[], total_items=0)
        except DaemonError as e:
            self.notifier.error(f"Error getting torrents of route '{route}': {e}")
            return None

        if self.pagination.current_page(route) != page:
            logger.debug(f"Discarding page {page} of route '{route}'; another page was requested meanwhile.")
            return None

        if allow_clamp and not window.items and page > 1:
            last = count_pages(window.total_items, window.page_size)
            if page > last:
                logger.info(f"Route '{route}' has only {last} page(s); moving from page {page}.")
                self.pagination.set_page(route, last, last)
                return self._refresh(route, allow_clamp=False)

        return self.apply_window(route, window)

    def apply_window(self, route: str, window: PageWindow) -> Optional[ReconcileResult]:
        """Reconciles a fetched page, unless the view is busy or the route is gone."""
        with self._route_lock(route):
            if self.guard.is_busy():
                logger.debug(f"View is busy; discarding page {window.page} of route '{route}'.")
                return None
            with self._lock:
                group = self.session.routes.get(route)
                previous = self.handles.get(route)
            if group is None:
                return None

            result = self.reconciler.reconcile(route, previous, window,
                                               preserve=self.guard.rows_in_flight(route))
            pager = self.pagination.render_pager(route, window.page, window.page_size, window.total_items)
            with self._lock:
                self.handles[route] = result.handles
                self.pagers[route] = pager
                group.total_count = window.total_items
            self.sink.show_pager(route, pager)
        return result

    def goto_page(self, route: str, page: int) -> int:
        pager = self.pagers.get(route)
        return self.pagination.goto_page(route, page, pager.total_pages if pager else None)

    def refresh_global_stats(self) -> None:
        try:
            self.session.global_stats = self.client.global_stats()
        except DaemonError as e:
            self.notifier.error(f"Error getting status info: {e}")

    # ===== User actions =====

    def _reschedule(self) -> None:
        if self.poller:
            self.poller.reschedule(max(self.guard.remaining(), self.settle_seconds))

    def _run_action(self, call: Callable[[], Any], success: str, failure: str,
                    route: Optional[str] = None, row_id: Optional[str] = None) -> bool:
        try:
            with self.guard.action(route, row_id, self.settle_seconds):
                call()
        except DaemonError as e:
            logger.debug(f"Action failed: {failure}", exc_info=True)
            self.notifier.error(f"{failure}: {e}")
            return False
        self.notifier.info(success)
        self._reschedule()
        return True

    def delete_torrent(self, route: str, torrent_hash: str) -> bool:
        return self._run_action(lambda: self.client.delete_torrent(route, torrent_hash),
                                f"Torrent {torrent_hash} deleted from route '{route}'.",
                                "Failed to delete torrent", route=route, row_id=torrent_hash)

    def blacklist_torrent(self, route: str, torrent_hash: str) -> bool:
        return self._run_action(lambda: self.client.blacklist_torrent(route, torrent_hash),
                                f"Torrent {torrent_hash} blacklisted and removed from route '{route}'.",
                                "Failed to blacklist torrent", route=route, row_id=torrent_hash)

    def add_magnet(self, route: str, magnet: str) -> bool:
        if not magnet.strip():
            self.notifier.error("Magnet link is empty.")
            return False
        return self._run_action(lambda: self.client.add_magnet(route, magnet.strip()),
                                f"Magnet added to route '{route}'.", "Failed to add magnet", route=route)

    def stage_upload(self, route: str, path: Path) -> None:
        """Holds a chosen file for `route`; the view stays frozen until it is uploaded."""
        self.guard.stage_selection(route, path)

    def upload(self, route: str) -> bool:
        path = self.guard.pending_selection(route)
        if path is None:
            self.notifier.error(f"No file selected for route '{route}'.")
            return False
        try:
            return self._run_action(lambda: self.client.upload_torrent_file(route, path),
                                    f"Torrent file '{path.name}' uploaded to route '{route}'.",
                                    "Failed to upload torrent file", route=route)
        finally:
            self.guard.consume_selection(route)

    def create_route(self, name: str) -> bool:
        name = name.strip()
        if not name:
            self.notifier.error("Route name is empty.")
            return False
        return self._run_action(lambda: self.client.create_route(name),
                                f"Route '{name}' created.", "Failed to create route")

    def delete_route(self, name: str) -> bool:
        return self._run_action(lambda: self.client.delete_route(name),
                                f"Route '{name}' deleted.", "Failed to delete route")

    def set_watch_interval(self, seconds: int) -> bool:
        if seconds < 1:
            self.notifier.error("Watch interval must be at least 1 second.")
            return False

        def call() -> None:
            self.session.interval = self.client.set_watch_interval(seconds)

        return self._run_action(call, f"Watch interval set to {seconds}s.", "Failed to set watch interval")

    def details(self, route: str, torrent_hash: str) -> Optional[TorrentDetails]:
        try:
            return self.client.torrent_details(route, torrent_hash)
        except DaemonError as e:
            self.notifier.error(f"Error getting torrent details: {e}")
            return None

    def files(self, route: str, torrent_hash: str) -> Optional[List[TorrentFile]]:
        try:
            return self.client.torrent_files(route, torrent_hash)
        except DaemonError as e:
            self.notifier.error(f"Error getting torrent files: {e}")
            return None
