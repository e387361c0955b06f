"""Drives the dashboard refresh cycle.

One cycle fetches the route listing and the watch interval concurrently,
joins both, and hands the listing to the render step. The next cycle is armed
only after the current one has fully settled, with a delay of
`max(1s, interval)`, so cycles never overlap and an interval change takes
effect on the very next cycle.

The poller owns exactly one `threading.Timer`; arming a new one always cancels
the previous.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from .clients.base import DaemonClient
from .models import DashboardSession, RouteSummary
from .utils import DaemonError, PayloadError

logger = logging.getLogger(__name__)

MIN_POLL_DELAY = 1.0

TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


class ResourcePoller:
    """Periodically fetches the route listing and forwards it for rendering.

    Args:
        client: The daemon client.
        session: Holds the interval, updated from the daemon every cycle.
        on_listing: The render step. Receives the filtered route listing, or
            None when the listing could not be fetched (the view stays as is).
        notify_error: Reports one failure to the user.
        timer_factory: Builds the timer; replaceable in tests.
    """

    def __init__(self, client: DaemonClient, session: DashboardSession,
                 on_listing: Callable[[Optional[List[RouteSummary]]], None],
                 notify_error: Callable[[str], None],
                 timer_factory: TimerFactory = threading.Timer):
        self._client = client
        self._session = session
        self._on_listing = on_listing
        self._notify_error = notify_error
        self._timer_factory = timer_factory
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="Poller")
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._cycle_active = False
        self._pending_delay: Optional[float] = None
        self.cycles = 0

    @property
    def timer(self) -> Optional[threading.Timer]:
        return self._timer

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def next_delay(self) -> float:
        try:
            interval = float(self._session.interval)
        except (TypeError, ValueError):
            interval = 0.0
        return max(MIN_POLL_DELAY, interval)

    def start(self) -> None:
        """Runs the first cycle right away, then keeps re-arming."""
        with self._lock:
            if self._running:
                return
            self._running = True
        logger.info("Resource poller started.")
        self._arm(0.0)

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._executor.shutdown(wait=False)
        logger.info("Resource poller stopped.")

    def reschedule(self, delay: float) -> None:
        """Moves the next cycle to `delay` seconds from now.

        While a cycle is running, the delay is applied when that cycle re-arms.
        """
        with self._lock:
            if not self._running:
                return
            if self._cycle_active:
                self._pending_delay = delay
                return
        self._arm(delay)

    def _arm(self, delay: float) -> None:
        with self._lock:
            if not self._running:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(delay, self._run_cycle)
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _run_cycle(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._cycle_active = True
            self._timer = None
        try:
            listing = self.poll()
            if self.running:
                self._on_listing(listing)
        except Exception as e:
            # The render step must never kill the loop.
            if not self.running:
                logger.debug(f"Refresh cycle ended after stop: {e}")
            else:
                logger.error(f"Refresh cycle failed: {e}", exc_info=True)
                self._notify_error(f"Error rendering routes: {e}")
        finally:
            self.cycles += 1
            with self._lock:
                self._cycle_active = False
                delay = self._pending_delay
                self._pending_delay = None
            self._arm(self.next_delay() if delay is None else delay)

    def poll(self) -> Optional[List[RouteSummary]]:
        """Runs one fetch: route listing and interval, concurrently.

        Returns:
            The listing, an empty list when the payload was malformed, or None
            when the listing request failed or the poller was stopped.
        """
        try:
            routes_future = self._executor.submit(self._client.list_routes)
            interval_future = self._executor.submit(self._client.get_watch_interval)
        except RuntimeError:
            # The executor is shut down by stop().
            logger.debug("Poller stopped; fetch skipped.")
            return None

        listing: Optional[List[RouteSummary]] = None
        try:
            listing = routes_future.result()
        except PayloadError as e:
            self._notify_error(f"Error getting routes: {e}")
            listing = []
        except DaemonError as e:
            self._notify_error(f"Error getting status info: {e}")

        try:
            interval = interval_future.result()
            if interval:
                self._session.interval = interval
        except DaemonError as e:
            self._notify_error(f"Error getting watch interval: {e}")

        return listing
