"""Tracks pending user intent so automatic refreshes do not overwrite it.

The guard is a cooperative mutex between the poll-driven view updates and
user-driven actions. Both sides consult `is_busy()` before touching shared
view state; nothing here blocks.
"""
import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Set, Tuple

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 0.5


class InteractionGuard:
    """Reports whether the view is currently protected from refreshes.

    The view is busy while any route holds a staged, unconsumed file selection,
    or while the suppression window armed by a settled mutating action has not
    elapsed yet. Rows with an action in flight are tracked separately so the
    reconciler can leave their cells alone.
    """

    def __init__(self, settle_seconds: float = DEFAULT_SETTLE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.settle_seconds = settle_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._selections: Dict[str, Path] = {}
        self._busy_until = 0.0
        self._in_flight: Set[Tuple[str, str]] = set()

    # --- File selections ---

    def stage_selection(self, route: str, path: Path) -> None:
        with self._lock:
            self._selections[route] = Path(path)
        logger.debug(f"File selection staged for route '{route}': {path}")

    def pending_selection(self, route: str) -> Optional[Path]:
        with self._lock:
            return self._selections.get(route)

    def consume_selection(self, route: str) -> Optional[Path]:
        with self._lock:
            return self._selections.pop(route, None)

    # --- Suppression window ---

    def suppress(self, seconds: float) -> None:
        """Extends the suppression window; it never shrinks an existing one."""
        with self._lock:
            self._busy_until = max(self._busy_until, self._clock() + max(0.0, seconds))

    def remaining(self) -> float:
        with self._lock:
            return max(0.0, self._busy_until - self._clock())

    def is_busy(self) -> bool:
        with self._lock:
            if self._selections:
                return True
            return self._clock() < self._busy_until

    # --- Rows with an action in flight ---

    def rows_in_flight(self, route: str) -> Set[str]:
        with self._lock:
            return {row_id for r, row_id in self._in_flight if r == route}

    @contextmanager
    def action(self, route: Optional[str] = None, row_id: Optional[str] = None,
               settle_seconds: Optional[float] = None) -> Iterator[None]:
        """Wraps one mutating action.

        The suppression window is armed when the action settles, whether it
        succeeded or raised.
        """
        key = (route, row_id) if route and row_id else None
        if key:
            with self._lock:
                self._in_flight.add(key)
        try:
            yield
        finally:
            if key:
                with self._lock:
                    self._in_flight.discard(key)
            self.suppress(self.settle_seconds if settle_seconds is None else settle_seconds)
