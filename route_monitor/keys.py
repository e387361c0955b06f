"""Keyboard paging for the live dashboard.

A daemon thread puts the terminal in cbreak mode and reads single keys. Each
key is mapped to a pager control of the selected route, and the control's
bound handler does the navigation, so a key press always uses the page count
of the most recent render. Digits 1 to 5 press the numbered page buttons in the
order they are drawn.
"""
import logging
import select
import sys
import termios
import threading
import tty
from typing import Callable, Dict, Optional, TextIO

logger = logging.getLogger(__name__)

PAGER_KEYS: Dict[str, str] = {
    "n": "next",
    "p": "prev",
    "f": "first",
    "l": "last",
}
PAGE_NUMBER_KEYS = ("1", "2", "3", "4", "5")
SELECT_ROUTE_KEY = "\t"
QUIT_KEYS = ("q", "Q")


class KeyDispatcher:
    """Maps one key press to an action on the dashboard.

    Args:
        controller: The `DashboardController`; its pagers are looked up here.
        view: The `RouteTableView`; it tracks the selected route.
        stop_event: Set when the user quits.
    """

    def __init__(self, controller, view, stop_event: threading.Event):
        self.controller = controller
        self.view = view
        self.stop_event = stop_event

    def dispatch(self, key: str) -> Optional[int]:
        """Handles `key`; returns the page switched to, if any."""
        if key in QUIT_KEYS:
            self.stop_event.set()
            return None
        if key == SELECT_ROUTE_KEY:
            self.view.select_next_route()
            return None
        kind = PAGER_KEYS.get(key.lower())
        if kind is None and key not in PAGE_NUMBER_KEYS:
            return None
        route = self.view.selected_route or self.view.select_next_route()
        if route is None:
            return None
        pager = self.controller.pagers.get(route)
        if pager is None:
            return None
        control = pager.control(kind) if kind else pager.nth_page(int(key))
        if control is None:
            return None
        return control.select()


def read_key(stream: TextIO, timeout: float) -> str:
    """Reads one key, or returns '' when none arrives within `timeout`."""
    if not select.select([stream], [], [], timeout)[0]:
        return ""
    ch = stream.read(1)
    if ch == "\x1b":
        # Swallow the rest of an escape sequence such as an arrow key.
        while select.select([stream], [], [], 0.05)[0]:
            stream.read(1)
        return ""
    return ch


class KeyReader(threading.Thread):
    """Feeds key presses from a terminal to `on_key` until `stop_event` is set."""

    def __init__(self, on_key: Callable[[str], None], stop_event: threading.Event,
                 stream: Optional[TextIO] = None, poll_seconds: float = 0.2):
        super().__init__(name="KeyReader", daemon=True)
        self._on_key = on_key
        self._stop_event = stop_event
        self._stream = stream or sys.stdin
        self._poll_seconds = poll_seconds

    def run(self) -> None:
        if not self._stream.isatty():
            logger.info("Standard input is not a terminal; keyboard paging is disabled.")
            return
        fd = self._stream.fileno()
        old = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            while not self._stop_event.is_set():
                key = read_key(self._stream, self._poll_seconds)
                if not key:
                    continue
                try:
                    self._on_key(key)
                except Exception as e:
                    logger.error(f"Key '{key}' failed: {e}", exc_info=True)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old)
