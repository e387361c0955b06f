"""Per-route page state and pager controls.

Each route shows one page of `PAGE_SIZE` torrents. The controller keeps the
current page per route, clamps navigation into the valid range, and asks the
owner to fetch and reconcile only the route that changed page.
"""
import logging
import math
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, List, MutableMapping, Optional, Tuple

logger = logging.getLogger(__name__)

PAGE_SIZE = 25
MAX_PAGE_LINKS = 5


def count_pages(total: int, size: int) -> int:
    """Number of pages needed for `total` items; never less than 1."""
    if size <= 0:
        return 1
    return max(1, math.ceil(max(0, total) / size))


def clamp_page(page: int, total_pages: Optional[int] = None) -> int:
    """Clamps into [1, total_pages]; only the lower bound when total is unknown."""
    page = max(1, int(page))
    if total_pages is not None:
        page = min(page, max(1, int(total_pages)))
    return page


def link_window(page: int, total_pages: int, max_links: int = MAX_PAGE_LINKS) -> Tuple[int, int]:
    """First and last page number of the numbered links around `page`."""
    page = clamp_page(page, total_pages)
    start = max(1, page - max_links // 2)
    end = min(total_pages, start + max_links - 1)
    start = max(1, end - max_links + 1)
    return start, end


@dataclass
class PagerControl:
    """One pager element.

    `kind` is one of `first`, `prev`, `page`, `ellipsis`, `next`, `last`.
    `on_select` is bound at render time to the page count of that render.
    """
    kind: str
    label: str
    target: Optional[int] = None
    disabled: bool = False
    active: bool = False
    on_select: Optional[Callable[[], int]] = field(default=None, repr=False, compare=False)

    def select(self) -> Optional[int]:
        """Dispatches navigation; returns the page switched to, or None."""
        if self.disabled or self.on_select is None:
            return None
        return self.on_select()


@dataclass
class Pager:
    route: str
    page: int
    total_pages: int
    controls: List[PagerControl] = field(default_factory=list)

    @property
    def visible(self) -> bool:
        return self.total_pages > 1

    def control(self, kind: str) -> Optional[PagerControl]:
        for control in self.controls:
            if control.kind == kind:
                return control
        return None

    def nth_page(self, n: int) -> Optional[PagerControl]:
        """Returns the n-th numbered page button, counting from 1."""
        pages = [control for control in self.controls if control.kind == "page"]
        return pages[n - 1] if 0 < n <= len(pages) else None


class PaginationController:
    """Owns the page number of every route.

    Args:
        pages: The session's route → page mapping. Shared with the owner so the
            page state lives in one place.
        refresh_route: Called with a route name after its page changed; it must
            fetch that page and reconcile it.
        page_size: Items per page.
    """

    def __init__(self, pages: MutableMapping[str, int], refresh_route: Callable[[str], None],
                 page_size: int = PAGE_SIZE):
        self._pages = pages
        self._refresh_route = refresh_route
        self.page_size = page_size
        self._lock = threading.Lock()

    def current_page(self, route: str) -> int:
        with self._lock:
            return self._pages.get(route, 1)

    def ensure_route(self, route: str) -> int:
        with self._lock:
            return self._pages.setdefault(route, 1)

    def forget_route(self, route: str) -> None:
        with self._lock:
            self._pages.pop(route, None)

    def set_page(self, route: str, page: int, total_pages: Optional[int] = None) -> int:
        """Stores the clamped page without fetching anything."""
        target = clamp_page(page, total_pages)
        with self._lock:
            self._pages[route] = target
        logger.debug(f"Route '{route}' -> page {target}")
        return target

    def goto_page(self, route: str, page: int, total_pages: Optional[int] = None) -> int:
        """Switches `route` to `page` and refreshes that route only."""
        target = self.set_page(route, page, total_pages)
        self._refresh_route(route)
        return target

    def render_pager(self, route: str, page: int, size: int, total: int) -> Pager:
        """Builds the pager for one render of `route`.

        Every control's handler captures this render's page count, so a pager
        rendered after the total changed never navigates with stale bounds.
        """
        total_pages = count_pages(total, size)
        page = clamp_page(page, total_pages)
        pager = Pager(route=route, page=page, total_pages=total_pages)
        if not pager.visible:
            return pager

        def control(kind: str, label: str, target: int, disabled: bool = False,
                    active: bool = False) -> PagerControl:
            return PagerControl(kind=kind, label=label, target=target, disabled=disabled, active=active,
                                on_select=partial(self.goto_page, route, target, total_pages))

        controls = [
            control("first", "«", 1, disabled=page <= 1),
            control("prev", "‹", page - 1, disabled=page <= 1),
        ]
        start, end = link_window(page, total_pages)
        if start > 1:
            controls.append(PagerControl(kind="ellipsis", label="…", disabled=True))
        for number in range(start, end + 1):
            controls.append(control("page", str(number), number, active=number == page))
        if end < total_pages:
            controls.append(PagerControl(kind="ellipsis", label="…", disabled=True))
        controls.extend([
            control("next", "›", page + 1, disabled=page >= total_pages),
            control("last", "»", total_pages, disabled=page >= total_pages),
        ])
        pager.controls = controls
        return pager
