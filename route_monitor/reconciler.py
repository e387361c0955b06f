"""Keeps a rendered torrent table consistent with the latest fetched page.

The reconciler never rebuilds a table. Given the handles rendered for a route
and a freshly fetched `PageWindow`, it creates shells for new ids, writes only
the cells whose display value changed, and removes rows whose ids vanished.
All of it goes to the sink inside a single frame, so the display never shows a
half-applied page.

Two properties follow from the change-detection gate and are covered by tests:

- reconciling the same window twice produces no mutations the second time;
- after every call, the returned handle ids equal the window's item ids.
"""
import abc
import logging
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Collection, Dict, Iterator, List, Optional, Sequence

from .formatting import row_cells
from .models import PageWindow, ResourceItem

if TYPE_CHECKING:
    from .pagination import Pager

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class RowHandle:
    """An opaque reference to one rendered row.

    `cells` mirrors what the sink currently displays, keyed by column name.
    Only the sink writes to it.
    """
    row_id: str
    cells: Dict[str, str] = field(default_factory=dict)


RenderedRowSet = Dict[str, RowHandle]


@dataclass(frozen=True)
class CellUpdate:
    handle: RowHandle
    column: str
    value: str


class RowSink(abc.ABC):
    """A rendering surface that can hold one table of rows per route."""

    @contextmanager
    def frame(self, route: str) -> Iterator[None]:
        """Groups every mutation of one reconciliation into a single frame."""
        yield

    @abc.abstractmethod
    def create_rows(self, route: str, row_ids: Sequence[str]) -> List[RowHandle]:
        """Appends empty row shells, in order, as one batch."""
        pass

    @abc.abstractmethod
    def update_cells(self, route: str, updates: Sequence[CellUpdate]) -> None:
        """Writes cell values, as one batch."""
        pass

    @abc.abstractmethod
    def remove_rows(self, route: str, row_ids: Sequence[str]) -> None:
        pass

    def show_pager(self, route: str, pager: "Pager") -> None:
        """Displays the pager rendered for the route's current page."""
        pass

    def set_folder(self, route: str, folder: str) -> None:
        pass

    def drop_route(self, route: str) -> None:
        """Discards the route's whole table once the route is gone."""
        pass


@dataclass
class ReconcileResult:
    handles: RenderedRowSet
    created: int = 0
    updated: int = 0
    removed: int = 0

    @property
    def mutations(self) -> int:
        return self.created + self.updated + self.removed


class ViewReconciler:
    """Computes and applies the minimal patch between two renders of a route."""

    def __init__(self, sink: RowSink,
                 cell_renderer: Callable[[ResourceItem], Dict[str, str]] = row_cells):
        self._sink = sink
        self._cell_renderer = cell_renderer

    def reconcile(self, route: str, previous: Optional[RenderedRowSet], window: PageWindow,
                  preserve: Collection[str] = ()) -> ReconcileResult:
        """Moves the rendered rows of `route` to match `window`.

        Args:
            route: The route whose table is being patched.
            previous: Handles rendered by the last call for this route.
            window: The freshly fetched page.
            preserve: Ids of rows the user is interacting with. Their cells are
                left untouched for this pass; they are still added or removed
                so the handle set stays exact.

        Returns:
            The new handle set plus counts of the mutations applied.
        """
        previous = previous or {}
        desired: "OrderedDict[str, ResourceItem]" = OrderedDict()
        new_ids: List[str] = []
        for item in window.items:
            if item.id in desired:
                logger.warning(f"Duplicate torrent '{item.id}' in page {window.page} of route '{route}'; "
                               "keeping the first occurrence.")
                continue
            desired[item.id] = item
            if item.id not in previous:
                new_ids.append(item.id)

        stale = [row_id for row_id in previous if row_id not in desired]
        handles: RenderedRowSet = OrderedDict()
        updates: List[CellUpdate] = []

        with self._sink.frame(route):
            created = self._sink.create_rows(route, new_ids) if new_ids else []
            created_by_id = {handle.row_id: handle for handle in created}

            for row_id, item in desired.items():
                handle = previous.get(row_id) or created_by_id[row_id]
                handles[row_id] = handle
                if row_id in preserve and row_id not in created_by_id:
                    continue
                for column, value in self._cell_renderer(item).items():
                    if handle.cells.get(column) != value:
                        updates.append(CellUpdate(handle, column, value))

            if updates:
                self._sink.update_cells(route, updates)
            if stale:
                self._sink.remove_rows(route, stale)

        result = ReconcileResult(handles, created=len(created), updated=len(updates), removed=len(stale))
        if result.mutations:
            logger.debug(f"Route '{route}' page {window.page}: +{result.created} "
                         f"~{result.updated} cells -{result.removed}")
        return result
