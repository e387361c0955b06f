import logging
import threading
import time
from collections import OrderedDict, deque
from contextlib import contextmanager
from typing import Any, Callable, Deque, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from rich.align import Align
from rich.console import Console, Group, RenderResult
from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .formatting import (LEVEL_STYLES, PieceSizeAdvice, ROW_COLUMNS, format_rate, format_size, format_transfer,
                         health_cell, humanize_bytes, log_row, piece_bar, piece_size_advice, row_cells)
from .models import DashboardSession, GlobalStats, LogRecord, PageWindow, RouteSummary, TorrentDetails, TorrentFile
from .pagination import Pager
from .reconciler import CellUpdate, RowHandle, RowSink

logger = logging.getLogger(__name__)

NOTIFICATION_SECONDS = 5.0

_COLUMN_HEADERS = {
    "name": "Name",
    "transfer": "↓ / ↑",
    "size": "Size",
    "health": "Seeders/Peers",
    "pieces": "Pieces",
}


class ResponsiveLayout:
    """Manages UI layout configurations based on terminal width."""
    def __init__(self, console: Console):
        self._console = console
        self._last_width = 0
        self._last_config: Dict[str, Any] = {}

    def get_layout_config(self) -> Dict[str, Any]:
        """Returns a layout configuration dictionary based on current terminal width.

        Caches the result and only re-computes when the width changes.
        """
        width = self._console.width
        if width == self._last_width:
            return self._last_config

        self._last_width = width
        if width < 80:  # Narrow
            config = {
                "terminal_width": "narrow",
                "show_pieces": False,
                "folder_width": 20,
            }
        elif width < 120:  # Normal
            config = {
                "terminal_width": "normal",
                "show_pieces": True,
                "folder_width": 40,
            }
        else:  # Wide
            config = {
                "terminal_width": "wide",
                "show_pieces": True,
                "folder_width": 60,
            }
        self._last_config = config
        return config


def smart_truncate(text: str, max_width: int, min_width: int = 20) -> str:
    """Truncates a string, keeping the first and last part of paths.

    Args:
        text: The string to truncate.
        max_width: The maximum desired width.
        min_width: The minimum width for middle truncation to be effective.
    """
    if len(text) <= max_width:
        return text

    if "/" in text or "\\" in text:
        parts = text.replace("\\", "/").split("/")
        if len(parts) > 2 and max_width > min_width:
            start, end = parts[0], parts[-1]
            if len(start) + len(end) + 5 <= max_width:  # 5 for "/.../"
                return f"{start}/.../{end}"

    return text[:max_width - 3] + "..."


class Notifier:
    """Short-lived user notifications, also written to the log.

    Messages expire after `NOTIFICATION_SECONDS`.
    """
    def __init__(self, ttl: float = NOTIFICATION_SECONDS, clock: Callable[[], float] = time.monotonic,
                 max_items: int = 5):
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._messages: Deque[Tuple[float, str, str]] = deque(maxlen=max_items)

    def info(self, message: str) -> None:
        logger.info(message)
        self._push("info", message)

    def error(self, message: str) -> None:
        logger.error(message)
        self._push("error", message)

    def _push(self, level: str, message: str) -> None:
        with self._lock:
            self._messages.append((self._clock() + self._ttl, level, message))

    def active(self) -> List[Tuple[str, str]]:
        """Levels and texts of the messages that have not expired yet."""
        now = self._clock()
        with self._lock:
            while self._messages and self._messages[0][0] <= now:
                self._messages.popleft()
            return [(level, message) for _, level, message in self._messages]

    def __rich_console__(self, console: Console, options: Any) -> RenderResult:
        active = self.active()
        if not active:
            yield Text("")
            return
        lines = [Text(f"{'✖' if level == 'error' else 'ℹ'} {message}",
                      style="bold red" if level == "error" else "cyan")
                 for level, message in active]
        yield Group(*lines)


def _torrent_table(title: str, rows: Iterable[Dict[str, str]], show_pieces: bool = True) -> Table:
    table = Table(title=title, title_justify="left", expand=True, border_style="dim", header_style="bold cyan")
    columns = [c for c in ROW_COLUMNS if show_pieces or c != "pieces"]
    for column in columns:
        table.add_column(_COLUMN_HEADERS[column], no_wrap=column != "name", ratio=3 if column == "name" else None)
    for cells in rows:
        table.add_row(*[Text.from_markup(cells.get(column, "")) for column in columns])
    return table


def pager_text(pager: Pager, selected: bool = False) -> Text:
    """One-line rendering of a pager; empty when the pager is hidden."""
    if not pager.visible:
        return Text("")
    text = Text("▶ " if selected else "  ", style="bold magenta")
    for control in pager.controls:
        if control.active:
            style = "bold reverse"
        elif control.disabled:
            style = "dim"
        else:
            style = "cyan"
        text.append(f" {control.label} ", style=style)
    text.append(f"  page {pager.page}/{pager.total_pages}", style="dim")
    return text


class RouteTableView(RowSink):
    """Holds one table of rows per route and renders them with rich.

    The view lock is held for a whole reconciliation frame, and the live
    display renders under the same lock, so a half-applied page is never
    drawn.
    """
    def __init__(self, console: Optional[Console] = None):
        self._lock = threading.RLock()
        self._routes: "OrderedDict[str, OrderedDict[str, RowHandle]]" = OrderedDict()
        self._pagers: Dict[str, Pager] = {}
        self._folders: Dict[str, str] = {}
        self._responsive_layout = ResponsiveLayout(console or Console())
        self.selected_route: Optional[str] = None

    @contextmanager
    def frame(self, route: str) -> Iterator[None]:
        with self._lock:
            yield

    def create_rows(self, route: str, row_ids: Sequence[str]) -> List[RowHandle]:
        with self._lock:
            rows = self._routes.setdefault(route, OrderedDict())
            handles = [RowHandle(row_id) for row_id in row_ids]
            for handle in handles:
                rows[handle.row_id] = handle
            return handles

    def update_cells(self, route: str, updates: Sequence[CellUpdate]) -> None:
        with self._lock:
            for update in updates:
                update.handle.cells[update.column] = update.value

    def remove_rows(self, route: str, row_ids: Sequence[str]) -> None:
        with self._lock:
            rows = self._routes.get(route)
            if rows is None:
                return
            for row_id in row_ids:
                rows.pop(row_id, None)

    def show_pager(self, route: str, pager: Pager) -> None:
        with self._lock:
            self._routes.setdefault(route, OrderedDict())
            self._pagers[route] = pager

    def drop_route(self, route: str) -> None:
        with self._lock:
            self._routes.pop(route, None)
            self._pagers.pop(route, None)
            self._folders.pop(route, None)
            if self.selected_route == route:
                self.selected_route = None

    def set_folder(self, route: str, folder: str) -> None:
        with self._lock:
            self._folders[route] = folder

    def routes(self) -> List[str]:
        with self._lock:
            return list(self._routes)

    def rows(self, route: str) -> Dict[str, Dict[str, str]]:
        """A copy of the displayed cells of every row of `route`."""
        with self._lock:
            return {row_id: dict(handle.cells) for row_id, handle in self._routes.get(route, {}).items()}

    def select_next_route(self) -> Optional[str]:
        with self._lock:
            names = list(self._routes)
            if not names:
                self.selected_route = None
            elif self.selected_route not in names:
                self.selected_route = names[0]
            else:
                self.selected_route = names[(names.index(self.selected_route) + 1) % len(names)]
            return self.selected_route

    def __rich_console__(self, console: Console, options: Any) -> RenderResult:
        config = self._responsive_layout.get_layout_config()
        with self._lock:
            if not self._routes:
                yield Align.center(Text("No routes yet.", style="dim"))
                return
            for route, rows in self._routes.items():
                title = f"[bold]{escape(route)}[/bold]"
                folder = self._folders.get(route)
                if folder:
                    title += f" [dim]{escape(smart_truncate(folder, config['folder_width']))}[/dim]"
                table = _torrent_table(title, [handle.cells for handle in rows.values()],
                                       show_pieces=config["show_pieces"])
                pager = self._pagers.get(route)
                if pager is not None and pager.visible:
                    yield Group(table, pager_text(pager, selected=route == self.selected_route))
                else:
                    yield table


class LogView:
    """Append-only store of decoded daemon log records."""
    def __init__(self, lines: int = 15):
        self._lock = threading.Lock()
        self._records: List[LogRecord] = []
        self.lines = lines

    def append(self, record: LogRecord) -> None:
        with self._lock:
            self._records.append(record)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def records(self) -> List[LogRecord]:
        with self._lock:
            return list(self._records)

    def tail(self, count: Optional[int] = None) -> List[LogRecord]:
        count = self.lines if count is None else count
        with self._lock:
            return self._records[-count:] if count > 0 else []

    def __rich_console__(self, console: Console, options: Any) -> RenderResult:
        yield log_table(self.tail(), show_fields=console.width >= 120)


def log_table(records: Iterable[LogRecord], show_fields: bool = True) -> Table:
    table = Table.grid(padding=(0, 1), expand=True)
    table.add_column(style="dim", no_wrap=True)
    table.add_column(no_wrap=True)
    table.add_column(style="magenta", no_wrap=True)
    table.add_column(ratio=2)
    if show_fields:
        table.add_column(ratio=1)
    for record in records:
        time_cell, level, component, message, fields = log_row(record)
        style = LEVEL_STYLES.get(record.level, "")
        cells = [Text(time_cell), Text(level.upper(), style=style or "green"),
                 Text.from_markup(component), Text.from_markup(message, style=style)]
        if show_fields:
            cells.append(Text.from_markup(fields))
        table.add_row(*cells)
    return table


def header_text(version: str, session: DashboardSession) -> str:
    parts = [f"📡 Route Monitor v{version}", f"interval [bold]{session.interval:g}s[/bold]"]
    stats = session.global_stats
    if stats is not None:
        parts.append(f"[green]↓ {format_rate(stats.downloaded, stats.time_passed)}[/green]")
        parts.append(f"[yellow]↑ {format_rate(stats.uploaded, stats.time_passed)}[/yellow]")
        if stats.cache_capacity_mb:
            parts.append(f"cache {stats.cache_filled_mb}/{stats.cache_capacity_mb} MB")
    return " • ".join(parts)


class _HeaderPanel:
    def __init__(self, dashboard: "Dashboard"):
        self.dashboard = dashboard

    def __rich_console__(self, console: Console, options: Any) -> RenderResult:
        yield Panel(Align.center(header_text(self.dashboard.version, self.dashboard.session)),
                    title="[bold magenta]ROUTE MONITOR[/]", border_style="dim")


class _FooterPanel:
    def __init__(self, dashboard: "Dashboard"):
        self.dashboard = dashboard

    def __rich_console__(self, console: Console, options: Any) -> RenderResult:
        hints = Text("tab route • n/p next/prev • f/l first/last • 1-5 page • q quit", style="dim")
        yield Group(self.dashboard.notifier, hints)


class Dashboard:
    """A live terminal dashboard of every route and the daemon log.

    While it is displayed, the RichHandler on the root logger is removed so
    log output does not tear the screen; it is restored on exit.
    """

    def __init__(self, version: str, session: DashboardSession, view: RouteTableView, notifier: Notifier,
                 log_view: Optional[LogView] = None, console: Optional[Console] = None,
                 rich_handler: Optional[logging.Handler] = None, refresh_per_second: int = 4):
        self.version = version
        self.session = session
        self.view = view
        self.notifier = notifier
        self.log_view = log_view
        self.console = console or Console()
        self._rich_handler_ref = rich_handler
        self._refresh_per_second = refresh_per_second
        self._live: Optional[Live] = None

        self.layout = Layout()
        sections = [Layout(_HeaderPanel(self), name="header", size=3),
                    Layout(Panel(view, title="[bold]🗂 Routes", border_style="dim"), name="body", ratio=3)]
        if log_view is not None:
            sections.append(Layout(Panel(log_view, title="[bold]📜 Daemon Log", border_style="dim"),
                                   name="log", size=log_view.lines + 2))
        sections.append(Layout(_FooterPanel(self), name="footer", size=4))
        self.layout.split(*sections)

    def __enter__(self):
        root_logger = logging.getLogger()
        if self._rich_handler_ref:
            root_logger.removeHandler(self._rich_handler_ref)
        self._live = Live(self.layout, console=self.console, screen=True,
                          redirect_stderr=False, refresh_per_second=self._refresh_per_second)
        self._live.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            try:
                self._live.stop()
            except Exception as e:
                logger.error(f"Error stopping live display: {e}")
            self._live = None
        if self._rich_handler_ref:
            logging.getLogger().addHandler(self._rich_handler_ref)


# ===== One-shot renderables for the CLI sub-commands =====

def routes_table(routes: Iterable[RouteSummary], folder_width: int = 60) -> Table:
    table = Table(title="Routes", title_justify="left", header_style="bold cyan", border_style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Torrents", justify="right")
    table.add_column("Folder", style="dim")
    for route in routes:
        table.add_row(Text(route.name), str(route.total), Text(smart_truncate(route.folder, folder_width)))
    return table


def page_table(window: PageWindow) -> Group:
    title = f"[bold]{escape(window.route_name)}[/bold] [dim]page {window.page}, {window.total_items} torrent(s)[/dim]"
    table = _torrent_table(title, [row_cells(item) for item in window.items])
    ids = Table.grid(padding=(0, 1))
    ids.add_column(style="dim")
    ids.add_column()
    for item in window.items:
        ids.add_row(Text(item.id), Text(item.display_name))
    return Group(table, ids) if window.items else Group(table)


_ADVICE_STYLE = {
    PieceSizeAdvice.OK: ("green", "good for streaming"),
    PieceSizeAdvice.WARN: ("yellow", "large pieces slow down streaming"),
    PieceSizeAdvice.BAD: ("red", "pieces too large for smooth streaming"),
}


def details_panel(details: TorrentDetails) -> Panel:
    stats = details.stats
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold cyan", justify="right", no_wrap=True)
    grid.add_column()
    grid.add_row("Hash", Text(stats.id))
    grid.add_row("Size", format_size(stats.size_bytes) or "-")
    grid.add_row("↓ / ↑", format_transfer(stats.downloaded, stats.uploaded))
    grid.add_row("Rates", f"↓ {format_rate(stats.downloaded, stats.time_passed)}  "
                          f"↑ {format_rate(stats.uploaded, stats.time_passed)}")
    grid.add_row("Seeders/Peers", Text.from_markup(health_cell(stats.peers, stats.seeders)))
    style, advice = _ADVICE_STYLE[piece_size_advice(stats.piece_size)]
    grid.add_row("Pieces", Text.from_markup(f"{stats.total_pieces} × {humanize_bytes(stats.piece_size)} "
                                            f"[{style}]({advice})[/{style}]"))
    grid.add_row("", Text.from_markup(piece_bar(stats.piece_map, stats.total_pieces, width=40)))
    if details.folder:
        grid.add_row("Folder", Text(details.folder))
    if details.fuse_path:
        grid.add_row("FUSE", Text(details.fuse_path))
    if details.httpfs_path:
        grid.add_row("HTTP", Text(details.httpfs_path))
    return Panel(grid, title=f"[bold]{escape(stats.display_name)}", border_style="dim")


def files_table(files: Iterable[TorrentFile]) -> Table:
    table = Table(header_style="bold cyan", border_style="dim")
    table.add_column("Path")
    table.add_column("Size", justify="right")
    for f in files:
        table.add_row(Text(f.path), humanize_bytes(f.length))
    return table


def status_panel(stats: GlobalStats) -> Panel:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold cyan", justify="right")
    grid.add_column()
    grid.add_row("Downloaded", f"{humanize_bytes(stats.downloaded)} ({format_rate(stats.downloaded, stats.time_passed)})")
    grid.add_row("Uploaded", f"{humanize_bytes(stats.uploaded)} ({format_rate(stats.uploaded, stats.time_passed)})")
    grid.add_row("Cache items", str(stats.cache_items))
    grid.add_row("Cache", f"{stats.cache_filled_mb}/{stats.cache_capacity_mb} MB")
    return Panel(grid, title="[bold]Daemon status", border_style="dim")
