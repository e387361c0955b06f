#!/usr/bin/env python3
# Route Monitor
#
# A terminal dashboard for a torrent file-serving daemon: live route tables,
# the daemon's structured log, and the daemon's route and torrent actions.

__version__ = "1.0.0"

# Standard Lib
import argparse
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import argcomplete
from rich.console import Console
from rich.logging import RichHandler

from .clients import DaemonClient, get_client
from .config_manager import ConfigValidator, MonitorSettings, load_config, load_settings, update_config
from .controller import DashboardController
from .keys import KeyDispatcher, KeyReader
from .log_tail import follow_log
from .ui import (Dashboard, LogView, Notifier, RouteTableView, details_panel, files_table, log_table, page_table,
                 routes_table, status_panel)
from .utils import DaemonError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "route_monitor" / "config.ini"


def setup_logging(log_dir: Path, debug: bool) -> Path:
    """Configures the root logger with a file handler.

    Console output (the RichHandler) is added separately in `main`, because
    the live dashboard has to detach it while it owns the screen.

    Returns:
        The path of the new log file.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    log_file_path = log_dir / f"route_monitor_{timestamp}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    file_handler = logging.FileHandler(log_file_path, mode='w', encoding='utf-8')
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
    root_logger.addHandler(file_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log_file_path


def route_assignment(value: str) -> Tuple[str, str]:
    """argparse type for `ROUTE=VALUE` pairs."""
    route, sep, rest = value.partition("=")
    if not sep or not route.strip() or not rest.strip():
        raise argparse.ArgumentTypeError(f"expected ROUTE=VALUE, got '{value}'")
    return route.strip(), rest.strip()


def page_assignment(value: str) -> Tuple[str, int]:
    route, page = route_assignment(value)
    try:
        return route, int(page)
    except ValueError:
        raise argparse.ArgumentTypeError(f"page of route '{route}' must be a number, got '{page}'")


def build_parser(default_config: Path = DEFAULT_CONFIG_PATH) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="route-monitor",
                                     description="Live dashboard and command line for a torrent file-serving daemon.",
                                     formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument('--config', default=str(default_config), help='Path to the configuration file.')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging.')
    parser.add_argument('--version', action='store_true', help="Show program's version and config file path, then exit.")
    parser.add_argument('--check-config', action='store_true', help='Validate the configuration file and exit.')

    # Running without a sub-command opens the dashboard with these defaults.
    parser.set_defaults(page=[], upload=[], no_logs=False)
    sub = parser.add_subparsers(dest='command', metavar='COMMAND')

    watch = sub.add_parser('watch', help='Show the live dashboard (the default).')
    watch.add_argument('--page', type=page_assignment, action='append', default=[], metavar='ROUTE=N',
                       help='Start a route on a given page.')
    watch.add_argument('--upload', type=route_assignment, action='append', default=[], metavar='ROUTE=PATH',
                       help='Upload a .torrent file to a route once the dashboard is up.')
    watch.add_argument('--no-logs', action='store_true', help='Hide the daemon log panel.')

    logs = sub.add_parser('logs', help='Follow the daemon log.')
    logs.add_argument('--poll', action='store_true', help='Poll the log instead of streaming it.')

    sub.add_parser('routes', help='List routes.')
    sub.add_parser('status', help='Show daemon-wide transfer and cache statistics.')

    torrents = sub.add_parser('torrents', help="List one page of a route's torrents.")
    torrents.add_argument('route')
    torrents.add_argument('--page', type=int, default=1)

    for name, help_text in (('details', 'Show one torrent.'), ('files', "List a torrent's files.")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('route')
        p.add_argument('hash')

    for name, help_text in (('delete', 'Delete a torrent from a route.'),
                            ('blacklist', 'Delete a torrent and never add it again.')):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('route')
        p.add_argument('hash')
        p.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation.')

    magnet = sub.add_parser('add-magnet', help='Add a magnet link to a route.')
    magnet.add_argument('route')
    magnet.add_argument('magnet')

    upload = sub.add_parser('upload', help='Upload a .torrent file to a route.')
    upload.add_argument('route')
    upload.add_argument('path', type=Path)

    create = sub.add_parser('create-route', help='Create a route.')
    create.add_argument('name')

    delete_route = sub.add_parser('delete-route', help='Delete a route and its torrents.')
    delete_route.add_argument('name')
    delete_route.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation.')

    interval = sub.add_parser('interval', help='Show or set the daemon watch interval.')
    interval.add_argument('seconds', type=int, nargs='?')

    argcomplete.autocomplete(parser)
    return parser


def confirm(console: Console, question: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    answer = console.input(f"{question} (y/n): ").lower().strip()
    return answer in ("y", "yes")


def run_watch(args: argparse.Namespace, settings: MonitorSettings, client: DaemonClient,
              console: Console, rich_handler: Optional[logging.Handler]) -> int:
    """Runs the live dashboard until the user quits."""
    view = RouteTableView(console)
    notifier = Notifier()
    log_view = None if args.no_logs else LogView(settings.log_lines)
    controller = DashboardController(client, view, notifier, page_size=settings.page_size,
                                     settle_seconds=settings.settle_seconds)
    controller.session.interval = settings.default_interval
    for route, page in args.page:
        controller.pagination.set_page(route, page)

    stop_event = threading.Event()
    poller = controller.make_poller()
    keys = KeyReader(KeyDispatcher(controller, view, stop_event).dispatch, stop_event)

    with Dashboard(__version__, controller.session, view, notifier, log_view=log_view,
                   console=console, rich_handler=rich_handler):
        try:
            poller.start()
            if log_view is not None:
                threading.Thread(
                    target=follow_log, name="LogTail", daemon=True,
                    args=(client, log_view.append, stop_event),
                    kwargs=dict(mode=settings.log_mode, chunk_size=settings.log_chunk_size,
                                poll_interval=settings.log_poll_interval,
                                on_error=lambda e: notifier.error(f"Error reading log: {e}")),
                ).start()
            keys.start()
            for route, path in args.upload:
                controller.stage_upload(route, Path(path).expanduser())
                threading.Thread(target=controller.upload, args=(route,), name="Upload", daemon=True).start()
            while not stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Dashboard interrupted by user.")
        finally:
            stop_event.set()
            # The reader restores the terminal mode on exit.
            if keys.is_alive():
                keys.join(timeout=1)
            controller.close()
    return 0


def run_logs(args: argparse.Namespace, settings: MonitorSettings, client: DaemonClient, console: Console) -> int:
    stop_event = threading.Event()
    mode = "poll" if args.poll else settings.log_mode
    try:
        follow_log(client, lambda record: console.print(log_table([record])), stop_event, mode=mode,
                   chunk_size=settings.log_chunk_size, poll_interval=settings.log_poll_interval,
                   on_error=lambda e: logger.error(f"Error reading log: {e}"))
    except KeyboardInterrupt:
        stop_event.set()
    return 0


def run_command(args: argparse.Namespace, settings: MonitorSettings, client: DaemonClient, console: Console) -> int:
    """Runs one non-interactive sub-command. Returns the exit code."""
    controller = DashboardController(client, RouteTableView(console), Notifier(), page_size=settings.page_size,
                                     settle_seconds=settings.settle_seconds, workers=0)

    def show(fetch: Callable[[], object], render: Callable[[object], object], what: str) -> int:
        try:
            result = fetch()
        except DaemonError as e:
            logger.error(f"Error getting {what}: {e}")
            return 1
        console.print(render(result))
        return 0

    def show_optional(result, render) -> int:
        if result is None:
            return 1
        console.print(render(result))
        return 0

    command = args.command
    if command == 'routes':
        return show(client.list_routes, routes_table, "routes")
    if command == 'status':
        return show(client.global_stats, status_panel, "status info")
    if command == 'torrents':
        return show(lambda: client.route_torrents(args.route, max(1, args.page), settings.page_size),
                    page_table, f"torrents of route '{args.route}'")
    if command == 'details':
        return show_optional(controller.details(args.route, args.hash), details_panel)
    if command == 'files':
        return show_optional(controller.files(args.route, args.hash), files_table)
    if command == 'interval' and args.seconds is None:
        return show(client.get_watch_interval, lambda seconds: f"Watch interval: {seconds}s", "watch interval")

    questions: Dict[str, str] = {
        'delete': f"Delete torrent {getattr(args, 'hash', '')} from route '{getattr(args, 'route', '')}'?",
        'blacklist': f"Blacklist torrent {getattr(args, 'hash', '')} on route '{getattr(args, 'route', '')}'?",
        'delete-route': f"Delete route '{getattr(args, 'name', '')}' and all of its torrents?",
    }
    if command in questions and not confirm(console, questions[command], args.yes):
        logger.info("Cancelled.")
        return 1

    actions: Dict[str, Callable[[], bool]] = {
        'delete': lambda: controller.delete_torrent(args.route, args.hash),
        'blacklist': lambda: controller.blacklist_torrent(args.route, args.hash),
        'add-magnet': lambda: controller.add_magnet(args.route, args.magnet),
        'upload': lambda: _stage_and_upload(controller, args.route, args.path),
        'create-route': lambda: controller.create_route(args.name),
        'delete-route': lambda: controller.delete_route(args.name),
        'interval': lambda: controller.set_watch_interval(args.seconds),
    }
    action = actions.get(command)
    if action is None:
        logger.error(f"Unknown command '{command}'.")
        return 1
    return 0 if action() else 1


def _stage_and_upload(controller: DashboardController, route: str, path: Path) -> bool:
    controller.stage_upload(route, path.expanduser())
    return controller.upload(route)


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the application.

    Parses arguments, sets up logging, merges new template options into the
    configuration file, validates it and dispatches the sub-command.

    Returns:
        0 on success, 1 on error.

    Raises:
        SystemExit: If the configuration file is invalid.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"route-monitor {__version__}")
        print(f"Configuration file: {args.config}")
        return 0

    config_path = Path(args.config).expanduser()
    log_file = setup_logging(config_path.parent / 'logs', args.debug)
    console = Console()
    rich_handler = RichHandler(level=logging.DEBUG if args.debug else logging.INFO, show_path=False,
                               rich_tracebacks=True, markup=False, console=Console(stderr=True))
    rich_handler.setFormatter(logging.Formatter('%(message)s'))
    logging.getLogger().addHandler(rich_handler)
    logger.debug(f"Logging to {log_file}")

    update_config(str(config_path))
    if args.check_config:
        if ConfigValidator(load_config(str(config_path))).validate():
            logger.info("SUCCESS: Configuration file appears to be valid.")
            return 0
        logger.error("FAILURE: Configuration file has errors.")
        return 1

    settings = load_settings(str(config_path))
    client = get_client(settings)
    command = args.command or 'watch'

    try:
        if command in ('watch', 'logs'):
            try:
                client.ping()
            except DaemonError as e:
                logger.error(f"Daemon at {settings.base_url} is not reachable: {e}")
                return 1
            if command == 'watch':
                return run_watch(args, settings, client, console, rich_handler)
            return run_logs(args, settings, client, console)
        return run_command(args, settings, client, console)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        return 1

