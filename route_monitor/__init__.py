"""Terminal dashboard and command line for a torrent file-serving daemon."""
from .route_monitor import __version__

__all__ = ["__version__"]
