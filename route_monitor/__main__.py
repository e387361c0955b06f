import sys

from .route_monitor import main

sys.exit(main())
