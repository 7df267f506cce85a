import sys

from pizzaz_server.server import main

sys.exit(main())  # type: ignore[call-arg]
