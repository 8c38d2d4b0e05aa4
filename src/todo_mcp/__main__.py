import sys

from todo_mcp.cli import main

sys.exit(main())  # type: ignore[call-arg]
