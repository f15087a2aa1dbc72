"""Allow ``python -m hrrag.mcp_server`` to launch the server."""

import asyncio
import sys

# Psycopg's async driver requires SelectorEventLoop on Windows; set it
# before any loop is created.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from hrrag.mcp_server.server import main

main()
