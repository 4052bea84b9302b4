# SAP B1 Query MCP Server
# File: transports/http_server.py
# Version: v2

"""Streamable-HTTP entrypoint for the SAP B1 Query MCP server.

This is the script behind the ``sap-b1-mcp-http`` console command. Host and
port come from FastMCP's own settings (``FASTMCP_HOST`` / ``FASTMCP_PORT``).
"""

from __future__ import annotations

import logging

from .stdio_server import build_server


def main() -> None:
    """Entry point for an HTTP-based MCP server."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    build_server().run(transport="streamable-http")


if __name__ == "__main__":
    main()
