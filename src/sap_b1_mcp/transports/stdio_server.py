# SAP B1 Query MCP Server
# File: transports/stdio_server.py
# Version: v3

"""STDIO entrypoint for the SAP B1 Query MCP server.

This is the script behind the ``sap-b1-mcp`` console command.

It:

- creates a FastMCP server whose lifespan runs the session-cache sweeper,
- registers all SAP B1 tools, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from ..tools import tasks


def build_server() -> FastMCP:
    mcp = FastMCP("sap-b1-mcp", lifespan=tasks.session_sweeper)
    tasks.register_tools(mcp)
    return mcp


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    # stdout carries the MCP protocol; logs go to stderr.
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Let FastMCP handle stdio + event loop setup.
    build_server().run()


if __name__ == "__main__":
    main()
