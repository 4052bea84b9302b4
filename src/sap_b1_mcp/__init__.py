# SAP B1 Query MCP Server
# File: __init__.py
# Version: v1

"""Top-level package for the SAP B1 Query MCP Server."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]


def _resolve_version() -> str:
    """Resolve installed distribution version, falling back when run from source."""
    try:
        return version("mcp-sap-b1-query-server")
    except PackageNotFoundError:
        return "0.1.0"


__version__ = _resolve_version()
