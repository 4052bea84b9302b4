# SAP B1 Query MCP Server
# File: tools/__init__.py
# Version: v2

"""MCP tool layer: task functions plus their FastMCP registration."""

from __future__ import annotations

from .tasks import register_tools

__all__ = ["register_tools"]
