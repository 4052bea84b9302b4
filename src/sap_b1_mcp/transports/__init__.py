# SAP B1 Query MCP Server
# File: transports/__init__.py
# Version: v1

"""MCP transport entrypoints (stdio and streamable HTTP)."""
