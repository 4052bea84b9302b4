# demo_mcp_diagnostics.py
# Version: v1

r"""
Demo: call the MCP tasks `test_connection` and `diagnostics`.

Usage (PowerShell):

  $env:B1_MOCK_MODE = "1"     # or set B1_SERVER_URL / B1_COMPANY_DB / ...
  python demo_mcp_diagnostics.py
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict

from sap_b1_mcp.tools import tasks


async def main() -> None:
    print("Calling MCP task: test_connection()")
    conn: Dict[str, Any] = await tasks.test_connection()
    print(conn)

    print("\nCalling MCP task: diagnostics()")
    diag: Dict[str, Any] = await tasks.diagnostics()
    print("Overall ok:", diag.get("ok"))
    for check in diag.get("checks", []):
        status = "ok" if check.get("ok") else f"FAILED ({check.get('error')})"
        print(f"  {check.get('name'):<12} {status}  [{check.get('elapsed_ms')} ms]")
    print("Session cache:", diag.get("meta", {}).get("cache"))


if __name__ == "__main__":
    asyncio.run(main())
