# demo_mcp_run_query.py
# Version: v1

r"""
Demo: call the MCP task `run_query` with a natural-language question.

Usage (PowerShell):

  # Offline, against the in-process mock Service Layer
  $env:B1_MOCK_MODE = "1"
  python demo_mcp_run_query.py

  # Against a real Service Layer
  $env:B1_SERVER_URL  = "https://b1-host:50000"
  $env:B1_COMPANY_DB  = "SBODEMOUS"
  $env:B1_USERNAME    = "manager"
  $env:B1_PASSWORD    = "..."
  $env:B1_TEST_QUERY  = "open orders for customer {customer}"
  $env:B1_TEST_VARS   = "customer=C20000"
  python demo_mcp_run_query.py
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List

from sap_b1_mcp.tools.tasks import run_query


QUERY = os.environ.get("B1_TEST_QUERY", "top 10 orders")
PAGINATE = os.environ.get("B1_TEST_PAGINATE", "1").lower() not in ("0", "false", "no")


def _parse_vars(raw: str) -> Dict[str, str]:
    variables: Dict[str, str] = {}
    for part in raw.split(","):
        name, sep, value = part.partition("=")
        if sep and name.strip():
            variables[name.strip()] = value.strip()
    return variables


VARIABLES = _parse_vars(os.environ.get("B1_TEST_VARS", ""))


async def main() -> None:
    print("Calling MCP task: run_query()")
    print(f"Query:      {QUERY!r}")
    print(f"Variables:  {VARIABLES!r}")
    print(f"Paginate:   {PAGINATE}")

    result: Dict[str, Any] = await run_query(
        natural_language_query=QUERY,
        variables=VARIABLES or None,
        paginate=PAGINATE,
    )

    if not result.get("ok"):
        print("\nQuery failed:", result.get("error"))
        return

    rows: List[Dict[str, Any]] = result.get("rows", []) or []
    print("\nEntity set:", result.get("resolved_resource_name"))
    print("Options:   ", result.get("filter_expression"))
    print("Rows:      ", result.get("row_count"))
    print("Chart:     ", result.get("chart"))
    print("Meta:      ", result.get("meta"))

    if not rows:
        print("\nNo rows returned - check the query or the company database.")
        return

    print("\nSample rows:")
    for i, row in enumerate(rows[:5], start=1):
        print(f"  Row {i}:", row)


if __name__ == "__main__":
    asyncio.run(main())
