# SAP B1 Query MCP Server
# File: mock.py
# Version: v2

"""In-memory stand-in for the SAP B1 Service Layer.

Activated when B1_MOCK_MODE is truthy. MockServiceLayer is an httpx
request handler, so the real authenticator and fetcher run unchanged on top
of ``httpx.MockTransport``. It behaves like a small Service Layer:

- ``POST /b1s/v1/Login`` issues session ids
- collection GETs honour ``$filter`` (simple comparisons joined by ``and``),
  ``$skip``, ``$top`` and ``$count``, with a server-side page cap
- unknown properties in ``$filter`` fail with HTTP 400
- unknown or expired sessions fail with HTTP 401
- ``$metadata`` and the two ``sml.svc`` analysis queries are served
"""

from __future__ import annotations

import datetime as _dt
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx

from .models import Row

logger = logging.getLogger(__name__)

_CUSTOMERS = [
    ("C20000", "Maxi Teq"),
    ("C23900", "Parameter Technology"),
    ("C30000", "Microchips"),
    ("C40000", "Earthshaker Corporation"),
    ("C42000", "Mashina Corporation"),
    ("C50000", "Aquent Systems"),
]

_ITEMS = [
    ("A00001", "J.B. Officeprint 1420"),
    ("A00002", "J.B. Officeprint 1111"),
    ("A00003", "J.B. Officeprint 1186"),
    ("A00004", "Rainbow Color Printer 5.0"),
    ("A00005", "Rainbow Color Printer 7.5"),
    ("A00006", "Rainbow 1200 Laser Series"),
    ("C00001", "Motherboard BTX"),
    ("C00002", "Motherboard MicroATX"),
    ("C00003", "Quadcore CPU 3.4 GHz"),
    ("C00004", "Tower Case with Power supply"),
]

_COMPARISON_RE = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s+(eq|ne|gt|ge|lt|le)\s+('(?:[^']|'')*'|[-\d.]+|true|false)\s*$"
)

_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
    "gt": lambda a, b: a is not None and a > b,
    "ge": lambda a, b: a is not None and a >= b,
    "lt": lambda a, b: a is not None and a < b,
    "le": lambda a, b: a is not None and a <= b,
}


def _error(status: int, code: int, message: str) -> httpx.Response:
    body = {"error": {"code": code, "message": {"lang": "en-us", "value": message}}}
    return httpx.Response(status, json=body)


def _literal(raw: str) -> Any:
    if raw.startswith("'"):
        return raw[1:-1].replace("''", "'")
    if raw in ("true", "false"):
        return raw == "true"
    return float(raw) if "." in raw else int(raw)


def _build_orders(count: int, start: _dt.date) -> List[Row]:
    rows = []
    for i in range(count):
        code, name = _CUSTOMERS[i % len(_CUSTOMERS)]
        rows.append(
            {
                "DocEntry": i + 1,
                "DocNum": 1000 + i,
                "DocDate": (start + _dt.timedelta(days=i % 90)).isoformat(),
                "CardCode": code,
                "CardName": name,
                "DocTotal": round(100.0 + (i * 37) % 900, 2),
                "DocumentStatus": "bost_Open" if i % 3 == 0 else "bost_Close",
            }
        )
    return rows


def _build_invoices(count: int, start: _dt.date) -> List[Row]:
    rows = []
    for i in range(count):
        code, name = _CUSTOMERS[(i * 5) % len(_CUSTOMERS)]
        rows.append(
            {
                "DocEntry": 5000 + i,
                "DocNum": 9000 + i,
                "DocDate": (start + _dt.timedelta(days=i % 60)).isoformat(),
                "CardCode": code,
                "CardName": name,
                "DocTotal": round(250.0 + (i * 53) % 1200, 2),
            }
        )
    return rows


def _build_items() -> List[Row]:
    rows = []
    for i, (code, name) in enumerate(_ITEMS):
        rows.append(
            {
                "ItemCode": code,
                "ItemName": name,
                "QuantityOnStock": float((i * 7) % 25),
                "MinInventory": 10.0,
                "ItemsGroupCode": 100 + i % 3,
            }
        )
    return rows


def _build_partners() -> List[Row]:
    rows = []
    for i, (code, name) in enumerate(_CUSTOMERS):
        rows.append(
            {
                "CardCode": code,
                "CardName": name,
                "CardType": "cCustomer",
                "CurrentAccountBalance": round(1000.0 * (i + 1), 2),
            }
        )
    rows.append({"CardCode": "V10000", "CardName": "Acme Supplies", "CardType": "cSupplier",
                 "CurrentAccountBalance": -2500.0})
    return rows


class MockServiceLayer:
    """httpx handler emulating the parts of ``b1s/v1`` this server uses."""

    def __init__(
        self,
        order_count: int = 137,
        max_page_size: int = 20,
        password: Optional[str] = None,
        include_count: bool = True,
    ) -> None:
        start = _dt.date(2024, 1, 1)
        self.entity_sets: Dict[str, List[Row]] = {
            "Orders": _build_orders(order_count, start),
            "Invoices": _build_invoices(60, start),
            "Items": _build_items(),
            "BusinessPartners": _build_partners(),
        }
        self.max_page_size = max_page_size
        self.include_count = include_count
        self.password = password

        self.sessions: Set[str] = set()
        self.login_count = 0
        self.requests: List[httpx.Request] = []

    # ------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def expire_sessions(self) -> None:
        """Forget every issued session, as a Service Layer restart would."""
        self.sessions.clear()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        marker = "/b1s/v1/"
        if marker not in path:
            return _error(404, -1, f"Resource not found: {path}")
        resource = path.split(marker, 1)[1]

        if resource == "Login" and request.method == "POST":
            return self._login(request)

        if not self._session_valid(request):
            return _error(401, 301, "Invalid session or session already timeout.")

        if resource == "$metadata":
            return self._metadata()
        if resource.startswith("sml.svc/"):
            return self._analysis(resource.split("/", 1)[1])
        if resource in self.entity_sets:
            return self._collection(resource, request)

        return _error(404, -2028, f"Unrecognized resource path: {resource}")

    # ------------------------------------------------------------------

    def _login(self, request: httpx.Request) -> httpx.Response:
        try:
            body = json.loads(request.content or b"{}")
        except ValueError:
            return _error(400, -1, "Invalid login payload.")
        if not body.get("CompanyDB") or not body.get("UserName"):
            return _error(400, -304, "Fill in company database and user name.")
        if self.password is not None and body.get("Password") != self.password:
            return _error(401, 100000027, "Invalid user name or password.")

        self.login_count += 1
        token = f"mock-session-{self.login_count}"
        self.sessions.add(token)
        logger.debug("Mock login issued %s", token)
        return httpx.Response(200, json={"SessionId": token, "Version": "1000190", "SessionTimeout": 30})

    def _session_valid(self, request: httpx.Request) -> bool:
        cookie = request.headers.get("Cookie", "")
        for part in cookie.split(";"):
            name, _, value = part.strip().partition("=")
            if name == "B1SESSION" and value in self.sessions:
                return True
        return False

    def _collection(self, resource: str, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        rows = self.entity_sets[resource]

        filter_text = params.get("$filter")
        if filter_text:
            try:
                predicate = self._compile_filter(filter_text, rows[0].keys() if rows else ())
            except KeyError as exc:
                return _error(400, -1000, f"Property '{exc.args[0]}' of '{resource}' is invalid")
            except ValueError as exc:
                return _error(400, -1000, f"Invalid $filter expression: {exc}")
            rows = [row for row in rows if predicate(row)]

        skip = int(params.get("$skip", "0") or 0)
        top = int(params.get("$top", str(self.max_page_size)) or self.max_page_size)
        page = rows[skip: skip + min(top, self.max_page_size)]

        body: Dict[str, Any] = {"value": page}
        if self.include_count and (params.get("$count") == "true" or params.get("$inlinecount")):
            body["@odata.count"] = len(rows)
        return httpx.Response(200, json=body)

    def _compile_filter(self, text: str, fields) -> Callable[[Row], bool]:
        known = set(fields)
        clauses: List[Tuple[str, str, Any]] = []
        for part in re.split(r"\s+and\s+", text.strip(), flags=re.IGNORECASE):
            match = _COMPARISON_RE.match(part)
            if not match:
                raise ValueError(part)
            name, op, raw = match.groups()
            if name not in known:
                raise KeyError(name)
            clauses.append((name, op, _literal(raw)))

        def predicate(row: Row) -> bool:
            return all(_OPS[op](row.get(name), value) for name, op, value in clauses)

        return predicate

    def _metadata(self) -> httpx.Response:
        sets = "".join(
            f'<EntitySet Name="{name}" EntityType="SAPB1.{name}"/>' for name in self.entity_sets
        )
        xml = (
            '<?xml version="1.0" encoding="utf-8"?>'
            '<edmx:Edmx Version="4.0" xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx">'
            "<edmx:DataServices>"
            '<Schema Namespace="SAPB1" xmlns="http://docs.oasis-open.org/odata/ns/edm">'
            f'<EntityContainer Name="ServiceLayer">{sets}</EntityContainer>'
            "</Schema></edmx:DataServices></edmx:Edmx>"
        )
        return httpx.Response(200, text=xml, headers={"Content-Type": "application/xml"})

    def _analysis(self, name: str) -> httpx.Response:
        source = {
            "SalesAnalysisQuery": self.entity_sets["Invoices"],
            "PurchaseAnalysisQuery": self.entity_sets["Orders"],
        }.get(name)
        if source is None:
            return _error(404, -2028, f"Unknown analysis query: {name}")

        totals: Dict[str, float] = {}
        for row in source:
            totals[row["CardCode"]] = totals.get(row["CardCode"], 0.0) + float(row["DocTotal"])
        value = [
            {"BusinessPartnerCode": code, "TotalAmount": round(amount, 2)}
            for code, amount in sorted(totals.items())
        ]
        return httpx.Response(200, json={"value": value})
