# SAP B1 Query MCP Server
# File: tests/test_client_fetch.py
# Version: v1

"""Paginated and single-request fetching over httpx MockTransport upstreams."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest

from sap_b1_mcp.client import ServiceLayerClient
from sap_b1_mcp.errors import FetchFailure, MalformedResponse, QueryCancelled
from sap_b1_mcp.mock import MockServiceLayer


class ScriptedUpstream:
    """Collection endpoint over a fixed row list, with an optional page cap."""

    def __init__(
        self,
        total_rows: int,
        report_count: bool = True,
        page_cap: Optional[int] = None,
    ) -> None:
        self.data = [{"DocEntry": i + 1, "DocTotal": float(i)} for i in range(total_rows)]
        self.report_count = report_count
        self.page_cap = page_cap
        self.calls: List[Dict[str, Any]] = []
        self.on_request = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        skip = int(request.url.params.get("$skip", "0"))
        top = int(request.url.params.get("$top", "20"))
        if self.page_cap is not None:
            top = min(top, self.page_cap)
        self.calls.append({"skip": skip, "top": top, "params": request.url.params})
        if self.on_request is not None:
            self.on_request(len(self.calls))

        body: Dict[str, Any] = {"value": self.data[skip: skip + top]}
        if self.report_count:
            body["@odata.count"] = len(self.data)
        return httpx.Response(200, json=body)


def _client(make_b1_config, handler, **config_overrides) -> ServiceLayerClient:
    return ServiceLayerClient(
        config=make_b1_config(**config_overrides),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_count_known_fetches_exactly_three_pages(make_b1_config, credentials) -> None:
    upstream = ScriptedUpstream(237)
    client = _client(make_b1_config, upstream, page_size=100)

    row_set = await client.fetch_rows("tok", credentials, "Orders")

    assert len(row_set) == 237
    assert len(upstream.calls) == 3
    assert row_set.total_count == 237
    assert row_set.terminated_by == "count_satisfied"
    assert [r["DocEntry"] for r in row_set.rows] == list(range(1, 238))


@pytest.mark.asyncio
async def test_count_unknown_probes_until_empty_pages(make_b1_config, credentials) -> None:
    upstream = ScriptedUpstream(150, report_count=False)
    client = _client(make_b1_config, upstream, page_size=50)

    row_set = await client.fetch_rows("tok", credentials, "Orders")

    assert len(row_set) == 150
    assert row_set.total_count is None
    assert row_set.terminated_by == "exhausted"
    # three full pages, then three empty probes
    assert len(upstream.calls) == 6
    skips = [c["skip"] for c in upstream.calls]
    assert len(set(skips)) == len(skips)


@pytest.mark.asyncio
async def test_offset_advances_by_rows_actually_received(make_b1_config, credentials) -> None:
    upstream = ScriptedUpstream(75, report_count=False, page_cap=30)
    client = _client(make_b1_config, upstream, page_size=100)

    row_set = await client.fetch_rows("tok", credentials, "Items")

    assert upstream.calls[0]["skip"] == 0
    assert upstream.calls[1]["skip"] == 30
    assert upstream.calls[2]["skip"] == 60
    assert len(row_set) == 75
    assert len({r["DocEntry"] for r in row_set.rows}) == 75


@pytest.mark.asyncio
async def test_row_limit_needs_a_single_request(make_b1_config, credentials) -> None:
    upstream = ScriptedUpstream(5000)
    client = _client(make_b1_config, upstream, page_size=1000)

    row_set = await client.fetch_rows("tok", credentials, "Orders", row_limit=10)

    assert len(row_set) == 10
    assert len(upstream.calls) == 1
    assert upstream.calls[0]["top"] == 10


@pytest.mark.asyncio
async def test_callers_top_is_replaced_and_filter_forwarded(make_b1_config, credentials) -> None:
    upstream = ScriptedUpstream(50)
    client = _client(make_b1_config, upstream, page_size=1000)

    await client.fetch_rows(
        "tok",
        credentials,
        "Orders",
        "$filter=DocTotal gt 5&$orderby=DocDate desc&$top=5",
        row_limit=5,
    )

    params = upstream.calls[0]["params"]
    assert params.get_list("$top") == ["5"]
    assert params.get("$filter") == "DocTotal gt 5"
    assert params.get("$orderby") == "DocDate desc"
    assert params.get("$skip") == "0"
    assert params.get("$count") == "true"


@pytest.mark.asyncio
async def test_session_cookie_is_sent(make_b1_config, credentials) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"value": [], "@odata.count": 0})

    client = _client(make_b1_config, handler)
    await client.fetch_rows("tok-123", credentials, "Orders")

    assert seen[0].headers["Cookie"] == "B1SESSION=tok-123"
    assert str(seen[0].url).startswith("https://b1.example.com:50000/b1s/v1/Orders?")


@pytest.mark.asyncio
async def test_cancel_between_pages_skips_page_two(make_b1_config, credentials) -> None:
    upstream = ScriptedUpstream(300)
    cancel = asyncio.Event()
    upstream.on_request = lambda n: cancel.set() if n == 1 else None
    client = _client(make_b1_config, upstream, page_size=100)

    with pytest.raises(QueryCancelled):
        await client.fetch_rows("tok", credentials, "Orders", cancel_event=cancel)

    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_error_status_raises_fetch_failure(make_b1_config, credentials) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500, json={"error": {"code": -1, "message": {"lang": "en-us", "value": "Internal error"}}}
        )

    client = _client(make_b1_config, handler)

    with pytest.raises(FetchFailure) as excinfo:
        await client.fetch_rows("tok", credentials, "Orders")

    assert excinfo.value.status == 500
    assert "Internal error" in str(excinfo.value)


@pytest.mark.asyncio
async def test_network_error_raises_fetch_failure(make_b1_config, credentials) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = _client(make_b1_config, handler)

    with pytest.raises(FetchFailure):
        await client.fetch_rows("tok", credentials, "Orders")


@pytest.mark.asyncio
async def test_non_json_body_is_malformed(make_b1_config, credentials) -> None:
    client = _client(make_b1_config, lambda request: httpx.Response(200, text="<html>oops</html>"))

    with pytest.raises(MalformedResponse):
        await client.fetch_rows("tok", credentials, "Orders")


@pytest.mark.asyncio
async def test_non_object_rows_are_malformed(make_b1_config, credentials) -> None:
    client = _client(make_b1_config, lambda request: httpx.Response(200, json={"value": [1, 2, 3]}))

    with pytest.raises(MalformedResponse):
        await client.fetch_rows("tok", credentials, "Orders")


@pytest.mark.asyncio
async def test_scalar_payload_is_malformed(make_b1_config, credentials) -> None:
    client = _client(make_b1_config, lambda request: httpx.Response(200, json="just a string"))

    with pytest.raises(MalformedResponse):
        await client.fetch_rows("tok", credentials, "Orders")


@pytest.mark.asyncio
async def test_object_without_value_array_is_single_final_row(make_b1_config, credentials) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"DocEntry": 42, "CardCode": "C1"})

    client = _client(make_b1_config, handler)
    row_set = await client.fetch_rows("tok", credentials, "Orders(42)")

    assert row_set.rows == [{"DocEntry": 42, "CardCode": "C1"}]
    assert row_set.terminated_by == "single_object"
    assert len(calls) == 1


# ---------------------------------------------------------------------------
# Orders scenario against the mock Service Layer (default page cap of 20)
# ---------------------------------------------------------------------------


def _mock_token(service: MockServiceLayer) -> str:
    service.sessions.add("mock-session")
    return "mock-session"


@pytest.mark.asyncio
async def test_orders_limit_25_paginated_has_unique_doc_entries(make_b1_config, credentials) -> None:
    service = MockServiceLayer()
    client = _client(make_b1_config, service)
    token = _mock_token(service)

    row_set = await client.fetch_rows(token, credentials, "Orders", "$top=25", row_limit=25)

    assert len(row_set) == 25
    assert len({r["DocEntry"] for r in row_set.rows}) == 25
    # server caps pages at 20, so the second page asks only for the remainder
    assert len(service.requests) == 2
    assert service.requests[1].url.params.get("$top") == "5"


@pytest.mark.asyncio
async def test_orders_limit_25_single_request(make_b1_config, credentials) -> None:
    service = MockServiceLayer(max_page_size=100)
    client = _client(make_b1_config, service)
    token = _mock_token(service)

    row_set = await client.fetch_single(token, credentials, "Orders", "$top=25")

    assert len(row_set) == 25
    assert len({r["DocEntry"] for r in row_set.rows}) == 25
    assert row_set.terminated_by == "single"


@pytest.mark.asyncio
async def test_single_request_cuts_oversized_reply_to_row_limit(make_b1_config, credentials) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        # upstream that ignores $top entirely
        return httpx.Response(200, json={"value": [{"DocEntry": i} for i in range(100)]})

    client = _client(make_b1_config, handler)
    row_set = await client.fetch_single("tok", credentials, "Orders", "$filter=DocTotal gt 0", row_limit=10)

    assert [r["DocEntry"] for r in row_set.rows] == list(range(10))
    assert seen[0].url.params.get("$top") == "10"
    assert seen[0].url.params.get("$filter") == "DocTotal gt 0"


@pytest.mark.asyncio
async def test_single_request_with_zero_limit_sends_nothing(make_b1_config, credentials) -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"value": []})

    client = _client(make_b1_config, handler)
    row_set = await client.fetch_single("tok", credentials, "Orders", row_limit=0)

    assert row_set.rows == []
    assert seen == []


@pytest.mark.asyncio
async def test_same_query_twice_gives_same_rows_in_same_order(make_b1_config, credentials) -> None:
    service = MockServiceLayer()
    client = _client(make_b1_config, service, page_size=50)
    token = _mock_token(service)

    first = await client.fetch_rows(token, credentials, "Orders")
    second = await client.fetch_rows(token, credentials, "Orders")

    assert len(first) == len(second) == 137
    assert [r["DocEntry"] for r in first.rows] == [r["DocEntry"] for r in second.rows]


@pytest.mark.asyncio
async def test_list_entity_sets_reads_metadata(make_b1_config, credentials) -> None:
    service = MockServiceLayer()
    client = _client(make_b1_config, service)
    token = _mock_token(service)

    names = await client.list_entity_sets(token, credentials)

    assert names == ["Orders", "Invoices", "Items", "BusinessPartners"]


@pytest.mark.asyncio
async def test_fetch_analysis_reads_semantic_layer(make_b1_config, credentials) -> None:
    service = MockServiceLayer()
    client = _client(make_b1_config, service)
    token = _mock_token(service)

    row_set = await client.fetch_analysis(token, credentials, "SalesAnalysis")

    assert row_set.rows
    assert {"BusinessPartnerCode", "TotalAmount"} <= set(row_set.rows[0])
    assert service.requests[-1].url.path.endswith("/b1s/v1/sml.svc/SalesAnalysisQuery")


@pytest.mark.asyncio
async def test_fetch_analysis_rejects_unknown_type(make_b1_config, credentials) -> None:
    client = _client(make_b1_config, MockServiceLayer())

    with pytest.raises(ValueError):
        await client.fetch_analysis("tok", credentials, "InventoryAnalysis")
