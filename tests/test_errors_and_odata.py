# SAP B1 Query MCP Server
# File: tests/test_errors_and_odata.py
# Version: v1

from __future__ import annotations

import pytest

from sap_b1_mcp.entities import (
    OPEN_ORDERS_FILTER,
    canonical_entity_set,
    resolve_by_keywords,
)
from sap_b1_mcp.errors import (
    AuthFailure,
    B1Error,
    ErrorKind,
    FetchFailure,
    MalformedResponse,
    QueryCancelled,
    classify,
    extract_service_layer_message,
)
from sap_b1_mcp.odata import (
    extract_top,
    limit_only,
    page_params,
    parse_query_options,
    strip_options,
)
from sap_b1_mcp.postfilters import FieldComparison, apply_post_filters


# ---------------------------------------------------------------------------
# classify()
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (FetchFailure("boom", status=401), ErrorKind.AUTH),
        (FetchFailure("SAP B1 query failed (HTTP 500): Invalid session."), ErrorKind.AUTH),
        (FetchFailure("Unauthorized"), ErrorKind.AUTH),
        (FetchFailure("Invalid session or session already timeout."), ErrorKind.AUTH),
        (FetchFailure("Property 'SessionId' of 'Orders' is invalid", status=400), ErrorKind.INVALID_FILTER),
        (FetchFailure("Resource B1Sessions not found", status=404), ErrorKind.OTHER),
        (FetchFailure("bad request", status=400), ErrorKind.INVALID_FILTER),
        (FetchFailure("Property 'Foo' of 'Item' is invalid"), ErrorKind.INVALID_FILTER),
        (QueryCancelled("stop"), ErrorKind.CANCELLED),
        (MalformedResponse("Invalid JSON"), ErrorKind.MALFORMED),
        (FetchFailure("upstream exploded", status=500), ErrorKind.OTHER),
        (ValueError("nope"), ErrorKind.OTHER),
    ],
)
def test_classify_table(error, expected) -> None:
    assert classify(error) is expected


def test_cancellation_is_not_a_b1_error() -> None:
    assert not isinstance(QueryCancelled("x"), B1Error)
    assert isinstance(AuthFailure("x"), RuntimeError)


def test_extract_service_layer_message() -> None:
    body = '{"error": {"code": -304, "message": {"lang": "en-us", "value": "Invalid session."}}}'
    assert extract_service_layer_message(body) == "Invalid session."
    assert extract_service_layer_message('{"error": {"code": 42}}') == "Error 42"
    assert extract_service_layer_message("plain text") == "plain text"
    assert len(extract_service_layer_message("x" * 2000)) == 500


# ---------------------------------------------------------------------------
# OData option strings
# ---------------------------------------------------------------------------


def test_parse_query_options_keeps_ampersands_inside_values() -> None:
    options = parse_query_options("$filter=CardName eq 'A&B'&$orderby=DocDate desc&$top=10")
    assert options == [
        ("$filter", "CardName eq 'A&B'"),
        ("$orderby", "DocDate desc"),
        ("$top", "10"),
    ]


def test_bare_expression_is_a_filter() -> None:
    assert parse_query_options("DocTotal gt 100") == [("$filter", "DocTotal gt 100")]
    assert parse_query_options("") == []
    assert parse_query_options(None) == []


def test_extract_top_and_limit_only() -> None:
    assert extract_top("$filter=X eq 1&$top=25") == 25
    assert extract_top("$filter=X eq 1") is None
    assert limit_only("$filter=X eq 1&$top=25") == "$top=25"
    assert limit_only("$filter=X eq 1") == ""


def test_strip_options() -> None:
    assert strip_options("$filter=X eq 1&$top=5&$skip=10", {"$top", "$skip"}) == "$filter=X eq 1"


def test_page_params_replace_caller_paging() -> None:
    params = page_params("$filter=X eq 1&$top=5&$skip=99", skip=40, top=20)
    assert params == [
        ("$filter", "X eq 1"),
        ("$skip", "40"),
        ("$top", "20"),
        ("$count", "true"),
        ("$inlinecount", "allpages"),
    ]


# ---------------------------------------------------------------------------
# Entity sets
# ---------------------------------------------------------------------------


def test_canonical_entity_set() -> None:
    assert canonical_entity_set("orders") == "Orders"
    assert canonical_entity_set(" /PurchaseOrders ") == "PurchaseOrders"
    assert canonical_entity_set("NotAThing") is None
    assert canonical_entity_set(None) is None


@pytest.mark.parametrize(
    "text, expected",
    [
        ("show PurchaseOrders from last week", ("PurchaseOrders", None)),
        ("pending order list", ("Orders", OPEN_ORDERS_FILTER)),
        ("which customer owes most", ("BusinessPartners", None)),
        ("stock levels", ("Items", None)),
        ("sales this month", ("Invoices", None)),
        ("something unrelated", ("Orders", None)),
    ],
)
def test_resolve_by_keywords(text, expected) -> None:
    assert resolve_by_keywords(text) == expected


# ---------------------------------------------------------------------------
# Post-filters
# ---------------------------------------------------------------------------


def test_post_filter_requires_matching_resource_and_phrase() -> None:
    rows = [{"QuantityOnStock": 1, "MinInventory": 5}, {"QuantityOnStock": 9, "MinInventory": 5}]

    kept, applied = apply_post_filters("Items", "items with low stock", rows)
    assert applied == ["items_below_minimum_stock"]
    assert kept == [rows[0]]

    kept, applied = apply_post_filters("Orders", "low stock", rows)
    assert applied == [] and kept == rows

    kept, applied = apply_post_filters("Items", "all items", rows)
    assert applied == [] and kept == rows


def test_field_comparison_falls_back_across_fields() -> None:
    predicate = FieldComparison(left=("QuantityOnStock", "OnHand"), op="lt", right=("MinInventory",))
    assert predicate({"QuantityOnStock": 0, "OnHand": 3, "MinInventory": 5}) is True
    assert predicate({"OnHand": 7, "MinInventory": 5}) is False
    assert predicate({}) is False


def test_field_comparison_rejects_unknown_operator() -> None:
    with pytest.raises(ValueError):
        FieldComparison(left=("a",), op="like", right=("b",))
