# SAP B1 Query MCP Server
# File: client.py
# Version: v8
"""High-level client for the SAP Business One Service Layer.

Implements:

- fetch_rows() paginated collection reads ($skip / $top / inline count)
- fetch_single() one-shot collection reads, cut to the row limit
- fetch_analysis() sml.svc Sales/Purchase analysis queries
- list_entity_sets() entity names from the OData $metadata document
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from httpx import RequestError

from .cancellation import raise_if_cancelled, run_cancellable
from .config import B1Config
from .errors import FetchFailure, MalformedResponse, extract_service_layer_message
from .httpclient import make_async_client, session_headers
from .models import ConnectionCredentials, Row, RowSet
from .odata import page_params, parse_query_options
from .pagination import PaginationPolicy, PaginationState, read_total_count

logger = logging.getLogger(__name__)

ANALYSIS_ENDPOINTS = {
    "SalesAnalysis": "sml.svc/SalesAnalysisQuery",
    "PurchaseAnalysis": "sml.svc/PurchaseAnalysisQuery",
}

# Keys under which analysis endpoints have been seen to return their rows.
_ANALYSIS_ROW_KEYS = ("value", "d", "results")


def _rows_from_array(items: List[Any], url: str) -> List[Row]:
    rows: List[Row] = []
    for item in items:
        if not isinstance(item, dict):
            raise MalformedResponse(
                f"Unexpected row in response from '{url}': "
                f"expected JSON object, got {type(item).__name__}."
            )
        rows.append(item)
    return rows


def _row_array(payload: Any, keys: Sequence[str] = ("value",)) -> Optional[List[Any]]:
    """Return the row array of a payload, or None when it has no array shape."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            candidate = payload.get(key)
            if isinstance(candidate, list):
                return candidate
    return None


@dataclass
class ServiceLayerClient:
    """Wrapper around the Service Layer ``b1s/v1`` REST API."""

    config: B1Config
    transport: Optional[httpx.AsyncBaseTransport] = None

    # ------------------------------------------------------------------
    # Low-level GET
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        http_client: httpx.AsyncClient,
        url: str,
        token: str,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        try:
            response = await run_cancellable(
                http_client.get(url, headers=session_headers(token), params=list(params or [])),
                cancel_event,
                "page request",
            )
        except RequestError as exc:
            raise FetchFailure(f"Error calling SAP B1 Service Layer at '{url}': {exc}") from exc

        if not response.is_success:
            message = extract_service_layer_message(response.text)
            raise FetchFailure(
                f"SAP B1 query failed (HTTP {response.status_code} "
                f"{response.reason_phrase}): {message}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"SAP B1 response from '{url}' is not valid JSON. "
                f"Response snippet: {response.text[:200]}"
            ) from exc

    def _entity_url(self, credentials: ConnectionCredentials, resource_name: str) -> str:
        if not credentials.base_url:
            raise FetchFailure("SAP B1 server URL is not set.")
        return f"{credentials.base_url}/b1s/v1/{resource_name}"

    # ------------------------------------------------------------------
    # Collections: paginated
    # ------------------------------------------------------------------

    async def fetch_rows(
        self,
        token: str,
        credentials: ConnectionCredentials,
        resource_name: str,
        filter_expression: str = "",
        row_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        page_size: Optional[int] = None,
    ) -> RowSet:
        """Read a collection page by page into one RowSet.

        The offset always advances by the rows actually received, since the
        Service Layer may return fewer rows than ``$top`` asked for. Any
        ``$top`` in ``filter_expression`` is replaced by the paginator's own.
        """
        policy = PaginationPolicy.from_config(self.config)
        if page_size is not None:
            policy = PaginationPolicy(
                page_size=max(int(page_size), 1),
                max_total_rows=policy.max_total_rows,
                empty_page_tolerance=policy.empty_page_tolerance,
                same_count_warn_streak=policy.same_count_warn_streak,
                empty_page_probe_stride=policy.empty_page_probe_stride,
            )

        state = PaginationState(policy=policy, row_limit=row_limit)
        url = self._entity_url(credentials, resource_name)

        async with make_async_client(
            credentials, self.config.fetch_timeout, self.transport
        ) as http_client:
            while not state.done:
                raise_if_cancelled(cancel_event, "before page request")
                if state.check_limit():
                    break

                params = page_params(filter_expression, state.next_offset, state.records_to_fetch())
                logger.info(
                    "Fetching %s page: skip=%d, top=%d",
                    resource_name, state.next_offset, state.records_to_fetch(),
                )

                payload = await self._get_json(http_client, url, token, params, cancel_event)

                items = _row_array(payload)
                if items is None:
                    if not isinstance(payload, dict):
                        raise MalformedResponse(
                            f"Unexpected response for '{resource_name}': "
                            f"expected JSON object or array, got {type(payload).__name__}."
                        )
                    logger.info("No value array in response, treating it as the final page")
                    state.observe_single_object(payload)
                    break

                hint = read_total_count(payload) if isinstance(payload, dict) else None
                state.observe_page(_rows_from_array(items, url), hint)

        return RowSet(
            rows=state.rows,
            total_count=state.total_count,
            pages_fetched=state.pages_fetched,
            terminated_by=state.state.value,
        )

    # ------------------------------------------------------------------
    # Collections: single request
    # ------------------------------------------------------------------

    async def fetch_single(
        self,
        token: str,
        credentials: ConnectionCredentials,
        resource_name: str,
        filter_expression: str = "",
        row_limit: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RowSet:
        """One GET with the caller's options.

        With a ``row_limit`` the request carries ``$top=row_limit`` (replacing
        any ``$top`` in the options) and the rows are cut to the limit.
        """
        if row_limit is not None and row_limit <= 0:
            logger.info("Row limit is %s; nothing to fetch for %s", row_limit, resource_name)
            return RowSet(rows=[], pages_fetched=0, terminated_by="limit_reached")

        url = self._entity_url(credentials, resource_name)
        params = parse_query_options(filter_expression)
        if row_limit is not None:
            params = [(name, value) for name, value in params if name != "$top"]
            params.append(("$top", str(row_limit)))

        logger.info("Executing SAP B1 query: %s %s", resource_name, filter_expression or "")

        async with make_async_client(
            credentials, self.config.fetch_timeout, self.transport
        ) as http_client:
            payload = await self._get_json(http_client, url, token, params, cancel_event)

        items = _row_array(payload)
        if items is not None:
            rows = _rows_from_array(items, url)
            if row_limit is not None and len(rows) > row_limit:
                logger.info("Truncating %d rows to the row limit of %d", len(rows), row_limit)
                del rows[row_limit:]
            total = read_total_count(payload) if isinstance(payload, dict) else None
            return RowSet(rows=rows, total_count=total, pages_fetched=1, terminated_by="single")

        if isinstance(payload, dict):
            return RowSet(rows=[payload], pages_fetched=1, terminated_by="single_object")

        raise MalformedResponse(
            f"Unexpected response for '{resource_name}': "
            f"expected JSON object or array, got {type(payload).__name__}."
        )

    # ------------------------------------------------------------------
    # Analysis queries (semantic layer)
    # ------------------------------------------------------------------

    async def fetch_analysis(
        self,
        token: str,
        credentials: ConnectionCredentials,
        analysis_type: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RowSet:
        """Run a SalesAnalysis / PurchaseAnalysis query from ``sml.svc``."""
        endpoint = ANALYSIS_ENDPOINTS.get(analysis_type)
        if endpoint is None:
            raise ValueError(
                "analysis_type must be one of: " + ", ".join(sorted(ANALYSIS_ENDPOINTS))
            )

        url = self._entity_url(credentials, endpoint)
        async with make_async_client(
            credentials, self.config.analysis_timeout, self.transport
        ) as http_client:
            payload = await self._get_json(http_client, url, token, None, cancel_event)

        items = _row_array(payload, _ANALYSIS_ROW_KEYS)
        if items is not None:
            return RowSet(rows=_rows_from_array(items, url), pages_fetched=1, terminated_by="single")
        if isinstance(payload, dict):
            return RowSet(rows=[payload], pages_fetched=1, terminated_by="single_object")

        raise MalformedResponse(
            f"Unexpected response for analysis '{analysis_type}': {type(payload).__name__}."
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def list_entity_sets(
        self,
        token: str,
        credentials: ConnectionCredentials,
    ) -> List[str]:
        """Return entity names from the Service Layer $metadata document.

        EntitySet names are preferred; EntityType and Entity names are used
        when a metadata flavour does not declare sets.
        """
        url = self._entity_url(credentials, "$metadata")
        headers = session_headers(token)
        headers["Accept"] = "application/xml"

        async with make_async_client(
            credentials, self.config.fetch_timeout, self.transport
        ) as http_client:
            try:
                response = await http_client.get(url, headers=headers)
            except RequestError as exc:
                raise FetchFailure(f"Error calling SAP B1 metadata endpoint '{url}': {exc}") from exc

        if not response.is_success:
            raise FetchFailure(
                f"Failed to fetch SAP B1 metadata (HTTP {response.status_code}): "
                f"{extract_service_layer_message(response.text)}",
                status=response.status_code,
            )

        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as exc:
            raise MalformedResponse(f"SAP B1 $metadata is not valid XML: {exc}") from exc

        by_tag: Dict[str, List[str]] = {"EntitySet": [], "EntityType": [], "Entity": []}
        for elem in root.iter():
            local = elem.tag.rsplit("}", 1)[-1]
            name = elem.get("Name")
            if name and local in by_tag and name not in by_tag[local]:
                by_tag[local].append(name)

        for tag in ("EntitySet", "EntityType", "Entity"):
            if by_tag[tag]:
                logger.info("Extracted %d entities from metadata", len(by_tag[tag]))
                return by_tag[tag]
        return []
