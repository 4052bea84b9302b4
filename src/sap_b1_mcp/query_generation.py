# SAP B1 Query MCP Server
# File: query_generation.py
# Version: v3

"""Natural-language to Service Layer query generators.

Two implementations of the QueryGenerator protocol:

- OpenAIQueryGenerator asks an OpenAI-compatible chat endpoint for an
  entity set and OData options.
- KeywordQueryGenerator is an offline, rule-based generator used when no
  LLM key is configured (and in mock mode).
"""

from __future__ import annotations

import datetime as _dt
import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .entities import COMMON_ENTITY_SETS, resolve_by_keywords
from .llm import ChatCompletionClient
from .models import GeneratedQuery

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a SAP Business One expert assistant. Generate clear, detailed "
    "queries in JSON format. Always return valid JSON only, no markdown, no "
    "code blocks."
)

_TOP_N_RE = re.compile(r"\btop\s+(\d+)\b", re.IGNORECASE)
_PAST_DAYS_RE = re.compile(r"\b(?:past|last)\s+(\d+)\s+days?\b", re.IGNORECASE)


class QueryGenerator(Protocol):
    async def generate(self, text: str) -> GeneratedQuery:
        ...


def substitute_variables(text: str, variables: Optional[Mapping[str, Any]]) -> str:
    """Replace ``{name}`` placeholders, matching names case-insensitively."""
    processed = text or ""
    for key, value in (variables or {}).items():
        pattern = re.compile(r"\{" + re.escape(str(key)) + r"\}", re.IGNORECASE)
        processed = pattern.sub(lambda _m, v=value: str(v), processed)
    return processed


def default_formatted_query(resource_name: str, filter_expression: str) -> str:
    """SQL-like rendering used when the generator does not supply one."""
    if not filter_expression:
        return f"SELECT * FROM {resource_name}"
    where = filter_expression.replace("$filter=", "").replace("&", " AND ")
    return f"SELECT * FROM {resource_name} WHERE {where}"


class OpenAIQueryGenerator:
    """Ask the LLM for ``objectName`` / ``filterParams`` and friends."""

    def __init__(
        self,
        chat: ChatCompletionClient,
        today: Callable[[], _dt.date] = _dt.date.today,
    ) -> None:
        self._chat = chat
        self._today = today

    def build_prompt(self, text: str) -> str:
        today = self._today()
        ten_days_ago = (today - _dt.timedelta(days=10)).isoformat()
        one_year_ago = (today - _dt.timedelta(days=365)).isoformat()

        return f"""Generate a SAP Business One Service Layer query for the user's request.

User Request: "{text}"
Today: {today.isoformat()} (one year ago: {one_year_ago})

Available SAP B1 Service Layer Objects: {", ".join(COMMON_ENTITY_SETS)}

Generate a response in JSON format with:
1. objectName: The SAP B1 object to query (e.g., "Orders", "Invoices", "Items")
2. filterParams: OData options (e.g., "$filter=DocDate ge '2024-01-01'")
3. formattedQuery: A human-readable SQL-like rendering of the query
4. description: A brief explanation of what the query does

Rules:
- For date ranges: Use $filter=DocDate ge 'YYYY-MM-DD'
- For open/pending orders: Use $filter=DocumentStatus eq 'bost_Open'
- For "top X": Use $top=X

Example for "list of orders for past 10 days":
{{
  "objectName": "Orders",
  "filterParams": "$filter=DocDate ge '{ten_days_ago}'&$orderby=DocDate desc",
  "formattedQuery": "SELECT DocNum, DocDate, CardCode, CardName, DocTotal FROM ORDR WHERE DocDate >= '{ten_days_ago}' ORDER BY DocDate DESC",
  "description": "Sales orders created in the past 10 days, newest first"
}}

Return ONLY valid JSON, no markdown, no code blocks."""

    async def generate(self, text: str) -> GeneratedQuery:
        data: Dict[str, Any] = await self._chat.complete_json(
            _SYSTEM_PROMPT, self.build_prompt(text), max_tokens=300
        )

        resource_name = str(data.get("objectName") or "").strip()
        filter_expression = str(data.get("filterParams") or "").strip()
        logger.info("LLM selected %s with options %r", resource_name or "<none>", filter_expression)

        return GeneratedQuery(
            resource_name=resource_name,
            filter_expression=filter_expression,
            formatted_query=str(data.get("formattedQuery") or ""),
            description=str(data.get("description") or ""),
        )


class KeywordQueryGenerator:
    """Offline generator: keyword entity routing plus a few option patterns."""

    def __init__(self, today: Callable[[], _dt.date] = _dt.date.today) -> None:
        self._today = today

    async def generate(self, text: str) -> GeneratedQuery:
        resource_name, override = resolve_by_keywords(text)

        options = []
        if override:
            options.append(override)
        else:
            days = _PAST_DAYS_RE.search(text or "")
            if days:
                since = self._today() - _dt.timedelta(days=int(days.group(1)))
                options.append(f"$filter=DocDate ge '{since.isoformat()}'")

        top = _TOP_N_RE.search(text or "")
        if top:
            options.append(f"$top={int(top.group(1))}")

        filter_expression = "&".join(options)
        return GeneratedQuery(
            resource_name=resource_name,
            filter_expression=filter_expression,
            formatted_query=default_formatted_query(resource_name, filter_expression),
            description=f"Query to retrieve {resource_name} data",
        )
