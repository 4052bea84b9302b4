# SAP B1 Query MCP Server
# File: models.py
# Version: v4

"""Domain models used by the SAP B1 Query MCP server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import B1Config
from .errors import AuthFailure

Row = Dict[str, Any]

# Path suffixes users commonly paste together with the server address.
_KNOWN_PATH_SUFFIXES = ("/b1s/v1/Login", "/b1s/v1")


def normalize_server_url(server_url: str) -> str:
    """Reduce a Service Layer address to its base URL.

    ``https://host:50000/``, ``https://host:50000/b1s/v1`` and
    ``https://host:50000/b1s/v1/Login`` all normalize to
    ``https://host:50000``.
    """
    url = (server_url or "").strip().rstrip("/")
    for suffix in _KNOWN_PATH_SUFFIXES:
        if url.endswith(suffix):
            url = url[: -len(suffix)].rstrip("/")
    return url


@dataclass(frozen=True)
class ConnectionIdentity:
    """Cache key for a Service Layer session.

    The password is intentionally not part of the identity.
    """

    server_url: str
    company_db: str
    username: str

    def __str__(self) -> str:
        return f"{self.server_url}|{self.company_db}|{self.username}"


@dataclass
class ConnectionCredentials:
    """Everything needed to open a Service Layer session."""

    server_url: str
    company_db: str
    username: str
    password: str = field(repr=False, default="")
    verify_tls: bool = True

    @property
    def base_url(self) -> str:
        return normalize_server_url(self.server_url)

    @property
    def identity(self) -> ConnectionIdentity:
        return ConnectionIdentity(
            server_url=self.base_url,
            company_db=self.company_db,
            username=self.username,
        )

    @classmethod
    def from_config(cls, config: B1Config) -> "ConnectionCredentials":
        if not config.server_url or not config.company_db or not config.username:
            raise AuthFailure(
                "SAP B1 connection is not configured. "
                "Set B1_SERVER_URL, B1_COMPANY_DB, B1_USERNAME and B1_PASSWORD."
            )
        return cls(
            server_url=config.server_url,
            company_db=config.company_db,
            username=config.username,
            password=config.password or "",
            verify_tls=config.verify_tls,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config: B1Config) -> "ConnectionCredentials":
        """Build credentials from a tool payload, falling back to config values."""
        verify_raw = data.get("verify_tls")
        return cls(
            server_url=data.get("server_url") or data.get("sapServer") or config.server_url or "",
            company_db=data.get("company_db") or data.get("companyDB") or config.company_db or "",
            username=data.get("username") or data.get("userName") or config.username or "",
            password=data.get("password") or config.password or "",
            verify_tls=config.verify_tls if verify_raw is None else bool(verify_raw),
        )


@dataclass(frozen=True)
class QueryRequest:
    """One query execution; immutable for its whole lifetime.

    ``row_limit`` of None means "use ``$top`` from the options, if any".
    ``query_text`` is the processed question, used to pick post-filters.
    """

    resource_name: str
    filter_expression: str = ""
    row_limit: Optional[int] = None
    cancel_event: Optional[asyncio.Event] = field(default=None, compare=False)
    paginate: bool = True
    query_text: str = ""


@dataclass
class RowSet:
    """Aggregated rows from one fetch run."""

    rows: List[Row]
    total_count: Optional[int] = None
    pages_fetched: int = 0

    # Name of the terminal pagination state (or "single" for one-shot GETs).
    terminated_by: Optional[str] = None

    def __len__(self) -> int:
        return len(self.rows)


@dataclass
class GeneratedQuery:
    """Raw output of the NL-to-query collaborator, before validation."""

    resource_name: str
    filter_expression: str = ""
    formatted_query: str = ""
    description: str = ""


@dataclass
class ResolvedQuery:
    """A generated query whose resource name has been validated."""

    resource_name: str
    filter_expression: str
    processed_text: str
    formatted_query: str = ""
    description: str = ""

    # True when the generator's resource name was replaced by the fallback.
    fallback_applied: bool = False


@dataclass
class QueryOutcome:
    """Result of QueryOrchestrator.execute()."""

    resource_name: str
    filter_expression: str
    row_set: RowSet

    auth_retried: bool = False
    filter_degraded: bool = False
    post_filters: List[str] = field(default_factory=list)

    @property
    def rows(self) -> List[Row]:
        return self.row_set.rows


@dataclass
class ChartRecommendation:
    """Visualization hint consumed by the presentation layer."""

    best_chart_type: str
    recommended_types: List[str]
    x_axis_field: Optional[str] = None
    y_axis_field: Optional[str] = None
    group_by_field: Optional[str] = None

    # "llm" or "heuristic"
    source: str = "heuristic"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_chart_type": self.best_chart_type,
            "recommended_types": list(self.recommended_types),
            "x_axis_field": self.x_axis_field,
            "y_axis_field": self.y_axis_field,
            "group_by_field": self.group_by_field,
            "source": self.source,
        }
