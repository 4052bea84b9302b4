# SAP B1 Query MCP Server
# File: tools/tasks.py
# Version: v7
#
# NOTE: This module is the single place where we define "business logic"
# that is exposed as MCP tools.  The MCP transports (stdio / http) simply
# call `register_tools(server)` to wire these up.

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import httpx

from ..auth import ServiceLayerAuthenticator
from ..cache import SessionCache
from ..charts import LLMChartAdvisor, recommend_chart
from ..client import ANALYSIS_ENDPOINTS, ServiceLayerClient
from ..config import B1Config
from ..entities import SAP_B1_ENTITY_SETS, canonical_entity_set
from ..errors import (
    AuthFailure,
    FetchFailure,
    MalformedResponse,
    QueryCancelled,
    QueryResolutionError,
)
from ..llm import ChatCompletionClient
from ..mock import MockServiceLayer
from ..models import ConnectionCredentials, QueryOutcome, QueryRequest
from ..orchestrator import QueryOrchestrator
from ..query_generation import KeywordQueryGenerator, OpenAIQueryGenerator, QueryGenerator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers (error shape, shared cache, composition root)
# ---------------------------------------------------------------------------


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err


def _failure(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"ok": False, "error": _make_error(code, message, details)}


def _error_response(exc: BaseException) -> Dict[str, Any]:
    """Map a query-path exception to the tool failure shape.

    Unknown exception types are re-raised.
    """
    if isinstance(exc, QueryCancelled):
        logger.info("Query cancelled: %s", exc)
        return _failure("CANCELLED", str(exc))
    if isinstance(exc, AuthFailure):
        return _failure("AUTH_FAILED", str(exc), {"status": exc.status} if exc.status else None)
    if isinstance(exc, QueryResolutionError):
        return _failure("QUERY_RESOLUTION_FAILED", str(exc))
    if isinstance(exc, MalformedResponse):
        return _failure("MALFORMED_RESPONSE", str(exc))
    if isinstance(exc, FetchFailure):
        return _failure("FETCH_FAILED", str(exc), {"status": exc.status} if exc.status else None)
    raise exc


_SESSION_CACHE: SessionCache | None = None
_MOCK_SERVICE: MockServiceLayer | None = None


def _get_session_cache() -> SessionCache:
    """Lazily create the process-wide session cache (the only shared state)."""
    global _SESSION_CACHE
    if _SESSION_CACHE is None:
        _SESSION_CACHE = SessionCache()
    return _SESSION_CACHE


def _get_mock_service() -> MockServiceLayer:
    global _MOCK_SERVICE
    if _MOCK_SERVICE is None:
        _MOCK_SERVICE = MockServiceLayer()
    return _MOCK_SERVICE


def reset_state(
    session_cache: SessionCache | None = None,
    mock_service: MockServiceLayer | None = None,
) -> None:
    """Replace the process-wide session cache and mock service.

    With no arguments both are dropped and lazily recreated on next use.
    """
    global _SESSION_CACHE, _MOCK_SERVICE
    _SESSION_CACHE = session_cache
    _MOCK_SERVICE = mock_service


def _make_transport(cfg: B1Config) -> Optional[httpx.AsyncBaseTransport]:
    if cfg.mock_mode:
        return _get_mock_service().transport()
    return None


def _make_query_generator(cfg: B1Config) -> QueryGenerator:
    if cfg.llm_configured and not cfg.mock_mode:
        return OpenAIQueryGenerator(ChatCompletionClient(config=cfg))
    return KeywordQueryGenerator()


def _make_chart_advisor(cfg: Optional[B1Config] = None) -> Optional[LLMChartAdvisor]:
    cfg = cfg or B1Config.from_env()
    if cfg.llm_configured and not cfg.mock_mode:
        return LLMChartAdvisor(ChatCompletionClient(config=cfg))
    return None


def _make_orchestrator(cfg: Optional[B1Config] = None) -> QueryOrchestrator:
    """Build the orchestrator stack from environment variables.

    If B1_MOCK_MODE is truthy, every HTTP call goes to the in-process
    MockServiceLayer instead of a real Service Layer.

    Note: Callers should prefer invoking this with *no arguments* so tests
    can monkeypatch it with a no-arg lambda.
    """
    cfg = cfg or B1Config.from_env()
    transport = _make_transport(cfg)
    cache = _get_session_cache()

    authenticator = ServiceLayerAuthenticator(config=cfg, cache=cache, transport=transport)
    client = ServiceLayerClient(config=cfg, transport=transport)
    return QueryOrchestrator(
        authenticator=authenticator,
        client=client,
        query_generator=_make_query_generator(cfg),
    )


def _resolve_credentials(
    credentials: Optional[Mapping[str, Any]],
    cfg: B1Config,
) -> ConnectionCredentials:
    if credentials:
        creds = ConnectionCredentials.from_dict(dict(credentials), cfg)
    elif cfg.mock_mode and not cfg.server_url:
        creds = ConnectionCredentials(
            server_url="https://mock-b1.local:50000",
            company_db=cfg.company_db or "SBODEMOUS",
            username=cfg.username or "manager",
            password=cfg.password or "mock",
        )
    else:
        creds = ConnectionCredentials.from_config(cfg)

    if not creds.base_url or not creds.company_db or not creds.username:
        raise AuthFailure(
            "SAP B1 connection is not configured. "
            "Pass credentials or set B1_SERVER_URL, B1_COMPANY_DB, B1_USERNAME and B1_PASSWORD."
        )
    return creds


def _outcome_meta(outcome: QueryOutcome) -> Dict[str, Any]:
    row_set = outcome.row_set
    return {
        "total_count": row_set.total_count,
        "pages_fetched": row_set.pages_fetched,
        "terminated_by": row_set.terminated_by,
        "auth_retried": outcome.auth_retried,
        "filter_degraded": outcome.filter_degraded,
        "post_filters": list(outcome.post_filters),
    }


# ---------------------------------------------------------------------------
# Public task functions
# ---------------------------------------------------------------------------


async def run_query(
    natural_language_query: str,
    variables: Optional[Mapping[str, Any]] = None,
    credentials: Optional[Mapping[str, Any]] = None,
    paginate: bool = True,
    cancel_event: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """Resolve a natural-language question, fetch its rows and suggest a chart."""
    started = time.time()
    cfg = B1Config.from_env()

    try:
        creds = _resolve_credentials(credentials, cfg)
        orchestrator = _make_orchestrator()
        resolved = await orchestrator.resolve(natural_language_query, variables)
        outcome = await orchestrator.execute(
            creds,
            QueryRequest(
                resource_name=resolved.resource_name,
                filter_expression=resolved.filter_expression,
                cancel_event=cancel_event,
                paginate=paginate,
                query_text=resolved.processed_text,
            ),
        )
    except (AuthFailure, FetchFailure, MalformedResponse, QueryResolutionError, QueryCancelled) as exc:
        return _error_response(exc)

    chart = await recommend_chart(outcome.rows, resolved.processed_text, _make_chart_advisor())

    meta = _outcome_meta(outcome)
    meta.update(
        {
            "processed_query": resolved.processed_text,
            "formatted_query": resolved.formatted_query,
            "description": resolved.description,
            "fallback_applied": resolved.fallback_applied,
            "mock_mode": cfg.mock_mode,
            "elapsed_ms": int((time.time() - started) * 1000),
        }
    )

    return {
        "ok": True,
        "resolved_resource_name": outcome.resource_name,
        "filter_expression": outcome.filter_expression,
        "rows": outcome.rows,
        "row_count": len(outcome.rows),
        "chart": chart.to_dict(),
        "meta": meta,
    }


async def execute_query(
    resource_name: str,
    filter_expression: str = "",
    row_limit: Optional[int] = None,
    paginate: bool = True,
    credentials: Optional[Mapping[str, Any]] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """Run an explicit entity set + OData options query, skipping NL resolution."""
    started = time.time()
    cfg = B1Config.from_env()

    canonical = canonical_entity_set(resource_name)
    if canonical is None:
        return _failure(
            "QUERY_RESOLUTION_FAILED",
            f"Unknown SAP B1 entity set: {resource_name!r}",
            {"hint": "Use sap_b1_list_entities to see valid names."},
        )

    try:
        creds = _resolve_credentials(credentials, cfg)
        orchestrator = _make_orchestrator()
        outcome = await orchestrator.execute(
            creds,
            QueryRequest(
                resource_name=canonical,
                filter_expression=filter_expression or "",
                row_limit=row_limit,
                cancel_event=cancel_event,
                paginate=paginate,
            ),
        )
    except (AuthFailure, FetchFailure, MalformedResponse, QueryCancelled) as exc:
        return _error_response(exc)

    meta = _outcome_meta(outcome)
    meta["elapsed_ms"] = int((time.time() - started) * 1000)
    meta["mock_mode"] = cfg.mock_mode

    return {
        "ok": True,
        "resolved_resource_name": outcome.resource_name,
        "filter_expression": outcome.filter_expression,
        "rows": outcome.rows,
        "row_count": len(outcome.rows),
        "meta": meta,
    }


async def test_connection(credentials: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Force a fresh login to validate the connection settings."""
    cfg = B1Config.from_env()
    started = time.time()
    try:
        creds = _resolve_credentials(credentials, cfg)
        orchestrator = _make_orchestrator()
        await orchestrator.authenticate(creds, force_new=True)
    except AuthFailure as exc:
        return _error_response(exc)

    return {
        "ok": True,
        "message": "Successfully connected to SAP Business One Service Layer.",
        "server_url": creds.base_url,
        "company_db": creds.company_db,
        "username": creds.username,
        "mock_mode": cfg.mock_mode,
        "elapsed_ms": int((time.time() - started) * 1000),
    }


async def list_entities(
    live: bool = False,
    credentials: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Known entity sets: the static list, or the server's $metadata when live."""
    if not live:
        return {"ok": True, "source": "static", "entities": list(SAP_B1_ENTITY_SETS)}

    cfg = B1Config.from_env()
    try:
        creds = _resolve_credentials(credentials, cfg)
        orchestrator = _make_orchestrator()
        names = await orchestrator.list_entity_sets(creds)
    except (AuthFailure, FetchFailure, MalformedResponse) as exc:
        return _error_response(exc)

    return {"ok": True, "source": "metadata", "entities": names}


async def fetch_analysis(
    analysis_type: str,
    credentials: Optional[Mapping[str, Any]] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """Run a SalesAnalysis / PurchaseAnalysis semantic-layer query."""
    if analysis_type not in ANALYSIS_ENDPOINTS:
        return _failure(
            "QUERY_RESOLUTION_FAILED",
            f"Unknown analysis type: {analysis_type!r}",
            {"allowed": sorted(ANALYSIS_ENDPOINTS)},
        )

    cfg = B1Config.from_env()
    try:
        creds = _resolve_credentials(credentials, cfg)
        orchestrator = _make_orchestrator()
        row_set = await orchestrator.execute_analysis(creds, analysis_type, cancel_event)
    except (AuthFailure, FetchFailure, MalformedResponse, QueryCancelled) as exc:
        return _error_response(exc)

    return {
        "ok": True,
        "analysis_type": analysis_type,
        "rows": row_set.rows,
        "row_count": len(row_set.rows),
    }


async def invalidate_sessions() -> Dict[str, Any]:
    """Drop every cached session, e.g. after rotating a password."""
    removed = _get_session_cache().invalidate_all()
    return {"ok": True, "invalidated": removed}


def _collect_config_info(cfg: B1Config) -> Dict[str, Any]:
    return {
        "mock_mode": cfg.mock_mode,
        "server_url": cfg.server_url,
        "company_db": cfg.company_db,
        "username_configured": bool(cfg.username),
        "password_configured": bool(cfg.password),
        "verify_tls": cfg.verify_tls,
        "llm_configured": cfg.llm_configured,
        "llm_model": cfg.openai_model,
        "pagination": {
            "page_size": cfg.page_size,
            "max_total_rows": cfg.max_total_rows,
            "empty_page_tolerance": cfg.empty_page_tolerance,
            "same_count_warn_streak": cfg.same_count_warn_streak,
            "empty_page_probe_stride": cfg.empty_page_probe_stride,
        },
        "timeouts": {
            "login_seconds": cfg.login_timeout,
            "fetch_seconds": cfg.fetch_timeout,
            "analysis_seconds": cfg.analysis_timeout,
        },
    }


async def diagnostics() -> Dict[str, Any]:
    started = time.time()
    cfg = B1Config.from_env()
    config_info = _collect_config_info(cfg)

    cache = _get_session_cache()
    cache.sweep()

    checks: List[Dict[str, Any]] = []
    overall_ok = True

    # Credentials
    t0 = time.time()
    try:
        creds = _resolve_credentials(None, cfg)
        checks.append(
            {"name": "credentials", "ok": True, "error": None, "elapsed_ms": int((time.time() - t0) * 1000)}
        )
    except AuthFailure as exc:
        checks.append(
            {
                "name": "credentials",
                "ok": False,
                "error": _make_error("CONFIG_ERROR", str(exc)),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )
        return {
            "ok": False,
            "mock_mode": cfg.mock_mode,
            "config": config_info,
            "checks": checks,
            "meta": {"elapsed_ms": int((time.time() - started) * 1000), "cache": cache.stats()},
        }

    orchestrator = _make_orchestrator()

    # Login (reuses a cached session when one is fresh)
    t0 = time.time()
    try:
        await orchestrator.authenticate(creds)
        checks.append({"name": "login", "ok": True, "error": None, "elapsed_ms": int((time.time() - t0) * 1000)})
    except AuthFailure as exc:
        overall_ok = False
        checks.append(
            {
                "name": "login",
                "ok": False,
                "error": _make_error("AUTH_FAILED", str(exc)),
                "elapsed_ms": int((time.time() - t0) * 1000),
            }
        )

    # Metadata
    if overall_ok:
        t0 = time.time()
        try:
            names = await orchestrator.list_entity_sets(creds)
            checks.append(
                {
                    "name": "metadata",
                    "ok": True,
                    "count": len(names),
                    "error": None,
                    "elapsed_ms": int((time.time() - t0) * 1000),
                }
            )
        except (AuthFailure, FetchFailure, MalformedResponse) as exc:
            overall_ok = False
            checks.append(
                {
                    "name": "metadata",
                    "ok": False,
                    "error": _error_response(exc)["error"],
                    "elapsed_ms": int((time.time() - t0) * 1000),
                }
            )

    return {
        "ok": overall_ok,
        "mock_mode": cfg.mock_mode,
        "config": config_info,
        "checks": checks,
        "meta": {
            "elapsed_ms": int((time.time() - started) * 1000),
            "cache": cache.stats(),
        },
    }


# ---------------------------------------------------------------------------
# Session sweeper lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def session_sweeper(server: Any) -> AsyncIterator[Dict[str, Any]]:
    """FastMCP lifespan that runs the periodic session-cache sweep."""
    cfg = B1Config.from_env()
    cache = _get_session_cache()
    stop = asyncio.Event()
    task = asyncio.create_task(cache.sweep_forever(cfg.sweep_interval_seconds, stop))
    try:
        yield {"session_cache": cache}
    finally:
        stop.set()
        await task


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any) -> None:
    """Register MCP tools on an MCP Server-like instance."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(
        name="sap_b1_run_query",
        description=(
            "Answer a natural-language question from SAP Business One: picks the entity set and "
            "OData filter, fetches every matching row and recommends a chart."
        ),
    )
    async def mcp_run_query(
        natural_language_query: str,
        variables: Optional[Dict[str, Any]] = None,
        credentials: Optional[Dict[str, Any]] = None,
        paginate: bool = True,
    ) -> Dict[str, Any]:
        return await run_query(
            natural_language_query=natural_language_query,
            variables=variables,
            credentials=credentials,
            paginate=paginate,
        )

    @server.tool(
        name="sap_b1_execute_query",
        description="Fetch rows from a SAP B1 entity set with explicit OData options ($filter, $top, ...).",
    )
    async def mcp_execute_query(
        resource_name: str,
        filter_expression: str = "",
        row_limit: Optional[int] = None,
        paginate: bool = True,
        credentials: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await execute_query(
            resource_name=resource_name,
            filter_expression=filter_expression,
            row_limit=row_limit,
            paginate=paginate,
            credentials=credentials,
        )

    @server.tool(name="sap_b1_test_connection", description="Log in to the SAP B1 Service Layer to validate settings.")
    async def mcp_test_connection(credentials: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await test_connection(credentials=credentials)

    @server.tool(
        name="sap_b1_list_entities",
        description="List SAP B1 Service Layer entity sets (static list, or live from $metadata).",
    )
    async def mcp_list_entities(live: bool = False, credentials: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await list_entities(live=live, credentials=credentials)

    @server.tool(
        name="sap_b1_fetch_analysis",
        description="Run a SalesAnalysis or PurchaseAnalysis query from the SAP B1 semantic layer.",
    )
    async def mcp_fetch_analysis(analysis_type: str, credentials: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await fetch_analysis(analysis_type=analysis_type, credentials=credentials)

    @server.tool(
        name="sap_b1_invalidate_sessions",
        description="Forget all cached SAP B1 sessions (use after rotating credentials).",
    )
    async def mcp_invalidate_sessions() -> Dict[str, Any]:
        return await invalidate_sessions()

    @server.tool(
        name="sap_b1_diagnostics",
        description="Check configuration, login and metadata access; reports session cache statistics.",
    )
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics()
