# SAP B1 Query MCP Server
# File: orchestrator.py
# Version: v6

"""Query resolution and execution with scoped retries.

execute() runs one query through this state machine::

    AUTHENTICATE(cached) -> FETCH -> ok -> post-filter -> DONE
                                  -> auth error -> invalidate -> AUTHENTICATE(forced) -> FETCH
                                  -> invalid filter on an unstable-schema resource
                                         -> FETCH with the filter reduced to its $top
                                  -> anything else -> raise

Each retry happens at most once, starts from scratch and never reuses rows
from the failed attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence

from .auth import ServiceLayerAuthenticator
from .cancellation import raise_if_cancelled
from .client import ServiceLayerClient
from .entities import UNSTABLE_SCHEMA_RESOURCES, canonical_entity_set, resolve_by_keywords
from .errors import B1Error, ErrorKind, QueryCancelled, QueryResolutionError, classify
from .models import ConnectionCredentials, QueryOutcome, QueryRequest, ResolvedQuery, RowSet
from .odata import extract_top, limit_only
from .postfilters import PostFilterRule, apply_post_filters
from .query_generation import KeywordQueryGenerator, QueryGenerator, substitute_variables

logger = logging.getLogger(__name__)


class QueryOrchestrator:
    def __init__(
        self,
        authenticator: ServiceLayerAuthenticator,
        client: ServiceLayerClient,
        query_generator: Optional[QueryGenerator] = None,
        post_filter_rules: Optional[Sequence[PostFilterRule]] = None,
    ) -> None:
        self._authenticator = authenticator
        self._client = client
        self._generator: QueryGenerator = query_generator or KeywordQueryGenerator()
        self._rules = post_filter_rules

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        natural_language_query: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> ResolvedQuery:
        """Turn free text into a validated entity set and OData options."""
        processed = substitute_variables(natural_language_query, variables)
        if not processed.strip():
            raise QueryResolutionError("Query text is empty.")

        try:
            generated = await self._generator.generate(processed)
        except (QueryCancelled, QueryResolutionError):
            raise
        except Exception as exc:
            raise QueryResolutionError(f"Failed to generate query: {exc}") from exc

        filter_expression = generated.filter_expression or ""
        resource_name = canonical_entity_set(generated.resource_name)
        fallback_applied = False

        if resource_name is None:
            resource_name, override = resolve_by_keywords(processed)
            if override:
                filter_expression = override
            fallback_applied = True
            logger.warning(
                "Entity set %r is not a known Service Layer object; using %s",
                generated.resource_name, resource_name,
            )

        return ResolvedQuery(
            resource_name=resource_name,
            filter_expression=filter_expression,
            processed_text=processed,
            formatted_query=generated.formatted_query,
            description=generated.description,
            fallback_applied=fallback_applied,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        credentials: ConnectionCredentials,
        request: QueryRequest,
    ) -> QueryOutcome:
        """Fetch all rows for one query; see the module docstring for retries.

        When ``request.row_limit`` is None it is taken from ``$top`` in the
        filter expression. Both fetch modes stop at that limit.
        """
        cancel_event = request.cancel_event
        resource_name = request.resource_name
        filter_expression = request.filter_expression or ""
        row_limit = request.row_limit
        if row_limit is None:
            row_limit = extract_top(filter_expression)

        async def fetch(token: str, expression: str) -> RowSet:
            raise_if_cancelled(cancel_event, "before fetch")
            if request.paginate:
                return await self._client.fetch_rows(
                    token, credentials, resource_name, expression, row_limit, cancel_event
                )
            return await self._client.fetch_single(
                token, credentials, resource_name, expression, row_limit, cancel_event
            )

        token = await self._authenticate(credentials, cancel_event)
        outcome = QueryOutcome(
            resource_name=resource_name,
            filter_expression=filter_expression,
            row_set=RowSet(rows=[]),
        )

        try:
            outcome.row_set = await fetch(token, filter_expression)
        except B1Error as exc:
            kind = classify(exc)
            if kind is ErrorKind.AUTH:
                logger.info("Session appears to be invalid, retrying with a new login: %s", exc)
                token = await self._reauthenticate(credentials, cancel_event)
                outcome.auth_retried = True
                outcome.row_set = await fetch(token, filter_expression)
            elif kind is ErrorKind.INVALID_FILTER and self._filter_retry_allowed(
                resource_name, filter_expression
            ):
                degraded = limit_only(filter_expression)
                logger.info(
                    "Retrying %s without filter after invalid property error (options: %r)",
                    resource_name, degraded,
                )
                raise_if_cancelled(cancel_event, "before filter retry")
                outcome.filter_expression = degraded
                outcome.filter_degraded = True
                outcome.row_set = await fetch(token, degraded)
            else:
                raise

        raise_if_cancelled(cancel_event, "after fetch")
        self._post_filter(outcome, request.query_text)
        return outcome

    async def execute_analysis(
        self,
        credentials: ConnectionCredentials,
        analysis_type: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RowSet:
        """Run an sml.svc analysis query with the same auth-retry policy."""
        return await self._with_auth_retry(
            credentials,
            cancel_event,
            lambda token: self._client.fetch_analysis(token, credentials, analysis_type, cancel_event),
        )

    async def authenticate(self, credentials: ConnectionCredentials, force_new: bool = False) -> str:
        return await self._authenticator.login(credentials, force_new=force_new)

    async def list_entity_sets(self, credentials: ConnectionCredentials) -> List[str]:
        return await self._with_auth_retry(
            credentials,
            None,
            lambda token: self._client.list_entity_sets(token, credentials),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _authenticate(
        self, credentials: ConnectionCredentials, cancel_event: Optional[asyncio.Event]
    ) -> str:
        raise_if_cancelled(cancel_event, "before authentication")
        return await self._authenticator.login(credentials)

    async def _reauthenticate(
        self, credentials: ConnectionCredentials, cancel_event: Optional[asyncio.Event]
    ) -> str:
        self._authenticator.cache.invalidate(credentials.identity)
        raise_if_cancelled(cancel_event, "before re-authentication")
        return await self._authenticator.login(credentials, force_new=True)

    async def _with_auth_retry(
        self,
        credentials: ConnectionCredentials,
        cancel_event: Optional[asyncio.Event],
        call: Callable[[str], Awaitable[Any]],
    ) -> Any:
        token = await self._authenticate(credentials, cancel_event)
        try:
            return await call(token)
        except B1Error as exc:
            if classify(exc) is not ErrorKind.AUTH:
                raise
            logger.info("Session appears to be invalid, retrying with a new login: %s", exc)
            token = await self._reauthenticate(credentials, cancel_event)
            return await call(token)

    @staticmethod
    def _filter_retry_allowed(resource_name: str, filter_expression: str) -> bool:
        return resource_name in UNSTABLE_SCHEMA_RESOURCES and bool(filter_expression)

    def _post_filter(self, outcome: QueryOutcome, query_text: str) -> None:
        rows, applied = apply_post_filters(
            outcome.resource_name, query_text, outcome.row_set.rows, self._rules
        )
        if not applied:
            return
        row_set = outcome.row_set
        outcome.row_set = RowSet(
            rows=rows,
            total_count=len(rows) if row_set.total_count is not None else None,
            pages_fetched=row_set.pages_fetched,
            terminated_by=row_set.terminated_by,
        )
        outcome.post_filters = applied
