# fleet_telemetry_sync/client.py
"""
Async GraphQL client for the partner platform.

Wraps one `httpx.AsyncClient` and adds what every query in this package needs:
bearer authentication, error classification, bounded retries, pagination and
alias batching. It knows nothing about drivers or journeys; query documents
live in `queries.py`.

Retry Behavior:
---------------
Requests are retried (tenacity, `platform.max_retries` attempts in total) on
transient failures only:
- Rate limits (429): waits for Retry-After, falls back to exponential backoff
- Server errors (5xx): exponential backoff
- Timeouts and connection errors: exponential backoff

A 401 from the GraphQL endpoint drops the token and the request is replayed
once with a fresh one. Any other 4xx and every GraphQL `errors` array fail
immediately.

Concurrency:
------------
A single asyncio.Semaphore (`sync.max_concurrent_requests`) bounds the number
of GraphQL requests in flight across every company and driver of a run.

Alias Batching:
---------------
`execute_batched_by_alias()` fetches many entities in one round trip by
repeating a field under distinct aliases (item0, item1, ...). Each alias
succeeds or fails on its own: an `errors` entry whose path starts with an
alias fails only that alias, and a null alias is reported as missing.

SSL/TLS Handling:
-----------------
- Standard verification (verify_ssl=True)
- Disabled verification (verify_ssl=False) for development
- Custom CA bundle (verify_ssl='/path/to/cert.pem') behind inspecting proxies
- OS trust store (sync.use_truststore=True)
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from ssl import SSLContext
from string import Template
from types import TracebackType
from typing import Any, Final, Self, cast

import httpx
from pydantic import BaseModel, ConfigDict, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from fleet_telemetry_sync.common import build_truststore_ssl_context
from fleet_telemetry_sync.config import SyncClientConfig
from fleet_telemetry_sync.exceptions import (
    APIError,
    AuthenticationError,
    GraphQLError,
    NetworkError,
    RateLimitError,
    TransientAPIError,
)
from fleet_telemetry_sync.session import SessionManager

__all__: list[str] = [
    'AliasResult',
    'GraphQLClient',
    'Page',
]

logger: logging.Logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_STATUS_UNAUTHORIZED: Final[int] = 401
HTTP_STATUS_RATE_LIMITED: Final[int] = 429
HTTP_STATUS_SERVER_ERROR_MIN: Final[int] = 500
HTTP_STATUS_SERVER_ERROR_MAX: Final[int] = 599

# Retry configuration
RETRY_BACKOFF_MULTIPLIER: Final[float] = 1.0
RETRY_BACKOFF_MAX_SECONDS: Final[float] = 60.0
DEFAULT_RETRY_AFTER_SECONDS: Final[float] = 1.0

DEFAULT_ALIAS_PREFIX: Final[str] = 'item'
_MAX_LOGGED_BODY_CHARS: Final[int] = 500

SleepFunction = Callable[[float], Awaitable[None]]


# =============================================================================
# Result Types
# =============================================================================


class Page(BaseModel):
    """
    One page of a paginated GraphQL envelope.

    Attributes:
        page: 1-based page number that was requested.
        pages: Total pages reported by the server.
        records: Total records reported by the server, if present.
        items: Raw item dictionaries of this page.
    """

    model_config = ConfigDict(frozen=True)

    page: int
    pages: int
    records: int | None = None
    items: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def has_more(self) -> bool:
        return self.page < self.pages


class AliasResult[ValueT](BaseModel):
    """
    Outcome of one alias of a batched request.

    Three states:
        found:   error is None and value is not None
        missing: error is None and value is None (the entity does not exist)
        failed:  error holds the reason; value is None
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: ValueT | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True for found and missing results."""
        return self.error is None


class _TokenRejectedError(AuthenticationError):
    """The GraphQL endpoint answered 401 to a request carrying a token."""

    token: str | None = None


# =============================================================================
# Custom Wait Strategy for Rate Limits
# =============================================================================


def _wait_for_rate_limit_or_exponential(retry_state: RetryCallState) -> float:
    """
    Wait strategy that respects Retry-After for rate limits.

    Args:
        retry_state: Tenacity retry state containing exception info.

    Returns:
        Number of seconds to wait before the next attempt.
    """
    exception: BaseException | None = (
        retry_state.outcome.exception() if retry_state.outcome else None
    )

    if isinstance(exception, RateLimitError):
        # Small buffer so the retry does not land exactly on the limit edge.
        return exception.retry_after_seconds + 0.5

    attempt_number: int = retry_state.attempt_number
    exponential_wait: float = RETRY_BACKOFF_MULTIPLIER * (2 ** (attempt_number - 1))
    return min(exponential_wait, RETRY_BACKOFF_MAX_SECONDS)


def _log_before_retry(retry_state: RetryCallState) -> None:
    exception: BaseException | None = (
        retry_state.outcome.exception() if retry_state.outcome else None
    )
    logger.warning(
        'Attempt %d failed (%s); retrying',
        retry_state.attempt_number,
        exception,
    )


def _parse_retry_after(header_value: str | None) -> float:
    """Parse a Retry-After header given in seconds; default when absent."""
    if not header_value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(float(header_value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def _summarize_graphql_errors(errors: list[dict[str, Any]]) -> str:
    messages: list[str] = [
        str(error.get('message', 'unknown error')) for error in errors
    ]
    return '; '.join(messages)


# =============================================================================
# GraphQL Client
# =============================================================================


class GraphQLClient:
    """
    Async GraphQL client with authentication, retries, pagination and batching.

    The client owns its httpx.AsyncClient and must be closed, preferably by
    using it as an async context manager.

    Example:
        >>> async with GraphQLClient(config) as client:
        ...     data = await client.execute(METAFLEET_COMPANIES_QUERY)
    """

    def __init__(
        self,
        config: SyncClientConfig,
        session: SessionManager | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunction = asyncio.sleep,
    ) -> None:
        """
        Initialize the GraphQL client.

        Args:
            config: Root configuration (platform endpoints, sync limits).
            session: Token holder. By default one is created that shares this
                client's connection pool.
            transport: Custom httpx transport, e.g. httpx.MockTransport in tests.
            sleep: Coroutine used to wait between retries. Injectable for tests.

        Raises:
            RuntimeError: If use_truststore is set and truststore is missing.
        """
        self._config: SyncClientConfig = config
        self._sleep: SleepFunction = sleep
        self._request_count: int = 0

        connect_timeout: int
        read_timeout: int
        connect_timeout, read_timeout = config.platform.request_timeout
        default_timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=connect_timeout,
            pool=None,
        )

        max_concurrent_requests: int = config.sync.max_concurrent_requests
        self._http_client: httpx.AsyncClient = httpx.AsyncClient(
            timeout=default_timeout,
            verify=self._build_ssl_context(),
            limits=httpx.Limits(
                max_keepalive_connections=max_concurrent_requests,
                max_connections=max_concurrent_requests,
            ),
            transport=transport,
        )
        self._request_slots: asyncio.Semaphore = asyncio.Semaphore(
            max_concurrent_requests
        )
        self._session: SessionManager = session or SessionManager(
            config.platform,
            self._http_client,
            safety_margin_seconds=config.sync.token_safety_margin_seconds,
        )

        logger.info(
            'Initialized GraphQLClient: graphql_url=%r, max_concurrent_requests=%d',
            config.platform.graphql_url,
            max_concurrent_requests,
        )

    def _build_ssl_context(self) -> SSLContext | bool | str:
        """
        Build SSL verification settings from configuration.

        Returns:
            SSLContext for truststore, bool for enable/disable, or CA bundle path.
        """
        if self._config.sync.use_truststore:
            logger.debug('Building SSLContext from the OS trust store')
            return build_truststore_ssl_context()

        logger.debug(
            'Using SSL verification setting: %r', self._config.platform.verify_ssl
        )
        return self._config.platform.verify_ssl

    @property
    def session(self) -> SessionManager:
        return self._session

    @property
    def request_count(self) -> int:
        """GraphQL HTTP requests sent so far, retries included."""
        return self._request_count

    # -------------------------------------------------------------------------
    # Async Context Manager Protocol
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the HTTP client and release pooled connections."""
        await self._http_client.aclose()
        logger.debug('GraphQLClient closed')

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    async def execute(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Execute one GraphQL document and return its `data` object.

        Args:
            query: GraphQL document.
            variables: Variables for the document.

        Returns:
            The response's `data` dictionary.

        Raises:
            GraphQLError: If the response carries a non-empty `errors` array.
            AuthenticationError: If no valid token can be obtained.
            NetworkError: After exhausting retries on transport failures.
            TransientAPIError: After exhausting retries on 5xx or 429.
            APIError: For other non-2xx responses or malformed bodies.
        """
        body: dict[str, Any] = await self._post(
            {'query': query, 'variables': dict(variables or {})}
        )

        errors: list[dict[str, Any]] = body.get('errors') or []
        if errors:
            raise GraphQLError(
                f'GraphQL errors: {_summarize_graphql_errors(errors)}',
                errors=errors,
            )

        data: Any = body.get('data')
        if not isinstance(data, dict):
            raise APIError(
                'GraphQL response has no data object',
                response_body=json.dumps(body)[:_MAX_LOGGED_BODY_CHARS],
            )
        return cast(dict[str, Any], data)

    async def execute_paginated(
        self,
        query: str,
        variables: Mapping[str, Any],
        path: tuple[str, str],
        page_size: int,
    ) -> AsyncIterator[Page]:
        """
        Iterate over the pages of a paginated envelope, starting at page 1.

        Stops after the page whose number reaches the server-reported page
        count (immediately when the server reports 0 pages). Never rewinds.

        Args:
            query: GraphQL document taking `$page` and `$perPage` variables.
            variables: Remaining variables of the document.
            path: (envelope field, items field), e.g.
                ('paginatedDrivers', 'drivers').
            page_size: Value sent as `perPage`.

        Yields:
            One Page per request.

        Raises:
            Same as execute(); a failure on any page ends the iteration.
        """
        envelope_field, items_field = path
        page_number: int = 1
        total_items: int = 0

        while True:
            data: dict[str, Any] = await self.execute(
                query,
                {**variables, 'page': page_number, 'perPage': page_size},
            )
            envelope: dict[str, Any] = data.get(envelope_field) or {}
            page = Page(
                page=page_number,
                pages=int(envelope.get('pages') or 0),
                records=envelope.get('records'),
                items=envelope.get(items_field) or [],
            )
            total_items += len(page.items)

            logger.debug(
                '%s page %d/%d: %d items (running total: %d)',
                envelope_field,
                page.page,
                page.pages,
                len(page.items),
                total_items,
            )

            yield page

            if not page.has_more:
                break
            page_number += 1

    async def collect_paginated(
        self,
        query: str,
        variables: Mapping[str, Any],
        path: tuple[str, str],
        page_size: int,
    ) -> list[dict[str, Any]]:
        """Drain execute_paginated() into a single list of raw items."""
        items: list[dict[str, Any]] = []
        async for page in self.execute_paginated(query, variables, path, page_size):
            items.extend(page.items)
        return items

    async def execute_batched_by_alias(
        self,
        ids: Sequence[str],
        template: Template,
        arguments: Mapping[str, Any] | None = None,
        alias_prefix: str = DEFAULT_ALIAS_PREFIX,
    ) -> dict[str, AliasResult[dict[str, Any]]]:
        """
        Fetch many entities with aliased copies of one field.

        Duplicate and empty ids are dropped. Ids are split into chunks of
        `sync.alias_batch_size`, one request per chunk, chunks in parallel. A
        chunk that raises cancels the chunks still in flight.

        Args:
            ids: Entity ids; substituted for `$id` in the template.
            template: Field template with `$alias`, `$id` and any names in
                `arguments` as placeholders.
            arguments: Extra template values shared by every alias (e.g.
                companyId). Every value is JSON-quoted before substitution.
            alias_prefix: Prefix for generated aliases.

        Returns:
            Mapping from each distinct id to its AliasResult.

        Raises:
            AuthenticationError: Authentication failures are never isolated.
        """
        unique_ids: list[str] = list(
            dict.fromkeys(entity_id for entity_id in ids if entity_id)
        )
        if not unique_ids:
            return {}

        chunk_size: int = self._config.sync.alias_batch_size
        chunks: list[list[str]] = [
            unique_ids[offset : offset + chunk_size]
            for offset in range(0, len(unique_ids), chunk_size)
        ]
        quoted_arguments: dict[str, str] = {
            name: json.dumps(value) for name, value in (arguments or {}).items()
        }

        # A failing chunk cancels its siblings before the error leaves here.
        try:
            async with asyncio.TaskGroup() as task_group:
                chunk_tasks: list[
                    asyncio.Task[dict[str, AliasResult[dict[str, Any]]]]
                ] = [
                    task_group.create_task(
                        self._execute_alias_chunk(
                            chunk, template, quoted_arguments, alias_prefix
                        )
                    )
                    for chunk in chunks
                ]
        except ExceptionGroup as group:
            raise group.exceptions[0] from None

        results: dict[str, AliasResult[dict[str, Any]]] = {}
        for chunk_task in chunk_tasks:
            results.update(chunk_task.result())
        return results

    async def _execute_alias_chunk(
        self,
        chunk: list[str],
        template: Template,
        quoted_arguments: dict[str, str],
        alias_prefix: str,
    ) -> dict[str, AliasResult[dict[str, Any]]]:
        """Send one aliased request and split its response per alias."""
        alias_to_id: dict[str, str] = {
            f'{alias_prefix}{index}': entity_id for index, entity_id in enumerate(chunk)
        }
        fields: list[str] = [
            template.substitute(quoted_arguments, alias=alias, id=json.dumps(entity_id))
            for alias, entity_id in alias_to_id.items()
        ]
        query: str = 'query {\n  ' + '\n  '.join(fields) + '\n}'

        try:
            body: dict[str, Any] = await self._post({'query': query, 'variables': {}})
        except AuthenticationError:
            raise
        except APIError as error:
            logger.warning(
                'Alias batch of %d failed as a whole: %s', len(chunk), error
            )
            return {
                entity_id: AliasResult[dict[str, Any]](error=str(error))
                for entity_id in chunk
            }

        raw_data: Any = body.get('data')
        data: dict[str, Any] = raw_data if isinstance(raw_data, dict) else {}

        alias_errors: dict[str, str] = {}
        request_errors: list[str] = []
        for error in body.get('errors') or []:
            message: str = str(error.get('message', 'unknown error'))
            error_path: list[Any] = error.get('path') or []
            if error_path and error_path[0] in alias_to_id:
                alias_errors.setdefault(str(error_path[0]), message)
            else:
                request_errors.append(message)

        if request_errors:
            reason: str = '; '.join(request_errors)
            logger.warning('Alias batch of %d rejected: %s', len(chunk), reason)
            return {
                entity_id: AliasResult[dict[str, Any]](error=reason)
                for entity_id in chunk
            }

        results: dict[str, AliasResult[dict[str, Any]]] = {}
        for alias, entity_id in alias_to_id.items():
            if alias in alias_errors:
                logger.debug(
                    'Alias %s (%s) failed: %s', alias, entity_id, alias_errors[alias]
                )
                results[entity_id] = AliasResult[dict[str, Any]](
                    error=alias_errors[alias]
                )
            else:
                results[entity_id] = AliasResult[dict[str, Any]](value=data.get(alias))
        return results

    # -------------------------------------------------------------------------
    # HTTP Execution Layer
    # -------------------------------------------------------------------------

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        POST a GraphQL payload with retries, replaying once on HTTP 401.

        Returns:
            The full response body (data and errors).
        """
        try:
            return await self._post_with_retry(payload)
        except _TokenRejectedError as error:
            logger.warning('Access token rejected (HTTP 401); re-authenticating')
            self._session.invalidate(rejected_token=error.token)

        try:
            return await self._post_with_retry(payload)
        except _TokenRejectedError as error:
            raise AuthenticationError(
                'Access token rejected twice by the GraphQL endpoint',
                status_code=error.status_code,
                response_body=error.response_body,
            ) from error

    async def _post_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientAPIError),
            wait=_wait_for_rate_limit_or_exponential,
            stop=stop_after_attempt(self._config.platform.max_retries),
            sleep=self._sleep,
            before_sleep=_log_before_retry,
            reraise=True,
        )
        return cast(dict[str, Any], await retrying(self._post_once, payload))

    async def _post_once(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Send a single GraphQL POST inside a concurrency slot.

        Raises:
            NetworkError: On timeout or connection errors (retryable).
        """
        token: str = await self._session.get_valid_token()
        headers: dict[str, str] = {
            'Authorization': f'Bearer {token}',
            'Accept': 'application/json',
        }
        graphql_url: str = self._config.platform.graphql_url

        async with self._request_slots:
            self._request_count += 1
            try:
                response: httpx.Response = await self._http_client.post(
                    graphql_url, json=payload, headers=headers
                )
            except httpx.TimeoutException as error:
                logger.warning('Request timeout (will retry): %s', graphql_url)
                raise NetworkError(f'Request timeout: {error}') from error
            except httpx.RequestError as error:
                logger.warning(
                    'Connection error (will retry): %s - %s', graphql_url, error
                )
                raise NetworkError(f'Connection error: {error}') from error

        try:
            return self._handle_response(response)
        except _TokenRejectedError as error:
            error.token = token
            raise

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """
        Classify an HTTP response and parse its JSON body.

        Returns:
            Parsed JSON response body.

        Raises:
            RateLimitError: On HTTP 429 (retryable).
            TransientAPIError: On 5xx server errors (retryable).
            _TokenRejectedError: On HTTP 401.
            APIError: On other 4xx or a malformed body (not retryable).
        """
        status_code: int = response.status_code

        if status_code == HTTP_STATUS_RATE_LIMITED:
            retry_after_seconds: float = _parse_retry_after(
                response.headers.get('Retry-After')
            )
            logger.warning('Rate limited (will retry after %.1fs)', retry_after_seconds)
            raise RateLimitError(retry_after_seconds)

        if HTTP_STATUS_SERVER_ERROR_MIN <= status_code <= HTTP_STATUS_SERVER_ERROR_MAX:
            logger.warning(
                'Server error %d (will retry): %s',
                status_code,
                response.text[:200],
            )
            raise TransientAPIError(
                message=f'Server error: HTTP {status_code}',
                status_code=status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            )

        if status_code == HTTP_STATUS_UNAUTHORIZED:
            raise _TokenRejectedError(
                'GraphQL endpoint rejected the access token',
                status_code=status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            )

        if not response.is_success:
            logger.error(
                'Client error %d (not retryable): %s',
                status_code,
                response.text[:_MAX_LOGGED_BODY_CHARS],
            )
            raise APIError(
                message=f'Client error: HTTP {status_code}',
                status_code=status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            )

        try:
            json_body: Any = response.json()
        except ValueError as parse_error:
            raise APIError(
                message=f'Invalid JSON in response: {parse_error}',
                status_code=status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            ) from parse_error

        if not isinstance(json_body, dict):
            raise APIError(
                message=(
                    f'Expected JSON object in response, got {type(json_body).__name__}'
                ),
                status_code=status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            )

        return cast(dict[str, Any], json_body)
