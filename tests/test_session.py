"""
Tests for fleet_telemetry_sync.session module.

Tests token reuse, expiry with the safety margin, single-flight renewal and
failure handling of the password-grant exchange.
"""
# pyright: reportPrivateUsage=false

import asyncio
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from fleet_telemetry_sync.config import SyncClientConfig
from fleet_telemetry_sync.exceptions import AuthenticationError
from fleet_telemetry_sync.session import Session, SessionManager

TOKEN_LIFETIME_SECONDS: int = 3600
SAFETY_MARGIN_SECONDS: float = 300.0


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now: float = 1000.0

    def __call__(self) -> float:
        return self.now


class TokenEndpoint:
    """Callable MockTransport handler counting exchanges."""

    def __init__(self, status_code: int = 200, body: object | None = None) -> None:
        self.status_code: int = status_code
        self.body: object | None = body
        self.requests: list[dict[str, list[str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(parse_qs(request.content.decode()))
        if self.status_code != 200:  # noqa: PLR2004
            return httpx.Response(self.status_code, text='invalid_grant')
        body = self.body or {
            'access_token': f'token-{len(self.requests)}',
            'token_type': 'Bearer',
            'expires_in': TOKEN_LIFETIME_SECONDS,
        }
        return httpx.Response(200, json=body)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_manager(
    config: SyncClientConfig,
    handler: Callable[[httpx.Request], Any],
    clock: FakeClock,
) -> tuple[SessionManager, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    manager = SessionManager(
        config.platform,
        http_client,
        safety_margin_seconds=SAFETY_MARGIN_SECONDS,
        clock=clock,
    )
    return manager, http_client


class TestSession:
    """Test the Session value object."""

    def test_valid_until_expiry(self) -> None:
        """Should be valid strictly before expires_at."""
        session = Session(token='abc', expires_at=100.0)

        assert session.is_valid(99.9)
        assert not session.is_valid(100.0)


class TestSessionManagerExchange:
    """Test the credential exchange."""

    async def test_first_call_exchanges_credentials(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should POST the password grant form and return the token."""
        endpoint = TokenEndpoint()
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            token = await manager.get_valid_token()

        assert token == 'token-1'
        assert manager.exchange_count == 1
        form = endpoint.requests[0]
        assert form['grant_type'] == ['password']
        assert form['client_id'] == ['fleet-client']
        assert form['client_secret'] == ['client-secret-value']
        assert form['username'] == ['fleet@example.test']
        assert form['password'] == ['password-value']

    async def test_token_reused_while_valid(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should not exchange again before the safety margin is reached."""
        endpoint = TokenEndpoint()
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            first = await manager.get_valid_token()
            clock.now += TOKEN_LIFETIME_SECONDS - SAFETY_MARGIN_SECONDS - 1
            second = await manager.get_valid_token()

        assert first == second == 'token-1'
        assert len(endpoint.requests) == 1
        assert manager.is_authenticated

    async def test_token_renewed_inside_safety_margin(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should renew once the clock reaches expiry minus the margin."""
        endpoint = TokenEndpoint()
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            await manager.get_valid_token()
            clock.now += TOKEN_LIFETIME_SECONDS - SAFETY_MARGIN_SECONDS
            assert not manager.is_authenticated
            renewed = await manager.get_valid_token()

        assert renewed == 'token-2'
        assert manager.exchange_count == 2  # noqa: PLR2004

    async def test_invalidate_forces_new_exchange(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should exchange again after invalidate()."""
        endpoint = TokenEndpoint()
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            await manager.get_valid_token()
            manager.invalidate()
            assert not manager.is_authenticated
            token = await manager.get_valid_token()

        assert token == 'token-2'

    async def test_invalidate_ignores_replaced_token(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Rejecting a token that is no longer current keeps the session."""
        endpoint = TokenEndpoint()
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            await manager.get_valid_token()
            manager.invalidate(rejected_token='token-1')
            current = await manager.get_valid_token()
            manager.invalidate(rejected_token='token-1')
            still_current = await manager.get_valid_token()

        assert current == still_current == 'token-2'
        assert manager.exchange_count == 2  # noqa: PLR2004


class TestSessionManagerFailures:
    """Test that every exchange failure becomes AuthenticationError."""

    async def test_rejected_credentials(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should raise with the HTTP status on a non-2xx response."""
        manager, http_client = make_manager(
            sync_config, TokenEndpoint(status_code=401), clock
        )

        async with http_client:
            with pytest.raises(AuthenticationError) as exc_info:
                await manager.get_valid_token()

        assert exc_info.value.status_code == 401  # noqa: PLR2004
        assert not manager.is_authenticated
        assert manager.exchange_count == 0

    async def test_transport_failure(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should wrap connection errors."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('connection refused', request=request)

        manager, http_client = make_manager(sync_config, refuse, clock)

        async with http_client:
            with pytest.raises(AuthenticationError, match='ConnectError'):
                await manager.get_valid_token()

    async def test_body_without_access_token(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should reject a 200 response missing the token."""
        endpoint = TokenEndpoint(body={'token_type': 'Bearer', 'expires_in': 3600})
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            with pytest.raises(AuthenticationError, match='Malformed'):
                await manager.get_valid_token()

    async def test_non_json_body(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Should reject a 200 response that is not JSON."""
        manager, http_client = make_manager(
            sync_config,
            lambda request: httpx.Response(200, text='<html>maintenance</html>'),
            clock,
        )

        async with http_client:
            with pytest.raises(AuthenticationError):
                await manager.get_valid_token()

    async def test_failed_renewal_drops_previous_session(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """An expired session is not kept after a failed renewal."""
        endpoint = TokenEndpoint()
        manager, http_client = make_manager(sync_config, endpoint, clock)

        async with http_client:
            await manager.get_valid_token()
            clock.now += TOKEN_LIFETIME_SECONDS
            endpoint.status_code = 500
            with pytest.raises(AuthenticationError):
                await manager.get_valid_token()

        assert manager._session is None


class TestSessionManagerConcurrency:
    """Test single-flight renewal."""

    async def test_concurrent_callers_share_one_exchange(
        self,
        sync_config: SyncClientConfig,
        clock: FakeClock,
    ) -> None:
        """Ten concurrent callers should trigger exactly one exchange."""
        exchange_count = 0

        async def slow_token_endpoint(request: httpx.Request) -> httpx.Response:
            nonlocal exchange_count
            exchange_count += 1
            await asyncio.sleep(0.01)
            return httpx.Response(
                200,
                json={'access_token': 'shared-token', 'expires_in': 3600},
            )

        manager, http_client = make_manager(sync_config, slow_token_endpoint, clock)

        async with http_client:
            tokens = await asyncio.gather(
                *(manager.get_valid_token() for _ in range(10))
            )

        assert set(tokens) == {'shared-token'}
        assert exchange_count == 1
        assert manager.exchange_count == 1
