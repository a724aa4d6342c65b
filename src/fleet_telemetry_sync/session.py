# fleet_telemetry_sync/session.py
"""
Bearer token management for the partner platform.

The platform issues short-lived access tokens through the OAuth2 password
grant. `SessionManager` keeps at most one token, hands it out while it is
valid, and exchanges credentials for a new one when it is missing or stale.

State Machine:
--------------
    unauthenticated --exchange ok--> valid --clock passes expiry--> expired
    expired --exchange ok--> valid
    expired | unauthenticated --exchange fails--> unauthenticated (raises)

Expiry:
-------
A token is treated as stale `safety_margin_seconds` (default 300) before the
expiry reported by the server, so a request never leaves with a token that
expires in flight.

Concurrency:
------------
An asyncio.Lock makes renewal single-flight: when many drivers ask for a token
at the same time only the first caller performs the exchange and the others
reuse its result.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any, Final

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from fleet_telemetry_sync.config import PlatformConfig
from fleet_telemetry_sync.exceptions import AuthenticationError
from fleet_telemetry_sync.models import AuthTokenResponse

__all__: list[str] = ['DEFAULT_SAFETY_MARGIN_SECONDS', 'Session', 'SessionManager']

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN_SECONDS: Final[float] = 300.0
_PASSWORD_GRANT: Final[str] = 'password'
_MAX_LOGGED_BODY_CHARS: Final[int] = 500


class Session(BaseModel):
    """
    A bearer token and the clock reading after which it must not be used.

    Attributes:
        token: Access token.
        expires_at: Value of the session clock at which the token goes stale
            (already reduced by the safety margin).
    """

    model_config = ConfigDict(frozen=True)

    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class SessionManager:
    """
    Single-flight holder of the platform access token.

    Example:
        >>> async with httpx.AsyncClient() as http_client:
        ...     sessions = SessionManager(config.platform, http_client)
        ...     token = await sessions.get_valid_token()
    """

    def __init__(
        self,
        config: PlatformConfig,
        http_client: httpx.AsyncClient,
        safety_margin_seconds: float = DEFAULT_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            config: Platform endpoints and credentials.
            http_client: Shared HTTP client used for the credential exchange.
            safety_margin_seconds: Subtracted from the server-reported lifetime.
            clock: Monotonic clock in seconds. Injectable for tests.
        """
        self._config: PlatformConfig = config
        self._http_client: httpx.AsyncClient = http_client
        self._safety_margin_seconds: float = safety_margin_seconds
        self._clock: Callable[[], float] = clock
        self._session: Session | None = None
        self._lock: asyncio.Lock = asyncio.Lock()
        self._exchange_count: int = 0

    @property
    def is_authenticated(self) -> bool:
        """Whether a non-stale token is currently held."""
        return self._session is not None and self._session.is_valid(self._clock())

    @property
    def exchange_count(self) -> int:
        """Number of successful credential exchanges so far."""
        return self._exchange_count

    def invalidate(self, rejected_token: str | None = None) -> None:
        """
        Drop the current token so the next request re-authenticates.

        Args:
            rejected_token: The token the server refused. The session is only
                dropped while it still holds this token, so late 401s for a
                token that was already replaced do not force another exchange.
                None drops the session unconditionally.
        """
        if self._session is None:
            return
        if rejected_token is not None and self._session.token != rejected_token:
            logger.debug('Ignoring rejection of an already replaced token')
            return
        logger.debug('Invalidating platform session')
        self._session = None

    async def get_valid_token(self) -> str:
        """
        Return a token that is valid now, exchanging credentials if needed.

        Returns:
            Bearer access token.

        Raises:
            AuthenticationError: If the credential exchange fails for any
                reason (transport, HTTP status, malformed body).
        """
        session: Session | None = self._session
        if session is not None and session.is_valid(self._clock()):
            return session.token

        async with self._lock:
            # Another caller may have renewed while this one waited.
            session = self._session
            if session is not None and session.is_valid(self._clock()):
                return session.token

            self._session = None
            self._session = await self._exchange_credentials()
            return self._session.token

    async def _exchange_credentials(self) -> Session:
        """
        Perform the password-grant exchange.

        Raises:
            AuthenticationError: On any failure.
        """
        form: dict[str, str] = {
            'grant_type': _PASSWORD_GRANT,
            'client_id': self._config.client_id,
            'client_secret': self._config.client_secret.get_secret_value(),
            'username': self._config.username,
            'password': self._config.password.get_secret_value(),
        }

        logger.info('Authenticating with platform as %r', self._config.username)

        try:
            response: httpx.Response = await self._http_client.post(
                self._config.auth_url,
                data=form,
                headers={'Accept': 'application/json'},
            )
        except httpx.HTTPError as error:
            raise AuthenticationError(
                f'Credential exchange failed: {type(error).__name__}: {error}'
            ) from error

        if not response.is_success:
            logger.error(
                'Credential exchange rejected with HTTP %d: %s',
                response.status_code,
                response.text[:_MAX_LOGGED_BODY_CHARS],
            )
            raise AuthenticationError(
                f'Credential exchange rejected: HTTP {response.status_code}',
                status_code=response.status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            )

        try:
            body: Any = response.json()
            token_response: AuthTokenResponse = AuthTokenResponse.model_validate(body)
        except (ValueError, ValidationError) as parse_error:
            raise AuthenticationError(
                f'Malformed credential exchange response: {parse_error}',
                status_code=response.status_code,
                response_body=response.text[:_MAX_LOGGED_BODY_CHARS],
            ) from parse_error

        lifetime_seconds: float = (
            token_response.expires_in - self._safety_margin_seconds
        )
        if lifetime_seconds <= 0:
            logger.warning(
                'Token lifetime %ds is shorter than the %.0fs safety margin; '
                'it will be renewed on every request',
                token_response.expires_in,
                self._safety_margin_seconds,
            )

        self._exchange_count += 1
        logger.info(
            'Authenticated with platform (token valid for %ds)',
            token_response.expires_in,
        )
        return Session(
            token=token_response.access_token,
            expires_at=self._clock() + lifetime_seconds,
        )
