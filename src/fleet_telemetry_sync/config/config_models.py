# fleet_telemetry_sync/config/config_models.py
"""
Configuration models for the driver metrics sync client.

The configuration file has three sections:

    platform:  credentials and endpoints of the ride-hailing partner API
    sync:      run shape (batch sizes, concurrency, timezone, deadlines)
    logging:   console and optional file logging

Design Decisions:
-----------------
- All models use `extra='forbid'` so a typo in the YAML file fails at load
  time instead of being silently ignored.

- No logging happens in this module because the logging configuration is
  itself defined here. The caller configures logging after loading.

- Client secret and password are SecretStr. They are only unwrapped at the
  moment the credential exchange request body is built.

- The timezone is validated against the IANA database at load time, so a
  misspelled zone fails before any network call is made.

Usage:
------
    import yaml
    from fleet_telemetry_sync.config.config_models import SyncClientConfig

    with open('config.yaml', 'r') as config_file:
        raw_config = yaml.safe_load(config_file)

    config = SyncClientConfig.model_validate(raw_config)
"""

from pathlib import Path
from typing import Literal, Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

__all__: list[str] = [
    'LogLevelName',
    'LoggingConfig',
    'PlatformConfig',
    'SyncClientConfig',
    'SyncConfig',
]

# Level names accepted by the stdlib logging module.
LogLevelName = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

LOG_LEVEL_NAME_TO_INT: dict[LogLevelName, int] = {
    'DEBUG': 10,
    'INFO': 20,
    'WARNING': 30,
    'ERROR': 40,
    'CRITICAL': 50,
}

DEFAULT_TIMEZONE: str = 'America/Argentina/Buenos_Aires'


def _validate_http_url(url: str, field_name: str) -> str:
    """Require an explicit http(s) scheme and strip any trailing slash."""
    if not url:
        raise ValueError(f'{field_name} cannot be empty')
    if not url.startswith(('http://', 'https://')):
        raise ValueError(
            f"{field_name} must start with 'http://' or 'https://', got: {url!r}"
        )
    return url.rstrip('/')


# =============================================================================
# Platform Configuration
# =============================================================================


class PlatformConfig(BaseModel):
    """Connection settings and credentials for the partner platform.

    Authentication uses the OAuth2 password grant: the four credentials below
    are exchanged at `auth_url` for a bearer token that is then sent with every
    GraphQL request to `graphql_url`.

    Attributes:
        auth_url: Token endpoint (form-encoded POST).
        graphql_url: GraphQL endpoint (JSON POST).
        client_id: OAuth client identifier.
        client_secret: OAuth client secret (masked).
        username: Fleet account username.
        password: Fleet account password (masked).
        company_id: Optional tenant scope. Used as the only company when the
            account is not a metafleet and the company listing comes back empty.
        request_timeout: [connect, read] timeout in seconds for each request.
        max_retries: Attempts for transient failures (5xx, 429, transport).
        verify_ssl: False to disable, True for system CA, or a CA bundle path.
    """

    model_config = ConfigDict(extra='forbid')

    auth_url: str = Field(
        default='https://cabify.com/auth/api/authorization',
        description='OAuth token endpoint',
    )
    graphql_url: str = Field(
        default='https://partners.cabify.com/api/graphql',
        description='GraphQL endpoint',
    )
    client_id: str = Field(min_length=1, description='OAuth client id')
    client_secret: SecretStr = Field(description='OAuth client secret (masked)')
    username: str = Field(min_length=1, description='Fleet account username')
    password: SecretStr = Field(description='Fleet account password (masked)')
    company_id: str | None = Field(
        default=None,
        description='Fallback tenant scope when no metafleet companies are listed',
    )
    request_timeout: tuple[int, int] = Field(
        default=(10, 60),
        description='[connect_timeout, read_timeout] in seconds',
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description='Attempts for transient failures (1-10)',
    )
    verify_ssl: bool | str = Field(
        default=True,
        description='False to disable SSL, True for system CA, or path to CA bundle',
    )

    @field_validator('auth_url')
    @classmethod
    def validate_auth_url(cls, auth_url: str) -> str:
        """Normalize the token endpoint URL."""
        return _validate_http_url(auth_url, 'auth_url')

    @field_validator('graphql_url')
    @classmethod
    def validate_graphql_url(cls, graphql_url: str) -> str:
        """Normalize the GraphQL endpoint URL."""
        return _validate_http_url(graphql_url, 'graphql_url')

    @field_validator('client_secret', 'password')
    @classmethod
    def validate_secret_not_empty(cls, secret: SecretStr) -> SecretStr:
        """Reject empty or whitespace-only secrets.

        Raises:
            ValueError: If the secret is blank.
        """
        if not secret.get_secret_value().strip():
            raise ValueError('secret values cannot be empty or whitespace-only')
        return secret

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout_values_positive(
        cls, timeout: tuple[int, int]
    ) -> tuple[int, int]:
        """Ensure both connect and read timeouts are positive."""
        connect_timeout, read_timeout = timeout
        if connect_timeout <= 0:
            raise ValueError(
                f'connect_timeout must be positive, got: {connect_timeout}'
            )
        if read_timeout <= 0:
            raise ValueError(f'read_timeout must be positive, got: {read_timeout}')
        return timeout

    @field_validator('verify_ssl')
    @classmethod
    def validate_ssl_configuration(cls, verify_ssl: bool | str) -> bool | str:
        """When a CA bundle path is given, make sure it is an existing file."""
        if isinstance(verify_ssl, str):
            cert_path = Path(verify_ssl)
            if not cert_path.is_file():
                raise ValueError(f'SSL certificate bundle file not found: {verify_ssl}')
        return verify_ssl


# =============================================================================
# Sync Run Configuration
# =============================================================================


class SyncConfig(BaseModel):
    """Shape of a sync run.

    Concurrency Model:
        Companies are processed concurrently and, inside a company, drivers are
        processed concurrently in batches of `driver_batch_size`. Independently
        of that fan-out, `max_concurrent_requests` caps the number of GraphQL
        requests in flight across the whole run.

    Attributes:
        timezone: IANA zone whose calendar defines days and weeks.
        driver_batch_size: Drivers computed concurrently per batch; progress is
            reported after each batch.
        driver_page_size: Page size when listing a company's drivers.
        journey_page_size: Page size when listing a driver's journeys.
        alias_batch_size: Maximum aliases per batched GraphQL request.
        max_concurrent_requests: Global cap on in-flight GraphQL requests.
        token_safety_margin_seconds: How long before the reported expiry a
            token is considered stale and renewed.
        run_timeout_seconds: Overall deadline for one run. None disables it.
        use_truststore: Build the SSL context from the OS trust store.
    """

    model_config = ConfigDict(extra='forbid')

    timezone: str = Field(
        default=DEFAULT_TIMEZONE,
        description='IANA timezone for day and week boundaries',
    )
    driver_batch_size: int = Field(default=100, ge=1, le=1000)
    driver_page_size: int = Field(default=500, ge=1, le=1000)
    journey_page_size: int = Field(default=500, ge=1, le=1000)
    alias_batch_size: int = Field(default=50, ge=1, le=200)
    max_concurrent_requests: int = Field(default=32, ge=1, le=512)
    token_safety_margin_seconds: int = Field(default=300, ge=0, le=3600)
    run_timeout_seconds: float | None = Field(default=3600.0, gt=0)
    use_truststore: bool = Field(default=False)

    @field_validator('timezone')
    @classmethod
    def validate_timezone_exists(cls, timezone_name: str) -> str:
        """Ensure the timezone is known to the IANA database.

        Raises:
            ValueError: If zoneinfo cannot resolve the name.
        """
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as zone_error:
            raise ValueError(f'Unknown timezone: {timezone_name!r}') from zone_error
        return timezone_name

    def get_zone(self) -> ZoneInfo:
        """Return the configured timezone as a ZoneInfo object."""
        return ZoneInfo(self.timezone)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Console and optional file logging.

    File logging is enabled by setting `file_path`; its level defaults to
    DEBUG so per-driver failure tracebacks end up in the file even when the
    console only shows INFO.

    Attributes:
        file_path: Log file path (.log appended if missing). None disables it.
        console_level: Minimum level printed to the console.
        file_level: Minimum level written to the file.
    """

    model_config = ConfigDict(extra='forbid')

    file_path: Path | None = None
    console_level: LogLevelName = 'INFO'
    file_level: LogLevelName | None = None

    @field_validator('file_path', mode='before')
    @classmethod
    def normalize_log_file_path(cls, path_value: str | Path | None) -> Path | None:
        """Append the .log extension when it is missing."""
        if path_value is None:
            return None
        path_string: str = str(path_value)
        if not path_string.lower().endswith('.log'):
            path_string = f'{path_string}.log'
        return Path(path_string)

    @model_validator(mode='after')
    def ensure_file_logging_configuration_consistency(self) -> Self:
        """Default the file level to DEBUG; reject a level without a path.

        Raises:
            ValueError: If file_level is set but file_path is missing.
        """
        if self.file_path is not None and self.file_level is None:
            self.file_level = 'DEBUG'

        if self.file_level is not None and self.file_path is None:
            raise ValueError(
                'file_level is specified but file_path is missing. '
                'Provide file_path to enable file logging, or remove file_level.'
            )
        return self

    def get_console_level_int(self) -> int:
        """Numeric console level for the logging module."""
        return LOG_LEVEL_NAME_TO_INT[self.console_level]

    def get_file_level_int(self) -> int | None:
        """Numeric file level, or None when file logging is disabled."""
        if self.file_level is None:
            return None
        return LOG_LEVEL_NAME_TO_INT[self.file_level]


# =============================================================================
# Root Configuration
# =============================================================================


class SyncClientConfig(BaseModel):
    """Root configuration model.

    Attributes:
        platform: Partner platform endpoints and credentials.
        sync: Run shape, concurrency and timezone.
        logging: Logging output.
    """

    model_config = ConfigDict(extra='forbid')

    platform: PlatformConfig
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
