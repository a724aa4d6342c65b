"""
Shared pytest fixtures for fleet_telemetry_sync tests.

Provides configuration fixtures, record builders and an in-memory fake of the
partner platform served through httpx.MockTransport, so every layer from the
client up to the pipeline runs against real HTTP request/response objects.
"""

import json
import math
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock
from urllib.parse import parse_qs

import httpx
import pytest

from fleet_telemetry_sync.client import GraphQLClient
from fleet_telemetry_sync.config import SyncClientConfig

AUTH_URL: str = 'https://auth.example.test/oauth/token'
GRAPHQL_URL: str = 'https://partners.example.test/api/graphql'

# Wednesday 2025-10-15, 12:00 in Buenos Aires.
REFERENCE_NOW: datetime = datetime(2025, 10, 15, 15, 0, tzinfo=UTC)

GraphQLResponder = Callable[[dict[str, Any], httpx.Request], Any]

_ASSET_ALIAS_PATTERN: re.Pattern[str] = re.compile(
    r'(\w+): asset\(id: ("[^"]*"), companyId: ("[^"]*")\)'
)
_BALANCE_ALIAS_PATTERN: re.Pattern[str] = re.compile(
    r'(\w+): paginatedBalanceMovements\(balanceId: ("[^"]*"), '
    r'companyId: ("[^"]*"), driverId: ("[^"]*"), .*?perPage: (\d+)\)'
)


# =============================================================================
# Record Builders
# =============================================================================


def driver_record(driver_id: str, name: str = 'Ana', surname: str = 'Perez') -> dict:
    """Driver as returned by paginatedDrivers."""
    return {
        'id': driver_id,
        'name': name,
        'surname': surname,
        'email': f'{driver_id}@example.test',
        'nationalIdNumber': '30111222',
        'driverLicense': 'LIC-1',
        'mobileNum': '1155550000',
        'mobileCc': '54',
        'disabled': False,
        'activatedAt': '2024-03-01T10:00:00Z',
        'score': 4.8,
    }


def details_record(
    accepted: int = 8,
    missed: int = 1,
    offered: int = 10,
    assigned: float = 7200,
    available: float = 7200,
    cash_enabled: bool = True,
) -> dict:
    """Driver stats query result."""
    return {
        'name': 'Ana',
        'surname': 'Perez',
        'email': 'ana@example.test',
        'nationalIdNumber': '30111222',
        'driverLicense': 'LIC-1',
        'mobileNum': '1155550000',
        'mobileCc': '54',
        'preferences': [{'name': 'payment_cash', 'enabled': cash_enabled}],
        'stats': {
            'accepted': accepted,
            'missed': missed,
            'offered': offered,
            'assigned': assigned,
            'available': available,
            'score': 4.9,
        },
    }


def journey_record(
    journey_id: str,
    asset_id: str | None,
    amount: int,
    payment_method: str = 'app',
    finish_reason: str = 'drop_off',
) -> dict:
    """Journey as returned by paginatedJourneys."""
    return {
        'id': journey_id,
        'assetId': asset_id,
        'finishReason': finish_reason,
        'paymentMethod': payment_method,
        'totals': {
            'earningsTotal': {'amount': amount, 'currency': 'ARS'},
            'distance': 5200,
        },
    }


def asset_record(asset_id: str, make: str, model: str, reg_plate: str) -> dict:
    return {'id': asset_id, 'make': make, 'model': model, 'regPlate': reg_plate}


# =============================================================================
# Fake Transport
# =============================================================================


class FakeTransportHandler:
    """
    MockTransport handler routing token exchanges and GraphQL posts.

    Token requests always succeed unless `auth_status` is changed; GraphQL
    payloads are forwarded to `graphql` after the bearer token is checked
    against `rejected_tokens`.
    """

    def __init__(self, graphql: GraphQLResponder, token_lifetime: int = 3600) -> None:
        self.graphql: GraphQLResponder = graphql
        self.token_lifetime: int = token_lifetime
        self.auth_status: int = 200
        self.auth_requests: list[dict[str, list[str]]] = []
        self.graphql_payloads: list[dict[str, Any]] = []
        self.graphql_tokens: list[str] = []
        self.rejected_tokens: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == AUTH_URL:
            self.auth_requests.append(parse_qs(request.content.decode()))
            if self.auth_status != 200:
                return httpx.Response(self.auth_status, text='invalid_grant')
            return httpx.Response(
                200,
                json={
                    'access_token': f'token-{len(self.auth_requests)}',
                    'token_type': 'Bearer',
                    'expires_in': self.token_lifetime,
                },
            )

        payload: dict[str, Any] = json.loads(request.content)
        token: str = request.headers['Authorization'].removeprefix('Bearer ')
        self.graphql_payloads.append(payload)
        self.graphql_tokens.append(token)
        if token in self.rejected_tokens:
            return httpx.Response(401, text='invalid token')

        result: Any = self.graphql(payload, request)
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)


class FakePlatform:
    """
    In-memory partner platform answering every query the package sends.

    Populate the dictionaries, then pass the instance to FakeTransportHandler.
    Lookups by alias are recorded in `asset_requests` (one list of ids per
    request) so tests can assert on batching.
    """

    def __init__(self) -> None:
        self.companies: list[str] = ['company-1']
        self.drivers: dict[str, list[dict]] = {}
        self.details: dict[str, dict | None] = {}
        self.journeys: dict[str, list[dict]] = {}
        self.assets: dict[tuple[str, str], dict] = {}
        self.balances: dict[str, list[dict]] = {}
        self.movements: dict[tuple[str, str], list[dict]] = {}
        self.failing_drivers: set[str] = set()
        self.failing_companies: set[str] = set()
        self.failing_assets: set[str] = set()
        self.company_listing_fails: bool = False
        self.asset_requests: list[list[str]] = []
        self.balance_list_requests: int = 0

    def __call__(self, payload: dict[str, Any], request: httpx.Request) -> Any:
        query: str = payload['query']
        variables: dict[str, Any] = payload.get('variables') or {}

        if 'metafleetCompanies' in query:
            if self.company_listing_fails:
                return {'errors': [{'message': 'not a metafleet account'}]}
            return {'data': {'metafleetCompanies': {'companyIds': self.companies}}}

        if 'paginatedDrivers' in query:
            company_id: str = variables['companyId']
            if company_id in self.failing_companies:
                return {'errors': [{'message': f'company {company_id} unavailable'}]}
            drivers: list[dict] = self.drivers.get(company_id, [])
            return {'data': {'paginatedDrivers': _page(drivers, variables, 'drivers')}}

        if 'query DriverStats' in query:
            driver_id: str = variables['driverId']
            if driver_id in self.failing_drivers:
                return {
                    'data': {'driver': None},
                    'errors': [{'message': 'stats unavailable', 'path': ['driver']}],
                }
            return {'data': {'driver': self.details.get(driver_id)}}

        if 'paginatedJourneys' in query:
            journeys: list[dict] = self.journeys.get(variables['driverId'], [])
            return {
                'data': {'paginatedJourneys': _page(journeys, variables, 'journeys')}
            }

        if 'query CompanyBalances' in query:
            self.balance_list_requests += 1
            return {'data': {'balances': self.balances.get(variables['companyId'], [])}}

        if 'query BalanceMovements' in query:
            movements: list[dict] = self.movements.get(
                (variables['balanceId'], variables['driverId']), []
            )
            return {
                'data': {
                    'paginatedBalanceMovements': _page(
                        movements, variables, 'movements'
                    )
                }
            }

        if 'asset(id:' in query:
            return self._answer_asset_aliases(query)

        if 'paginatedBalanceMovements(' in query:
            return self._answer_balance_aliases(query)

        raise AssertionError(f'Unexpected query: {query}')

    def _answer_asset_aliases(self, query: str) -> dict[str, Any]:
        data: dict[str, Any] = {}
        errors: list[dict[str, Any]] = []
        requested: list[str] = []
        for alias, quoted_id, quoted_company in _ASSET_ALIAS_PATTERN.findall(query):
            asset_id: str = json.loads(quoted_id)
            requested.append(asset_id)
            if asset_id in self.failing_assets:
                data[alias] = None
                errors.append({'message': 'asset lookup failed', 'path': [alias]})
            else:
                data[alias] = self.assets.get((json.loads(quoted_company), asset_id))
        self.asset_requests.append(requested)

        body: dict[str, Any] = {'data': data}
        if errors:
            body['errors'] = errors
        return body

    def _answer_balance_aliases(self, query: str) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for alias, quoted_balance, _, quoted_driver, per_page in (
            _BALANCE_ALIAS_PATTERN.findall(query)
        ):
            movements: list[dict] = self.movements.get(
                (json.loads(quoted_balance), json.loads(quoted_driver)), []
            )
            page: dict[str, Any] = _page(
                movements, {'page': 1, 'perPage': int(per_page)}, 'movements'
            )
            data[alias] = {'pages': page['pages'], 'movements': page['movements']}
        return {'data': data}


def _page(items: list[dict], variables: dict[str, Any], items_field: str) -> dict:
    page: int = variables['page']
    per_page: int = variables['perPage']
    offset: int = (page - 1) * per_page
    return {
        'page': page,
        'pages': math.ceil(len(items) / per_page),
        'records': len(items),
        items_field: items[offset : offset + per_page],
    }


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def config_data() -> dict[str, Any]:
    """Raw configuration mapping, as it would be read from YAML."""
    return {
        'platform': {
            'auth_url': AUTH_URL,
            'graphql_url': GRAPHQL_URL,
            'client_id': 'fleet-client',
            'client_secret': 'client-secret-value',
            'username': 'fleet@example.test',
            'password': 'password-value',
            'max_retries': 3,
        },
        'sync': {
            'driver_batch_size': 10,
            'run_timeout_seconds': 30,
        },
        'logging': {'console_level': 'WARNING'},
    }


@pytest.fixture
def make_config(
    config_data: dict[str, Any],
) -> Callable[..., SyncClientConfig]:
    """Factory building a SyncClientConfig with `sync` section overrides."""

    def _make(**sync_overrides: Any) -> SyncClientConfig:
        data: dict[str, Any] = {
            **config_data,
            'sync': {**config_data['sync'], **sync_overrides},
        }
        return SyncClientConfig.model_validate(data)

    return _make


@pytest.fixture
def sync_config(make_config: Callable[..., SyncClientConfig]) -> SyncClientConfig:
    """Default validated configuration for tests."""
    return make_config()


# =============================================================================
# Platform Fixtures
# =============================================================================


@pytest.fixture
def fake_platform() -> FakePlatform:
    """Empty fake platform with one company."""
    return FakePlatform()


@pytest.fixture
def platform_handler(fake_platform: FakePlatform) -> FakeTransportHandler:
    """Transport handler serving the fake platform."""
    return FakeTransportHandler(fake_platform)


@pytest.fixture
def make_client(
    sync_config: SyncClientConfig,
) -> Callable[..., GraphQLClient]:
    """Factory building a GraphQLClient over a MockTransport, with a no-op sleep."""

    def _make(
        handler: Callable[[httpx.Request], Any],
        config: SyncClientConfig | None = None,
    ) -> GraphQLClient:
        return GraphQLClient(
            config or sync_config,
            transport=httpx.MockTransport(handler),
            sleep=AsyncMock(),
        )

    return _make


@pytest.fixture
def populated_platform(fake_platform: FakePlatform) -> FakePlatform:
    """
    One company with one fully described driver.

    Driver 'driver-1' has 8 accepted / 1 missed / 10 offered offers, 4 connected
    hours (2 assigned), a 5.00 app trip on asset-1 (newest), a 30.00 cash trip
    on asset-2, a cancelled trip without earnings, and 15.00 in tolls across
    two balance ledgers.
    """
    company_id: str = 'company-1'
    fake_platform.drivers[company_id] = [driver_record('driver-1')]
    fake_platform.details['driver-1'] = details_record()
    fake_platform.journeys['driver-1'] = [
        journey_record('j3', 'asset-1', 500),
        journey_record('j2', 'asset-2', 3000, payment_method='cash'),
        journey_record('j1', None, 0, finish_reason='rider_cancel'),
    ]
    fake_platform.assets[(company_id, 'asset-1')] = asset_record(
        'asset-1', 'Toyota', 'Etios', 'AB123CD'
    )
    fake_platform.assets[(company_id, 'asset-2')] = asset_record(
        'asset-2', 'Fiat', 'Cronos', 'AC456EF'
    )
    fake_platform.balances[company_id] = [
        {'id': 'balance-1', 'name': 'Main', 'currency': 'ARS'},
        {'id': 'balance-2', 'name': 'Tolls', 'currency': 'ARS'},
    ]
    fake_platform.movements[('balance-1', 'driver-1')] = [
        {
            'breakdown': [
                {'name': 'supplement:toll', 'value': -1250},
                {'name': 'fare', 'value': -9999},
            ]
        }
    ]
    fake_platform.movements[('balance-2', 'driver-1')] = [
        {'breakdown': [{'name': 'supplement:toll', 'value': '-250'}]}
    ]
    return fake_platform
