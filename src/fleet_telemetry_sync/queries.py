# fleet_telemetry_sync/queries.py
"""
GraphQL documents used against the partner platform.

Plain queries take their arguments as GraphQL variables. Alias templates are
`string.Template` fragments expanded once per entity by
`GraphQLClient.execute_batched_by_alias()`; the client substitutes `$alias`
and `$id` and JSON-quotes every substituted argument, so the templates never
quote values themselves.

Paginated queries expect `$page` and `$perPage` variables, which the client's
pagination loop supplies.
"""

from string import Template
from typing import Final

__all__: list[str] = [
    'ASSET_ALIAS_TEMPLATE',
    'BALANCES_QUERY',
    'BALANCE_MOVEMENTS_ALIAS_TEMPLATE',
    'BALANCE_MOVEMENTS_QUERY',
    'DRIVERS_QUERY',
    'DRIVER_STATS_QUERY',
    'JOURNEYS_QUERY',
    'METAFLEET_COMPANIES_QUERY',
]

METAFLEET_COMPANIES_QUERY: Final[str] = """
query MetafleetCompanies {
  metafleetCompanies {
    companyIds
  }
}
"""

DRIVERS_QUERY: Final[str] = """
query DriversByCompany($companyId: String!, $page: Int!, $perPage: Int!) {
  paginatedDrivers(companyId: $companyId, page: $page, perPage: $perPage) {
    page
    pages
    records
    drivers {
      id
      name
      surname
      email
      nationalIdNumber
      driverLicense
      mobileNum
      mobileCc
      disabled
      activatedAt
      score
    }
  }
}
"""

DRIVER_STATS_QUERY: Final[str] = """
query DriverStats(
  $driverId: String!
  $companyId: String
  $startAt: DateTime!
  $endAt: DateTime!
) {
  driver(id: $driverId, companyId: $companyId) {
    name
    surname
    email
    nationalIdNumber
    driverLicense
    mobileNum
    mobileCc
    preferences {
      name
      enabled
    }
    stats(startAt: $startAt, endAt: $endAt) {
      accepted
      missed
      offered
      assigned
      available
      score
    }
  }
}
"""

JOURNEYS_QUERY: Final[str] = """
query DriverJourneys(
  $companyId: String
  $driverId: String!
  $startAt: String!
  $endAt: String!
  $page: Int!
  $perPage: Int!
) {
  paginatedJourneys(
    companyId: $companyId
    driverId: $driverId
    startAt: $startAt
    endAt: $endAt
    page: $page
    perPage: $perPage
  ) {
    page
    pages
    records
    journeys {
      id
      assetId
      finishReason
      paymentMethod
      totals {
        earningsTotal {
          amount
          currency
        }
        distance
      }
    }
  }
}
"""

BALANCES_QUERY: Final[str] = """
query CompanyBalances($companyId: String) {
  balances(companyId: $companyId) {
    id
    name
    currency
  }
}
"""

BALANCE_MOVEMENTS_QUERY: Final[str] = """
query BalanceMovements(
  $balanceId: String!
  $companyId: String
  $driverId: String
  $startAt: DateTime!
  $endAt: DateTime!
  $page: Int!
  $perPage: Int!
) {
  paginatedBalanceMovements(
    balanceId: $balanceId
    companyId: $companyId
    driverId: $driverId
    startAt: $startAt
    endAt: $endAt
    page: $page
    perPage: $perPage
  ) {
    page
    pages
    movements {
      breakdown {
        name
        value
      }
    }
  }
}
"""

# Expanded per asset id; $companyId is shared by the whole batch.
ASSET_ALIAS_TEMPLATE: Final[Template] = Template(
    '$alias: asset(id: $id, companyId: $companyId) { id make model regPlate }'
)

# Expanded per balance id; first page only, later pages use
# BALANCE_MOVEMENTS_QUERY.
BALANCE_MOVEMENTS_ALIAS_TEMPLATE: Final[Template] = Template(
    '$alias: paginatedBalanceMovements('
    'balanceId: $id, companyId: $companyId, driverId: $driverId, '
    'startAt: $startAt, endAt: $endAt, page: 1, perPage: $perPage'
    ') { pages movements { breakdown { name value } } }'
)
