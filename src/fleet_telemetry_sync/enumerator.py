# fleet_telemetry_sync/enumerator.py
"""
Company and driver enumeration.

A metafleet account spans several companies (tenants); every driver belongs
to exactly one of them. Enumeration errors are not isolated here: the caller
decides whether a failure aborts the run (company listing) or only excludes
one company (driver listing).
"""

import logging
from typing import Any

from fleet_telemetry_sync.client import GraphQLClient
from fleet_telemetry_sync.config import SyncClientConfig
from fleet_telemetry_sync.models import Driver, MetafleetCompanies
from fleet_telemetry_sync.queries import DRIVERS_QUERY, METAFLEET_COMPANIES_QUERY

__all__: list[str] = ['CompanyDriverEnumerator']

logger: logging.Logger = logging.getLogger(__name__)


class CompanyDriverEnumerator:
    """Lists the companies reachable by the account and their drivers."""

    def __init__(self, client: GraphQLClient, config: SyncClientConfig) -> None:
        self._client: GraphQLClient = client
        self._config: SyncClientConfig = config

    async def list_companies(self) -> list[str]:
        """
        Company ids visible to the account, in server order, de-duplicated.

        When the account is not a metafleet the listing comes back empty; if
        `platform.company_id` is configured it is then used as the only
        company.

        Raises:
            APIError: If the listing request fails.
        """
        data: dict[str, Any] = await self._client.execute(METAFLEET_COMPANIES_QUERY)
        companies = MetafleetCompanies.model_validate(
            data.get('metafleetCompanies') or {}
        )
        company_ids: list[str] = list(
            dict.fromkeys(
                company_id for company_id in companies.company_ids if company_id
            )
        )

        fallback_company_id: str | None = self._config.platform.company_id
        if not company_ids and fallback_company_id:
            logger.info(
                'No metafleet companies listed; using configured company %s',
                fallback_company_id,
            )
            return [fallback_company_id]

        logger.info('Found %d companies', len(company_ids))
        return company_ids

    async def list_drivers(self, company_id: str) -> list[Driver]:
        """
        Every driver of a company, draining all pages.

        Raises:
            APIError: If any page fails.
        """
        drivers: list[Driver] = []
        async for page in self._client.execute_paginated(
            DRIVERS_QUERY,
            {'companyId': company_id},
            path=('paginatedDrivers', 'drivers'),
            page_size=self._config.sync.driver_page_size,
        ):
            drivers.extend(
                Driver.model_validate(raw_driver) for raw_driver in page.items
            )

        logger.info('Company %s: %d drivers', company_id, len(drivers))
        return drivers
