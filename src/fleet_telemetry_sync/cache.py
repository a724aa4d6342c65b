# fleet_telemetry_sync/cache.py
"""
Process-lifetime lookup cache for rarely changing entities.

Vehicles (assets) and company balance ledgers are read by every driver of a
company but change rarely, so each distinct (company, entity) pair is fetched
at most once per process.

Keys are composite, '{company_id}:{entity_id}', because entity ids are only
unique within a company.

Semantics:
----------
- A successful lookup is cached even when the entity does not exist (stored
  as None), so a missing vehicle is not requested again.
- A failed lookup is NOT cached; the caller receives None for that call and a
  later call retries it.
- Concurrent callers asking for the same key share one in-flight fetch.

The cache is unbounded and never expires. That fits a batch process run
periodically; a long-lived service would need eviction.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping

from fleet_telemetry_sync.client import AliasResult

__all__: list[str] = ['LookupCache', 'make_cache_key']

logger: logging.Logger = logging.getLogger(__name__)


def make_cache_key(company_id: str, entity_id: str) -> str:
    """Composite cache key for an entity scoped to a company."""
    return f'{company_id}:{entity_id}'


class LookupCache[ValueT]:
    """
    Memoizing batch lookup keyed by (company, entity id).

    Attributes:
        name: Label used in log messages ('assets', 'balances').

    Example:
        >>> cache = LookupCache('assets', fetch_assets)
        >>> assets = await cache.get_or_fetch_batch('company-1', ['a1', 'a2'])
    """

    def __init__(
        self,
        name: str,
        fetch_batch: Callable[
            [str, list[str]], Awaitable[Mapping[str, AliasResult[ValueT]]]
        ],
    ) -> None:
        """
        Args:
            name: Label used in log messages.
            fetch_batch: Coroutine function taking (company_id, entity_ids) and
                returning an AliasResult per requested id. It should only
                raise for failures that must abort the caller.
        """
        self.name: str = name
        self._fetch_batch: Callable[
            [str, list[str]], Awaitable[Mapping[str, AliasResult[ValueT]]]
        ] = fetch_batch
        self._entries: dict[str, ValueT | None] = {}
        self._in_flight: dict[str, asyncio.Future[ValueT | None]] = {}
        self._fetched_key_count: int = 0

    @property
    def cached_count(self) -> int:
        """Number of keys with a cached result (found or missing)."""
        return len(self._entries)

    @property
    def fetched_key_count(self) -> int:
        """Number of keys forwarded to the fetch function so far."""
        return self._fetched_key_count

    def contains(self, company_id: str, entity_id: str) -> bool:
        return make_cache_key(company_id, entity_id) in self._entries

    def clear(self) -> None:
        """Drop every cached entry. In-flight fetches are unaffected."""
        logger.debug('Clearing %s cache (%d entries)', self.name, len(self._entries))
        self._entries.clear()

    async def get_or_fetch(self, company_id: str, entity_id: str) -> ValueT | None:
        """Single-key convenience wrapper around get_or_fetch_batch()."""
        results: dict[str, ValueT | None] = await self.get_or_fetch_batch(
            company_id, [entity_id]
        )
        return results.get(entity_id)

    async def get_or_fetch_batch(
        self,
        company_id: str,
        entity_ids: Iterable[str],
    ) -> dict[str, ValueT | None]:
        """
        Resolve entities, fetching only the keys not cached or in flight.

        Duplicate and empty ids are ignored. The missing keys are forwarded to
        the fetch function in a single call.

        Args:
            company_id: Tenant scope of the ids.
            entity_ids: Entity ids to resolve.

        Returns:
            Mapping from each distinct id to its value, or None when the
            entity does not exist or its lookup failed.

        Raises:
            Whatever the fetch function raises (fatal errors only).
        """
        unique_ids: list[str] = list(
            dict.fromkeys(entity_id for entity_id in entity_ids if entity_id)
        )

        resolved: dict[str, ValueT | None] = {}
        shared_futures: dict[str, asyncio.Future[ValueT | None]] = {}
        ids_to_fetch: list[str] = []

        for entity_id in unique_ids:
            key: str = make_cache_key(company_id, entity_id)
            if key in self._entries:
                resolved[entity_id] = self._entries[key]
            elif key in self._in_flight:
                shared_futures[entity_id] = self._in_flight[key]
            else:
                ids_to_fetch.append(entity_id)

        if ids_to_fetch:
            resolved.update(await self._fetch_and_store(company_id, ids_to_fetch))

        for entity_id, future in shared_futures.items():
            # Shielded so cancelling this caller does not cancel the owner's fetch.
            resolved[entity_id] = await asyncio.shield(future)

        return {entity_id: resolved.get(entity_id) for entity_id in unique_ids}

    async def _fetch_and_store(
        self,
        company_id: str,
        ids_to_fetch: list[str],
    ) -> dict[str, ValueT | None]:
        """Fetch keys this caller owns, publish them to waiters, cache successes."""
        loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
        owned_futures: dict[str, asyncio.Future[ValueT | None]] = {}
        for entity_id in ids_to_fetch:
            future: asyncio.Future[ValueT | None] = loop.create_future()
            owned_futures[entity_id] = future
            self._in_flight[make_cache_key(company_id, entity_id)] = future

        self._fetched_key_count += len(ids_to_fetch)
        logger.debug(
            'Fetching %d %s for company %s', len(ids_to_fetch), self.name, company_id
        )

        try:
            fetched: Mapping[str, AliasResult[ValueT]] = await self._fetch_batch(
                company_id, ids_to_fetch
            )
        except asyncio.CancelledError:
            for future in owned_futures.values():
                future.cancel()
            raise
        except Exception as error:
            for future in owned_futures.values():
                if not future.done():
                    future.set_exception(error)
                    # Mark retrieved; waiters, if any, still re-raise it.
                    future.exception()
            raise
        finally:
            for entity_id in ids_to_fetch:
                self._in_flight.pop(make_cache_key(company_id, entity_id), None)

        resolved: dict[str, ValueT | None] = {}
        for entity_id in ids_to_fetch:
            result: AliasResult[ValueT] | None = fetched.get(entity_id)
            value: ValueT | None = None

            if result is None:
                logger.warning(
                    '%s lookup returned no result for %s in company %s',
                    self.name,
                    entity_id,
                    company_id,
                )
            elif not result.ok:
                logger.warning(
                    '%s lookup failed for %s in company %s: %s',
                    self.name,
                    entity_id,
                    company_id,
                    result.error,
                )
            else:
                value = result.value
                self._entries[make_cache_key(company_id, entity_id)] = value

            resolved[entity_id] = value
            future = owned_futures[entity_id]
            if not future.done():
                future.set_result(value)

        return resolved
