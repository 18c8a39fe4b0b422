"""Product sync coordinator: single-flight, lazy staleness, staged errors.

Control loop:
1. Read the stored SyncState; refuse to start while a fresh run is ``running``
2. A ``running`` state older than the stale threshold is recorded as timed
   out and a new run starts (the lost run is never cancelled)
3. Write ``running``, then for every provider concurrently:
   fetch (paged) -> upsert one product at a time -> prune products not seen
4. Write ``idle`` + last_success_at, or ``error`` + structured error_data

Every failure is tagged with the stage it happened in and, where known, the
provider. Work already done for other providers is not rolled back.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from marketplace.errors import (
    ProviderError,
    ProviderErrorType,
    SyncError,
    SyncFailedError,
    SyncInProgressError,
    SyncProviderError,
    SyncTimeoutError,
    classify_provider_error,
)
from marketplace.orders.models import utcnow
from marketplace.products.models import Product, ProviderProduct
from marketplace.products.store import ProductStore
from marketplace.providers.base import FulfillmentClient
from marketplace.providers.registry import ProviderRegistry
from marketplace.sync.models import (
    PRODUCTS_SYNC_KEY,
    SYNC_STALE_AFTER_SECONDS,
    SyncStage,
    SyncState,
    SyncStatus,
    effective_status,
    elapsed_seconds,
    is_stale,
)
from marketplace.sync.store import SyncStateStore

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

# Provider failures worth retrying later (503 to the caller instead of 500)
TRANSIENT_ERROR_TYPES = frozenset(
    {
        ProviderErrorType.RATE_LIMIT,
        ProviderErrorType.TIMEOUT,
        ProviderErrorType.SERVICE_UNAVAILABLE,
    }
)


class _StageFailure(Exception):
    """Internal wrapper tagging a failure with its stage and provider."""

    def __init__(self, stage: SyncStage, provider: str | None, cause: BaseException):
        self.stage = stage
        self.provider = provider
        self.cause = cause
        super().__init__(str(cause))


class SyncCoordinator:
    """Runs the product sync and reports its status."""

    def __init__(
        self,
        state_store: SyncStateStore,
        product_store: ProductStore,
        registry: ProviderRegistry,
        *,
        stale_after: int = SYNC_STALE_AFTER_SECONDS,
        timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
        key: str = PRODUCTS_SYNC_KEY,
    ):
        self._states = state_store
        self._products = product_store
        self._registry = registry
        self._stale_after = stale_after
        self._timeout = timeout
        self._clock = clock
        self._key = key

    async def get_sync_status(self) -> SyncState:
        """Stored state with stale ``running`` reported as a timeout error."""
        stored = await self._states.get(self._key)
        return effective_status(stored, self._clock(), self._stale_after)

    async def sync(self) -> dict[str, Any]:
        """Run one product sync.

        Returns:
            {"status": "completed", "count": <variants synced>, "removed": <pruned>,
             "syncStartedAt": iso, "syncDuration": seconds}

        Raises:
            SyncInProgressError: another run started less than ``stale_after`` ago
            SyncProviderError: a provider was rate limited, timed out or unavailable
            SyncTimeoutError: the run exceeded ``timeout``
            SyncFailedError: anything else
        """
        now = self._clock()
        try:
            current = await self._states.get(self._key)
        except Exception as e:
            raise SyncFailedError(
                "Failed to read sync status",
                data={"stage": SyncStage.SET_STATUS.value, "originalMessage": str(e)},
            ) from e

        if current.status == SyncStatus.RUNNING:
            if not is_stale(current, now, self._stale_after):
                raise SyncInProgressError(
                    data={
                        "syncStartedAt": current.sync_started_at.isoformat()
                        if current.sync_started_at
                        else None,
                        "duration": elapsed_seconds(current.sync_started_at, now),
                    }
                )
            timed_out = effective_status(current, now, self._stale_after)
            logger.warning(
                "Previous sync started at %s is stale: %s",
                current.sync_started_at,
                timed_out.error_message,
            )
            current = replace(timed_out, last_error_at=now, updated_at=now)
            await self._set_quietly(current)

        providers = self._registry.sync_providers()
        if not providers:
            logger.info("No fulfillment providers configured, nothing to sync")
            return {"status": "completed", "count": 0, "removed": 0}

        started = now
        try:
            await self._states.set(
                self._key,
                SyncState(
                    status=SyncStatus.RUNNING,
                    sync_started_at=started,
                    last_success_at=current.last_success_at,
                    last_error_at=current.last_error_at,
                    updated_at=started,
                ),
            )
        except Exception as e:
            logger.error("Could not mark sync as running: %s", e)
            raise SyncFailedError(
                "Failed to set sync status",
                data={"stage": SyncStage.SET_STATUS.value, "originalMessage": str(e)},
            ) from e

        logger.info("Product sync started for %s", [p.name for p in providers])
        try:
            if self._timeout is None:
                count, removed = await self._run(providers, started)
            else:
                count, removed = await asyncio.wait_for(
                    self._run(providers, started), timeout=self._timeout
                )
        except asyncio.TimeoutError as e:
            raise await self._record_timeout(current, started) from e
        except _StageFailure as f:
            raise await self._record_failure(current, started, f.stage, f.provider, f.cause) from f.cause
        except Exception as e:
            raise await self._record_failure(current, started, SyncStage.UNKNOWN, None, e) from e

        finished = self._clock()
        duration = elapsed_seconds(started, finished)
        await self._states.set(
            self._key,
            SyncState(
                status=SyncStatus.IDLE,
                sync_started_at=started,
                last_success_at=finished,
                last_error_at=current.last_error_at,
                updated_at=finished,
            ),
        )
        logger.info("Product sync completed: %d variants, %d removed in %ds", count, removed, duration)
        return {
            "status": "completed",
            "count": count,
            "removed": removed,
            "syncStartedAt": started.isoformat(),
            "syncDuration": duration,
        }

    # ── Run ───────────────────────────────────────────────────────────────

    async def _run(self, providers: list[FulfillmentClient], started: datetime) -> tuple[int, int]:
        # Every provider settles before a failure is reported, so nothing
        # keeps writing after the state says error.
        results = await asyncio.gather(
            *(self._sync_provider(p, started) for p in providers), return_exceptions=True
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            for extra in failures[1:]:
                logger.warning("Additional sync failure: %r", extra)
            raise failures[0]
        return sum(r[0] for r in results), sum(r[1] for r in results)

    async def _sync_provider(self, client: FulfillmentClient, started: datetime) -> tuple[int, int]:
        try:
            products = await self._fetch_all(client)
        except Exception as e:
            raise _StageFailure(SyncStage.FETCH_PRODUCTS, client.name, e) from e

        count = 0
        for provider_product in products:
            try:
                product = Product.from_provider(client.name, provider_product, started)
            except (ValueError, KeyError) as e:
                logger.warning("Skipping %s product %s: %s", client.name, provider_product.id, e)
                continue
            try:
                await self._products.upsert(product)
            except Exception as e:
                raise _StageFailure(SyncStage.UPSERT, client.name, e) from e
            count += len(product.variants)

        try:
            removed = await self._products.prune(client.name, synced_before=started)
        except Exception as e:
            raise _StageFailure(SyncStage.FINALIZE, client.name, e) from e

        logger.info("%s: %d variants synced, %d products removed", client.name, count, removed)
        return count, removed

    @staticmethod
    async def _fetch_all(client: FulfillmentClient) -> list[ProviderProduct]:
        products: list[ProviderProduct] = []
        offset = 0
        while True:
            page = await client.get_products(limit=PAGE_SIZE, offset=offset)
            products.extend(page)
            if len(page) < PAGE_SIZE:
                return products
            offset += PAGE_SIZE

    # ── Failure recording ─────────────────────────────────────────────────

    async def _set_quietly(self, state: SyncState) -> None:
        """Persist a failure state; the original error is what the caller needs."""
        try:
            await self._states.set(self._key, state)
        except Exception:
            logger.exception("Failed to persist sync state %s", state.status.value)

    async def _record_failure(
        self,
        current: SyncState,
        started: datetime,
        stage: SyncStage,
        provider: str | None,
        cause: BaseException,
    ) -> SyncError:
        now = self._clock()
        error_type = classify_provider_error(cause)
        data = {
            "stage": stage.value,
            "provider": provider,
            "errorType": error_type.value,
            "retryAfter": getattr(cause, "retry_after", None),
            "originalMessage": str(cause),
            "syncDuration": elapsed_seconds(started, now),
        }

        if isinstance(cause, ProviderError) and error_type in TRANSIENT_ERROR_TYPES:
            error: SyncError = SyncProviderError(
                f"{provider or 'Provider'} temporarily unavailable ({error_type.value})", data=data
            )
        else:
            error = SyncFailedError(f"Sync failed during {stage.value}: {cause}", data=data)

        logger.error(
            "Product sync failed at %s (provider=%s, type=%s): %s",
            stage.value,
            provider,
            error_type.value,
            cause,
        )
        await self._set_quietly(
            SyncState(
                status=SyncStatus.ERROR,
                sync_started_at=started,
                last_success_at=current.last_success_at,
                last_error_at=now,
                error_message=error.message,
                error_data=data,
                updated_at=now,
            )
        )
        return error

    async def _record_timeout(self, current: SyncState, started: datetime) -> SyncError:
        now = self._clock()
        duration = elapsed_seconds(started, now)
        data = {
            "stage": SyncStage.UNKNOWN.value,
            "errorType": "SYNC_TIMEOUT",
            "syncDuration": duration,
        }
        error = SyncTimeoutError(f"Sync timed out after {duration} seconds", data=data)
        logger.error("Product sync exceeded %ss timeout", self._timeout)
        await self._set_quietly(
            SyncState(
                status=SyncStatus.ERROR,
                sync_started_at=started,
                last_success_at=current.last_success_at,
                last_error_at=now,
                error_message=error.message,
                error_data=data,
                updated_at=now,
            )
        )
        return error
