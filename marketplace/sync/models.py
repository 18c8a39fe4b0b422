"""Sync state data model.

One SyncState row per logical resource (``"products"``). The coordinator
overwrites it at sync start, success and failure; readers apply
``effective_status`` instead of trusting a stored ``running`` verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from marketplace.orders.models import utcnow

PRODUCTS_SYNC_KEY = "products"

# A running sync older than this is reported as failed
SYNC_STALE_AFTER_SECONDS = 300


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class SyncStage(str, Enum):
    """Where in the sync run a failure happened."""

    SET_STATUS = "SET_STATUS"
    FETCH_PRODUCTS = "FETCH_PRODUCTS"
    UPSERT = "UPSERT"
    FINALIZE = "FINALIZE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class SyncState:
    """Persisted status of one sync resource."""

    status: SyncStatus = SyncStatus.IDLE
    sync_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    error_message: str | None = None
    error_data: dict[str, Any] | None = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        def _iso(dt: datetime | None) -> str | None:
            return dt.isoformat() if dt else None

        return {
            "status": self.status.value,
            "syncStartedAt": _iso(self.sync_started_at),
            "lastSuccessAt": _iso(self.last_success_at),
            "lastErrorAt": _iso(self.last_error_at),
            "errorMessage": self.error_message,
            "errorData": self.error_data,
            "updatedAt": _iso(self.updated_at),
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> SyncState:
        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return SyncState(
            status=SyncStatus(d.get("status", "idle")),
            sync_started_at=_dt(d.get("syncStartedAt")),
            last_success_at=_dt(d.get("lastSuccessAt")),
            last_error_at=_dt(d.get("lastErrorAt")),
            error_message=d.get("errorMessage"),
            error_data=d.get("errorData"),
            updated_at=_dt(d.get("updatedAt")) or utcnow(),
        )


def elapsed_seconds(started_at: datetime | None, now: datetime) -> int:
    """Whole seconds since ``started_at`` (0 when unknown)."""
    if started_at is None:
        return 0
    return max(0, int((now - started_at).total_seconds()))


def is_stale(
    state: SyncState, now: datetime, stale_after: int = SYNC_STALE_AFTER_SECONDS
) -> bool:
    """A running state whose start is older than the threshold."""
    return (
        state.status == SyncStatus.RUNNING
        and state.sync_started_at is not None
        and (now - state.sync_started_at).total_seconds() > stale_after
    )


def effective_status(
    state: SyncState, now: datetime, stale_after: int = SYNC_STALE_AFTER_SECONDS
) -> SyncState:
    """Read-time view of a stored state.

    A stale ``running`` state is reported as ``error`` with a timeout
    message; ``sync_started_at`` is kept so clients can show when the lost
    run began. Pure: the stored row is left as it is.
    """
    if not is_stale(state, now, stale_after):
        return state
    duration = elapsed_seconds(state.sync_started_at, now)
    return replace(
        state,
        status=SyncStatus.ERROR,
        error_message=f"Sync timed out after {duration} seconds",
        error_data={
            "errorType": "SYNC_TIMEOUT",
            "stage": SyncStage.UNKNOWN.value,
            "duration": duration,
        },
    )
