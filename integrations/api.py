"""FastAPI router for the Fitbit integration.

Endpoints:
- GET    /api/v1/users/{id}/integrations/fitbit/connect    (307 to Fitbit consent)
- GET    /api/v1/fitbit/callback                           (OAuth redirect target)
- GET    /api/v1/users/{id}/integrations/fitbit            (connection + sync status)
- POST   /api/v1/users/{id}/integrations/fitbit/sync       (manual sync)
- PUT    /api/v1/users/{id}/integrations/fitbit/auto-sync  (periodic timer on/off)
- DELETE /api/v1/users/{id}/integrations/fitbit            (disconnect)

The browser session (`request.session`, a signed cookie) carries the
PendingConnection across the consent redirect and the id of the active
application user.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.database import get_session
from shared.exceptions import IntegrationNotFoundError
from shared.middleware import request_id_var
from integrations.adapters.fitbit_gateway import FitbitGateway
from integrations.adapters.fitbit_oauth import FitbitOAuthClient
from integrations.domain.models import IntegrationRecord, Provider
from integrations.handoff import HandoffCoordinator
from integrations.protocol import DomainRecordStore, IntegrationStore
from integrations.repository import DomainRecordRepository, IntegrationRepository
from integrations.scheduler import AutoSyncScheduler, scheduler
from integrations.sync import SyncGuard, SyncOrchestrator, sync_guard

router = APIRouter(prefix="/api/v1")

ACTIVE_USER_KEY = "active_user_id"


# --- Dependencies ---


def get_integration_store(session: AsyncSession = Depends(get_session)) -> IntegrationStore:
    return IntegrationRepository(session)


def get_record_store(session: AsyncSession = Depends(get_session)) -> DomainRecordStore:
    return DomainRecordRepository(session)


def get_oauth_client() -> FitbitOAuthClient:
    return FitbitOAuthClient()


def get_gateway() -> FitbitGateway:
    return FitbitGateway()


def get_scheduler() -> AutoSyncScheduler:
    return scheduler


def get_sync_guard() -> SyncGuard:
    return sync_guard


# --- Request models ---


class AutoSyncRequest(BaseModel):
    enabled: bool


# --- Response helpers ---


def _meta() -> dict[str, Any]:
    return {
        "request_id": request_id_var.get(""),
        "timestamp": datetime.now(UTC).isoformat(),
        "api_version": settings.api_version,
    }


def _active_user(request: Request) -> UUID | None:
    raw = request.session.get(ACTIVE_USER_KEY)
    if not raw:
        return None
    try:
        return UUID(raw)
    except ValueError:
        return None


def _status_to_dict(
    user_id: UUID,
    record: IntegrationRecord | None,
    auto_sync: AutoSyncScheduler,
    guard: SyncGuard,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "user_id": str(user_id),
        "provider": Provider.FITBIT.value,
        "connected": record is not None,
        "last_sync": None,
        "expires_at": None,
        "stale": None,
        "syncing": guard.is_running(user_id),
        "needs_reconnect": False,
        "auto_sync": auto_sync.is_enabled(user_id),
    }
    if record is not None:
        data.update(
            last_sync=record.last_sync.isoformat() if record.last_sync else None,
            expires_at=record.expires_at.isoformat() if record.expires_at else None,
            stale=record.is_stale(auto_sync.interval),
            needs_reconnect=record.consecutive_failures >= settings.reconnect_after_failures,
        )
    return data


# --- Endpoints ---


@router.get("/users/{user_id}/integrations/fitbit/connect", status_code=307)
async def connect_fitbit(
    user_id: UUID,
    request: Request,
    name: str = Query(..., min_length=1, description="Display name of the connecting user"),
    store: IntegrationStore = Depends(get_integration_store),
    oauth: FitbitOAuthClient = Depends(get_oauth_client),
):
    """Begin the OAuth handoff and redirect the browser to Fitbit's consent screen."""
    coordinator = HandoffCoordinator(oauth, store)
    redirect = coordinator.begin_connection(request.session, user_id, name)
    return RedirectResponse(redirect.url, status_code=307)


@router.get("/fitbit/callback")
async def fitbit_callback(
    request: Request,
    store: IntegrationStore = Depends(get_integration_store),
    oauth: FitbitOAuthClient = Depends(get_oauth_client),
):
    """OAuth redirect target. Stores the integration for the user who started it.

    Errors carry `restart: true`; the client should start the connection again.
    """
    coordinator = HandoffCoordinator(oauth, store)
    result = await coordinator.complete_connection(
        request.session, request.query_params, _active_user(request)
    )
    if result.switch_active_user_to is not None:
        request.session[ACTIVE_USER_KEY] = str(result.switch_active_user_to)

    return {
        "data": {
            "connected": True,
            "provider": Provider.FITBIT.value,
            "user_id": str(result.connecting_user_id),
            "user_name": result.connecting_user_name,
            "message": result.message,
            "active_user_id": request.session.get(ACTIVE_USER_KEY),
            "switched_active_user": result.switch_active_user_to is not None,
        },
        "meta": _meta(),
    }


@router.get("/users/{user_id}/integrations/fitbit")
async def get_fitbit_status(
    user_id: UUID,
    store: IntegrationStore = Depends(get_integration_store),
    auto_sync: AutoSyncScheduler = Depends(get_scheduler),
    guard: SyncGuard = Depends(get_sync_guard),
):
    record = await store.get(user_id, Provider.FITBIT)
    return {"data": _status_to_dict(user_id, record, auto_sync, guard), "meta": _meta()}


@router.post("/users/{user_id}/integrations/fitbit/sync")
async def sync_fitbit(
    user_id: UUID,
    days: int | None = Query(None, description="Window size in days, newest date is today"),
    store: IntegrationStore = Depends(get_integration_store),
    records: DomainRecordStore = Depends(get_record_store),
    gateway: FitbitGateway = Depends(get_gateway),
    oauth: FitbitOAuthClient = Depends(get_oauth_client),
    guard: SyncGuard = Depends(get_sync_guard),
):
    """Run a manual sync and return the report.

    Provider failures do not fail the request: the report state is
    `partially_failed` or `failed` and `needs_reconnect` tells the client
    whether to prompt for a reconnect.
    """
    orchestrator = SyncOrchestrator(
        integrations=store,
        records=records,
        gateway=gateway,
        oauth=oauth,
        guard=guard,
    )
    report = await orchestrator.sync(user_id, days=days)
    return {"data": report.to_dict(), "meta": _meta()}


@router.put("/users/{user_id}/integrations/fitbit/auto-sync")
async def set_auto_sync(
    user_id: UUID,
    body: AutoSyncRequest,
    store: IntegrationStore = Depends(get_integration_store),
    auto_sync: AutoSyncScheduler = Depends(get_scheduler),
):
    if body.enabled:
        record = await store.get(user_id, Provider.FITBIT)
        if record is None:
            raise IntegrationNotFoundError(str(user_id), Provider.FITBIT.value)
        auto_sync.enable(user_id)
    else:
        await auto_sync.disable(user_id)

    return {
        "data": {
            "user_id": str(user_id),
            "auto_sync": auto_sync.is_enabled(user_id),
            "interval_minutes": int(auto_sync.interval.total_seconds() // 60),
        },
        "meta": _meta(),
    }


@router.delete("/users/{user_id}/integrations/fitbit")
async def disconnect_fitbit(
    user_id: UUID,
    store: IntegrationStore = Depends(get_integration_store),
    auto_sync: AutoSyncScheduler = Depends(get_scheduler),
):
    """Soft-delete the integration and stop its timer. Synced records are kept."""
    await auto_sync.disable(user_id)
    if not await store.deactivate(user_id, Provider.FITBIT):
        raise IntegrationNotFoundError(str(user_id), Provider.FITBIT.value)
    return {"data": {"user_id": str(user_id), "connected": False}, "meta": _meta()}
