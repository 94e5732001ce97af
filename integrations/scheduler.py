"""Periodic auto-sync: one long-lived asyncio task per enabled user.

When a user's task starts, it runs once right away if the last sync is
older than the interval. After that it runs every interval. Tasks are
cancelled when auto-sync is disabled, the integration is disconnected, or
the app shuts down. A run that is already in flight is never interrupted
mid-date; cancellation lands on the sleep between runs or the next await.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from uuid import UUID

import structlog

from shared.config import settings
from shared.database import session_scope
from shared.exceptions import IntegrationNotFoundError, SyncInProgressError
from integrations.domain.models import IntegrationRecord, Provider, SyncReport, SyncTrigger
from integrations.repository import IntegrationRepository
from integrations.sync import build_orchestrator

logger = structlog.get_logger()

SyncRunner = Callable[[UUID, SyncTrigger], Awaitable[SyncReport]]
IntegrationLookup = Callable[[UUID], Awaitable[IntegrationRecord | None]]


async def run_sync_in_new_session(user_id: UUID, trigger: SyncTrigger) -> SyncReport:
    async with session_scope() as session:
        return await build_orchestrator(session).sync(user_id, trigger=trigger)


async def load_integration(user_id: UUID) -> IntegrationRecord | None:
    async with session_scope() as session:
        return await IntegrationRepository(session).get(user_id, Provider.FITBIT)


class AutoSyncScheduler:
    def __init__(
        self,
        runner: SyncRunner = run_sync_in_new_session,
        lookup: IntegrationLookup = load_integration,
        interval: timedelta | None = None,
    ) -> None:
        self._runner = runner
        self._lookup = lookup
        self.interval = interval or timedelta(minutes=settings.sync_interval_minutes)
        self._tasks: dict[UUID, asyncio.Task] = {}

    def is_enabled(self, user_id: UUID) -> bool:
        return user_id in self._tasks

    def enable(self, user_id: UUID) -> bool:
        """Start the periodic task. False if it was already running."""
        if user_id in self._tasks:
            return False
        self._tasks[user_id] = asyncio.create_task(
            self._loop(user_id), name=f"auto-sync:{user_id}"
        )
        logger.info("auto_sync_enabled", user_id=str(user_id), interval=str(self.interval))
        return True

    async def disable(self, user_id: UUID) -> bool:
        """Cancel the periodic task. False if none was running."""
        task = self._tasks.pop(user_id, None)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("auto_sync_disabled", user_id=str(user_id))
        return True

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("auto_sync_stopped", tasks=len(tasks))

    async def _loop(self, user_id: UUID) -> None:
        try:
            try:
                integration = await self._lookup(user_id)
            except Exception:
                logger.exception("auto_sync_lookup_failed", user_id=str(user_id))
                return
            if integration is None:
                logger.info("auto_sync_no_integration", user_id=str(user_id))
                return
            if integration.is_stale(self.interval) and not await self._tick(
                user_id, SyncTrigger.STARTUP
            ):
                return
            while True:
                await asyncio.sleep(self.interval.total_seconds())
                if not await self._tick(user_id, SyncTrigger.SCHEDULED):
                    return
        finally:
            if self._tasks.get(user_id) is asyncio.current_task():
                del self._tasks[user_id]

    async def _tick(self, user_id: UUID, trigger: SyncTrigger) -> bool:
        """Run one sync. False when the loop should end."""
        try:
            report = await self._runner(user_id, trigger)
        except SyncInProgressError:
            logger.info("auto_sync_skipped", user_id=str(user_id), reason="in_progress")
        except IntegrationNotFoundError:
            logger.info("auto_sync_no_integration", user_id=str(user_id))
            return False
        except Exception:
            logger.exception("auto_sync_error", user_id=str(user_id), trigger=trigger.value)
        else:
            if report.needs_reconnect:
                logger.warning("auto_sync_needs_reconnect", user_id=str(user_id))
        return True


scheduler = AutoSyncScheduler()
