"""Sync orchestrator: date window → gateway → normalize → upsert.

A run walks the window oldest date first. For each date the gateway fetches
the four domains concurrently; successful payloads are normalized and
upserted by (user, date), empty ones are skipped, and failed ones are
absorbed into the report as DomainFetchFailed entries.

Terminal states:
- completed:        nothing failed
- partially_failed: at least one domain failed on at least one date
- failed:           the token could not be refreshed, Fitbit rejected the
                    token or never answered for every domain of a date
                    (the run stops at that date), or the run crashed

Every run, crashed ones included, ends by recording last_sync so the
staleness check in the scheduler does not retry in a tight loop.

Re-running over the same window is idempotent: every record is a full
replacement keyed on (user, date).
"""

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.exceptions import (
    DomainFetchFailedError,
    IntegrationNotFoundError,
    InvalidSyncWindowError,
    SyncInProgressError,
    TransportUnreachableError,
)
from shared.metrics import sync_duration_seconds, sync_records_total, sync_runs_total
from integrations.adapters.fitbit_gateway import FitbitGateway
from integrations.adapters.fitbit_mapper import normalize
from integrations.adapters.fitbit_oauth import FitbitOAuthClient
from integrations.domain.models import (
    DayFetch,
    Domain,
    DomainFailure,
    FetchStatus,
    IntegrationRecord,
    Provider,
    SyncOutcome,
    SyncReport,
    SyncState,
    SyncTrigger,
)
from integrations.protocol import DomainRecordStore, IntegrationStore
from integrations.repository import DomainRecordRepository, IntegrationRepository

logger = structlog.get_logger()


class SyncGuard:
    """In-memory set of users with a run in flight. One run per user."""

    def __init__(self) -> None:
        self._running: set[UUID] = set()

    def is_running(self, user_id: UUID) -> bool:
        return user_id in self._running

    @contextmanager
    def hold(self, user_id: UUID) -> Iterator[None]:
        if user_id in self._running:
            raise SyncInProgressError(str(user_id))
        self._running.add(user_id)
        try:
            yield
        finally:
            self._running.discard(user_id)


# Shared by the API routes and the scheduler
sync_guard = SyncGuard()


def sync_window(days: int, today: date) -> list[date]:
    """The `days` calendar dates ending at `today`, oldest first."""
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def validate_window(days: int) -> int:
    if not 1 <= days <= settings.max_sync_window_days:
        raise InvalidSyncWindowError(days, settings.max_sync_window_days)
    return days


class SyncOrchestrator:
    provider = Provider.FITBIT

    def __init__(
        self,
        integrations: IntegrationStore,
        records: DomainRecordStore,
        gateway: FitbitGateway,
        oauth: FitbitOAuthClient,
        guard: SyncGuard | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.integrations = integrations
        self.records = records
        self.gateway = gateway
        self.oauth = oauth
        self.guard = guard or sync_guard
        self._clock = clock or (lambda: datetime.now(UTC))

    async def sync(
        self,
        user_id: UUID,
        days: int | None = None,
        trigger: SyncTrigger = SyncTrigger.MANUAL,
    ) -> SyncReport:
        """Run one sync over the last `days` dates (default from settings).

        Raises IntegrationNotFoundError when the user has no active
        integration and SyncInProgressError when a run is already going.
        Provider failures never raise; they end up in the report.
        """
        days = validate_window(settings.sync_window_days if days is None else days)
        integration = await self.integrations.get(user_id, self.provider)
        if integration is None:
            raise IntegrationNotFoundError(str(user_id), self.provider.value)

        with self.guard.hold(user_id):
            return await self._run(integration, days, trigger)

    async def _run(
        self, integration: IntegrationRecord, days: int, trigger: SyncTrigger
    ) -> SyncReport:
        start_time = time.monotonic()
        user_id = integration.user_id
        started_at = self._clock()
        report = SyncReport(
            user_id=user_id,
            state=SyncState.RUNNING,
            outcome=SyncOutcome(synced_at=started_at),
            dates=sync_window(days, started_at.date()),
        )
        log = logger.bind(user_id=str(user_id), trigger=trigger.value)
        log.info("sync_started", days=days, first_date=report.dates[0].isoformat())

        try:
            access_token = await self._access_token(integration, started_at)
            for day in report.dates:
                fetch = await self.gateway.fetch_day(access_token, day)
                if fetch.unreachable:
                    raise TransportUnreachableError(
                        f"Fitbit could not be reached for {day.isoformat()}. "
                        "Please reconnect your Fitbit account."
                    )
                await self._persist_day(user_id, fetch, report)
        except TransportUnreachableError as exc:
            report.state = SyncState.FAILED
            report.error = exc.detail
            log.warning("sync_unreachable", error=exc.detail)
        except Exception:
            report.state = SyncState.FAILED
            report.error = "Sync stopped by an internal error"
            log.exception("sync_crashed")
            await self._finish(report, trigger, start_time, log)
            raise
        else:
            report.state = SyncState.PARTIALLY_FAILED if report.failures else SyncState.COMPLETED

        return await self._finish(report, trigger, start_time, log)

    async def _finish(
        self, report: SyncReport, trigger: SyncTrigger, start_time: float, log
    ) -> SyncReport:
        """Record last_sync and the failure counter, then emit metrics."""
        user_id = report.user_id
        finished_at = self._clock()
        report.outcome.synced_at = finished_at
        updated = await self.integrations.record_sync(
            user_id, self.provider, at=finished_at, failed=report.state == SyncState.FAILED
        )
        failures = updated.consecutive_failures if updated is not None else 0
        report.needs_reconnect = (
            report.state == SyncState.FAILED or failures >= settings.reconnect_after_failures
        )

        sync_runs_total.labels(trigger=trigger.value, state=report.state.value).inc()
        sync_duration_seconds.labels(trigger=trigger.value).observe(time.monotonic() - start_time)
        log.info(
            "sync_finished",
            state=report.state.value,
            records=report.outcome.total,
            failures=len(report.failures),
            consecutive_failures=failures,
            needs_reconnect=report.needs_reconnect,
        )
        return report

    async def _access_token(self, integration: IntegrationRecord, now: datetime) -> str:
        """Current access token, refreshed first if it is about to expire."""
        if not integration.refresh_token or not integration.expires_within(
            settings.token_refresh_margin_seconds, now
        ):
            return integration.access_token

        tokens = await self.oauth.refresh(integration.refresh_token)
        await self.integrations.update_tokens(integration.user_id, self.provider, tokens, now)
        return tokens.access_token

    async def _persist_day(self, user_id: UUID, fetch: DayFetch, report: SyncReport) -> None:
        for outcome in fetch.outcomes():
            domain = outcome.domain
            if outcome.status == FetchStatus.EMPTY:
                continue
            if outcome.status == FetchStatus.FAILED:
                error = DomainFetchFailedError(domain.value, outcome.error or "unknown error")
                self._absorb(report, fetch.day, domain, error)
                continue

            try:
                record = normalize(domain, outcome.payload or {}, user_id, fetch.day)
            except (ValueError, TypeError, KeyError, AttributeError) as exc:
                error = DomainFetchFailedError(domain.value, f"malformed payload: {exc}")
                self._absorb(report, fetch.day, domain, error)
                continue
            if record is None:
                continue

            await self.records.upsert(record)
            report.outcome.record(domain)
            sync_records_total.labels(domain=domain.value).inc()

    @staticmethod
    def _absorb(
        report: SyncReport, day: date, domain: Domain, error: DomainFetchFailedError
    ) -> None:
        report.failures.append(DomainFailure(day=day, domain=domain, error=error.reason))
        logger.info("domain_failure_absorbed", date=day.isoformat(), detail=error.detail)


def build_orchestrator(
    session: AsyncSession,
    gateway: FitbitGateway | None = None,
    oauth: FitbitOAuthClient | None = None,
    guard: SyncGuard | None = None,
) -> SyncOrchestrator:
    """Orchestrator wired to the Postgres repositories on one session."""
    return SyncOrchestrator(
        integrations=IntegrationRepository(session),
        records=DomainRecordRepository(session),
        gateway=gateway or FitbitGateway(),
        oauth=oauth or FitbitOAuthClient(),
        guard=guard,
    )
