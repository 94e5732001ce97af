"""Integration repositories: all DB access for credentials and synced records.

Both repositories upsert with INSERT ... ON CONFLICT DO UPDATE:
- user_integrations on (user_id, provider)
- fitbit_* tables on (user_id, date), replacing every non-key column

Each write commits, so a sync persists date by date and a failure on a
later date never rolls back the dates already written. A failed write
rolls the session back so the caller can still record the run.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from integrations.domain.models import (
    ActivityRecord,
    CanonicalRecord,
    FoodRecord,
    IntegrationRecord,
    Provider,
    SleepRecord,
    TokenSet,
    WeightRecord,
)
from integrations.domain.orm import (
    Base,
    FitbitActivityModel,
    FitbitFoodModel,
    FitbitSleepModel,
    FitbitWeightModel,
    UserIntegrationModel,
)

# RETURNING rows must overwrite any stale instance already in the identity map
_REFRESH = {"populate_existing": True}


@asynccontextmanager
async def _rollback_on_error(session: AsyncSession) -> AsyncIterator[None]:
    """A failed write leaves the session usable for the next one."""
    try:
        yield
    except SQLAlchemyError:
        await session.rollback()
        raise


def _to_record(row: UserIntegrationModel) -> IntegrationRecord:
    return IntegrationRecord(
        user_id=row.user_id,
        provider=Provider(row.provider),
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        last_sync=row.last_sync,
        is_active=row.is_active,
        consecutive_failures=row.consecutive_failures,
    )


class IntegrationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _key(self, user_id: UUID, provider: Provider):
        return (
            UserIntegrationModel.user_id == user_id,
            UserIntegrationModel.provider == provider.value,
        )

    async def get(self, user_id: UUID, provider: Provider) -> IntegrationRecord | None:
        query = select(UserIntegrationModel).where(
            *self._key(user_id, provider), UserIntegrationModel.is_active.is_(True)
        )
        result = await self.session.execute(query, execution_options=_REFRESH)
        row = result.scalar_one_or_none()
        return _to_record(row) if row is not None else None

    async def upsert(self, record: IntegrationRecord) -> IntegrationRecord:
        """Insert or update by (user_id, provider). Re-activates a disconnected row."""
        stmt = pg_insert(UserIntegrationModel).values(
            user_id=record.user_id,
            provider=record.provider.value,
            access_token=record.access_token,
            refresh_token=record.refresh_token,
            expires_at=record.expires_at,
            last_sync=record.last_sync,
            is_active=True,
            consecutive_failures=0,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "provider"],
            set_={
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "expires_at": stmt.excluded.expires_at,
                "is_active": True,
                "consecutive_failures": 0,
                "updated_at": func.now(),
            },
        ).returning(UserIntegrationModel)
        async with _rollback_on_error(self.session):
            result = await self.session.scalars(stmt, execution_options=_REFRESH)
            row = result.one()
            await self.session.commit()
        return _to_record(row)

    async def update_tokens(
        self, user_id: UUID, provider: Provider, tokens: TokenSet, now: datetime
    ) -> None:
        values: dict[str, Any] = {
            "access_token": tokens.access_token,
            "expires_at": tokens.expires_at(now),
            "updated_at": func.now(),
        }
        # Fitbit rotates refresh tokens; keep the old one if none came back
        if tokens.refresh_token:
            values["refresh_token"] = tokens.refresh_token
        async with _rollback_on_error(self.session):
            await self.session.execute(
                update(UserIntegrationModel).where(*self._key(user_id, provider)).values(**values)
            )
            await self.session.commit()

    async def record_sync(
        self, user_id: UUID, provider: Provider, at: datetime, failed: bool
    ) -> IntegrationRecord | None:
        failures = UserIntegrationModel.consecutive_failures + 1 if failed else 0
        stmt = (
            update(UserIntegrationModel)
            .where(*self._key(user_id, provider))
            .values(last_sync=at, consecutive_failures=failures, updated_at=func.now())
            .returning(UserIntegrationModel)
        )
        async with _rollback_on_error(self.session):
            result = await self.session.scalars(stmt, execution_options=_REFRESH)
            row = result.one_or_none()
            await self.session.commit()
        return _to_record(row) if row is not None else None

    async def deactivate(self, user_id: UUID, provider: Provider) -> bool:
        """Soft delete; the row and its history stay."""
        async with _rollback_on_error(self.session):
            result = await self.session.execute(
                update(UserIntegrationModel)
                .where(*self._key(user_id, provider), UserIntegrationModel.is_active.is_(True))
                .values(is_active=False, updated_at=func.now())
            )
            await self.session.commit()
        return result.rowcount > 0


_MODELS: dict[type, type[Base]] = {
    ActivityRecord: FitbitActivityModel,
    WeightRecord: FitbitWeightModel,
    FoodRecord: FitbitFoodModel,
    SleepRecord: FitbitSleepModel,
}

_KEY_COLUMNS = ("user_id", "date")


def _row(record: CanonicalRecord) -> dict[str, Any]:
    row = record.model_dump()
    if isinstance(record, FoodRecord):
        row["foods"] = [item.model_dump(mode="json") for item in record.foods]
    return row


class DomainRecordRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, record: CanonicalRecord) -> bool:
        """Insert or fully replace the row for (user_id, date). True if inserted."""
        model = _MODELS[type(record)]
        values = _row(record)
        stmt = pg_insert(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_KEY_COLUMNS),
            set_={
                **{col: stmt.excluded[col] for col in values if col not in _KEY_COLUMNS},
                "synced_at": func.now(),
            },
        ).returning(model.id, text("(xmax = 0) AS was_inserted"))
        async with _rollback_on_error(self.session):
            result = await self.session.execute(stmt)
            was_inserted = bool(result.one().was_inserted)
            await self.session.commit()
        return was_inserted

