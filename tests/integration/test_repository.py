"""Repository upserts against real Postgres.

Per-day records are unique on (user_id, date): a second upsert for the same
date replaces the row. Integrations are unique on (user_id, provider).
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from integrations.domain.models import (
    ActivityRecord,
    FoodItem,
    FoodRecord,
    IntegrationRecord,
    MealType,
    Provider,
    SleepRecord,
    SleepStages,
    TokenSet,
    WeightRecord,
)
from integrations.domain.orm import (
    FitbitActivityModel,
    FitbitFoodModel,
    FitbitSleepModel,
    FitbitWeightModel,
    UserIntegrationModel,
)
from integrations.repository import DomainRecordRepository, IntegrationRepository
from tests.conftest import NOW, OTHER_USER_ID, SYNC_DATE, USER_ID

pytestmark = pytest.mark.integration


async def count(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


class TestDomainRecordUpsert:
    async def test_same_date_twice_yields_one_row(self, db_session):
        repo = DomainRecordRepository(db_session)

        inserted = await repo.upsert(ActivityRecord(user_id=USER_ID, date=SYNC_DATE, steps=8500))
        replaced = await repo.upsert(ActivityRecord(user_id=USER_ID, date=SYNC_DATE, steps=9100))

        assert inserted is True
        assert replaced is False
        assert await count(db_session, FitbitActivityModel) == 1
        row = (await db_session.execute(select(FitbitActivityModel))).scalar_one()
        assert row.steps == 9100

    async def test_replacement_is_total(self, db_session):
        repo = DomainRecordRepository(db_session)
        await repo.upsert(
            ActivityRecord(user_id=USER_ID, date=SYNC_DATE, steps=8500, calories=2300, distance=6.2)
        )

        await repo.upsert(ActivityRecord(user_id=USER_ID, date=SYNC_DATE, steps=100))

        row = (await db_session.execute(select(FitbitActivityModel))).scalar_one()
        assert row.calories == 0
        assert row.distance == 0

    async def test_distinct_dates_and_users_are_separate_rows(self, db_session):
        repo = DomainRecordRepository(db_session)

        for user in (USER_ID, OTHER_USER_ID):
            for offset in range(3):
                day = SYNC_DATE - timedelta(days=offset)
                assert await repo.upsert(WeightRecord(user_id=user, date=day, weight=176.4))

        assert await count(db_session, FitbitWeightModel) == 6

    async def test_food_items_round_trip_as_json(self, db_session):
        repo = DomainRecordRepository(db_session)
        record = FoodRecord(
            user_id=USER_ID,
            date=SYNC_DATE,
            calories=550,
            water=750,
            foods=[
                FoodItem(
                    name="Oatmeal",
                    calories=300,
                    meal_type=MealType.BREAKFAST,
                    time="2024-03-14T08:05:00",
                    log_id="22001",
                ),
            ],
        )

        await repo.upsert(record)

        row = (await db_session.execute(select(FitbitFoodModel))).scalar_one()
        assert row.foods == [
            {
                "name": "Oatmeal",
                "calories": 300,
                "meal_type": "breakfast",
                "time": "2024-03-14T08:05:00",
                "log_id": "22001",
            }
        ]
        assert row.water == 750

    async def test_sleep_keeps_wall_clock_times(self, db_session):
        repo = DomainRecordRepository(db_session)
        start = datetime(2024, 3, 13, 23, 2, 30)

        await repo.upsert(
            SleepRecord(
                user_id=USER_ID,
                date=SYNC_DATE,
                duration=435,
                efficiency=91,
                start_time=start,
                end_time=start + timedelta(hours=8),
                stages=SleepStages(deep=90, light=240, rem=105, wake=45),
            )
        )

        row = (await db_session.execute(select(FitbitSleepModel))).scalar_one()
        assert row.start_time == start
        assert row.stages == {"deep": 90, "light": 240, "rem": 105, "wake": 45}

    async def test_failed_write_leaves_session_usable(self, db_session):
        records = DomainRecordRepository(db_session)
        integrations = IntegrationRepository(db_session)
        await integrations.upsert(IntegrationRecord(user_id=USER_ID, access_token="a1"))
        # skips validation so the row reaches the CHECK constraint
        bad = ActivityRecord.model_construct(user_id=USER_ID, date=SYNC_DATE, steps=-1)

        with pytest.raises(IntegrityError):
            await records.upsert(bad)

        stored = await integrations.record_sync(USER_ID, Provider.FITBIT, at=NOW, failed=True)
        assert stored.last_sync == NOW
        assert stored.consecutive_failures == 1
        assert await count(db_session, FitbitActivityModel) == 0


class TestIntegrationRepository:
    async def test_upsert_and_get(self, db_session):
        repo = IntegrationRepository(db_session)

        stored = await repo.upsert(
            IntegrationRecord(user_id=USER_ID, access_token="a1", refresh_token="r1", expires_at=NOW)
        )

        assert stored.is_active is True
        assert await repo.get(USER_ID, Provider.FITBIT) == stored
        assert await repo.get(OTHER_USER_ID, Provider.FITBIT) is None

    async def test_reconnect_reactivates_and_resets_failures(self, db_session):
        repo = IntegrationRepository(db_session)
        await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a1"))
        await repo.record_sync(USER_ID, Provider.FITBIT, at=NOW, failed=True)
        assert await repo.deactivate(USER_ID, Provider.FITBIT) is True
        assert await repo.get(USER_ID, Provider.FITBIT) is None

        stored = await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a2"))

        assert stored.access_token == "a2"
        assert stored.is_active is True
        assert stored.consecutive_failures == 0
        # last_sync survives a reconnect
        assert stored.last_sync == NOW
        assert await count(db_session, UserIntegrationModel) == 1

    async def test_record_sync_counts_consecutive_failures(self, db_session):
        repo = IntegrationRepository(db_session)
        await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a1"))

        first = await repo.record_sync(USER_ID, Provider.FITBIT, at=NOW, failed=True)
        second = await repo.record_sync(
            USER_ID, Provider.FITBIT, at=NOW + timedelta(minutes=30), failed=True
        )
        reset = await repo.record_sync(
            USER_ID, Provider.FITBIT, at=NOW + timedelta(hours=1), failed=False
        )

        assert first.consecutive_failures == 1
        assert second.consecutive_failures == 2
        assert reset.consecutive_failures == 0
        assert reset.last_sync == NOW + timedelta(hours=1)

    async def test_record_sync_unknown_user(self, db_session):
        repo = IntegrationRepository(db_session)
        assert await repo.record_sync(USER_ID, Provider.FITBIT, at=NOW, failed=False) is None

    async def test_update_tokens_keeps_refresh_token_when_none_returned(self, db_session):
        repo = IntegrationRepository(db_session)
        await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a1", refresh_token="r1"))

        await repo.update_tokens(
            USER_ID, Provider.FITBIT, TokenSet(access_token="a2", expires_in=3600), NOW
        )

        stored = await repo.get(USER_ID, Provider.FITBIT)
        assert stored.access_token == "a2"
        assert stored.refresh_token == "r1"
        assert stored.expires_at == NOW + timedelta(hours=1)

    async def test_update_tokens_rotates_refresh_token(self, db_session):
        repo = IntegrationRepository(db_session)
        await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a1", refresh_token="r1"))

        await repo.update_tokens(
            USER_ID,
            Provider.FITBIT,
            TokenSet(access_token="a2", refresh_token="r2", expires_in=60),
            datetime(2024, 3, 14, tzinfo=UTC),
        )

        assert (await repo.get(USER_ID, Provider.FITBIT)).refresh_token == "r2"

    async def test_deactivate_nothing_active(self, db_session):
        repo = IntegrationRepository(db_session)
        assert await repo.deactivate(USER_ID, Provider.FITBIT) is False

    async def test_unique_per_user_and_provider(self, db_session):
        repo = IntegrationRepository(db_session)
        await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a1"))
        await repo.upsert(IntegrationRecord(user_id=USER_ID, access_token="a2"))
        await repo.upsert(IntegrationRecord(user_id=OTHER_USER_ID, access_token="b1"))

        assert await count(db_session, UserIntegrationModel) == 2
