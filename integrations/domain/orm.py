"""SQLAlchemy ORM models for the integration tables.

Tables:
- user_integrations: provider credentials + sync status, unique on (user_id, provider)
- fitbit_activities / fitbit_weights / fitbit_foods / fitbit_sleep:
  one canonical record per (user_id, date)
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class UserIntegrationModel(Base):
    __tablename__ = "user_integrations"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)

    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_user_integrations_user_provider"),
        CheckConstraint("consecutive_failures >= 0", name="chk_consecutive_failures"),
        Index("idx_user_integrations_active", "provider", "is_active"),
    )


class FitbitActivityModel(Base):
    __tablename__ = "fitbit_activities"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    date = mapped_column(Date, nullable=False)

    steps: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    distance: Mapped[float] = mapped_column(Float, nullable=False, server_default=text("0"))
    calories: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    active_minutes: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    activities: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_fitbit_activities_user_date"),
        CheckConstraint("steps >= 0", name="chk_fitbit_activities_steps"),
    )


class FitbitWeightModel(Base):
    __tablename__ = "fitbit_weights"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    date = mapped_column(Date, nullable=False)

    weight: Mapped[float] = mapped_column(Float, nullable=False)
    bmi: Mapped[float | None] = mapped_column(Float, nullable=True)
    fat_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_fitbit_weights_user_date"),)


class FitbitFoodModel(Base):
    __tablename__ = "fitbit_foods"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    date = mapped_column(Date, nullable=False)

    calories: Mapped[float] = mapped_column(Float, nullable=False, server_default=text("0"))
    foods: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    water: Mapped[float] = mapped_column(Float, nullable=False, server_default=text("0"))
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_fitbit_foods_user_date"),)


class FitbitSleepModel(Base):
    __tablename__ = "fitbit_sleep"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    date = mapped_column(Date, nullable=False)

    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    efficiency: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    # Provider wall-clock time, no offset supplied
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    stages: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_fitbit_sleep_user_date"),
        CheckConstraint("duration >= 0", name="chk_fitbit_sleep_duration"),
    )
