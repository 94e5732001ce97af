"""Canonical domain models for the Fitbit integration.

Four per-day record kinds (activity, weight, food, sleep), each unique on
(user_id, date): re-syncing a date replaces the stored record. Plus the
credential record, the ephemeral PendingConnection, and the transient
per-fetch / per-run result types.

Design principles:
- Canonical units: weight in pounds, water in mL, durations in minutes
- Missing optional provider fields default to zero/empty, never fail
- Fetch results are tagged variants (success / empty / failed), not exceptions
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class Provider(StrEnum):
    FITBIT = "fitbit"


class Domain(StrEnum):
    ACTIVITY = "activity"
    WEIGHT = "weight"
    FOOD = "food"
    SLEEP = "sleep"


class MealType(StrEnum):
    BREAKFAST = "breakfast"
    MORNING_SNACK = "morning_snack"
    LUNCH = "lunch"
    AFTERNOON_SNACK = "afternoon_snack"
    DINNER = "dinner"
    EVENING_SNACK = "evening_snack"
    SNACK = "snack"


# --- Credentials ---


class IntegrationRecord(BaseModel):
    """Stored credential and sync status for one (user, provider) pair."""

    user_id: UUID
    provider: Provider = Provider.FITBIT
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    last_sync: datetime | None = None
    is_active: bool = True
    consecutive_failures: int = Field(0, ge=0)

    def expires_within(self, seconds: int, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return self.expires_at <= now + timedelta(seconds=seconds)

    def is_stale(self, interval: timedelta, now: datetime | None = None) -> bool:
        """True if never synced, or the last sync attempt is older than interval."""
        if self.last_sync is None:
            return True
        now = now or datetime.now(UTC)
        return self.last_sync < now - interval


class TokenSet(BaseModel):
    """Token endpoint response (authorization_code and refresh_token grants)."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int = 0
    token_type: str = "Bearer"

    def expires_at(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(UTC)) + timedelta(seconds=self.expires_in)


# --- Canonical per-day records ---


class ActivityRecord(BaseModel):
    user_id: UUID
    date: date
    steps: int = Field(0, ge=0)
    distance: float = Field(0.0, ge=0.0)
    calories: int = Field(0, ge=0)
    active_minutes: int = Field(0, ge=0)
    activities: list[dict[str, Any]] = Field(default_factory=list)


class WeightRecord(BaseModel):
    user_id: UUID
    date: date
    weight: float = Field(..., description="Pounds")
    bmi: float | None = None
    fat_percentage: float | None = None


class FoodItem(BaseModel):
    name: str
    calories: float = 0
    meal_type: MealType = MealType.SNACK
    time: str
    log_id: str | None = None


class FoodRecord(BaseModel):
    user_id: UUID
    date: date
    calories: float = 0
    foods: list[FoodItem] = Field(default_factory=list)
    water: float = Field(0, description="Millilitres")


class SleepStages(BaseModel):
    deep: int = 0
    light: int = 0
    rem: int = 0
    wake: int = 0


class SleepRecord(BaseModel):
    user_id: UUID
    date: date
    duration: int = Field(..., ge=0, description="Minutes asleep, wake periods excluded")
    efficiency: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    stages: SleepStages = Field(default_factory=SleepStages)


CanonicalRecord = ActivityRecord | WeightRecord | FoodRecord | SleepRecord


# --- OAuth handoff ---


class PendingConnection(BaseModel):
    """Who started the OAuth redirect. Lives only in the browser session."""

    connecting_user_id: UUID
    connecting_user_name: str
    callback_expected: bool = True


# --- Fetch results ---


class FetchStatus(StrEnum):
    SUCCESS = "success"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class DomainOutcome:
    """Result of fetching one domain for one date."""

    domain: Domain
    status: FetchStatus
    payload: dict[str, Any] | None = None
    error: str | None = None
    status_code: int | None = None
    # credential rejected or no HTTP response at all
    unreachable: bool = False

    @classmethod
    def success(cls, domain: Domain, payload: dict[str, Any]) -> "DomainOutcome":
        return cls(domain, FetchStatus.SUCCESS, payload=payload)

    @classmethod
    def empty(cls, domain: Domain) -> "DomainOutcome":
        return cls(domain, FetchStatus.EMPTY)

    @classmethod
    def failed(
        cls,
        domain: Domain,
        error: str,
        status_code: int | None = None,
        unreachable: bool = False,
    ) -> "DomainOutcome":
        return cls(
            domain,
            FetchStatus.FAILED,
            error=error,
            status_code=status_code,
            unreachable=unreachable,
        )


@dataclass(frozen=True)
class DayFetch:
    """All four domain outcomes for one date. Fixed shape: one slot per domain."""

    day: date
    activity: DomainOutcome
    weight: DomainOutcome
    food: DomainOutcome
    sleep: DomainOutcome

    def outcomes(self) -> tuple[DomainOutcome, ...]:
        return (self.activity, self.weight, self.food, self.sleep)

    @property
    def failures(self) -> list[DomainOutcome]:
        return [o for o in self.outcomes() if o.status == FetchStatus.FAILED]

    @property
    def unreachable(self) -> bool:
        """Every domain failed because Fitbit rejected the token or never answered.

        Error statuses such as 404 or a 503 that outlived its retries are
        ordinary domain failures, even when all four domains hit one.
        """
        return all(
            o.status == FetchStatus.FAILED and o.unreachable for o in self.outcomes()
        )


# --- Sync results ---


class SyncState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


class SyncTrigger(StrEnum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    STARTUP = "startup"


_OUTCOME_FIELD = {
    Domain.ACTIVITY: "activities",
    Domain.WEIGHT: "weights",
    Domain.FOOD: "foods",
    Domain.SLEEP: "sleep",
}


@dataclass
class SyncOutcome:
    """Per-domain counts of records persisted by one sync run."""

    activities: int = 0
    weights: int = 0
    foods: int = 0
    sleep: int = 0
    synced_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record(self, domain: Domain) -> None:
        name = _OUTCOME_FIELD[domain]
        setattr(self, name, getattr(self, name) + 1)

    @property
    def total(self) -> int:
        return self.activities + self.weights + self.foods + self.sleep

    def to_dict(self) -> dict[str, Any]:
        return {
            "activities": self.activities,
            "weights": self.weights,
            "foods": self.foods,
            "sleep": self.sleep,
            "synced_at": self.synced_at.isoformat(),
        }


@dataclass
class DomainFailure:
    day: date
    domain: Domain
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.day.isoformat(), "domain": self.domain.value, "error": self.error}


@dataclass
class SyncReport:
    """Aggregate result returned to the caller after a sync run."""

    user_id: UUID
    state: SyncState
    outcome: SyncOutcome
    dates: list[date] = field(default_factory=list)
    failures: list[DomainFailure] = field(default_factory=list)
    needs_reconnect: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": str(self.user_id),
            "state": self.state.value,
            "outcome": self.outcome.to_dict(),
            "dates": [d.isoformat() for d in self.dates],
            "failures": [f.to_dict() for f in self.failures],
            "needs_reconnect": self.needs_reconnect,
            "error": self.error,
        }
