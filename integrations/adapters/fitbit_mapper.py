"""Fitbit Web API -> canonical record normalizers.

Inbound anti-corruption layer: one pure function per domain translating a
Fitbit daily response into the canonical record for (user, date).

Every normalizer tolerates missing optional sub-fields (zero/empty
defaults) and returns None when the payload holds no data for the date.
A payload of the wrong shape raises (TypeError / ValueError / AttributeError);
the orchestrator counts that as a failed domain.

Weight responses come in three historically observed shapes. They are
tried in a fixed priority order, see WEIGHT_SOURCE_PRIORITY.
"""

import math
from collections.abc import Callable
from datetime import date, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from integrations.domain.models import (
    ActivityRecord,
    CanonicalRecord,
    Domain,
    FoodItem,
    FoodRecord,
    MealType,
    SleepRecord,
    SleepStages,
    WeightRecord,
)
from integrations.domain.units import to_pounds

MEAL_TYPES: dict[int, MealType] = {
    1: MealType.BREAKFAST,
    2: MealType.MORNING_SNACK,
    3: MealType.LUNCH,
    4: MealType.AFTERNOON_SNACK,
    5: MealType.DINNER,
    6: MealType.EVENING_SNACK,
}

UNKNOWN_FOOD_NAME = "Unknown Food"


def meal_type_for(code: Any) -> MealType:
    """Map a Fitbit mealTypeId to a meal slot. Unknown codes are snacks."""
    try:
        return MEAL_TYPES.get(int(code), MealType.SNACK)
    except (TypeError, ValueError):
        return MealType.SNACK


def _ms_to_min(ms: int | float | None) -> int:
    """Milliseconds to whole minutes, halves rounded up."""
    return math.floor((ms or 0) / 60000 + 0.5)


def _parse_time(value: str | None) -> datetime | None:
    """Parse a Fitbit wall-clock timestamp ("2024-03-14T23:02:30.000")."""
    return datetime.fromisoformat(value) if value else None


# --- Activity ---


def normalize_activity(payload: dict[str, Any], user_id: UUID, day: date) -> ActivityRecord | None:
    summary = payload.get("summary")
    if not isinstance(summary, dict):
        return None

    distances = summary.get("distances") or []
    distance = (distances[0].get("distance") or 0) if distances else 0

    return ActivityRecord(
        user_id=user_id,
        date=day,
        steps=summary.get("steps") or 0,
        distance=distance,
        calories=summary.get("caloriesOut") or 0,
        active_minutes=(summary.get("veryActiveMinutes") or 0)
        + (summary.get("fairlyActiveMinutes") or 0),
    )


# --- Weight ---


class WeightSource(StrEnum):
    LOG = "log"  # manual weight-log entries: {"weight": [{...}, ...]}
    BODY = "body"  # body composition: {"body": {"weight": .., "bmi": .., "fat": ..}}
    SUMMARY = "summary"  # generic summary field: {"summary": {"weight": ..}}


def _weight_from_log(payload: dict[str, Any]) -> dict[str, Any] | None:
    entries = [e for e in payload.get("weight") or [] if e.get("weight") is not None]
    return entries[-1] if entries else None


def _weight_from_body(payload: dict[str, Any]) -> dict[str, Any] | None:
    body = payload.get("body")
    if isinstance(body, dict) and body.get("weight"):
        return body
    return None


def _weight_from_summary(payload: dict[str, Any]) -> dict[str, Any] | None:
    summary = payload.get("summary")
    if isinstance(summary, dict) and summary.get("weight"):
        return {"weight": summary["weight"]}
    return None


WEIGHT_SOURCE_PRIORITY: tuple[
    tuple[WeightSource, Callable[[dict[str, Any]], dict[str, Any] | None]], ...
] = (
    (WeightSource.LOG, _weight_from_log),
    (WeightSource.BODY, _weight_from_body),
    (WeightSource.SUMMARY, _weight_from_summary),
)


def select_weight_entry(payload: dict[str, Any]) -> tuple[WeightSource, dict[str, Any]] | None:
    """First shape in priority order that carries a weight, with its entry."""
    for source, extract in WEIGHT_SOURCE_PRIORITY:
        entry = extract(payload)
        if entry is not None:
            return source, entry
    return None


def normalize_weight(payload: dict[str, Any], user_id: UUID, day: date) -> WeightRecord | None:
    selected = select_weight_entry(payload)
    if selected is None:
        return None
    _, entry = selected

    return WeightRecord(
        user_id=user_id,
        date=day,
        weight=to_pounds(float(entry["weight"])),
        bmi=entry.get("bmi"),
        fat_percentage=entry.get("fat"),
    )


# --- Food ---


def _food_item(entry: dict[str, Any], day: date) -> FoodItem:
    logged = entry.get("loggedFood") or {}
    log_id = entry.get("logId")
    return FoodItem(
        name=logged.get("name") or UNKNOWN_FOOD_NAME,
        calories=logged.get("calories") or 0,
        meal_type=meal_type_for(logged.get("mealTypeId")),
        time=logged.get("logDate") or entry.get("logDate") or day.isoformat(),
        log_id=str(log_id) if log_id is not None else None,
    )


def normalize_food(payload: dict[str, Any], user_id: UUID, day: date) -> FoodRecord | None:
    summary = payload.get("summary")
    foods = payload.get("foods") or []
    if summary is None and not foods:
        return None
    summary = summary or {}

    return FoodRecord(
        user_id=user_id,
        date=day,
        calories=summary.get("calories") or 0,
        foods=[_food_item(entry, day) for entry in foods],
        water=summary.get("water") or 0,
    )


# --- Sleep ---


def normalize_sleep(payload: dict[str, Any], user_id: UUID, day: date) -> SleepRecord | None:
    logs = payload.get("sleep") or []
    if not logs:
        return None
    main = next((s for s in logs if s.get("isMainSleep")), logs[0])

    levels = (main.get("levels") or {}).get("summary") or {}

    def stage_minutes(name: str) -> int:
        return (levels.get(name) or {}).get("minutes") or 0

    wake = stage_minutes("wake")
    in_bed = _ms_to_min(main.get("duration"))

    return SleepRecord(
        user_id=user_id,
        date=day,
        duration=max(0, in_bed - wake),
        efficiency=main.get("efficiency") or 0,
        start_time=_parse_time(main.get("startTime")),
        end_time=_parse_time(main.get("endTime")),
        stages=SleepStages(
            deep=stage_minutes("deep"),
            light=stage_minutes("light"),
            rem=stage_minutes("rem"),
            wake=wake,
        ),
    )


# --- Dispatch ---

NORMALIZERS: dict[Domain, Callable[[dict[str, Any], UUID, date], CanonicalRecord | None]] = {
    Domain.ACTIVITY: normalize_activity,
    Domain.WEIGHT: normalize_weight,
    Domain.FOOD: normalize_food,
    Domain.SLEEP: normalize_sleep,
}


def is_empty(domain: Domain, payload: dict[str, Any]) -> bool:
    """True when a successful response holds nothing logged for the date."""
    if domain is Domain.ACTIVITY:
        return not isinstance(payload.get("summary"), dict)
    if domain is Domain.WEIGHT:
        return select_weight_entry(payload) is None
    if domain is Domain.FOOD:
        return payload.get("summary") is None and not payload.get("foods")
    return not payload.get("sleep")


def normalize(
    domain: Domain, payload: dict[str, Any], user_id: UUID, day: date
) -> CanonicalRecord | None:
    return NORMALIZERS[domain](payload, user_id, day)
