"""Shared test fixtures."""

import json
import sys
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from uuid import UUID

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrations.domain.models import IntegrationRecord  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"
USER_ID = UUID("a1b2c3d4-5678-90ab-cdef-1234567890ab")
OTHER_USER_ID = UUID("0f9e8d7c-6b5a-4321-8765-fedcba098765")
SYNC_DATE = date(2024, 3, 14)
NOW = datetime(2024, 3, 14, 12, 0, tzinfo=UTC)


def load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text())


@pytest.fixture
def activity_response():
    return load_fixture("fitbit_activity_response.json")


@pytest.fixture
def weight_response():
    return load_fixture("fitbit_weight_response.json")


@pytest.fixture
def food_response():
    return load_fixture("fitbit_food_response.json")


@pytest.fixture
def sleep_response():
    return load_fixture("fitbit_sleep_response.json")


@pytest.fixture
def fitbit_responses(activity_response, weight_response, food_response, sleep_response):
    """Daily payloads keyed by endpoint path fragment, same for every date."""
    return {
        "/activities/date/": activity_response,
        "/body/log/weight/date/": weight_response,
        "/foods/log/date/": food_response,
        "/sleep/date/": sleep_response,
    }


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def integration():
    """An active integration whose token is valid for another day."""
    return IntegrationRecord(
        user_id=USER_ID,
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=NOW + timedelta(days=1),
    )
