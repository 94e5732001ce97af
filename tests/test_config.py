"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from shared.config import Settings


def test_defaults_need_no_fitbit_credentials():
    config = Settings(_env_file=None, fitbit_client_id="", fitbit_client_secret="")

    assert config.sync_interval_minutes == 30
    assert config.sync_window_days == 7


def test_empty_session_secret_is_rejected():
    with pytest.raises(ValidationError, match="HJ_SESSION_SECRET"):
        Settings(_env_file=None, session_secret="")
