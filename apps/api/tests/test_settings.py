import pytest
from pydantic import ValidationError

from campaign_api.core.settings import Settings


def test_settings_fields_are_all_in_use() -> None:
    assert set(Settings.model_fields) == {
        "environment",
        "database_url",
        "database_echo",
        "tracing_enabled",
        "log_level",
        "calendar_enabled",
        "calendar_feature_key",
        "calendar_admin_api_key",
        "calendar_default_raffle_id",
        "calendar_max_timezone_offset_minutes",
    }


def test_calendar_defaults() -> None:
    config = Settings(_env_file=None)

    assert config.calendar_default_raffle_id == "mega_25"
    assert config.calendar_feature_key == "calendar_enabled"
    assert config.calendar_max_timezone_offset_minutes == 840


def test_log_level_is_normalized() -> None:
    assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="verbose")


def test_negative_offset_bound_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, calendar_max_timezone_offset_minutes=-1)
