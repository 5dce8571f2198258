"""Tests for publishing settings."""

import pytest

from gradesync.config import PublishingSettings, parse_bool, parse_timeout


class TestParsing:
    @pytest.mark.parametrize("value,expected", [
        (True, True), (False, False), (None, False),
        ("yes", True), ("no", False), ("on", True), ("off", False),
        ("1", True), ("0", False), ("TRUE", True), (" false ", False),
        ("", False), (1, True), (0, False),
    ])
    def test_parse_bool(self, value, expected):
        assert parse_bool(value) is expected

    def test_parse_bool_default(self):
        assert parse_bool(None, default=True) is True

    def test_parse_bool_rejects_garbage(self):
        with pytest.raises(ValueError, match="not a boolean"):
            parse_bool("maybe")

    @pytest.mark.parametrize("value,expected", [
        (None, None), ("", None), ("no", None), ("false", None), (False, None),
        ("0", None), ("600", 600.0), (30, 30.0), ("1.5", 1.5), (0, 0.0),
    ])
    def test_parse_timeout(self, value, expected):
        assert parse_timeout(value) == expected

    def test_parse_timeout_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_timeout("soon")


class TestShouldKickOffTimeout:
    @pytest.mark.parametrize("timeout,wait,expected", [
        (600, True, True),
        (600, False, False),
        (None, True, False),
        (0, True, False),
        (-5, True, False),
    ])
    def test_requires_positive_timeout_and_wait(self, timeout, wait, expected):
        settings = PublishingSettings(
            enabled=True, success_timeout_seconds=timeout, wait_for_success=wait,
        )
        assert settings.should_kick_off_timeout is expected


class TestLoading:
    def test_defaults(self):
        settings = PublishingSettings()
        assert settings.enabled is False
        assert settings.format_type == "instructure_csv"
        assert settings.publish_endpoint == ""
        assert settings.request_timeout_seconds == 30.0

    def test_from_dict_with_legacy_keys(self):
        settings = PublishingSettings.from_dict({
            "enabled": "yes",
            "publish_endpoint": "https://sis.example.com/grades",
            "success_timeout": "600",
            "wait_for_success": "on",
        })
        assert settings.enabled is True
        assert settings.success_timeout_seconds == 600.0
        assert settings.should_kick_off_timeout

    def test_from_dict_timeout_disabled(self):
        settings = PublishingSettings.from_dict({"success_timeout": "no", "wait_for_success": "yes"})
        assert settings.success_timeout_seconds is None
        assert not settings.should_kick_off_timeout

    def test_from_yaml_nested(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "grade_export:\n"
            "  enabled: true\n"
            "  format_type: instructure_csv\n"
            "  publish_endpoint: http://localhost/endpoint\n"
            "  success_timeout_seconds: 120\n"
            "  wait_for_success: false\n"
            "  request_timeout_seconds: 5\n"
        )
        settings = PublishingSettings.from_yaml(path)
        assert settings.enabled is True
        assert settings.publish_endpoint == "http://localhost/endpoint"
        assert settings.success_timeout_seconds == 120.0
        assert settings.wait_for_success is False
        assert settings.request_timeout_seconds == 5.0

    def test_from_yaml_bare_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("enabled: yes\npublish_endpoint: http://x\n")
        assert PublishingSettings.from_yaml(path).publish_endpoint == "http://x"

    def test_from_yaml_empty_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")
        assert PublishingSettings.from_yaml(path) == PublishingSettings()

    def test_from_yaml_rejects_list(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- enabled\n")
        with pytest.raises(ValueError, match="expected a mapping"):
            PublishingSettings.from_yaml(path)

    def test_from_env(self):
        settings = PublishingSettings.from_env({
            "GRADESYNC_ENABLED": "1",
            "GRADESYNC_PUBLISH_ENDPOINT": "http://sis",
            "GRADESYNC_SUCCESS_TIMEOUT_SECONDS": "30",
            "GRADESYNC_WAIT_FOR_SUCCESS": "true",
            "UNRELATED": "ignored",
        })
        assert settings.enabled is True
        assert settings.publish_endpoint == "http://sis"
        assert settings.should_kick_off_timeout

    def test_round_trip_through_dict(self):
        settings = PublishingSettings(enabled=True, publish_endpoint="http://sis", success_timeout_seconds=9.0)
        assert PublishingSettings.from_dict(settings.to_dict()) == settings
