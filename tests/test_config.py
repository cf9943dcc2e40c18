"""Tests for PublishSettings and environment handling."""

from pathlib import Path

import pytest

from p4publish.config import PublishSettings, setting_value


class TestSettingValue:
    def test_strips(self):
        assert setting_value("  perforce:1666 ") == "perforce:1666"

    def test_empty_is_unset(self):
        assert setting_value("") is None
        assert setting_value("   ") is None
        assert setting_value(None) is None

    def test_placeholder_is_unset(self):
        assert setting_value("${p4.port}") is None


class TestPublishSettings:
    def test_defaults(self):
        s = PublishSettings()
        assert s.workspace_prefix == "p4publish_"
        assert s.pending_lookback == 1000
        assert s.file_type == "binary"
        assert isinstance(s.temp_root, Path)

    def test_temp_root_coerced(self, tmp_path):
        s = PublishSettings(temp_root=str(tmp_path))
        assert s.temp_root == tmp_path

    def test_lookback_must_be_positive(self):
        with pytest.raises(ValueError):
            PublishSettings(pending_lookback=0)

    def test_from_env(self, tmp_path):
        env = {
            "P4PUBLISH_TMPDIR": str(tmp_path),
            "P4PUBLISH_PREFIX": "ivyp4_",
            "P4PUBLISH_LOOKBACK": "50",
            "P4PUBLISH_FILETYPE": "binary+l",
        }
        s = PublishSettings.from_env(env)
        assert s.temp_root == tmp_path
        assert s.workspace_prefix == "ivyp4_"
        assert s.pending_lookback == 50
        assert s.file_type == "binary+l"

    def test_from_env_ignores_placeholders(self):
        s = PublishSettings.from_env({"P4PUBLISH_PREFIX": "${prefix}"})
        assert s.workspace_prefix == "p4publish_"

    def test_from_env_bad_lookback(self):
        with pytest.raises(ValueError, match="P4PUBLISH_LOOKBACK") as exc_info:
            PublishSettings.from_env({"P4PUBLISH_LOOKBACK": "many"})
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_overrides_win(self):
        s = PublishSettings.from_env({"P4PUBLISH_PREFIX": "env_"}, workspace_prefix="kw_")
        assert s.workspace_prefix == "kw_"
