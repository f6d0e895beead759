#!/usr/bin/env python3
"""
Tests for configuration loading
"""

import pytest
from pydantic import ValidationError

from machineset_autoscaler.config.settings import (
    AAPSettings,
    PollingSettings,
    ScalingSettings,
    Settings,
    parse_instance_groups,
)
from machineset_autoscaler.core.exceptions import ConfigurationError


class TestInstanceGroups:

    def test_comma_separated_and_trimmed(self):
        assert parse_instance_groups(" grp-a, grp-b ,grp-c") == ["grp-a", "grp-b", "grp-c"]

    def test_single_group(self):
        assert parse_instance_groups("default") == ["default"]

    def test_list_input(self):
        assert parse_instance_groups(["grp-a", " grp-b "]) == ["grp-a", "grp-b"]

    @pytest.mark.parametrize("raw", [None, "", "   ", [], "grp-a,,grp-b", "grp-a,", "grp-a, grp-a", [1]])
    def test_malformed(self, raw):
        with pytest.raises(ConfigurationError):
            parse_instance_groups(raw)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("AAP_INSTANCE_GROUPS", "grp-a,grp-b")
        monkeypatch.setenv("AAP_URL", "https://aap.example.com")

        settings = AAPSettings()

        assert settings.get_instance_groups() == ["grp-a", "grp-b"]
        assert settings.url == "https://aap.example.com"

    def test_unprefixed_variable_is_accepted(self, monkeypatch):
        monkeypatch.delenv("AAP_INSTANCE_GROUPS", raising=False)
        monkeypatch.setenv("INSTANCE_GROUPS", "legacy-a, legacy-b")

        assert AAPSettings().get_instance_groups() == ["legacy-a", "legacy-b"]

    def test_prefixed_variable_wins(self, monkeypatch):
        monkeypatch.setenv("INSTANCE_GROUPS", "legacy-a")
        monkeypatch.setenv("AAP_INSTANCE_GROUPS", "grp-a")

        assert AAPSettings().get_instance_groups() == ["grp-a"]

    def test_keyword_argument(self, monkeypatch):
        monkeypatch.delenv("AAP_INSTANCE_GROUPS", raising=False)
        monkeypatch.delenv("INSTANCE_GROUPS", raising=False)

        assert AAPSettings(instance_groups="grp-a").get_instance_groups() == ["grp-a"]


class TestDefaults:

    def test_retry_policy(self):
        settings = AAPSettings()

        assert settings.request_timeout == 30.0
        assert settings.max_attempts == 5
        assert settings.retry_backoff == 2.0
        assert settings.retry_status == 504

    def test_scaling(self):
        settings = ScalingSettings()

        assert settings.drain_delay == 60.0
        assert settings.machineset_namespace == "openshift-machine-api"
        assert settings.get_workload_namespaces() == ["aap-jobs", "uat-jobs"]

    def test_polling(self):
        settings = PollingSettings()

        assert settings.node_interval == 10.0
        assert settings.backlog_interval == 10.0
        assert settings.channel_size == 1
        assert settings.overflow_policy == "block"

    def test_invalid_overflow_policy(self):
        with pytest.raises(ValidationError):
            PollingSettings(overflow_policy="drop_newest")

    def test_empty_workload_namespaces(self):
        with pytest.raises(ConfigurationError):
            ScalingSettings(workload_namespaces=" , ").get_workload_namespaces()


class TestSettings:

    def test_validate_runtime_requires_instance_groups(self):
        settings = Settings(aap=AAPSettings(instance_groups=""))

        with pytest.raises(ConfigurationError):
            settings.validate_runtime()

    def test_validate_runtime_passes(self):
        Settings(aap=AAPSettings(url="https://aap", instance_groups="grp-a")).validate_runtime()

    def test_load_from_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_AAP_TOKEN", "from-env")
        config = tmp_path / "config.yaml"
        config.write_text(
            "aap:\n"
            "  url: https://aap.example.com\n"
            "  token: ${TEST_AAP_TOKEN}\n"
            "  instance_groups:\n"
            "    - grp-a\n"
            "    - grp-b\n"
            "polling:\n"
            "  node_interval: 5\n"
            "  overflow_policy: drop_oldest\n"
            "scaling:\n"
            "  machineset_name: workers\n"
            "  workload_namespaces: [jobs]\n"
            "api:\n"
            "  enabled: false\n"
        )

        settings = Settings.load_from_yaml(str(config))

        assert settings.aap.token == "from-env"
        assert settings.aap.get_instance_groups() == ["grp-a", "grp-b"]
        assert settings.polling.node_interval == 5.0
        assert settings.polling.overflow_policy == "drop_oldest"
        assert settings.scaling.machineset_name == "workers"
        assert settings.scaling.get_workload_namespaces() == ["jobs"]
        assert settings.api.enabled is False

    def test_yaml_duplicate_groups(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("aap:\n  instance_groups: [grp-a, grp-a]\n")

        with pytest.raises(ConfigurationError):
            Settings.load_from_yaml(str(config))
