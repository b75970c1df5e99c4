"""
Registry and Settings Tests

Config files are validated completely before any fetch starts.
"""

import json

import pytest

from aggregator.config import AggregatorSettings
from aggregator.contracts import Credential, InstanceDescriptor
from aggregator.errors import ConfigurationError
from aggregator.registry import InstanceRegistry, validate_descriptors


def write_config(tmp_path, config) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return str(path)


class TestInstanceRegistry:

    def test_loads_sites_in_order(self, tmp_path):
        path = write_config(tmp_path, {"sites": [
            {"name": "rust-lang", "user": "me@example.com", "token": "abc"},
            {"name": "team", "user": "me@example.com", "token": "def", "url": "https://chat.example.com/"},
        ]})

        registry = InstanceRegistry.load(path)

        assert registry.count == 2
        assert [d.name for d in registry.all_instances()] == ["rust-lang", "team"]
        assert registry.get("rust-lang").base_address == "https://rust-lang.zulipchat.com"
        assert registry.get("team").api_url("messages") == "https://chat.example.com/api/v1/messages"
        assert registry.get("team").credential.as_auth() == ("me@example.com", "def")
        assert registry.settings == AggregatorSettings()

    def test_duplicate_names_rejected(self, tmp_path):
        path = write_config(tmp_path, {"sites": [
            {"name": "team", "user": "a", "token": "1"},
            {"name": "team", "user": "b", "token": "2"},
        ]})

        with pytest.raises(ConfigurationError, match="Duplicate"):
            InstanceRegistry.load(path)

    def test_missing_credential_fields(self, tmp_path):
        path = write_config(tmp_path, {"sites": [{"name": "team", "user": "a"}]})

        with pytest.raises(ConfigurationError, match="token"):
            InstanceRegistry.load(path)

    def test_missing_sites(self, tmp_path):
        with pytest.raises(ConfigurationError, match="sites"):
            InstanceRegistry.load(write_config(tmp_path, {"instances": []}))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            InstanceRegistry.load(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            InstanceRegistry.load(path)

    def test_settings_section(self, tmp_path):
        path = write_config(tmp_path, {
            "sites": [],
            "settings": {"budget_seconds": 5, "max_messages": 50, "lookback_minutes": 30},
        })

        settings = InstanceRegistry.load(path).settings

        assert settings.budget_seconds == 5.0
        assert settings.max_messages == 50
        assert settings.lookback_minutes == 30.0
        assert settings.page_size == 100


class TestValidateDescriptors:

    def test_accepts_unique_names(self):
        descriptors = [
            InstanceDescriptor.for_zulip("a", "u", "t"),
            InstanceDescriptor.for_zulip("b", "u", "t"),
        ]

        assert validate_descriptors(descriptors) == tuple(descriptors)

    def test_rejects_blank_name(self):
        with pytest.raises(ConfigurationError):
            validate_descriptors([InstanceDescriptor.for_zulip("  ", "u", "t")])


class TestSettings:

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown settings: budget"):
            AggregatorSettings.from_dict({"budget": 3})

    def test_bad_value_rejected(self):
        with pytest.raises(ConfigurationError):
            AggregatorSettings.from_dict({"page_size": "many"})

    def test_non_positive_budget_rejected(self):
        with pytest.raises(ConfigurationError):
            AggregatorSettings(budget_seconds=0)

    def test_overrides_skip_none(self):
        settings = AggregatorSettings().with_overrides(budget_seconds=3.0, max_messages=None)

        assert settings.budget_seconds == 3.0
        assert settings.max_messages == 200


class TestCredential:

    def test_token_not_in_repr(self):
        credential = Credential(user="me@example.com", token="s3cret")

        assert "s3cret" not in repr(credential)
        assert "s3cret" not in repr(InstanceDescriptor("team", "https://x", credential))
