"""Tests for core/config.py."""

from __future__ import annotations

import copy
from pathlib import Path

import pytest
import yaml

from hardengate.core.config import (
    DEFAULT_CONFIG,
    deep_merge,
    get_effective_config,
    initialize_project,
    load_env_overrides,
    load_project_config,
    parse_skip_sections,
    validate_config,
)
from hardengate.core.errors import ConfigurationError


def write_project_config(project: Path, data: dict) -> None:
    config_dir = project / ".hardengate"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


@pytest.fixture
def config() -> dict:
    return copy.deepcopy(DEFAULT_CONFIG)


class TestDeepMerge:
    def test_simple_merge(self):
        result = deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4})
        assert result == {"a": 1, "b": 3, "c": 4}

    def test_nested_merge(self):
        base = {"compliance": {"threshold": 80, "fail_build": False}}
        result = deep_merge(base, {"compliance": {"fail_build": True}})
        assert result["compliance"] == {"threshold": 80, "fail_build": True}

    def test_arrays_replaced(self):
        result = deep_merge({"skip_sections": ["1.1", "5.2"]}, {"skip_sections": ["3.3"]})
        assert result["skip_sections"] == ["3.3"]

    def test_base_not_mutated(self):
        base = {"a": {"b": 1}}
        deep_merge(base, {"a": {"b": 2}})
        assert base["a"]["b"] == 1


class TestLoadProjectConfig:
    def test_missing_config_returns_empty(self, tmp_path: Path):
        assert load_project_config(tmp_path) == {}

    def test_empty_config_returns_empty(self, tmp_path: Path):
        (tmp_path / ".hardengate").mkdir()
        (tmp_path / ".hardengate" / "config.yaml").write_text("", encoding="utf-8")
        assert load_project_config(tmp_path) == {}

    def test_bom_is_stripped(self, tmp_path: Path):
        (tmp_path / ".hardengate").mkdir()
        (tmp_path / ".hardengate" / "config.yaml").write_bytes(b"\xef\xbb\xbfcompliance:\n  threshold: 90\n")
        assert load_project_config(tmp_path) == {"compliance": {"threshold": 90}}

    def test_invalid_yaml(self, tmp_path: Path):
        (tmp_path / ".hardengate").mkdir()
        (tmp_path / ".hardengate" / "config.yaml").write_text("compliance: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_project_config(tmp_path)

    def test_top_level_must_be_mapping(self, tmp_path: Path):
        (tmp_path / ".hardengate").mkdir()
        (tmp_path / ".hardengate" / "config.yaml").write_text("- one\n- two\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_project_config(tmp_path)


class TestParseSkipSections:
    @pytest.mark.parametrize("value,expected", [
        (None, []),
        ("", []),
        ("1.1,5.2", ["1.1", "5.2"]),
        ("1.1 5.2", ["1.1", "5.2"]),
        (" 1.1, 5.2 ,", ["1.1", "5.2"]),
        (["1.1", " 3.3 "], ["1.1", "3.3"]),
        ([5.2], ["5.2"]),
    ])
    def test_accepted_forms(self, value, expected):
        assert parse_skip_sections(value) == expected

    @pytest.mark.parametrize("value", [[""], [None], [{"a": 1}], 42])
    def test_malformed(self, value):
        with pytest.raises(ConfigurationError):
            parse_skip_sections(value)


class TestEnvOverrides:
    def test_empty_environment(self):
        assert load_env_overrides({}) == {}

    def test_all_variables(self):
        overrides = load_env_overrides({
            "ENABLE_CIS_HARDENING": "false",
            "CIS_LEVEL": "1",
            "CIS_SKIP_SECTIONS": "1.1,5.2",
            "COMPLIANCE_THRESHOLD": "92.5",
            "FAIL_BUILD_ON_NON_COMPLIANCE": "TRUE",
        })
        assert overrides == {
            "hardening": {"enabled": False, "level": 1, "skip_sections": ["1.1", "5.2"]},
            "compliance": {"threshold": 92.5, "fail_build": True},
        }

    @pytest.mark.parametrize("env", [
        {"ENABLE_CIS_HARDENING": "maybe"},
        {"CIS_LEVEL": "two"},
        {"COMPLIANCE_THRESHOLD": "high"},
        {"FAIL_BUILD_ON_NON_COMPLIANCE": "2"},
    ])
    def test_invalid_values(self, env):
        with pytest.raises(ConfigurationError):
            load_env_overrides(env)


class TestValidateConfig:
    def test_defaults_are_valid(self, config):
        validate_config(config)

    @pytest.mark.parametrize("level", [0, 3, "2", True, None])
    def test_invalid_level(self, config, level):
        config["hardening"]["level"] = level
        with pytest.raises(ConfigurationError, match="hardening.level"):
            validate_config(config)

    @pytest.mark.parametrize("threshold", [-0.1, 101, "80", True, None])
    def test_invalid_threshold(self, config, threshold):
        config["compliance"]["threshold"] = threshold
        with pytest.raises(ConfigurationError, match="threshold"):
            validate_config(config)

    def test_fail_build_must_be_bool(self, config):
        config["compliance"]["fail_build"] = "yes"
        with pytest.raises(ConfigurationError, match="fail_build"):
            validate_config(config)

    def test_skip_sections_normalised(self, config):
        config["hardening"]["skip_sections"] = "1.1, 5.2"
        validate_config(config)
        assert config["hardening"]["skip_sections"] == ["1.1", "5.2"]

    def test_invalid_override_weight(self, config):
        config["hardening"]["overrides"] = {"1.1.1": {"weight": -1}}
        with pytest.raises(ConfigurationError, match="weight"):
            validate_config(config)

    def test_invalid_parameters(self, config):
        config["hardening"]["parameters"] = {"ssh_allow_users": []}
        with pytest.raises(ConfigurationError, match="parameters"):
            validate_config(config)

    @pytest.mark.parametrize("key", ["poll_interval", "max_wait", "command_timeout"])
    def test_execution_values_positive(self, config, key):
        config["execution"][key] = 0
        with pytest.raises(ConfigurationError, match=key):
            validate_config(config)

    def test_invalid_deadline(self, config):
        config["execution"]["deadline"] = -5
        with pytest.raises(ConfigurationError, match="deadline"):
            validate_config(config)

    def test_unknown_target_type(self, config):
        config["target"]["type"] = "winrm"
        with pytest.raises(ConfigurationError, match="target.type"):
            validate_config(config)


class TestGetEffectiveConfig:
    def test_defaults_applied(self, tmp_path: Path):
        config = get_effective_config(tmp_path, environ={})
        assert config["hardening"]["level"] == 2
        assert config["compliance"]["threshold"] == 80
        assert config["compliance"]["fail_build"] is False
        assert config["_project_path"] == str(tmp_path)

    def test_project_overrides_defaults(self, tmp_path: Path):
        write_project_config(tmp_path, {"compliance": {"threshold": 95}})
        config = get_effective_config(tmp_path, environ={})
        assert config["compliance"]["threshold"] == 95
        assert config["compliance"]["weighted"] is False

    def test_environment_overrides_project(self, tmp_path: Path):
        write_project_config(tmp_path, {"compliance": {"threshold": 95}})
        config = get_effective_config(tmp_path, environ={"COMPLIANCE_THRESHOLD": "70"})
        assert config["compliance"]["threshold"] == 70

    def test_cli_overrides_environment(self, tmp_path: Path):
        config = get_effective_config(
            tmp_path,
            cli_overrides={"hardening": {"level": 1}},
            environ={"CIS_LEVEL": "2"},
        )
        assert config["hardening"]["level"] == 1

    def test_invalid_project_value_fails_fast(self, tmp_path: Path):
        write_project_config(tmp_path, {"hardening": {"level": 5}})
        with pytest.raises(ConfigurationError):
            get_effective_config(tmp_path, environ={})


class TestInitializeProject:
    def test_writes_loadable_config(self, tmp_path: Path):
        path = initialize_project(tmp_path)
        assert path == tmp_path / ".hardengate" / "config.yaml"
        data = load_project_config(tmp_path)
        assert data["hardening"]["level"] == 2
        assert data["hardening"]["parameters"]["ssh_allow_users"] == ["ec2-user"]
        get_effective_config(tmp_path, environ={})

    def test_header_warns_that_run_changes_target(self, tmp_path: Path):
        path = initialize_project(tmp_path)
        text = path.read_text(encoding="utf-8")
        assert "`hardengate run` changes the target" in text
        assert "ENABLE_CIS_HARDENING=false" in text
        assert load_project_config(tmp_path)["hardening"]["enabled"] is True

    def test_refuses_to_overwrite(self, tmp_path: Path):
        initialize_project(tmp_path)
        with pytest.raises(ConfigurationError, match="already exists"):
            initialize_project(tmp_path)

    def test_force_overwrites(self, tmp_path: Path):
        path = initialize_project(tmp_path)
        path.write_text("compliance: {threshold: 10}\n", encoding="utf-8")
        initialize_project(tmp_path, force=True)
        assert load_project_config(tmp_path)["compliance"]["threshold"] == 80
