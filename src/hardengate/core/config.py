"""3-layer configuration system for hardengate.

Loads and merges configuration from:
1. Default settings (built-in)
2. Project config (.hardengate/config.yaml)
3. Environment variables, then CLI parameters (override)
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from ..models.control import HardeningParameters
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_DIR = ".hardengate"
CONFIG_FILE = "config.yaml"

DEFAULT_CONFIG: dict = {
    "hardening": {
        "enabled": True,
        "level": 2,
        "skip_sections": [],
        "preflight_clean": True,
        "parameters": {},
        "overrides": {},
    },
    "compliance": {
        "threshold": 80,
        "fail_build": False,
        "weighted": False,
    },
    "execution": {
        "command_timeout": 600,
        "poll_interval": 10,
        "max_wait": 1800,
        "deadline": None,
    },
    "target": {
        "type": "local",
        "host": "",
        "port": 22,
        "username": "ec2-user",
        "key_file": "",
        "connect_timeout": 30,
        "strict_host_keys": False,
    },
    "output": {
        "dir": ".hardengate/reports",
        "markdown": True,
        "junit": True,
        "archive": True,
        "publish_url": "",
        "publish_token_env": "HARDENGATE_PUBLISH_TOKEN",
        "retry_attempts": 3,
        "retry_delay_seconds": 5,
    },
    "fleet": {
        "hosts": [],
        "max_parallel": 4,
    },
}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_project_config(project_path: Path) -> dict:
    """Load project configuration from .hardengate/config.yaml."""
    config_path = project_path / CONFIG_DIR / CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        data = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
    return data


def parse_bool(value: str, name: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {value!r}")


def parse_skip_sections(value) -> list[str]:
    """Accept a comma/space separated string or a list of section keys."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in value.replace(",", " ").split() if part]
    if isinstance(value, (list, tuple, set)):
        keys = []
        for item in value:
            if not isinstance(item, (str, int, float)) or not str(item).strip():
                raise ConfigurationError(f"Malformed skip_sections entry: {item!r}")
            keys.append(str(item).strip())
        return keys
    raise ConfigurationError(f"skip_sections must be a list or string, got {type(value).__name__}")


def load_env_overrides(environ: Optional[Mapping[str, str]] = None) -> dict:
    """Translate the pipeline's environment variables into config overrides."""
    env = os.environ if environ is None else environ
    overrides: dict = {}

    def put(section: str, key: str, value) -> None:
        overrides.setdefault(section, {})[key] = value

    if env.get("ENABLE_CIS_HARDENING"):
        put("hardening", "enabled", parse_bool(env["ENABLE_CIS_HARDENING"], "ENABLE_CIS_HARDENING"))
    if env.get("CIS_LEVEL"):
        try:
            put("hardening", "level", int(env["CIS_LEVEL"]))
        except ValueError as e:
            raise ConfigurationError(f"CIS_LEVEL must be 1 or 2, got {env['CIS_LEVEL']!r}") from e
    if env.get("CIS_SKIP_SECTIONS"):
        put("hardening", "skip_sections", parse_skip_sections(env["CIS_SKIP_SECTIONS"]))
    if env.get("COMPLIANCE_THRESHOLD"):
        try:
            put("compliance", "threshold", float(env["COMPLIANCE_THRESHOLD"]))
        except ValueError as e:
            raise ConfigurationError(
                f"COMPLIANCE_THRESHOLD must be a number, got {env['COMPLIANCE_THRESHOLD']!r}"
            ) from e
    if env.get("FAIL_BUILD_ON_NON_COMPLIANCE"):
        put("compliance", "fail_build", parse_bool(env["FAIL_BUILD_ON_NON_COMPLIANCE"], "FAIL_BUILD_ON_NON_COMPLIANCE"))
    return overrides


def validate_config(config: dict) -> None:
    """Fail fast with ConfigurationError before any control runs."""
    hardening = config.get("hardening") or {}
    level = hardening.get("level")
    if isinstance(level, bool) or level not in (1, 2):
        raise ConfigurationError(f"hardening.level must be 1 or 2, got {level!r}")

    hardening["skip_sections"] = parse_skip_sections(hardening.get("skip_sections"))

    overrides = hardening.get("overrides") or {}
    if not isinstance(overrides, dict):
        raise ConfigurationError("hardening.overrides must be a mapping of control id to settings")
    for control_id, override in overrides.items():
        if not isinstance(override, dict):
            raise ConfigurationError(f"hardening.overrides.{control_id} must be a mapping")
        weight = override.get("weight", 1)
        if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
            raise ConfigurationError(f"hardening.overrides.{control_id}.weight must be a non-negative integer")

    try:
        HardeningParameters(**(hardening.get("parameters") or {}))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid hardening.parameters: {e}") from e

    compliance = config.get("compliance") or {}
    threshold = compliance.get("threshold")
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 100:
        raise ConfigurationError(f"compliance.threshold must be between 0 and 100, got {threshold!r}")
    if not isinstance(compliance.get("fail_build"), bool):
        raise ConfigurationError("compliance.fail_build must be true or false")

    execution = config.get("execution") or {}
    for key in ("command_timeout", "poll_interval", "max_wait"):
        value = execution.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigurationError(f"execution.{key} must be a positive number, got {value!r}")
    deadline = execution.get("deadline")
    if deadline is not None and (isinstance(deadline, bool) or not isinstance(deadline, (int, float)) or deadline <= 0):
        raise ConfigurationError(f"execution.deadline must be a positive number of seconds, got {deadline!r}")

    target_type = (config.get("target") or {}).get("type")
    if target_type not in ("local", "ssh", "memory"):
        raise ConfigurationError(f"target.type must be local, ssh or memory, got {target_type!r}")


def get_effective_config(
    project_path: Path,
    cli_overrides: Optional[dict] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> dict:
    """Get the fully resolved and validated configuration for a run."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    project_config = load_project_config(project_path)
    if project_config:
        config = deep_merge(config, project_config)

    env_overrides = load_env_overrides(environ)
    if env_overrides:
        logger.debug("Environment overrides: %s", env_overrides)
        config = deep_merge(config, env_overrides)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    validate_config(config)
    config["_project_path"] = str(project_path)

    return config


def initialize_project(project_path: Path, force: bool = False) -> Path:
    """Write a starter .hardengate/config.yaml and return its path."""
    config_dir = project_path / CONFIG_DIR
    config_path = config_dir / CONFIG_FILE
    if config_path.exists() and not force:
        raise ConfigurationError(f"{config_path} already exists (use --force to overwrite)")
    config_dir.mkdir(parents=True, exist_ok=True)

    starter = {
        "hardening": {
            "enabled": DEFAULT_CONFIG["hardening"]["enabled"],
            "level": DEFAULT_CONFIG["hardening"]["level"],
            "skip_sections": [],
            "parameters": {"ssh_allow_users": ["ec2-user"]},
            "overrides": {},
        },
        "compliance": copy.deepcopy(DEFAULT_CONFIG["compliance"]),
        "target": {"type": "local"},
        "output": {"dir": DEFAULT_CONFIG["output"]["dir"]},
    }
    header = (
        "# hardengate configuration\n"
        "# Environment variables and CLI options override these values.\n"
        "# hardening.enabled is on by default: `hardengate run` changes the target.\n"
        "# Set it to false (or ENABLE_CIS_HARDENING=false) to only audit.\n"
    )
    config_path.write_text(header + yaml.safe_dump(starter, sort_keys=False), encoding="utf-8")
    return config_path
