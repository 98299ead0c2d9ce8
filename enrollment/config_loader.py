"""Configuration loading utilities for the enrollment workflow.

Provides a centralized way to load and validate the parameters.yaml
configuration file used by the wizard, the registration forms, the records
API client and the command-line entry point.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .enums import RecordKind

SCRIPT_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = SCRIPT_DIR.parent / "config" / "parameters.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "api": {
        "base_url": "http://localhost:5000/api",
        "timeout_seconds": 30,
    },
    "uploads": {
        "max_image_bytes": 5 * 1024 * 1024,
    },
    "age_limits": {
        "student": {"min": 3, "max": 22},
        "staff": {"min": 18},
        "teacher": {"min": 18},
        "driver": {"min": 18},
    },
    "identifiers": {
        "prefixes": {
            "student": "",
            "staff": "STF",
            "teacher": "TCHR",
            "driver": "DRV",
        },
    },
    "transport": {
        "stop_match_threshold": 85,
    },
    "validation": {
        "fail_open": True,
    },
    "display": {
        "locale": "en_IN",
    },
}


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load and parse the parameters.yaml configuration file.

    Values from the file are layered over DEFAULT_CONFIG, so sections that
    are missing from the file keep their defaults. The merged configuration
    is validated before it is returned.

    Parameters
    ----------
    config_path : Path, optional
        Path to the configuration file. If not provided, uses the default
        location (config/parameters.yaml in the project root).

    Returns
    -------
    Dict[str, Any]
        Parsed, merged and validated configuration.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    yaml.YAMLError
        If the configuration file is invalid YAML.
    ValueError
        If the configuration fails validation (see validate_config).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ValueError(
            f"Configuration root must be a mapping, got {type(loaded).__name__}"
        )

    config = merge_config(DEFAULT_CONFIG, loaded)
    validate_config(config)
    return config


def default_config() -> Dict[str, Any]:
    """Return a deep copy of the built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively layer ``override`` over ``base`` without mutating either."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Dict[str, Any]) -> None:
    """Validate the entire configuration for consistency and required values.

    Parameters
    ----------
    config : Dict[str, Any]
        Configuration dictionary (result of load_config).

    Raises
    ------
    ValueError
        If required configuration is missing or invalid.

    Notes
    -----
    **Validation checks:**

    - **API:** base_url is a non-empty string; timeout_seconds is a positive number
    - **Uploads:** max_image_bytes is a positive integer
    - **Age limits:** keys are known record kinds; min/max are integers, min <= max
    - **Identifiers:** prefixes are strings keyed by known record kinds
    - **Transport:** stop_match_threshold is a number between 0 and 100
    - **Validation:** fail_open is a boolean
    """
    api_config = config.get("api", {})
    base_url = api_config.get("base_url")
    if not base_url or not isinstance(base_url, str):
        raise ValueError("api.base_url must be a non-empty string")

    timeout = api_config.get("timeout_seconds", 30)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise ValueError(
            f"api.timeout_seconds must be a number, got {type(timeout).__name__}"
        )
    if timeout <= 0:
        raise ValueError(f"api.timeout_seconds must be positive, got {timeout}")

    max_bytes = config.get("uploads", {}).get("max_image_bytes", 0)
    if isinstance(max_bytes, bool) or not isinstance(max_bytes, int):
        raise ValueError(
            f"uploads.max_image_bytes must be an integer, got {type(max_bytes).__name__}"
        )
    if max_bytes <= 0:
        raise ValueError(f"uploads.max_image_bytes must be positive, got {max_bytes}")

    known_kinds = RecordKind.all_values()

    for kind, limits in config.get("age_limits", {}).items():
        if kind not in known_kinds:
            raise ValueError(
                f"Unknown record kind in age_limits: {kind}. "
                f"Valid options: {', '.join(sorted(known_kinds))}"
            )
        if not isinstance(limits, dict):
            raise ValueError(f"age_limits.{kind} must be a mapping")
        for bound in ("min", "max"):
            value = limits.get(bound)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, int)
            ):
                raise ValueError(
                    f"age_limits.{kind}.{bound} must be an integer, "
                    f"got {type(value).__name__}"
                )
        low, high = limits.get("min"), limits.get("max")
        if low is not None and high is not None and low > high:
            raise ValueError(
                f"age_limits.{kind}: min ({low}) must not exceed max ({high})"
            )

    prefixes = config.get("identifiers", {}).get("prefixes", {})
    for kind, prefix in prefixes.items():
        if kind not in known_kinds:
            raise ValueError(f"Unknown record kind in identifiers.prefixes: {kind}")
        if prefix is not None and not isinstance(prefix, str):
            raise ValueError(
                f"identifiers.prefixes.{kind} must be a string, "
                f"got {type(prefix).__name__}"
            )

    threshold = config.get("transport", {}).get("stop_match_threshold", 85)
    if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
        raise ValueError(
            f"transport.stop_match_threshold must be a number, "
            f"got {type(threshold).__name__}"
        )
    if not 0 <= threshold <= 100:
        raise ValueError(
            f"transport.stop_match_threshold must be between 0 and 100, got {threshold}"
        )

    fail_open = config.get("validation", {}).get("fail_open", True)
    if not isinstance(fail_open, bool):
        raise ValueError(
            f"validation.fail_open must be a boolean, got {type(fail_open).__name__}"
        )


def age_limits_for(config: Dict[str, Any], kind: RecordKind) -> tuple[Optional[int], Optional[int]]:
    """Return the (min, max) age bounds configured for a record kind."""
    limits = config.get("age_limits", {}).get(kind.value, {}) or {}
    return limits.get("min"), limits.get("max")


def identifier_prefix_for(config: Dict[str, Any], kind: RecordKind) -> str:
    """Return the identifier prefix configured for a record kind ('' for none)."""
    prefixes = config.get("identifiers", {}).get("prefixes", {}) or {}
    return prefixes.get(kind.value) or ""
