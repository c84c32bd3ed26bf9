"""
Configuration management for webcert-check.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator


class Config(BaseModel):
    """Configuration model for webcert-check."""

    # Probe target ("host" or "host:port")
    target: Optional[str] = None

    # Monitoring mode
    prometheus: bool = Field(default=False)
    port: int = Field(default=2112, ge=1, le=65535)
    bind_address: str = Field(default="0.0.0.0")  # nosec B104
    probe_interval: str = Field(default="10s")

    # Value published on the days gauge when a probe fails
    failure_value: float = Field(default=-1.0)

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = None
    verbose: bool = Field(default=False)

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: Optional[str]) -> Optional[str]:
        """Strip surrounding whitespace and reject empty targets."""
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("target cannot be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("probe_interval")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate duration format (e.g., '10s', '5m', '1h')."""
        if not v:
            raise ValueError("Duration cannot be empty")

        pattern = r"^\d+[smhd]$"
        if not re.match(pattern, v):
            raise ValueError("Duration must be in format like '5m', '1h', '30s', '1d'")
        if int(v[:-1]) == 0:
            raise ValueError("Duration must be greater than zero")
        return v

    def parse_duration_seconds(self, duration: str) -> int:
        """Parse duration string to seconds."""
        match = re.match(r"^(\d+)([smhd])$", duration)
        if not match:
            raise ValueError(f"Invalid duration format: {duration}")

        value, unit = match.groups()

        multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400}

        return int(value) * multipliers[unit]

    @property
    def probe_interval_seconds(self) -> int:
        """Get probe interval in seconds."""
        return self.parse_duration_seconds(self.probe_interval)

    @property
    def effective_log_level(self) -> str:
        """Log level after applying the verbose switch."""
        return "DEBUG" if self.verbose else self.log_level


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_config(
    config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None
) -> Config:
    """
    Load configuration from file, environment variables and explicit overrides.

    Later sources win: file, then ``WEBCERT_CHECK_*`` variables, then
    ``overrides`` (typically command line options). ``None`` values in
    ``overrides`` are ignored.

    Args:
        config_path: Path to a YAML configuration file
        overrides: Values that take precedence over everything else

    Returns:
        Config object
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        else:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

    config_data.update(_get_env_overrides())

    if overrides:
        config_data.update({k: v for k, v in overrides.items() if v is not None})

    return Config(**config_data)


def _get_env_overrides() -> dict:
    """Get configuration overrides from environment variables."""
    env_mapping: Dict[str, tuple[str, Callable[[str], Any]]] = {
        "WEBCERT_CHECK_TARGET": ("target", str),
        "WEBCERT_CHECK_PROMETHEUS": ("prometheus", _parse_bool),
        "WEBCERT_CHECK_PORT": ("port", int),
        "WEBCERT_CHECK_BIND_ADDRESS": ("bind_address", str),
        "WEBCERT_CHECK_PROBE_INTERVAL": ("probe_interval", str),
        "WEBCERT_CHECK_FAILURE_VALUE": ("failure_value", float),
        "WEBCERT_CHECK_LOG_LEVEL": ("log_level", str),
        "WEBCERT_CHECK_LOG_FILE": ("log_file", str),
        "WEBCERT_CHECK_VERBOSE": ("verbose", _parse_bool),
    }

    overrides = {}
    for env_var, (config_key, converter) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                overrides[config_key] = converter(value)
            except (ValueError, TypeError) as e:
                logging.warning(f"Invalid value for {env_var}: {value} - {e}")

    return overrides


def create_example_config(output_path: str = "config.example.yaml") -> None:
    """Create an example configuration file."""
    example_config = {
        "target": "example.com:443",
        "prometheus": True,
        "port": 2112,
        "bind_address": "0.0.0.0",  # nosec B104
        "probe_interval": "10s",
        "failure_value": -1,
        "log_level": "INFO",
        "verbose": False,
    }

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
