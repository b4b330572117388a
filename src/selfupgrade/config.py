"""
Configuration management for the self-upgrade orchestrator.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (~/.config/selfupgrade/config.yml or --config path)
3. Environment variables (SELFUPGRADE_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)

The per-run switches (--dry-run, --no-verify) are not part of the layered
configuration; they are resolved once into an immutable UpgradeOptions.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_ENV_PREFIX = "SELFUPGRADE_"


def _default_data_dir() -> Path:
    """Return the per-user data directory for downloads and logs."""
    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        if base:
            return Path(base) / "selfupgrade"
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "selfupgrade"
    return Path.home() / ".local" / "share" / "selfupgrade"


def _default_config_path() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "selfupgrade" / "config.yml"


# =============================================================================
# Upgrade Options
# =============================================================================


class UpgradeOptions(BaseModel):
    """Per-invocation switches, resolved once from the command line.

    Attributes:
        dry_run: Go through every stage but do not run the installer.
        no_verify: Skip checksum verification of the downloaded package.
    """

    model_config = ConfigDict(frozen=True)

    dry_run: bool = Field(
        default=False,
        description="Do everything except invoking the installer",
    )
    no_verify: bool = Field(
        default=False,
        description="Skip checksum verification of the downloaded package",
    )


# =============================================================================
# Upgrade Configuration
# =============================================================================


class UpgradeConfig(BaseModel):
    """Self-upgrade configuration.

    Attributes:
        enabled: Whether self-upgrade is allowed at all.
        backend: Upgrader backend type.
        package_name: Name of the package to upgrade on the index.
        index_url: Base URL of a PyPI-compatible JSON API.
        channel: Release channel ("stable" drops pre-releases).
        downloads_dir: Directory holding downloaded installers.
        min_free_disk_mb: Free space required on the downloads volume.
        blocking_processes: Process names that must not be running during install.
        use_git_credentials: Ask git's credential store when the index needs auth.
        request_timeout_seconds: Timeout for index HTTP requests.
        installer_timeout_seconds: Timeout for the installer subprocess.
    """

    enabled: bool = Field(
        default=True,
        description="Allow self-upgrade; false makes every attempt a no-op",
    )
    backend: str = Field(
        default="python_package",
        description="Upgrader backend: 'python_package'",
    )
    package_name: str = Field(
        default="selfupgrade",
        description="Package name on the index",
    )
    index_url: str = Field(
        default="https://pypi.org/pypi",
        description="Base URL of a PyPI-compatible JSON API",
    )
    channel: str = Field(
        default="stable",
        description="Release channel: 'stable' or 'prerelease'",
    )
    downloads_dir: str = Field(
        default_factory=lambda: str(_default_data_dir() / "downloads"),
        description="Directory for downloaded installers",
    )
    min_free_disk_mb: int = Field(
        default=100,
        ge=0,
        description="Minimum free disk space (MiB) required to upgrade",
    )
    blocking_processes: list[str] = Field(
        default_factory=lambda: ["selfupgrade"],
        description="Process names that block installation while running",
    )
    use_git_credentials: bool = Field(
        default=True,
        description="Use git's credential store for authenticated indexes",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for package index requests",
    )
    installer_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Timeout for the installer subprocess",
    )

    @field_validator("channel")
    @classmethod
    def validate_channel(cls, v: str) -> str:
        """Validate and normalize the release channel."""
        valid_channels = {"stable", "prerelease"}
        v_lower = v.lower()
        if v_lower not in valid_channels:
            raise ValueError(
                f"Invalid channel: {v}. Must be one of: {', '.join(sorted(valid_channels))}"
            )
        return v_lower

    @field_validator("index_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the index URL."""
        return v.rstrip("/")


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        log_dir: Directory holding per-attempt log files.
        level: Console log level.
        file_level: Level written to the per-attempt log file.
        log_to_console: Whether to log to stderr.
        json_console: Use JSON instead of plain text on the console.
    """

    log_dir: str = Field(
        default_factory=lambda: str(_default_data_dir() / "logs"),
        description="Directory for upgrade log files",
    )
    level: str = Field(
        default="warning",
        description="Console log level",
    )
    file_level: str = Field(
        default="info",
        description="Log file level",
    )
    log_to_console: bool = Field(
        default=True,
        description="Whether to log to stderr",
    )
    json_console: bool = Field(
        default=False,
        description="Use JSON formatting on the console",
    )

    @field_validator("level", "file_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        # Normalize 'warn' to 'warning'
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        upgrade: Self-upgrade settings.
        logging: Logging configuration.
    """

    upgrade: UpgradeConfig = Field(
        default_factory=UpgradeConfig,
        description="Self-upgrade settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "1", "on"):
        return True
    if value.lower() in ("false", "no", "0", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    # Handle comma-separated lists
    if "," in value:
        items = [item.strip() for item in value.split(",")]
        return [_parse_env_value(item) for item in items]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    - Prefix: SELFUPGRADE_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: SELFUPGRADE_UPGRADE__CHANNEL=prerelease

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return result


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the command-line parser shared by config and option loading."""
    parser = argparse.ArgumentParser(
        prog="selfupgrade",
        description="Upgrade this tool to the newest published version",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Check, download and verify, but do not run the installer",
    )

    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip checksum verification of the downloaded package",
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override console log level",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging on the console and in the log file",
    )

    return parser


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments into configuration overrides.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parsed = build_arg_parser().parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})
        result["logging"]["level"] = "debug"
        result["logging"]["file_level"] = "debug"

    return result


def load_options(cli_args: list[str] | None = None) -> UpgradeOptions:
    """
    Resolve the immutable per-run options from the command line.

    Args:
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        UpgradeOptions with dry_run/no_verify set.
    """
    parsed = build_arg_parser().parse_args(cli_args)
    return UpgradeOptions(dry_run=parsed.dry_run, no_verify=parsed.no_verify)


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Configuration is loaded from multiple sources in order:
    1. Built-in defaults (from AppConfig model)
    2. YAML config file (if specified or default exists)
    3. Environment variables (SELFUPGRADE_* prefix)
    4. Command-line arguments

    Later sources override earlier ones.

    Args:
        config_path: Path to YAML configuration file. If None, uses default
            path or CLI --config argument.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.
    """
    config_dict: dict[str, Any] = {}

    # Parse CLI args first to get config path
    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        else:
            default_path = _default_config_path()
            if default_path.exists():
                config_path = default_path
    elif isinstance(config_path, str):
        config_path = Path(config_path)
    cli_config.pop("_config_path", None)

    if config_path is not None:
        yaml_config = _load_yaml_config(config_path)
        config_dict = _deep_merge(config_dict, yaml_config)

    env_config = _load_env_config(env_prefix)
    config_dict = _deep_merge(config_dict, env_config)

    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
