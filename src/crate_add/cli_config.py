"""
Configuration management for crate-add.

Settings come from built-in defaults, an optional JSON/YAML config file and
CRATE_ADD_* environment variables, in increasing order of precedence.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console

try:
    import yaml

    HAS_YAML = True
except ImportError:
    HAS_YAML = False

from .version_req import UPGRADE_STRATEGIES

console = Console(stderr=True)


@dataclass
class AddConfig:
    """Defaults applied to every add invocation."""

    default_upgrade: Optional[str] = None


@dataclass
class NetworkConfig:
    """Network and registry configuration."""

    user_agent: str = "crate-add/0.3.0 (+https://github.com/crate-add/crate-add)"
    registry_url: str = "https://crates.io/api/v1/crates"
    git_raw_url: str = "https://raw.githubusercontent.com"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    rate_limit: float = 5.0


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "WARNING"


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    add: AddConfig = field(default_factory=AddConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Global configuration instance
_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if (
        config.add.default_upgrade is not None
        and config.add.default_upgrade not in UPGRADE_STRATEGIES
    ):
        errors.append(
            "add.default_upgrade must be one of: " + ", ".join(UPGRADE_STRATEGIES)
        )

    if not config.network.registry_url.startswith(("http://", "https://")):
        errors.append("network.registry_url must be an http(s) URL")
    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")
    if config.network.rate_limit <= 0:
        errors.append("network.rate_limit must be positive")

    if config.logging.log_level.upper() not in {
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    }:
        errors.append("logging.log_level is not a valid level name")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                if HAS_YAML:
                    return yaml.safe_load(f)
                console.print(
                    "⚠️  PyYAML not installed, skipping YAML config", style="yellow"
                )
                return None
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".crate-add.json",
        Path.cwd() / ".crate-add.yaml",
        Path.cwd() / ".crate-add.yml",
        Path.home() / ".config" / "crate-add" / "config.json",
        Path.home() / ".config" / "crate-add" / "config.yaml",
        Path.home() / ".crate-add.json",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Load environment variable overrides."""

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(
                f"⚠️  Invalid float value for {key}, using default", style="yellow"
            )
            return None

    if upgrade := os.environ.get("CRATE_ADD_UPGRADE"):
        config.add.default_upgrade = upgrade

    if registry_url := os.environ.get("CRATE_ADD_REGISTRY_URL"):
        config.network.registry_url = registry_url.rstrip("/")
    if user_agent := os.environ.get("CRATE_ADD_USER_AGENT"):
        config.network.user_agent = user_agent
    if connect_timeout := get_env_float("CRATE_ADD_CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("CRATE_ADD_READ_TIMEOUT"):
        config.network.read_timeout = read_timeout
    if rate_limit := get_env_float("CRATE_ADD_RATE_LIMIT"):
        config.network.rate_limit = rate_limit

    if log_level := os.environ.get("CRATE_ADD_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def _accepts(default: Any, value: Any) -> bool:
    if default is None:
        return value is None or isinstance(value, str)
    if isinstance(default, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, type(default))


def apply_config_section(config: Any, section_data: Any, section_name: str) -> None:
    """
    Apply configuration from dictionary to config section.

    Unknown keys and values of the wrong type are reported and skipped, so
    the section keeps its default for them.
    """
    if not isinstance(section_data, dict):
        console.print(
            f"⚠️  Config section {section_name} must be a mapping, using defaults",
            style="yellow",
        )
        return

    defaults = type(config)()
    for key, value in section_data.items():
        if not hasattr(config, key):
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )
        elif not _accepts(getattr(defaults, key), value):
            console.print(
                f"⚠️  Invalid type for {section_name}.{key}: {value!r}, using default",
                style="yellow",
            )
        else:
            if isinstance(getattr(defaults, key), float):
                value = float(value)
            setattr(config, key, value)


def load_config() -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config and not isinstance(file_config, dict):
            console.print(
                f"⚠️  Ignoring {config_file}: top level must be a mapping",
                style="yellow",
            )
        elif file_config:
            for section_name in ("add", "network", "logging"):
                if section_name in file_config:
                    apply_config_section(
                        getattr(config, section_name),
                        file_config[section_name],
                        section_name,
                    )

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = _with_defaults_for_invalid(config, validation_errors)

    _global_config = config
    return config


def _with_defaults_for_invalid(
    config: ComprehensiveConfig, errors: List[str]
) -> ComprehensiveConfig:
    defaults = ComprehensiveConfig()
    for error in errors:
        dotted = error.split(" ", 1)[0]
        section_name, key = dotted.split(".", 1)
        setattr(
            getattr(config, section_name),
            key,
            getattr(getattr(defaults, section_name), key),
        )
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file."""
    sample_config = {
        "add": {
            "default_upgrade": None,
        },
        "network": {
            "user_agent": NetworkConfig.user_agent,
            "registry_url": NetworkConfig.registry_url,
            "git_raw_url": NetworkConfig.git_raw_url,
            "connect_timeout": 10.0,
            "read_timeout": 30.0,
            "rate_limit": 5.0,
        },
        "logging": {
            "log_level": "WARNING",
        },
    }

    return json.dumps(sample_config, indent=2)
