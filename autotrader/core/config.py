"""
Configuration loading for the autotrader.

Settings come from three layers, later layers winning:
1. Defaults declared on the pydantic models below
2. config.yaml in the project root (or an explicit path)
3. Environment variables, optionally loaded from a .env file

Locator chains for the venue page live here rather than in code, since the
venue's markup changes without notice.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config.yaml"


class PoolSettings(BaseModel):
    """Browser session pool settings."""

    max_sessions: int = Field(default=20, gt=0)
    headless: bool = False
    launch_args: List[str] = Field(default_factory=lambda: [
        "--start-maximized",
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-accelerated-2d-canvas",
    ])
    login_url: str = "https://pocketoption.com/en/login"
    demo_url_pattern: str = "demo-quick-high-low"
    real_url_pattern: str = "quick-high-low"
    navigation_timeout_ms: int = Field(default=30000, gt=0)
    idle_timeout_seconds: int = Field(default=3600, gt=0)


class LocatorSettings(BaseModel):
    """
    Ordered selector chains for each placement step.

    Expiry selectors are templates; `{seconds}` and `{minutes}` are filled
    in from the signal duration.
    """

    attempt_timeout_ms: int = Field(default=1500, gt=0)
    amount_input: List[str] = Field(default_factory=lambda: [
        "div.value__val input[type='text']",
        "input[autocomplete='off']",
        "input.value__input",
        ".value__val input",
        "input[type='text']",
    ])
    expiry_option: List[str] = Field(default_factory=lambda: [
        "[data-period='{seconds}']",
    ])
    call_button: List[str] = Field(default_factory=lambda: [
        "a.btn.btn-call",
        "div.button-call",
        ".btn-call",
        "text=HIGHER",
        "text=CALL",
    ])
    put_button: List[str] = Field(default_factory=lambda: [
        "a.btn.btn-put",
        "div.button-put",
        ".btn-put",
        "text=LOWER",
        "text=PUT",
    ])
    script_fallback: bool = True


class TradingConfig(BaseModel):
    """Venue trading defaults."""

    venue_default_duration_seconds: int = Field(default=300, gt=0)


class LoggingSettings(BaseModel):
    """loguru sink settings."""

    level: str = "INFO"
    log_dir: Optional[str] = "logs"
    rotation: str = "10 MB"
    retention: str = "7 days"


class EventBusSettings(BaseModel):
    """Event bus queue and dispatch settings."""

    queue_size: int = Field(default=1000, gt=0)
    handler_timeout_seconds: float = Field(default=1.0, gt=0)


class Settings(BaseModel):
    """
    Root settings model.

    Examples:
        >>> settings = Settings()
        >>> settings.pool.max_sessions
        20
        >>> settings.locators.attempt_timeout_ms
        1500
    """

    pool: PoolSettings = Field(default_factory=PoolSettings)
    locators: LocatorSettings = Field(default_factory=LocatorSettings)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    event_bus: EventBusSettings = Field(default_factory=EventBusSettings)


# env var -> (section, key)
ENV_OVERRIDES = {
    "AUTOTRADER_MAX_SESSIONS": ("pool", "max_sessions"),
    "AUTOTRADER_HEADLESS": ("pool", "headless"),
    "AUTOTRADER_LOGIN_URL": ("pool", "login_url"),
    "AUTOTRADER_LOG_LEVEL": ("logging", "level"),
}


def _read_yaml(path: Path) -> Dict[str, Any]:
    """
    Parse a YAML config file.

    Raises:
        ConfigError: If the file is missing, empty, unreadable or not a mapping
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration file: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading configuration file: {e}") from e

    if data is None:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError(
            f"Configuration root must be a mapping, got {type(data).__name__}"
        )
    return data


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay AUTOTRADER_* environment variables onto raw config data."""
    for var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value is None or value == "":
            continue
        section_data = data.setdefault(section, {})
        if not isinstance(section_data, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        section_data[key] = value
        logger.debug(f"Config override {section}.{key} from {var}")
    return data


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None,
) -> Settings:
    """
    Load and validate settings.

    Args:
        config_path: Path to config.yaml. Defaults to the project root file.
        env_file: Optional .env file to load before reading overrides.

    Returns:
        Settings: Validated settings

    Raises:
        ConfigError: If the file is invalid or values fail validation

    Examples:
        >>> settings = load_settings("config.yaml")
        >>> settings.pool.login_url
        'https://pocketoption.com/en/login'
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    data = _apply_env_overrides(_read_yaml(path))

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info(
        f"Loaded configuration from {path} "
        f"(max_sessions={settings.pool.max_sessions}, headless={settings.pool.headless})"
    )
    return settings
