"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/web3flow.db"


@dataclass
class ChainConfig:
    """Chain node configuration."""

    rpc_url: str = "https://sepolia.base.org"
    poll_interval_seconds: float = 2.0


@dataclass
class PriceFeedConfig:
    """Price feed configuration."""

    provider: str = "binance"
    symbols: list[str] = field(default_factory=lambda: ["ETH", "BTC", "PEPE", "LINK"])
    timeout_seconds: float = 10.0


@dataclass
class AlertsConfig:
    """Portfolio alert schedule configuration."""

    check_interval_seconds: float = 60.0


@dataclass
class DiscordNotificationConfig:
    """Discord notification settings."""

    footer_text: str = "Powered by Web3Flow"


@dataclass
class EmailNotificationConfig:
    """Email notification settings."""

    smtp_host: str = "smtp.sendgrid.net"
    smtp_port: int = 587
    smtp_user: str = "apikey"
    smtp_password: str = ""
    from_address: str = ""
    from_name: str = "Web3Flow"


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    channel_timeout_seconds: float = 10.0
    discord: DiscordNotificationConfig = field(
        default_factory=DiscordNotificationConfig
    )
    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


PRICE_PROVIDERS = ("binance", "yahoo_finance")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path", DatabaseConfig.path)
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    chain = config_dict.get("chain") or {}
    rpc_url = chain.get("rpc_url", ChainConfig.rpc_url)
    if not re.match(r"^(https?|wss?)://", rpc_url or ""):
        raise ConfigValidationError(f"Unsupported RPC URL: {rpc_url!r}")

    price_feed = config_dict.get("price_feed") or {}
    provider = price_feed.get("provider", "binance")
    if provider not in PRICE_PROVIDERS:
        raise ConfigValidationError(f"Unknown price feed provider: {provider}")

    alerts = config_dict.get("alerts") or {}
    interval = alerts.get("check_interval_seconds", 60)
    if not isinstance(interval, (int, float)) or interval <= 0:
        raise ConfigValidationError("alerts.check_interval_seconds must be positive")

    advanced = config_dict.get("advanced") or {}
    log_level = str(advanced.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigValidationError(f"Unknown log level: {log_level}")


def build_config(config_dict: Optional[dict[str, Any]] = None) -> AppConfig:
    """
    Build an AppConfig from a raw dictionary.

    Args:
        config_dict: Parsed configuration, already env-substituted

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    config_dict = dict(config_dict or {})
    _validate_config(config_dict)

    database = DatabaseConfig(**(config_dict.get("database") or {}))
    chain = ChainConfig(**(config_dict.get("chain") or {}))
    price_feed = PriceFeedConfig(**(config_dict.get("price_feed") or {}))
    alerts = AlertsConfig(**(config_dict.get("alerts") or {}))

    # Notifications
    notif_dict = dict(config_dict.get("notifications") or {})
    discord_dict = notif_dict.pop("discord", None) or {}
    email_dict = notif_dict.pop("email", None) or {}
    notifications = NotificationsConfig(
        discord=DiscordNotificationConfig(**discord_dict),
        email=EmailNotificationConfig(**email_dict),
        **notif_dict,
    )

    advanced_dict = dict(config_dict.get("advanced") or {})
    if "log_level" in advanced_dict:
        advanced_dict["log_level"] = str(advanced_dict["log_level"]).upper()
    advanced = AdvancedConfig(**advanced_dict)

    return AppConfig(
        database=database,
        chain=chain,
        price_feed=price_feed,
        alerts=alerts,
        notifications=notifications,
        advanced=advanced,
    )


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    try:
        return build_config(config_dict)
    except TypeError as e:
        # Unknown keys in a section
        raise ConfigValidationError(str(e)) from e
