"""Configuration loading utilities for YAML-based engine settings."""

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from .logging_config import get_logger


logger = get_logger(__name__)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_CONFIG_PATH = _BASE_DIR / "config.yml"
_CONFIG_ENV_VAR = "PAYMENTPLAN_CONFIG"

DEFAULT_CHAIN_ID = 31337
DEFAULT_SAFETY_FUND_PERCENT_BP = 2000
DEFAULT_SERVICE_FEE_PERCENT_BP = 30


@dataclass(frozen=True)
class AppSettings:
    """Application settings loaded from YAML configuration file."""

    app_name: str
    debug: bool
    host: str
    port: int
    log_level: str
    chain_id: int
    signer_address: Optional[str]
    signer_private_key: Optional[str]
    require_collection_authorization: bool
    funding_authorities: list[str]
    admin_authorities: list[str]
    vault_address: Optional[str]
    vault_safety_fund_percent_bp: int
    vault_service_fee_percent_bp: int
    vault_initial_deposit: int
    default_monitor_enabled: bool
    default_monitor_poll_interval_sec: int


def _to_bool(value: Any, default: bool = False) -> bool:
    """Convert value to bool with a default fallback."""
    try:
        if isinstance(value, bool):
            return value
        return value.strip().lower() in {"1", "true", "yes", "on"}
    except (AttributeError, ValueError):
        logger.warning("Invalid boolean value '%s'. Using default=%s", value, default)
        return default


def _to_int(value: Any, default: int) -> int:
    """Convert value to int with a default fallback."""
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer value '%s'. Using default=%s", value, default)
        return default


def _to_bps(value: Any, default: int) -> int:
    """Convert value to a basis-point integer within [0, 10000]."""
    bps = _to_int(value, default)
    if bps < 0 or bps > 10000:
        logger.warning("Basis-point value %s out of range. Using default=%s", bps, default)
        return default
    return bps


def _to_list(value: Any) -> list[str]:
    """Convert list-like or comma-separated value to list[str]."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return [item.strip() for item in str(value).split(",") if item.strip()]


def _to_optional_str(value: Any) -> Optional[str]:
    """Return stripped string or None for empty values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _resolve_config_path(path: Optional[str] = None) -> Path:
    """Pick explicit path, then environment override, then repository default."""
    if path:
        return Path(path).resolve()
    env_path = os.environ.get(_CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).resolve()
    return _CONFIG_PATH


def _read_config(path: Optional[str] = None) -> dict:
    """Read and parse YAML configuration."""
    config_path = _resolve_config_path(path)
    try:
        with config_path.open("r", encoding="utf-8") as config_file:
            config_data = yaml.safe_load(config_file) or {}
        if not isinstance(config_data, dict):
            logger.warning("Config file %s is not a mapping. Falling back to defaults.", config_path)
            return {}
        logger.info("Configuration loaded from %s", config_path)
        return config_data
    except FileNotFoundError:
        logger.warning("Config file not found at %s. Falling back to defaults.", config_path)
        return {}
    except yaml.YAMLError:
        logger.exception("Failed to parse config file %s", config_path)
        return {}


def load_settings(path: Optional[str] = None) -> AppSettings:
    """Load and validate application settings from `config.yml`."""
    config = _read_config(path)
    app_cfg = config.get("app") or {}
    engine_cfg = config.get("engine") or {}
    vault_cfg = config.get("vault") or {}
    monitor_cfg = config.get("default_monitor") or {}

    return AppSettings(
        app_name=str(app_cfg.get("name", "Payment Plan Engine")),
        debug=_to_bool(app_cfg.get("debug", False), False),
        host=str(app_cfg.get("host", "127.0.0.1")),
        port=_to_int(app_cfg.get("port", 8000), 8000),
        log_level=str(app_cfg.get("log_level", "INFO")),
        chain_id=_to_int(engine_cfg.get("chain_id", DEFAULT_CHAIN_ID), DEFAULT_CHAIN_ID),
        signer_address=_to_optional_str(engine_cfg.get("signer_address")),
        signer_private_key=_to_optional_str(engine_cfg.get("signer_private_key")),
        require_collection_authorization=_to_bool(
            engine_cfg.get("require_collection_authorization", False), False
        ),
        funding_authorities=_to_list(engine_cfg.get("funding_authorities", [])),
        admin_authorities=_to_list(engine_cfg.get("admin_authorities", [])),
        vault_address=_to_optional_str(vault_cfg.get("address")),
        vault_safety_fund_percent_bp=_to_bps(
            vault_cfg.get("safety_fund_percent_bp", DEFAULT_SAFETY_FUND_PERCENT_BP),
            DEFAULT_SAFETY_FUND_PERCENT_BP,
        ),
        vault_service_fee_percent_bp=_to_bps(
            vault_cfg.get("service_fee_percent_bp", DEFAULT_SERVICE_FEE_PERCENT_BP),
            DEFAULT_SERVICE_FEE_PERCENT_BP,
        ),
        vault_initial_deposit=max(0, _to_int(vault_cfg.get("initial_deposit", 0), 0)),
        default_monitor_enabled=_to_bool(monitor_cfg.get("enabled", False), False),
        default_monitor_poll_interval_sec=max(1, _to_int(monitor_cfg.get("poll_interval_sec", 60), 60)),
    )
