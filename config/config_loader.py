"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this, never hardcoded values.

Status sets and refund markers are handed out as frozensets/tuples so the
aggregation code can treat them as immutable lookup tables.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def _get_section(name: str) -> Any:
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No config section '{name}'. "
            f"Available: {list(config.keys())}"
        )
    return config[name]


def get_status_config() -> Dict[str, frozenset[str]]:
    """
    Returns the status vocabulary as immutable sets, keyed by bucket name
    (successful, failed, refunded, pending).
    """
    return {
        bucket: frozenset(str(s).strip().lower() for s in statuses)
        for bucket, statuses in _get_section("statuses").items()
    }


def get_successful_statuses() -> frozenset[str]:
    return get_status_config()["successful"]


def get_failed_statuses() -> frozenset[str]:
    return get_status_config()["failed"]


def get_refund_markers() -> tuple[str, ...]:
    """Returns transaction_type labels that mark a standalone refund record."""
    return tuple(_get_section("refund_transaction_markers"))


def get_currency_config() -> Dict[str, Any]:
    """Returns the currency block (default + known codes)."""
    return _get_section("currency")


def get_default_currency() -> str:
    return get_currency_config()["default"]


def get_sources_config() -> Dict[str, str]:
    """Returns the source-table tags (primary, queue, default_provider)."""
    return _get_section("sources")


def get_fee_rules_config() -> list[Dict[str, Any]]:
    """Returns the fallback fee rule rows."""
    return _get_section("fee_rules")


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
