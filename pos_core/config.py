# =============================================================================
# pos_core/config.py
# Offline Subsystem Settings
# =============================================================================
"""
Settings for the offline mutation queue, snapshot cache and connectivity probe.

Resolution order (later wins):
    1. Defaults declared on OfflineSettings
    2. Streamlit secrets, [offline] table
    3. Environment variables (POS_OFFLINE_*, SUPABASE_URL)
    4. Explicit overrides passed to load_settings()

Expected secrets.toml format:
    [offline]
    db_path = "local_data/pos_offline.db"
    max_retries = 3
    snapshot_ttl_seconds = 86400
    dead_letter_enabled = true
"""

from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import streamlit as st

from pos_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "local_data" / "pos_offline.db"

ENV_PREFIX = "POS_OFFLINE_"


@dataclass(frozen=True)
class OfflineSettings:
    """Tunable knobs for the offline subsystem."""
    db_path: Path = DEFAULT_DB_PATH
    max_retries: int = 3
    snapshot_ttl_seconds: float = 24 * 60 * 60.0
    queue_key: str = "offline_request_queue"
    dead_letter_key: str = "offline_dead_letters"
    snapshot_namespace: str = "offline_snapshot"
    dead_letter_enabled: bool = True
    probe_timeout: float = 5.0
    remote_url: Optional[str] = None


def _coerce(name: str, raw: Any, target: Any) -> Any:
    """Convert a raw secret/env value to the type of the default."""
    if raw is None:
        return None
    try:
        if isinstance(target, bool):
            if isinstance(raw, str):
                return raw.strip().lower() in ("1", "true", "yes", "on")
            return bool(raw)
        if isinstance(target, int):
            return int(raw)
        if isinstance(target, float):
            return float(raw)
        if isinstance(target, Path):
            return Path(raw)
        return str(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            expected_type=type(target).__name__,
        ) from e


def _secrets_section() -> Dict[str, Any]:
    """Read the [offline] table from Streamlit secrets, if configured."""
    try:
        if "offline" in st.secrets:
            return dict(st.secrets["offline"])
    except FileNotFoundError:
        # No secrets.toml outside a configured Streamlit deployment
        pass
    return {}


def _env_section() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for f in fields(OfflineSettings):
        env_value = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
        if env_value is not None:
            values[f.name] = env_value
    if "remote_url" not in values and os.getenv("SUPABASE_URL"):
        values["remote_url"] = os.getenv("SUPABASE_URL")
    return values


def validate_settings(settings: OfflineSettings) -> OfflineSettings:
    """Reject settings the subsystem cannot operate with."""
    if settings.max_retries < 1:
        raise ConfigurationError(
            "max_retries must be at least 1",
            config_key="max_retries",
            expected_type="int >= 1",
        )
    if settings.snapshot_ttl_seconds <= 0:
        raise ConfigurationError(
            "snapshot_ttl_seconds must be positive",
            config_key="snapshot_ttl_seconds",
            expected_type="float > 0",
        )
    if settings.queue_key == settings.dead_letter_key:
        raise ConfigurationError(
            "queue_key and dead_letter_key must differ",
            config_key="dead_letter_key",
        )
    return settings


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> OfflineSettings:
    """
    Build OfflineSettings from secrets, environment and explicit overrides.

    Args:
        overrides: Field values that take precedence over every other source

    Returns:
        Validated OfflineSettings
    """
    defaults = OfflineSettings()
    known = {f.name for f in fields(OfflineSettings)}

    merged: Dict[str, Any] = {}
    for source in (_secrets_section(), _env_section(), overrides or {}):
        for name, raw in source.items():
            if name not in known:
                logger.warning(f"Ignoring unknown offline setting: {name}")
                continue
            merged[name] = raw

    # remote_url defaults to None, so it keeps its raw string value
    coerced = {
        name: raw if name == "remote_url" else _coerce(name, raw, getattr(defaults, name))
        for name, raw in merged.items()
    }
    return validate_settings(replace(defaults, **coerced))
