"""Configuration helpers for the gating engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
import os

_PRODUCTION_ENVIRONMENTS = {"production", "prod"}


@dataclass(frozen=True)
class GateConfig:
    """Runtime configuration for entitlement, quota and promo handling."""

    environment: str
    timezone_name: str
    default_daily_limit: int
    feature_limits: Mapping[str, int]
    promo_catalog_url: Optional[str]
    promo_remote_timeout: float
    promo_refresh_interval: float
    promo_refresh_on_start: bool
    storage_backend: str
    db_config: Dict[str, Any] = field(default_factory=dict)
    db_connect_timeout: float = 5.0
    promo_miss_refresh_interval: float = 30.0
    user_id: str = "local-user"

    @property
    def is_production(self) -> bool:
        return self.environment in _PRODUCTION_ENVIRONMENTS


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def parse_feature_limits(raw: Optional[str]) -> Dict[str, int]:
    """Parse ``feature=limit`` pairs separated by commas."""

    limits: Dict[str, int] = {}
    if not raw:
        return limits
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, value = chunk.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Malformed feature limit entry: {chunk!r}")
        limit = _to_int(value.strip(), default=0)
        if limit < 0:
            raise ValueError(f"Feature limit must be >= 0: {chunk!r}")
        limits[name.strip()] = limit
    return limits


def load_gate_config(env: Optional[Mapping[str, str]] = None) -> GateConfig:
    """Load :class:`GateConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    environment = (env_mapping.get("GATE_ENVIRONMENT") or "development").strip().lower()
    timezone_name = (env_mapping.get("GATE_TIMEZONE") or "UTC").strip() or "UTC"
    default_daily_limit = max(0, _to_int(env_mapping.get("GATE_DEFAULT_DAILY_LIMIT"), default=5))
    feature_limits = parse_feature_limits(
        env_mapping.get("GATE_FEATURE_LIMITS", "daily_picks=3,ai_predictions=3")
    )

    promo_catalog_url = (env_mapping.get("PROMO_CATALOG_URL") or "").strip() or None
    promo_remote_timeout = max(0.1, _to_float(env_mapping.get("PROMO_REMOTE_TIMEOUT"), default=3.0))
    promo_refresh_interval = max(0.0, _to_float(env_mapping.get("PROMO_REFRESH_INTERVAL"), default=300.0))
    promo_refresh_on_start = _to_bool(env_mapping.get("PROMO_REFRESH_ON_START"), default=True)
    promo_miss_refresh_interval = max(
        0.0, _to_float(env_mapping.get("PROMO_MISS_REFRESH_INTERVAL"), default=30.0)
    )

    storage_backend = (env_mapping.get("GATE_STORAGE_BACKEND") or "memory").strip().lower()
    if storage_backend not in {"memory", "postgres"}:
        raise ValueError(f"Unsupported storage backend: {storage_backend!r}")

    db_config: Dict[str, Any] = {
        "host": env_mapping.get("DB_HOST", "127.0.0.1"),
        "port": _to_int(env_mapping.get("DB_PORT"), default=5432),
        "database": env_mapping.get("DB_NAME", "gatekeeper_db"),
        "user": env_mapping.get("DB_USER", "gate_user"),
        "password": env_mapping.get("DB_PASSWORD", "gate_pass"),
    }
    db_connect_timeout = max(0.1, _to_float(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5.0))
    user_id = (env_mapping.get("GATE_USER_ID") or "local-user").strip() or "local-user"

    return GateConfig(
        environment=environment,
        timezone_name=timezone_name,
        default_daily_limit=default_daily_limit,
        feature_limits=feature_limits,
        promo_catalog_url=promo_catalog_url,
        promo_remote_timeout=promo_remote_timeout,
        promo_refresh_interval=promo_refresh_interval,
        promo_refresh_on_start=promo_refresh_on_start,
        storage_backend=storage_backend,
        db_config=db_config,
        db_connect_timeout=db_connect_timeout,
        promo_miss_refresh_interval=promo_miss_refresh_interval,
        user_id=user_id,
    )

