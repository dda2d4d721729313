from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .storage import get_setting, set_setting


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class FetchConfig:
    timeout_seconds: int
    selector_timeout_seconds: int
    user_agent: str
    mobile_user_agent: str
    viewport_width: int
    viewport_height: int
    headless: bool
    rendered_settle_ms: int


@dataclass(frozen=True)
class DiscoveryConfig:
    sample_size: int
    strip_tracking_params: bool
    tracking_params: list[str]
    default_re_extraction_days: int


@dataclass(frozen=True)
class ValidationConfig:
    min_listing_urls: int
    min_title_chars: int
    min_content_chars: int
    max_preview_urls: int


@dataclass(frozen=True)
class SchedulerConfig:
    enabled: bool
    default_frequency_minutes: int


@dataclass(frozen=True)
class LLMConfig:
    enabled: bool
    provider_type: str
    base_url: str
    model: str
    api_key_env: str
    temperature: float
    max_tokens_listing: int
    max_tokens_content: int
    timeout_seconds: int
    cost_per_million_tokens: float


@dataclass(frozen=True)
class Config:
    fetch: FetchConfig
    discovery: DiscoveryConfig
    validation: ValidationConfig
    scheduler: SchedulerConfig
    llm: LLMConfig


DEFAULT_CONFIG: dict[str, Any] = {
    "fetch": {
        "timeout_seconds": 30,
        "selector_timeout_seconds": 5,
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        "mobile_user_agent": (
            "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
        ),
        "viewport_width": 375,
        "viewport_height": 812,
        "headless": True,
        "rendered_settle_ms": 1000,
    },
    "discovery": {
        "sample_size": 5,
        "strip_tracking_params": True,
        "tracking_params": [
            "utm_source",
            "utm_medium",
            "utm_campaign",
            "utm_term",
            "utm_content",
            "fbclid",
            "gclid",
        ],
        "default_re_extraction_days": 30,
    },
    "validation": {
        "min_listing_urls": 3,
        "min_title_chars": 5,
        "min_content_chars": 50,
        "max_preview_urls": 20,
    },
    "scheduler": {
        "enabled": True,
        "default_frequency_minutes": 60,
    },
    "llm": {
        "enabled": True,
        "provider_type": "openai_compatible",
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "api_key_env": "SCOUT_LLM_API_KEY",
        "temperature": 0.1,
        "max_tokens_listing": 1000,
        "max_tokens_content": 1500,
        "timeout_seconds": 60,
        "cost_per_million_tokens": 0.15,
    },
}

CONFIG_KEY = "config.runtime"
DEFAULT_DATA_DIR = "/data"


def get_state_db_path() -> str:
    data_dir = os.environ.get("SCOUT_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "state.sqlite3")


def bootstrap_runtime_config(conn) -> dict[str, Any]:
    cfg = get_setting(conn, CONFIG_KEY, None)
    if cfg is None:
        set_setting(conn, CONFIG_KEY, _default_for_env())
        cfg = get_setting(conn, CONFIG_KEY, None)
    if not isinstance(cfg, dict):
        raise ConfigError("config.runtime must be a JSON object")
    return cfg


def get_runtime_config(conn) -> dict[str, Any]:
    cfg = bootstrap_runtime_config(conn)
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    return cfg


def set_runtime_config(conn, cfg: dict[str, Any]) -> None:
    errors = validate_runtime_config(cfg)
    if errors:
        raise ConfigError("Invalid config.runtime: " + "; ".join(errors))
    set_setting(conn, CONFIG_KEY, _deep_copy(cfg))


def load_runtime_config(conn) -> Config:
    cfg = get_runtime_config(conn)
    return _build_config(cfg)


def import_config_file(conn, path: str) -> Config:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            overlay = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(overlay, dict):
        raise ConfigError(f"{path} must contain a mapping")
    merged = _merge(bootstrap_runtime_config(conn), overlay)
    set_runtime_config(conn, merged)
    return _build_config(merged)


def load_sites_file(path: str) -> list[dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read sites file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    sites = data.get("sites") if isinstance(data, dict) else data
    if not isinstance(sites, list):
        raise ConfigError(f"{path} must contain a list of sites")
    for index, site in enumerate(sites):
        if not isinstance(site, dict):
            raise ConfigError(f"sites[{index}] must be a mapping")
        for key in ("name", "base_url", "listing_url", "listing_selectors"):
            if not site.get(key):
                raise ConfigError(f"sites[{index}] missing {key}")
    return sites


def llm_api_key(llm: LLMConfig) -> str | None:
    return os.environ.get(llm.api_key_env) or os.environ.get("SCOUT_LLM_API_KEY")


def validate_runtime_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config.runtime", errors)
    if not errors:
        provider = cfg["llm"]["provider_type"]
        if provider not in ("openai_compatible", "anthropic"):
            errors.append(f"config.runtime.llm.provider_type unsupported: {provider}")
        if cfg["validation"]["min_listing_urls"] < 1:
            errors.append("config.runtime.validation.min_listing_urls must be >= 1")
    return errors


def _default_for_env() -> dict[str, Any]:
    cfg = _deep_copy(DEFAULT_CONFIG)
    base_url = os.environ.get("SCOUT_LLM_BASE_URL")
    if base_url:
        cfg["llm"]["base_url"] = base_url
    return cfg


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        for item in value:
            if not isinstance(item, str):
                errors.append(f"{path} must be a list of strings")
                break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    fetch_cfg = cfg.get("fetch") or {}
    discovery_cfg = cfg.get("discovery") or {}
    validation_cfg = cfg.get("validation") or {}
    scheduler_cfg = cfg.get("scheduler") or {}
    llm_cfg = cfg.get("llm") or {}

    fetch = FetchConfig(
        timeout_seconds=int(fetch_cfg.get("timeout_seconds")),
        selector_timeout_seconds=int(fetch_cfg.get("selector_timeout_seconds")),
        user_agent=str(fetch_cfg.get("user_agent")),
        mobile_user_agent=str(fetch_cfg.get("mobile_user_agent")),
        viewport_width=int(fetch_cfg.get("viewport_width")),
        viewport_height=int(fetch_cfg.get("viewport_height")),
        headless=bool(fetch_cfg.get("headless")),
        rendered_settle_ms=int(fetch_cfg.get("rendered_settle_ms")),
    )
    discovery = DiscoveryConfig(
        sample_size=int(discovery_cfg.get("sample_size")),
        strip_tracking_params=bool(discovery_cfg.get("strip_tracking_params")),
        tracking_params=list(discovery_cfg.get("tracking_params")),
        default_re_extraction_days=int(discovery_cfg.get("default_re_extraction_days")),
    )
    validation = ValidationConfig(
        min_listing_urls=int(validation_cfg.get("min_listing_urls")),
        min_title_chars=int(validation_cfg.get("min_title_chars")),
        min_content_chars=int(validation_cfg.get("min_content_chars")),
        max_preview_urls=int(validation_cfg.get("max_preview_urls")),
    )
    scheduler = SchedulerConfig(
        enabled=bool(scheduler_cfg.get("enabled")),
        default_frequency_minutes=int(scheduler_cfg.get("default_frequency_minutes")),
    )
    llm = LLMConfig(
        enabled=bool(llm_cfg.get("enabled")),
        provider_type=str(llm_cfg.get("provider_type")),
        base_url=str(llm_cfg.get("base_url")),
        model=str(llm_cfg.get("model")),
        api_key_env=str(llm_cfg.get("api_key_env")),
        temperature=float(llm_cfg.get("temperature")),
        max_tokens_listing=int(llm_cfg.get("max_tokens_listing")),
        max_tokens_content=int(llm_cfg.get("max_tokens_content")),
        timeout_seconds=int(llm_cfg.get("timeout_seconds")),
        cost_per_million_tokens=float(llm_cfg.get("cost_per_million_tokens")),
    )
    return Config(
        fetch=fetch,
        discovery=discovery,
        validation=validation,
        scheduler=scheduler,
        llm=llm,
    )


def default_config() -> Config:
    return _build_config(_deep_copy(DEFAULT_CONFIG))


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = _deep_copy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
