"""Configuration loader for the DoH proxy."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError


def _clean(val: Optional[str]) -> Optional[str]:
    """Strip stray quotes that shells and .env files leave around values."""
    if val is None:
        return None
    cleaned = val.strip().strip("\"").strip("'")
    return cleaned or None


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8053, ge=1, le=65535)
    reload: bool = Field(default=False)


class UpstreamConfig(BaseModel):
    url: str = Field(default="https://dns.google/dns-query")
    timeout_seconds: float = Field(default=5.0, gt=0)
    failure_threshold: int = Field(default=5, ge=1)
    recovery_time_seconds: float = Field(default=30.0, gt=0)
    default_cache_control: str = Field(default="public, max-age=60")


class BlocklistConfig(BaseModel):
    enabled: bool = Field(default=True)
    path: str = Field(default="filter.txt")


class ProxySettings(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    blocklist: BlocklistConfig = Field(default_factory=BlocklistConfig)

    @classmethod
    def load(cls, path: str) -> "ProxySettings":
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise FileNotFoundError(f"Proxy config not found: {cfg_path}")
        try:
            raw = yaml.safe_load(cfg_path.read_text()) or {}
            return cls(**raw)
        except (ValidationError, TypeError, yaml.YAMLError) as exc:
            raise ValueError(f"Invalid proxy config: {exc}") from exc

    @classmethod
    def from_env(cls) -> "ProxySettings":
        """Load ``DOHGUARD_CONFIG`` (or defaults) and apply validated env overrides."""
        config_path = _clean(os.getenv("DOHGUARD_CONFIG"))
        settings = cls.load(config_path) if config_path else cls()
        data = settings.model_dump()

        overrides = {
            ("upstream", "url"): "DOHGUARD_UPSTREAM_URL",
            ("blocklist", "path"): "DOHGUARD_BLOCKLIST_PATH",
            ("server", "host"): "DOHGUARD_HOST",
            ("server", "port"): "DOHGUARD_PORT",
        }
        for (section, key), env_name in overrides.items():
            value = _clean(os.getenv(env_name))
            if value:
                data[section][key] = value

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid proxy environment overrides: {exc}") from exc
