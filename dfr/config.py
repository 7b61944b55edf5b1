from __future__ import annotations

import ipaddress
import os
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class ConfigurationError(ValueError):
    """Raised at startup when the failover configuration cannot be used."""


def _ipv4(value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(str(value).strip()))
    except ValueError:
        raise ValueError(f"not an IPv4 address: {value!r}") from None


def normalize_hostname(name: str) -> str:
    return name.strip().rstrip(".").lower()


class MonitoredService(BaseModel):
    """One monitor and the A records that follow its verdict."""

    model_config = ConfigDict(frozen=True)

    monitor_id: str
    name: str | None = None
    dns_entries: tuple[str, ...] = Field(..., min_length=1)
    primary_ip: str

    @field_validator("monitor_id", mode="before")
    @classmethod
    def _monitor_id(cls, v: Any) -> str:
        v = str(v).strip()
        if not v:
            raise ValueError("monitor id must not be empty")
        return v

    @field_validator("dns_entries", mode="before")
    @classmethod
    def _entries(cls, v: Any) -> Any:
        if isinstance(v, str):
            raise ValueError("dns_entries must be a list of hostnames")
        return v

    @field_validator("dns_entries")
    @classmethod
    def _hostnames(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        seen: list[str] = []
        for raw in v:
            host = normalize_hostname(raw)
            if not host:
                raise ValueError("empty hostname")
            # The provider wants fully-qualified names, e.g. example.com or *.example.com
            if host == "@" or "*" in host:
                raise ValueError(f"{raw!r}: apex '@' and wildcard '*' shorthand are not supported")
            if "." not in host:
                raise ValueError(f"{raw!r} is not a fully-qualified hostname")
            if host in seen:
                raise ValueError(f"{raw!r} is listed twice")
            seen.append(host)
        return tuple(seen)

    @field_validator("primary_ip", mode="before")
    @classmethod
    def _primary_ip(cls, v: Any) -> str:
        return _ipv4(v)

    @property
    def label(self) -> str:
        return self.name or self.monitor_id


class FailoverConfig(BaseModel):
    """Startup configuration; immutable for the lifetime of the process."""

    model_config = ConfigDict(frozen=True)

    zone_id: str = Field(..., min_length=1)
    backup_ip: str
    switch_dns: bool = True
    check_interval_s: int = Field(60, ge=10, le=86400)
    monitors: dict[str, MonitoredService] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _inject_monitor_ids(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        monitors = data.get("monitors")
        if not isinstance(monitors, dict):
            return data
        out: dict[str, Any] = {}
        for key, svc in monitors.items():
            if isinstance(svc, dict):
                svc = {**svc, "monitor_id": str(key)}
            out[str(key)] = svc
        return {**data, "monitors": out}

    @field_validator("backup_ip", mode="before")
    @classmethod
    def _backup_ip(cls, v: Any) -> str:
        return _ipv4(v)

    @model_validator(mode="after")
    def _partition(self) -> "FailoverConfig":
        owner: dict[str, str] = {}
        for monitor_id, svc in self.monitors.items():
            if svc.primary_ip == self.backup_ip:
                raise ValueError(f"monitor {monitor_id}: primary_ip equals backup_ip")
            for host in svc.dns_entries:
                if host in owner:
                    raise ValueError(f"{host} belongs to both monitor {owner[host]} and monitor {monitor_id}")
                owner[host] = monitor_id
        return self

    def services(self) -> list[MonitoredService]:
        """Services in configuration order."""
        return list(self.monitors.values())


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc or '<root>'}: {err.get('msg')}")
    return "; ".join(parts)


def parse_config(data: Any) -> FailoverConfig:
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a mapping")
    try:
        return FailoverConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid failover config: {_format_validation_error(e)}") from e


def load_config(path: str) -> FailoverConfig:
    """Load and validate the YAML failover config."""
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}") from e

    return parse_config(data)
