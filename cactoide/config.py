"""Global configuration for Cactoide."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "instance_name": "Cactoide",
    "federation_enabled": False,
    "federation_timeout_ms": 10000,
    "discover_include_federated": True,
    "db_healthcheck_max_retries": 3,
    "db_healthcheck_base_delay_ms": 1000,
    "db_healthcheck_max_delay_ms": 10000,
    "enable_scheduler": True,
    "invite_purge_interval_hours": 6,
    "log_level": "info",
    "user_cookie_name": "cactoideUserId",
    "seed_events": 10,
    "seed_rsvps_per_event": 5,
    "seed_private_percent": 10,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "instance_name": str,
    "federation_enabled": bool,
    "federation_timeout_ms": int,
    "discover_include_federated": bool,
    "db_healthcheck_max_retries": int,
    "db_healthcheck_base_delay_ms": int,
    "db_healthcheck_max_delay_ms": int,
    "enable_scheduler": bool,
    "invite_purge_interval_hours": int,
    "log_level": str,
    "user_cookie_name": str,
    "seed_events": int,
    "seed_rsvps_per_event": int,
    "seed_private_percent": int,
}


class ConfigError(ValueError):
    """Raised when the configuration file or environment holds invalid values."""


@dataclass(frozen=True)
class PeerInstance:
    """A federated peer, addressed by ``host[:port]`` without a scheme."""

    url: str
    name: str | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.url}"


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    app_host: str
    app_port: int
    instance_name: str
    federation_enabled: bool
    federation_timeout_ms: int
    federation_instances: tuple[PeerInstance, ...]
    discover_include_federated: bool
    db_healthcheck_max_retries: int
    db_healthcheck_base_delay_ms: int
    db_healthcheck_max_delay_ms: int
    enable_scheduler: bool
    invite_purge_interval_hours: int
    log_level: str
    user_cookie_name: str
    seed_events: int
    seed_rsvps_per_event: int
    seed_private_percent: int
    config_path: Path

    @property
    def federation_timeout(self) -> float:
        """Per-request peer timeout in seconds."""
        return self.federation_timeout_ms / 1000

    @property
    def invite_purge_interval(self) -> timedelta:
        return timedelta(hours=self.invite_purge_interval_hours)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    try:
        if caster is bool:
            return _boolify(value)
        return caster(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from exc


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    try:
        with config_path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Unable to parse {config_path}: {exc}") from exc


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"CACTOIDE_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _normalize_peer_url(raw: Any) -> str:
    if not isinstance(raw, str):
        raise ConfigError(f"Federation instance url must be a string, got {raw!r}")
    url = raw.strip().rstrip("/")
    if not url:
        raise ConfigError("Federation instance url cannot be empty")
    if "://" in url:
        raise ConfigError(
            f"Federation instance url {url!r} must be host[:port] without a scheme"
        )
    return url


def parse_peer_instances(raw: Any) -> tuple[PeerInstance, ...]:
    """Validate the configured peer list into an immutable tuple.

    Accepts the TOML form (a list of ``{url, name}`` tables or bare url
    strings) and the environment form (a comma-separated string of urls).
    """

    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [part for part in raw.split(",") if part.strip()]
    if not isinstance(raw, list):
        raise ConfigError("federation_instances must be a list")

    peers: list[PeerInstance] = []
    seen: set[str] = set()
    for entry in raw:
        if isinstance(entry, dict):
            url = _normalize_peer_url(entry.get("url"))
            name = entry.get("name")
            if name is not None and not isinstance(name, str):
                raise ConfigError(f"Federation instance name for {url} must be a string")
        else:
            url = _normalize_peer_url(entry)
            name = None
        if url in seen:
            raise ConfigError(f"Duplicate federation instance {url}")
        seen.add(url)
        peers.append(PeerInstance(url=url, name=name or None))
    return tuple(peers)


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "cactoide.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("CACTOIDE_BASE_DIR", Path.cwd()))
    env_config = os.getenv("CACTOIDE_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "cactoide.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("CACTOIDE_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("CACTOIDE_DB", toml_config.get("database_path")),
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    peers = parse_peer_instances(
        os.getenv(
            "CACTOIDE_FEDERATION_INSTANCES", toml_config.get("federation_instances")
        )
    )

    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        federation_instances=peers,
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    values: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        values[key] = getattr(settings, key)
    values["federation_instances"] = [
        {"url": peer.url, "name": peer.name} for peer in settings.federation_instances
    ]
    return values


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Cactoide configuration\n"]
    peers = config.get("federation_instances") or []
    for key in sorted(config.keys()):
        if key == "federation_instances":
            continue
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    for peer in peers:
        if isinstance(peer, str):
            peer = {"url": peer}
        lines.append("\n[[federation_instances]]\n")
        lines.append(f"url = {_toml_literal(peer['url'])}\n")
        if peer.get("name"):
            lines.append(f"name = {_toml_literal(peer['name'])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    """Persist updates and reload the process-wide settings."""
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
