"""Settings loading for the Atlas cluster manager.

Resolution order, later wins:

1. Dataclass defaults.
2. ``hackathon-atlas.yaml`` (explicit path, or discovered by walking up
   from the current directory).
3. Environment variables prefixed with ``HACKATHON_ATLAS_``
   (e.g., ``HACKATHON_ATLAS_PUBLIC_KEY``).
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from hackathon_atlas.errors import ConfigError

CONFIG_FILENAME = "hackathon-atlas.yaml"
ENV_PREFIX = "HACKATHON_ATLAS_"


@dataclass(frozen=True)
class AtlasSettings:
    """Control-plane credentials, storage location and serving options."""

    base_url: str = "https://cloud.mongodb.com/api/atlas/v2"
    api_version: str = "2025-03-12"
    public_key: str = ""
    private_key: str = ""
    org_id: str = ""
    request_timeout: float = 30.0
    db_path: str = "./hackathon-atlas.db"
    signing_key: str = ""
    cluster_name: str = "hackathon-cluster"
    instance_size: str = "M0"
    app_name: str = "devrel-platform-hackathon-atlas"
    host: str = "127.0.0.1"
    port: int = 8430
    dev_mode: bool = False

    def require_credentials(self) -> None:
        """Raise ConfigError unless the Atlas API key pair and org are set."""
        missing = [
            name
            for name in ("public_key", "private_key", "org_id")
            if not getattr(self, name)
        ]
        if missing:
            env_names = ", ".join(f"{ENV_PREFIX}{m.upper()}" for m in missing)
            raise ConfigError(f"Missing Atlas credentials: {env_names}")


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root."""
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_settings(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
    environ: Mapping[str, str] | None = None,
) -> AtlasSettings:
    """Build settings from YAML (optional) and environment overrides."""
    config_path: Path | None = None
    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
    elif auto_discover:
        config_path = find_config()

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(_read_yaml(config_path))
    values.update(_read_env(os.environ if environ is None else environ))
    return AtlasSettings(**values)


def _read_yaml(config_path: Path) -> dict[str, Any]:
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        )

    known = {f.name for f in dataclasses.fields(AtlasSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown settings in {config_path}: {', '.join(unknown)}")

    values = {k: _coerce(k, v) for k, v in data.items()}
    # A relative database path is relative to the config file, not the cwd.
    if "db_path" in values and not Path(values["db_path"]).is_absolute():
        values["db_path"] = str((config_path.parent / values["db_path"]).resolve())
    return values


def _read_env(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for fld in dataclasses.fields(AtlasSettings):
        raw = environ.get(f"{ENV_PREFIX}{fld.name.upper()}")
        if raw is not None:
            values[fld.name] = _coerce(fld.name, raw)
    return values


def _coerce(name: str, value: Any) -> Any:
    fld_type = {f.name: f.type for f in dataclasses.fields(AtlasSettings)}[name]
    try:
        if fld_type == "int":
            return int(value)
        if fld_type == "float":
            return float(value)
        if fld_type == "bool":
            if isinstance(value, bool):
                return value
            return str(value).lower() in ("1", "true", "yes")
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc
    return str(value)
