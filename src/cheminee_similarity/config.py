"""
Settings for building a `SimilarityModel`.

Values come from a TOML file (the `[similarity]` table, or the top level if
there is no such table) and are then overridden by `CHEMINEE_*` environment
variables:

    [similarity]
    encoder_path = "assets/vae_encoder"
    centroids_path = "assets/lf_kmeans_10k_centroids_20241111.csv"
    top_n = 10
    workers = 4

Asset paths are always given explicitly; nothing is discovered by scanning
build directories.
"""

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import toml

from .errors import ConfigError

ENV_PREFIX = "CHEMINEE_"


@dataclass(frozen=True)
class Settings:
    encoder_path: Optional[Path] = None
    centroids_path: Optional[Path] = None
    signature: str = "serving_default"
    input_name: str = "dense_input"
    output_name: Optional[str] = None
    num_threads: Optional[int] = None
    top_n: Optional[int] = None
    workers: int = 1
    batch_size: int = 1024
    log_level: str = "INFO"

    def replace(self, **changes):
        return dataclasses.replace(self, **{name: _coerce(name, value) for name, value in changes.items()})

    def require_assets(self):
        missing = [name for name in ("encoder_path", "centroids_path") if getattr(self, name) is None]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")
        return self


_PATH_FIELDS = {"encoder_path", "centroids_path"}
_INT_FIELDS = {"num_threads", "top_n", "workers", "batch_size"}
_POSITIVE_FIELDS = {"workers", "batch_size"}


def _coerce(name, value):
    if value is None:
        return None
    if name in _PATH_FIELDS:
        return Path(value)
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            raise ConfigError(f"{name} must be an integer, got {value!r}")
        try:
            value = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from e
        if value <= 0 and (name in _POSITIVE_FIELDS or name == "top_n"):
            raise ConfigError(f"{name} must be positive, got {value}")
        return value
    if name == "log_level":
        return str(value).upper()
    return str(value)


def _read_toml(path):
    path = Path(path)
    try:
        data = toml.load(path)
    except FileNotFoundError as e:
        raise ConfigError(f"Settings file not found: {path}") from e
    except toml.TomlDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    section = data.get("similarity", data)
    if not isinstance(section, dict):
        raise ConfigError(f"{path}: [similarity] must be a table")

    # Relative asset paths are resolved against the settings file
    for name in _PATH_FIELDS:
        if name in section and not Path(section[name]).is_absolute():
            section[name] = path.parent / section[name]
    return section


def load_settings(path=None, env=None) -> Settings:
    """
    Build `Settings` from an optional TOML file plus environment overrides.

    Raises:
        ConfigError: unknown keys, unreadable file or invalid values.
    """
    env = os.environ if env is None else env
    known = {f.name for f in dataclasses.fields(Settings)}
    values = {}

    if path is not None:
        section = _read_toml(path)
        unknown = sorted(set(section) - known)
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
        values.update(section)

    for name in known:
        env_value = env.get(ENV_PREFIX + name.upper())
        if env_value is not None and env_value != "":
            values[name] = env_value

    return Settings(**{name: _coerce(name, value) for name, value in values.items()})
