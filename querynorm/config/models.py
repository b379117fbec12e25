"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. JSON parsing prefers `orjson` when available for speed and
lower memory usage, but falls back to the Python standard library's `json`
module so the loader keeps working in minimal environments.
"""

from __future__ import annotations

import json as _json
from pathlib import Path
from typing import Any, Callable, Dict, Optional

try:
    import orjson as _orjson_mod  # type: ignore[assignment]
except ImportError:  # pragma: no cover - optional dependency
    _orjson_mod = None  # type: ignore[assignment]
    _loads_orjson: Optional[Callable[[bytes], Any]] = None
    _dumps_orjson: Optional[Callable[[Any], bytes]] = None
else:

    def _loads_orjson(buf: bytes) -> Any:
        loader = getattr(_orjson_mod, "loads")  # type: ignore[assignment]
        return loader(buf)

    def _dumps_orjson(obj: Any) -> bytes:
        dumper = getattr(_orjson_mod, "dumps")  # type: ignore[assignment]
        return dumper(obj, option=getattr(_orjson_mod, "OPT_INDENT_2"))


from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_json_file(path: Path) -> Any:
    """Read and decode a JSON file, preferring `orjson` when installed."""
    raw = path.read_bytes()
    if _loads_orjson is not None:
        return _loads_orjson(raw)
    return _json.loads(raw.decode("utf-8"))


def dumps_json(obj: Any) -> str:
    """Encode ``obj`` as indented JSON text, preferring `orjson` when installed."""
    if _dumps_orjson is not None:
        return _dumps_orjson(obj).decode("utf-8")
    return _json.dumps(obj, indent=2)


class SourceConfig(BaseModel):
    """Configuration for a single metrics source.

    Attributes
    ----------
    type: str
        Source type identifier. Only "in-memory" ships with the service.
    fixture: Optional[Path]
        JSON fixture holding alarms, alarm history and samples for the
        in-memory source. Relative paths resolve against the config file.
    """

    type: str = Field("in-memory", description="Source type identifier")
    fixture: Optional[Path] = Field(
        None, description="Fixture file backing an in-memory source"
    )


class FeatureConfig(BaseModel):
    """Feature toggles read from the config file."""

    dynamic_labels: bool = Field(
        False, description="Rewrite legacy aliases into dynamic labels"
    )


class AppConfig(BaseModel):
    """Top-level application configuration.

    Attributes
    ----------
    sources: Dict[str, SourceConfig]
        Mapping from logical `source_id` to source settings.
    features: FeatureConfig
        Feature toggles.
    """

    sources: Dict[str, SourceConfig] = Field(default_factory=dict)
    features: FeatureConfig = Field(default_factory=FeatureConfig)

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file.

        Relative fixture paths are resolved against the directory holding
        the config file.
        """
        config = AppConfig.model_validate(load_json_file(path))
        for source in config.sources.values():
            if source.fixture is not None and not source.fixture.is_absolute():
                source.fixture = path.parent / source.fixture
        return config


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    DYNAMIC_LABELS_ENABLED: bool
        Rewrite legacy aliases into dynamic labels before normalization.
        OR-ed with the config file's ``features.dynamic_labels``.
    MAX_QUERY_ID_LENGTH: int
        Maximum length of a query identifier accepted by the remote API.
    ANNOTATION_MAX_RECORDS: int
        Page size for alarm listing and alarm history calls.
    DEFAULT_SOURCE_ID: Optional[str]
        Source used when a request does not name one. When unset, the only
        registered source is used.
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="QUERYNORM_")

    log_level: str = Field("INFO")

    DYNAMIC_LABELS_ENABLED: bool = Field(
        False,
        description="Rewrite legacy aliases into dynamic labels",
    )
    MAX_QUERY_ID_LENGTH: int = Field(
        255,
        ge=6,
        le=1024,
        description="Maximum query identifier length",
    )
    ANNOTATION_MAX_RECORDS: int = Field(
        100,
        ge=1,
        le=100,
        description="Page size for alarm listing and history calls",
    )
    DEFAULT_SOURCE_ID: Optional[str] = Field(
        None,
        description="Source used when a request does not name one",
    )
