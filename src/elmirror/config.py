"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (ELMIRROR__SYNC__INTERVAL_SECONDS=300)
  2. elmirror.yaml          (searched in cwd, then the user config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults. Uplinks
are the only thing most deployments need to set.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("elmirror")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "catalog.db")
_DEFAULT_ARTIFACTS_DIR = str(Path(_DEFAULT_DATA_DIR) / "artifacts")


def _find_config_file() -> str | None:
    """Return the path of the first elmirror.yaml found, or None."""
    candidates = [
        Path("elmirror.yaml"),
        Path(platformdirs.user_config_dir("elmirror")) / "elmirror.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class UplinkSettings(_Section):
    url: str

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("uplink url must use http or https scheme")
        return v


class CatalogSettings(_Section):
    db_path: str = _DEFAULT_DB_PATH


class ArtifactSettings(_Section):
    dir: str = _DEFAULT_ARTIFACTS_DIR


class SyncSettings(_Section):
    interval_seconds: int = 600
    run_on_start: bool = True
    run_once: bool = False
    metadata_source: Literal["http", "archive"] = "http"
    # A duplicate means the release is already in the catalog, so stepping
    # over it loses nothing. Off by default: duplicates usually need a look.
    advance_past_duplicates: bool = False

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("interval_seconds must be >= 1")
        return v


class FetcherSettings(_Section):
    connect_timeout: float = 5.0
    read_timeout: float = 30.0
    deadline_seconds: float = 120.0
    max_redirects: int = 5
    origin_url_template: str = "https://github.com/{author}/{project}/zipball/{version}/"
    user_agent: str = "elmirror/0.1"


class PublishSettings(_Section):
    hash_verification: Literal["off", "if_provided", "required"] = "if_provided"
    public_url: str = "http://localhost:8000"


class LoggingSettings(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: ELMIRROR__CATALOG__DB_PATH=/srv/catalog.db
        env_prefix="ELMIRROR__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
        extra="forbid",
    )

    data_dir: str = _DEFAULT_DATA_DIR
    uplinks: list[UplinkSettings] = []
    catalog: CatalogSettings = CatalogSettings()
    artifacts: ArtifactSettings = ArtifactSettings()
    sync: SyncSettings = SyncSettings()
    fetcher: FetcherSettings = FetcherSettings()
    publish: PublishSettings = PublishSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
