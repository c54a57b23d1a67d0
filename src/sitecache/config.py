"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (SITECACHE__PIPELINE__MAX_URLS=100)
  2. sitecache.yaml         (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. The only setting without a usable default is
``ai.api_key``, which is checked when the completion backend is built.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("sitecache")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "store.db")

_DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; sitecache/1.0)"


def _find_config_file() -> str | None:
    """Return the path of the first sitecache.yaml found, or None."""
    candidates = [
        Path("sitecache.yaml"),
        Path(platformdirs.user_config_dir("sitecache")) / "sitecache.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class StoreSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH
    content_ttl_days: int = 7
    status_ttl_hours: int = 24
    lease_seconds: int = 120


class FetcherSettings(BaseModel):
    timeout_seconds: float = 10.0
    retries: int = 3
    backoff_base_seconds: float = 1.0
    user_agent: str = _DEFAULT_USER_AGENT
    reader_enabled: bool = False
    reader_url: str = "https://r.jina.ai/"
    reader_api_key: str | None = None
    browser_enabled: bool = False
    clean_html: bool = True
    include_metadata: bool = True


class SitemapSettings(BaseModel):
    max_depth: int = 3
    user_agent: str = "Mozilla/5.0 (compatible; SitemapBot/1.0)"


class PipelineSettings(BaseModel):
    max_urls: int = 50
    scrape_delay_seconds: float = 1.0
    ai_delay_seconds: float = 2.0
    batch_size: int = 20
    skip_existing: bool = False


class AISettings(BaseModel):
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 2000
    api_key: str | None = None
    base_url: str | None = None


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: SITECACHE__FETCHER__RETRIES=5
        env_prefix="SITECACHE__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    store: StoreSettings = StoreSettings()
    fetcher: FetcherSettings = FetcherSettings()
    sitemap: SitemapSettings = SitemapSettings()
    pipeline: PipelineSettings = PipelineSettings()
    ai: AISettings = AISettings()
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
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls),
        )
