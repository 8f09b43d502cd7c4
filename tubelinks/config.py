import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.json")
DEFAULT_STORAGE_KEY = "youtube_links"


class StorageKeys(BaseModel):
    youtube_links: str = DEFAULT_STORAGE_KEY
    theme: str = "theme_preference"


class StorageSettings(BaseModel):
    keys: StorageKeys = Field(default_factory=StorageKeys)


class PaginationSettings(BaseModel):
    items_per_page: int = Field(default=10, ge=1)


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8765
    # return 200 with success=false instead of 4xx/5xx on store trouble
    always_ok: bool = False
    strict_urls: bool = False
    read_timeout: float = 5.0
    write_timeout: float = 10.0
    log_level: str = "INFO"


class KVSettings(BaseModel):
    backend: Literal["memory", "file", "cloudflare", "none"] = "file"
    data_dir: str = "data"
    account_id: Optional[str] = None
    namespace_id: Optional[str] = None
    api_token: Optional[str] = None


class Settings(BaseSettings):
    """Application settings.

    Values come from ``config.json`` (passed in by ``load_settings``) and are
    overridden by ``TUBELINKS_<SECTION>__<FIELD>`` environment variables, e.g.
    ``TUBELINKS_KV__BACKEND=cloudflare``. Cloudflare credentials use their
    usual ``CF_*`` names.
    """

    model_config = SettingsConfigDict(
        env_prefix="TUBELINKS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    storage: StorageSettings = Field(default_factory=StorageSettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    kv: KVSettings = Field(default_factory=KVSettings)

    cf_account_id: Optional[str] = Field(default=None, validation_alias="CF_ACCOUNT_ID", exclude=True)
    cf_namespace_id: Optional[str] = Field(default=None, validation_alias="CF_KV_NAMESPACE_ID", exclude=True)
    cf_api_token: Optional[str] = Field(default=None, validation_alias="CF_API_TOKEN", exclude=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        # init kwargs carry config.json; the environment wins over the file
        return env_settings, init_settings

    @model_validator(mode="after")
    def _apply_cloudflare_credentials(self) -> "Settings":
        if self.cf_account_id:
            self.kv.account_id = self.cf_account_id
        if self.cf_namespace_id:
            self.kv.namespace_id = self.cf_namespace_id
        if self.cf_api_token:
            self.kv.api_token = self.cf_api_token
        return self

    @property
    def storage_key(self) -> str:
        return self.storage.keys.youtube_links


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.info("No config file at %s, using defaults", path)
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read config file %s: %s; using defaults", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a JSON object; using defaults", path)
        return {}
    return data


def load_settings(path: Path | str | None = None) -> Settings:
    """Build settings from config.json, then environment overrides.

    A missing or broken config file falls back to defaults.
    """
    if path is None:
        path = os.environ.get("TUBELINKS_CONFIG", CONFIG_FILE)

    data = _read_config_file(Path(path))
    try:
        return Settings(**data)
    except ValidationError as exc:
        logger.warning("Invalid configuration, using defaults: %s", exc)
        return Settings.model_construct()


def get_config(settings: Settings, path: str, default: Any = None) -> Any:
    """Dotted lookup into settings, e.g. ``get_config(s, "pagination.items_per_page")``."""
    value: Any = settings.model_dump()
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value
