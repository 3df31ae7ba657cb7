"""Pydantic models for pluginsync configuration."""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_API_URL = "https://open-vsx.org/api"
DEFAULT_API_VERSION = "1.50.0"


class RootManifest(BaseModel):
    """Plugin section of a project's root ``package.json``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plugins_dir: str = Field(
        default="plugins",
        validation_alias=AliasChoices("pluginsDir", "theiaPluginsDir", "plugins_dir"),
    )
    exclude_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("theiaPluginsExcludeIds", "exclude_ids"),
    )
    plugins: Optional[Dict[str, str]] = Field(
        default=None,
        validation_alias=AliasChoices("theiaPlugins", "plugins"),
    )

    @field_validator("plugins", mode="before")
    @classmethod
    def _drop_non_string_specs(cls, value: Any) -> Any:
        # Entries like `"foo": false` are used to disable a plugin.
        if isinstance(value, dict):
            return {k: v for k, v in value.items() if isinstance(v, str)}
        return value

    @field_validator("exclude_ids", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str)]
        return value


class DownloadOptions(BaseModel):
    """Options controlling a plugin download run."""

    packed: bool = False
    ignore_errors: bool = False
    api_version: str = DEFAULT_API_VERSION
    api_url: str = DEFAULT_API_URL
    parallel: bool = True
    max_workers: Optional[int] = Field(default=None, ge=1)
    rate_limit: float = Field(default=15.0, gt=0.0)
    max_attempts: int = Field(default=5, ge=1)
    retry_delay: float = Field(default=2.0, ge=0.0)
    exponential_backoff: bool = False
    target_platform: Optional[str] = None
    lockfile_name: str = "plugins.lock.json"
    max_dependency_rounds: int = Field(default=10, ge=1)
    request_timeout: float = Field(default=60.0, gt=0.0)
