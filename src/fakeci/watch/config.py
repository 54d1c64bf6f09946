"""Configuration of the `fakeci watch` loop."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigError
from ..model import stringify_env
from ..notifications import NotifierConfig

DEFAULT_WATCH_INTERVAL = 300
DEFAULT_CONFIG_FILE = "fake-ci.yml"


class RepositoryConfig(BaseModel):
    """One watched repository."""

    name: str = Field(..., min_length=1, description="Also names the ref cache file")
    uri: str = Field(..., description="Anything `git clone` accepts")
    branches: Union[str, List[str]] = Field(default="*", description="Glob(s) of branches to build")
    notifiers: List[NotifierConfig] = Field(default_factory=list)
    secrets: Dict[str, str] = Field(default_factory=dict)
    environment: Dict[str, str] = Field(default_factory=dict)

    @field_validator("secrets", "environment", mode="before")
    @classmethod
    def _as_strings(cls, v: Any) -> Any:
        return stringify_env(v)

    @field_validator("notifiers", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def branch_patterns(self) -> List[str]:
        if isinstance(self.branches, str):
            return [self.branches]
        return list(self.branches)


class WatchConfig(BaseModel):
    """Complete watch configuration."""

    watch_interval: int = Field(default=DEFAULT_WATCH_INTERVAL, ge=0, description="Seconds between cycles")
    repositories: List[RepositoryConfig]
    cache_dir: Optional[Path] = Field(default=None, description="Where ref caches live")
    max_workers: int = Field(default=1, ge=1, description="Repositories processed in parallel")
    step_timeout: Optional[float] = Field(default=None, gt=0, description="Per command, in seconds")

    @classmethod
    def from_yaml(cls, path: str | Path) -> "WatchConfig":
        """Load the watch configuration from a YAML file."""
        p = Path(path)
        try:
            with open(p, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"could not read watch config {p}", details={"error": e}) from e
        except yaml.YAMLError as e:
            raise ConfigError(f"watch config {p} is not valid YAML", details={"error": e}) from e
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigError(f"invalid watch config {p}", details={"error": e}) from e
