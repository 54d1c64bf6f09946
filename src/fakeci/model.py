# model.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .docker import random_docker_chars, sanitize_docker_name
from .errors import ConfigError

PIPELINE_FILE = ".fakeci.yml"


# ---------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------

class ExistingImage(BaseModel):
    """A plain image name, e.g. `image: busybox`."""
    kind: Literal["existing"] = "existing"
    name: str

    @property
    def privileged(self) -> bool:
        return False


class ExistingImageFull(BaseModel):
    """An existing image with run options, e.g. `image: {name: docker:dind, privileged: true}`."""
    kind: Literal["existing_full"] = "existing_full"
    name: str
    privileged: bool = False

    model_config = {"extra": "forbid"}


class BuildImage(BaseModel):
    """An image we must build ourselves before running the job."""
    kind: Literal["build"] = "build"
    dockerfile: Optional[str] = None
    context: Optional[str] = None
    build_args: List[str] = Field(default_factory=list)
    name: Optional[str] = None
    privileged: bool = False

    model_config = {"extra": "forbid"}

    @field_validator("build_args", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


Image = Union[ExistingImage, ExistingImageFull, BuildImage]


def decode_image(value: Any) -> Optional[Image]:
    """
    Decode the untagged `image:` field.

    Shapes are tried from least to most permissive:
      1. bare string          -> ExistingImage
      2. {name, privileged}   -> ExistingImageFull (no other keys allowed)
      3. build object         -> BuildImage
    so an object carrying only `dockerfile` can never be taken for a named image.
    """
    if value is None:
        return None
    if isinstance(value, (ExistingImage, ExistingImageFull, BuildImage)):
        return value
    if isinstance(value, str):
        return ExistingImage(name=value)
    if isinstance(value, dict):
        try:
            return ExistingImageFull.model_validate(value)
        except ValidationError:
            pass
        try:
            return BuildImage.model_validate(value)
        except ValidationError as e:
            raise ValueError(f"invalid build image definition: {e}") from e
    raise ValueError(
        "image must be a name, a {name, privileged} object or a build object, "
        f"got {type(value).__name__}"
    )


def _env_value(val: Any) -> str:
    if val is None:
        return ""
    # `true` in YAML must reach the shell as "true", not Python's "True"
    if isinstance(val, bool):
        return "true" if val else "false"
    return str(val)


def stringify_env(v: Any) -> Any:
    """Coerce a YAML env mapping to {str: str}. Anything else is left for validation."""
    if v is None:
        return {}
    if isinstance(v, dict):
        return {str(k): _env_value(val) for k, val in v.items()}
    return v


# ---------------------------------------------------------------------
# Pipeline file
# ---------------------------------------------------------------------

class Step(BaseModel):
    """A group of shell commands inside a job."""
    name: Optional[str] = None
    commands: List[str] = Field(default_factory=list, alias="exec")

    model_config = {"populate_by_name": True}

    def label(self, index: int) -> str:
        return self.name if self.name else str(index)


class Job(BaseModel):
    """
    A CI job: one container, many steps.

    `secrets` only names the values the job may receive; the values
    themselves come from LaunchOptions at run time.
    """
    name: str = Field(..., min_length=1)
    image: Optional[Image] = None
    steps: List[Step] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    secrets: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)

    @field_validator("image", mode="before")
    @classmethod
    def _decode_image(cls, v: Any) -> Any:
        return decode_image(v)

    @field_validator("env", mode="before")
    @classmethod
    def _env_as_strings(cls, v: Any) -> Any:
        return stringify_env(v)

    @field_validator("steps", "secrets", "volumes", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def container_name(self) -> str:
        """Random, valid container name derived from the job name."""
        return f"fake-ci-{sanitize_docker_name(self.name)}-{random_docker_chars(4)}"


class DefaultConfig(BaseModel):
    image: Optional[Image] = None
    env: Dict[str, str] = Field(default_factory=dict)

    @field_validator("image", mode="before")
    @classmethod
    def _decode_image(cls, v: Any) -> Any:
        return decode_image(v)

    @field_validator("env", mode="before")
    @classmethod
    def _env_as_strings(cls, v: Any) -> Any:
        return stringify_env(v)


class PipelineConfig(BaseModel):
    """An entire `.fakeci.yml`."""
    pipeline: List[Job]
    default: Optional[DefaultConfig] = None

    def image_for(self, job: Job) -> Image:
        if job.image is not None:
            return job.image
        if self.default is not None and self.default.image is not None:
            return self.default.image
        raise ConfigError(
            "no image for job and no default image configured",
            job=job.name,
        )

    def default_env(self) -> Dict[str, str]:
        return dict(self.default.env) if self.default is not None else {}

    @classmethod
    def from_string(cls, text: str) -> "PipelineConfig":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError("pipeline file is not valid YAML", details={"error": e}) from e
        if not isinstance(data, dict):
            raise ConfigError("pipeline file must be a mapping with a `pipeline` key")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError("invalid pipeline definition", details={"error": e}) from e

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PipelineConfig":
        p = Path(path)
        try:
            text = p.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"could not read pipeline file {p}", details={"error": e}) from e
        return cls.from_string(text)
