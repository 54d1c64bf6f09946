"""Outbound communication of pipeline results."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field, ValidationError

from ..errors import ConfigError
from ..results import ExecutionResult


class Notifier(ABC):
    """Communicates a build result to the outside world."""

    @abstractmethod
    def send(self, result: ExecutionResult) -> None:
        """Deliver `result`. Raise on failure; never mutate `result`."""


class NotifierConfig(BaseModel):
    """A `notifiers:` entry of the watch config: `{type: mailer, config: {...}}`."""
    type: Literal["mailer"]
    config: Dict[str, Any] = Field(default_factory=dict)


def build_notifier(entry: NotifierConfig) -> Notifier:
    from .mail import Mailer

    registry = {"mailer": Mailer}
    cls = registry.get(entry.type)
    if cls is None:
        raise ConfigError(f"unknown notifier type {entry.type!r}")
    try:
        return cls.model_validate(entry.config)
    except ValidationError as e:
        raise ConfigError(f"invalid {entry.type} notifier config", details={"error": e}) from e


__all__ = ["Notifier", "NotifierConfig", "build_notifier"]
