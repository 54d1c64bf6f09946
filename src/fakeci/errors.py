# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - logging from the watch loop without full tracebacks
    """
    message: str
    job: str | None = None
    details: dict = field(default_factory=dict)

    kind = "ci_error"

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Missing image, undeclared secret value, malformed pipeline file..."""
    kind = "config_error"


class ContainerError(CIError):
    kind = "container_error"


class BuildError(ContainerError):
    kind = "build_error"


class ContainerCreateError(ContainerError):
    kind = "container_create_error"


class GitError(CIError):
    """ls-remote, clone or checkout failure."""
    kind = "git_error"
