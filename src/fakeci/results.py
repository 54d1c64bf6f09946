# results.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from .git_facts.git import Commit


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LaunchOptions:
    """
    What the caller hands to a pipeline run.

    Secrets are only ever read from here; they are never written to disk.
    """
    repo_name: str = ""
    repo_url: str = ""
    branch: str = ""
    secrets: Dict[str, str] = field(default_factory=dict)
    environment: Dict[str, str] = field(default_factory=dict)
    step_timeout: Optional[float] = None  # per command, None = wait forever


@dataclass(frozen=True)
class JobResult:
    """The result of a single job."""
    name: str
    success: bool
    start_date: datetime
    end_date: datetime
    logs: Tuple[str, ...] = ()

    @property
    def duration(self) -> timedelta:
        return self.end_date - self.start_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "logs": list(self.logs),
        }


@dataclass(frozen=True)
class ExecutionContext:
    """The context in which the pipeline executed."""
    repo_name: str = ""
    repo_url: str = ""
    branch: str = ""
    commit: Commit = field(default_factory=Commit)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repo_name": self.repo_name,
            "repo_url": self.repo_url,
            "branch": self.branch,
            "commit": self.commit.to_dict(),
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Every job's result plus some context. Handed to notifiers as-is."""
    job_results: Tuple[JobResult, ...]
    context: ExecutionContext
    start_date: datetime
    end_date: datetime

    @property
    def success(self) -> bool:
        return all(j.success for j in self.job_results)

    @property
    def duration(self) -> timedelta:
        return self.end_date - self.start_date

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "job_results": [j.to_dict() for j in self.job_results],
            "context": self.context.to_dict(),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "success": self.success,
        }
