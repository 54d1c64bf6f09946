"""Console output formatting utilities for fakeci."""

from __future__ import annotations

import sys
from typing import Optional

from ..results import ExecutionResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_run_started(
        self,
        repository: str,
        pipeline: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Repository: {repository}")
        print(f"Pipeline: {pipeline}")
        print(f"Jobs: {job_count}")
        print()

    def print_watch_started(
        self,
        repositories: list[str],
        interval: int,
        cache_dir: str,
    ) -> None:
        """Print watch loop start information."""
        print("\nWATCH STARTED")
        print(f"Repositories: {', '.join(repositories) if repositories else '(none)'}")
        print(f"Polling every: {interval}s")
        print(f"Ref cache: {cache_dir}")
        print()

    def print_execution_result(self, result: ExecutionResult) -> None:
        """Print a per-job summary of a pipeline run."""
        ctx = result.context
        title = ctx.repo_name or ctx.repo_url or "pipeline"
        if ctx.branch:
            title = f"{title}#{ctx.branch}"
        print("\n" + "=" * 40)
        print(f"RESULTS {title}")
        if ctx.commit.hash:
            print(f"Commit: {ctx.commit.hash[:12]}")
        print("=" * 40)
        for job in result.job_results:
            status = "SUCCESS" if job.success else "FAILED"
            print(f"  {job.name}: {status} ({job.duration.total_seconds():.1f}s)")
            if self.debug or not job.success:
                for entry in job.logs:
                    for line in entry.rstrip("\n").splitlines():
                        print(f"    | {line}")
        print(f"Duration: {result.duration.total_seconds():.1f}s")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
