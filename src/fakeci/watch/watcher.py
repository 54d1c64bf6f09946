# watch/watcher.py
from __future__ import annotations

import dataclasses
import logging
import signal
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from ..errors import CIError, GitError
from ..notifications import Notifier, build_notifier
from ..results import ExecutionResult, LaunchOptions
from ..runner import launch
from ..ui.console import get_console
from .cache import RefCache
from .config import WatchConfig
from .state import Fetcher, RepositoryWatchState

logger = logging.getLogger(__name__)

Launcher = Callable[[LaunchOptions], ExecutionResult]


class Watcher:
    """Polls repositories, runs pipelines on branch changes, reports results."""

    def __init__(
        self,
        config: WatchConfig,
        *,
        cache: Optional[RefCache] = None,
        launcher: Optional[Launcher] = None,
        fetch: Optional[Fetcher] = None,
    ):
        """
        Load persisted refs and build notifiers for every repository.

        Args:
            config: The watch configuration
            cache: Where refs are persisted (defaults to config.cache_dir)
            launcher: Clones and runs one branch (defaults to runner.launch)
            fetch: Lists a remote's heads (defaults to git.fetch)

        Raises:
            ConfigError: If a notifier is misconfigured
        """
        self.config = config
        self.cache = cache or RefCache(config.cache_dir)
        self.launcher = launcher or launch
        self.fetch = fetch
        self.states: List[RepositoryWatchState] = []
        self.notifiers: Dict[str, List[Notifier]] = {}
        for repo in config.repositories:
            self.states.append(RepositoryWatchState(repo, self.cache.load(repo.name)))
            self.notifiers[repo.name] = [build_notifier(n) for n in repo.notifiers]
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def stop(self) -> None:
        """Ask the loop to stop once the current cycle is over."""
        self._stop.set()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info("Received signal %s, finishing current cycle then exiting", signum)
        self.stop()

    def install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def run(self) -> None:
        """Run watch cycles until stopped."""
        console = get_console()
        self.install_signal_handlers()
        console.print_watch_started(
            repositories=[s.name for s in self.states],
            interval=self.config.watch_interval,
            cache_dir=str(self.cache.root),
        )

        while self.running:
            self.run_cycle()
            if not self.running:
                break
            logger.debug("Waiting %d seconds", self.config.watch_interval)
            # wakes up early on stop()
            self._stop.wait(self.config.watch_interval)

        console.print_info("Watcher stopped.")

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def run_cycle(self) -> Dict[str, List[ExecutionResult]]:
        """One fetch -> diff -> launch -> persist pass over every repository."""
        if self.config.max_workers <= 1 or len(self.states) <= 1:
            return {s.name: self.process_repository(s) for s in self.states}

        # states and cache files are per repository and every run has its own
        # working directory, so repositories don't share anything
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = {s.name: pool.submit(self.process_repository, s) for s in self.states}
            return {name: fut.result() for name, fut in futures.items()}

    def process_repository(self, state: RepositoryWatchState) -> List[ExecutionResult]:
        """
        Look for new commits in one repository and build the matching branches.

        Never raises for repository-level problems: they are logged and the
        repository is retried on the next cycle.
        """
        logger.debug("Checking repo %s", state.name)
        snapshot = dict(state.refs)

        try:
            changes = state.update_branches(self.fetch)
        except GitError as e:
            logger.error("Could not fetch %s: %s", state.name, e)
            return []
        if not changes:
            logger.debug("No changes in %s", state.name)
            return []
        logger.info("Found changes in %s: %s", state.name, changes)

        results: List[ExecutionResult] = []
        for branch in changes:
            if not state.matches(branch):
                logger.debug("Ignoring %s#%s (no matching branch pattern)", state.name, branch)
                continue

            logger.info("Detected change in %s#%s!", state.name, branch)
            try:
                result = self._build_branch(state, branch)
            except GitError as e:
                # forget this branch's new head only, so it is retried next tick
                logger.error("Could not check out %s#%s: %s", state.name, branch, e)
                self._restore_ref(state, branch, snapshot)
                continue
            except CIError as e:
                logger.error("Pipeline for %s#%s could not run: %s", state.name, branch, e)
                continue
            except Exception:
                logger.exception("Unexpected error while building %s#%s", state.name, branch)
                continue

            results.append(result)
            self._notify(state, result)

        logger.debug("Finished execution, persisting branch values for %s", state.name)
        try:
            self.cache.save(state.name, state.refs)
        except OSError as e:
            logger.error("Could not persist branch values for %s: %s", state.name, e)
        return results

    @staticmethod
    def _restore_ref(state: RepositoryWatchState, branch: str, snapshot: Dict[str, str]) -> None:
        if branch in snapshot:
            state.refs[branch] = snapshot[branch]
        else:
            state.refs.pop(branch, None)

    def _build_branch(self, state: RepositoryWatchState, branch: str) -> ExecutionResult:
        repo = state.config
        opts = LaunchOptions(
            repo_name=repo.name,
            repo_url=repo.uri,
            branch=branch,
            secrets=dict(repo.secrets),
            environment=dict(repo.environment),
            step_timeout=self.config.step_timeout,
        )
        result = self.launcher(opts)
        context = dataclasses.replace(result.context, repo_name=repo.name, repo_url=repo.uri)
        result = dataclasses.replace(result, context=context)
        get_console().print_execution_result(result)
        return result

    def _notify(self, state: RepositoryWatchState, result: ExecutionResult) -> None:
        for notifier in self.notifiers.get(state.name, []):
            try:
                notifier.send(result)
            except Exception as e:
                logger.error(
                    "Notifier %s failed for %s#%s: %s",
                    type(notifier).__name__,
                    state.name,
                    result.context.branch,
                    e,
                )


def run_watch(config: WatchConfig, *, cache: Optional[RefCache] = None) -> None:
    """
    Run the watch loop forever.

    Returns on clean termination (SIGTERM/SIGINT); raises ConfigError on a
    fatal startup problem.
    """
    watcher = Watcher(config, cache=cache)
    watcher.run()
