"""Tests for the repository watch loop."""

import logging
import threading
from datetime import datetime, timezone

import pytest

from fakeci.errors import ConfigError, GitError
from fakeci.notifications import Notifier
from fakeci.results import ExecutionContext, ExecutionResult, JobResult
from fakeci.watch.cache import RefCache
from fakeci.watch.config import RepositoryConfig, WatchConfig
from fakeci.watch.watcher import Watcher

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def result_for(opts, success=True):
    job = JobResult(name="job", success=success, start_date=T0, end_date=T0)
    return ExecutionResult(
        job_results=(job,),
        context=ExecutionContext(branch=opts.branch),
        start_date=T0,
        end_date=T0,
    )


class RecordingLauncher:
    def __init__(self, errors=None):
        self.errors = errors or {}
        self.launched = []

    def __call__(self, opts):
        self.launched.append(opts)
        if opts.branch in self.errors:
            raise self.errors[opts.branch]
        return result_for(opts)


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, result):
        self.sent.append(result)
        if self.fail:
            raise ConnectionRefusedError("smtp is down")


def make_watcher(tmp_path, remote, launcher, branches="*", **repo):
    config = WatchConfig(
        watch_interval=0,
        repositories=[
            RepositoryConfig(
                name="repo",
                uri="https://example.org/repo.git",
                branches=branches,
                secrets={"TOKEN": "s3cr3t"},
                **repo,
            )
        ],
    )
    return Watcher(config, cache=RefCache(tmp_path), launcher=launcher, fetch=lambda uri: dict(remote))


class TestProcessRepository:
    def test_only_matching_branches_are_built(self, tmp_path):
        launcher = RecordingLauncher()
        w = make_watcher(tmp_path, {"main": "a", "feature/x": "b", "release/1": "c"}, launcher,
                         branches=["main", "release/*"])
        results = w.process_repository(w.states[0])

        assert sorted(o.branch for o in launcher.launched) == ["main", "release/1"]
        assert len(results) == 2
        opts = launcher.launched[0]
        assert opts.repo_name == "repo"
        assert opts.repo_url == "https://example.org/repo.git"
        assert opts.secrets == {"TOKEN": "s3cr3t"}
        # every seen branch is recorded, built or not
        assert RefCache(tmp_path).load("repo") == {"main": "a", "feature/x": "b", "release/1": "c"}

    def test_results_carry_repository_and_reach_notifiers(self, tmp_path):
        w = make_watcher(tmp_path, {"main": "a"}, RecordingLauncher())
        notifier = RecordingNotifier()
        w.notifiers["repo"] = [notifier]
        w.process_repository(w.states[0])

        (sent,) = notifier.sent
        assert sent.context.repo_name == "repo"
        assert sent.context.repo_url == "https://example.org/repo.git"
        assert sent.context.branch == "main"

    def test_nothing_new_launches_nothing(self, tmp_path):
        RefCache(tmp_path).save("repo", {"main": "a"})
        launcher = RecordingLauncher()
        w = make_watcher(tmp_path, {"main": "a"}, launcher)
        assert w.process_repository(w.states[0]) == []
        assert launcher.launched == []

    def test_clone_failure_restores_refs(self, tmp_path):
        RefCache(tmp_path).save("repo", {"main": "old"})
        launcher = RecordingLauncher(errors={"main": GitError("`git clone` failed")})
        w = make_watcher(tmp_path, {"main": "new"}, launcher)
        w.process_repository(w.states[0])

        assert w.states[0].refs == {"main": "old"}
        assert RefCache(tmp_path).load("repo") == {"main": "old"}
        # so the next cycle tries again
        w.launcher = RecordingLauncher()
        assert len(w.process_repository(w.states[0])) == 1

    def test_clone_failure_only_forgets_that_branch(self, tmp_path):
        RefCache(tmp_path).save("repo", {"main": "old", "dev": "old"})
        launcher = RecordingLauncher(errors={"dev": GitError("`git clone` failed")})
        w = make_watcher(tmp_path, {"main": "new", "dev": "new", "feature": "f"}, launcher)
        notifier = RecordingNotifier()
        w.notifiers["repo"] = [notifier]
        results = w.process_repository(w.states[0])

        assert [r.context.branch for r in results] == ["main", "feature"]
        assert [r.context.branch for r in notifier.sent] == ["main", "feature"]
        assert RefCache(tmp_path).load("repo") == {"main": "new", "dev": "old", "feature": "f"}

        # next tick retries dev alone
        w.launcher = RecordingLauncher()
        w.process_repository(w.states[0])
        assert [o.branch for o in w.launcher.launched] == ["dev"]

    def test_clone_failure_on_new_branch_forgets_it(self, tmp_path):
        launcher = RecordingLauncher(errors={"feature": GitError("`git clone` failed")})
        w = make_watcher(tmp_path, {"feature": "f"}, launcher)
        w.process_repository(w.states[0])
        assert w.states[0].refs == {}

    def test_config_error_does_not_stop_other_branches(self, tmp_path, caplog):
        launcher = RecordingLauncher(errors={"broken": ConfigError("invalid pipeline definition")})
        w = make_watcher(tmp_path, {"broken": "a", "main": "b"}, launcher)
        with caplog.at_level(logging.ERROR):
            results = w.process_repository(w.states[0])

        assert [r.context.branch for r in results] == ["main"]
        assert RefCache(tmp_path).load("repo") == {"broken": "a", "main": "b"}
        assert "invalid pipeline definition" in caplog.text

    def test_notifier_failure_is_logged(self, tmp_path, caplog):
        w = make_watcher(tmp_path, {"main": "a"}, RecordingLauncher())
        failing, ok = RecordingNotifier(fail=True), RecordingNotifier()
        w.notifiers["repo"] = [failing, ok]
        with caplog.at_level(logging.ERROR):
            results = w.process_repository(w.states[0])

        assert len(results) == 1
        assert len(ok.sent) == 1
        assert "smtp is down" in caplog.text

    def test_fetch_failure_is_logged(self, tmp_path, caplog):
        def broken(uri):
            raise GitError("`git ls-remote` failed")

        config = WatchConfig(repositories=[RepositoryConfig(name="repo", uri="/nowhere")])
        launcher = RecordingLauncher()
        w = Watcher(config, cache=RefCache(tmp_path), launcher=launcher, fetch=broken)
        with caplog.at_level(logging.ERROR):
            assert w.process_repository(w.states[0]) == []
        assert launcher.launched == []
        assert "Could not fetch repo" in caplog.text


class TestLoop:
    def test_run_cycle_covers_every_repository(self, tmp_path):
        config = WatchConfig(
            max_workers=2,
            repositories=[
                RepositoryConfig(name="one", uri="/srv/one.git"),
                RepositoryConfig(name="two", uri="/srv/two.git"),
            ],
        )
        launcher = RecordingLauncher()
        w = Watcher(config, cache=RefCache(tmp_path), launcher=launcher, fetch=lambda uri: {"main": uri})
        results = w.run_cycle()

        assert set(results) == {"one", "two"}
        assert sorted(o.repo_name for o in launcher.launched) == ["one", "two"]

    def test_stop_ends_run(self, tmp_path):
        w = make_watcher(tmp_path, {"main": "a"}, RecordingLauncher())
        w.config.watch_interval = 60
        assert w.running

        t = threading.Thread(target=w.run)
        t.start()
        w.stop()
        t.join(timeout=10)

        assert not t.is_alive()
        assert not w.running

    def test_stop_during_cycle_finishes_cycle(self, tmp_path):
        w = make_watcher(tmp_path, {"main": "a", "dev": "b"}, None)

        def launcher(opts):
            w.stop()
            return result_for(opts)

        w.launcher = launcher
        # keep pytest's own SIGINT handling
        w.install_signal_handlers = lambda: None
        w.run()
        # both branches were built even though stop came in the middle
        assert RefCache(tmp_path).load("repo") == {"main": "a", "dev": "b"}

    def test_bad_notifier_config_fails_at_startup(self, tmp_path):
        with pytest.raises(ConfigError):
            make_watcher(tmp_path, {}, RecordingLauncher(),
                         notifiers=[{"type": "mailer", "config": {"from": "x@example.org"}}])
