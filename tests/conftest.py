"""Shared pytest fixtures for fakeci tests."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from fakeci.docker import ContainerHandle, ExecOutput
from fakeci.errors import BuildError, ContainerCreateError
from fakeci.results import LaunchOptions
from fakeci.ui.console import Console, set_console

RESOURCES = Path(__file__).parent / "resources"


def pytest_collection_modifyitems(config, items):
    if shutil.which("docker"):
        return
    skip = pytest.mark.skip(reason="docker is not installed")
    for item in items:
        if item.get_closest_marker("docker"):
            item.add_marker(skip)


class FakeRuntime:
    """
    In-process stand-in for DockerRuntime.

    Records every call. `exit_codes` maps a command line to the exit status
    it should return (default 0); `outputs` maps a command to its stdout.
    """

    def __init__(
        self,
        exit_codes: Optional[Dict[str, int]] = None,
        outputs: Optional[Dict[str, bytes]] = None,
        fail_create: bool = False,
        fail_build: bool = False,
    ):
        self.exit_codes = exit_codes or {}
        self.outputs = outputs or {}
        self.fail_create = fail_create
        self.fail_build = fail_build
        self.calls: List[tuple] = []
        self.created: List[dict] = []
        self.executed: List[tuple] = []
        self.removed: List[str] = []
        self.removed_images: List[str] = []
        self.built: List[object] = []

    def build_image(self, spec, *, workdir):
        self.calls.append(("build", spec))
        if self.fail_build:
            raise BuildError("docker build failed for image x", details={"stderr": "no Dockerfile here"})
        self.built.append(spec)
        return spec.name or "fake-ci-built000000"

    def create_and_start(self, image, name, *, workdir, shell=None, volumes=(), env=None,
                         one_time=False, privileged=False, pull=True):
        self.calls.append(("create", name))
        if self.fail_create:
            raise ContainerCreateError(f"failure to create container {name}")
        self.created.append({
            "image": image,
            "name": name,
            "workdir": Path(workdir),
            "volumes": list(volumes),
            "env": dict(env or {}),
            "privileged": privileged,
            "pull": pull,
        })
        return ContainerHandle(runtime=self, name=name)

    def exec(self, name, command, *, timeout=None):
        self.calls.append(("exec", name, command))
        self.executed.append((name, command))
        return ExecOutput(
            stdout=self.outputs.get(command, b""),
            stderr=b"",
            exit_status=self.exit_codes.get(command, 0),
        )

    def stop(self, name):
        self.calls.append(("stop", name))

    def remove(self, name):
        self.calls.append(("remove", name))
        self.removed.append(name)

    def remove_image(self, ref):
        self.calls.append(("rmi", ref))
        self.removed_images.append(ref)


class HostRuntime(FakeRuntime):
    """Runs commands with the host shell, in the job's working directory."""

    def __init__(self):
        super().__init__()
        self._containers: Dict[str, dict] = {}

    def create_and_start(self, image, name, **kwargs):
        handle = super().create_and_start(image, name, **kwargs)
        self._containers[name] = self.created[-1]
        return handle

    def exec(self, name, command, *, timeout=None):
        self.executed.append((name, command))
        c = self._containers[name]
        proc = subprocess.run(
            ["sh", "-c", command],
            cwd=c["workdir"],
            env={"PATH": "/usr/bin:/bin", **c["env"]},
            capture_output=True,
            timeout=timeout,
        )
        return ExecOutput(stdout=proc.stdout, stderr=proc.stderr, exit_status=proc.returncode)


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def host_runtime():
    return HostRuntime()


@pytest.fixture
def opts():
    return LaunchOptions(repo_name="test", repo_url="file:///dev/null", branch="main")


@pytest.fixture
def resource():
    def _get(name: str) -> Path:
        return RESOURCES / name
    return _get
