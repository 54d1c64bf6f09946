"""Tests for the docker CLI adapter."""

import re
import subprocess

import pytest

from fakeci import docker
from fakeci.docker import (
    TIMEOUT_EXIT_STATUS,
    DockerRuntime,
    random_image_name,
    sanitize_docker_name,
)
from fakeci.errors import BuildError, ContainerCreateError
from fakeci.model import BuildImage


class Recorder:
    """Replaces subprocess.run, answering every call with `returncode`."""

    def __init__(self, returncode=0, stdout=b"", stderr=b""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=self.stdout, stderr=self.stderr)


@pytest.fixture
def recorder(monkeypatch):
    rec = Recorder(stdout=b"0123456789abcdef\n")
    monkeypatch.setattr(docker.subprocess, "run", rec)
    return rec


def test_names():
    assert sanitize_docker_name("My Job!") == "my-job"
    assert re.fullmatch(r"fake-ci-[a-z0-9]{12}", random_image_name())


def test_create_passes_env_names_only(recorder, tmp_path):
    rt = DockerRuntime()
    handle = rt.create_and_start(
        "busybox",
        "fake-ci-job-abcd",
        workdir=tmp_path,
        volumes=["/data:/data"],
        env={"MY_SECRET": "hunter2"},
    )
    cmd, kwargs = recorder.calls[0]

    assert cmd[:3] == ["docker", "run", "--detach"]
    assert "--interactive" in cmd
    assert cmd[cmd.index("--name") + 1] == "fake-ci-job-abcd"
    assert f"{tmp_path.resolve()}:/code" in cmd
    assert cmd[cmd.index("--workdir") + 1] == "/code"
    assert cmd[cmd.index("--pull") + 1] == "always"
    assert "/data:/data" in cmd
    assert cmd[cmd.index("--env") + 1] == "MY_SECRET"
    assert cmd[-2:] == ["busybox", "sh"]
    assert not any("hunter2" in part for part in cmd)
    assert kwargs["env"]["MY_SECRET"] == "hunter2"
    assert handle.name == "fake-ci-job-abcd"
    assert handle.container_id == "0123456789abcdef"


def test_create_privileged_no_pull(recorder, tmp_path):
    DockerRuntime().create_and_start("built", "c", workdir=tmp_path, privileged=True, pull=False, one_time=True)
    cmd, _ = recorder.calls[0]
    assert "--privileged" in cmd
    assert "--rm" in cmd
    assert cmd[cmd.index("--pull") + 1] == "never"


def test_create_failure(monkeypatch, tmp_path):
    monkeypatch.setattr(docker.subprocess, "run", Recorder(returncode=125, stderr=b"no such image\n"))
    with pytest.raises(ContainerCreateError) as exc:
        DockerRuntime().create_and_start("nope", "c", workdir=tmp_path)
    assert exc.value.details["stderr"] == "no such image"


def test_exec_goes_through_the_shell(recorder):
    rec = recorder
    rec.stdout = b"hi!\n"
    out = DockerRuntime().exec("c", "echo hi!")
    assert rec.calls[0][0] == ["docker", "exec", "c", "sh", "-c", "echo hi!"]
    assert out.stdout == b"hi!\n"
    assert out.success


def test_exec_timeout(monkeypatch):
    def slow(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"], output=b"partial")

    monkeypatch.setattr(docker.subprocess, "run", slow)
    out = DockerRuntime().exec("c", "sleep 100", timeout=1)
    assert out.exit_status == TIMEOUT_EXIT_STATUS
    assert out.stdout == b"partial"
    assert b"timed out" in out.stderr


def test_build(recorder, tmp_path):
    spec = BuildImage(dockerfile="ci/Dockerfile", context="ci", build_args=["A=1"])
    tag = DockerRuntime().build_image(spec, workdir=tmp_path)
    cmd, kwargs = recorder.calls[0]

    assert re.fullmatch(r"fake-ci-[a-z0-9]{12}", tag)
    assert cmd == ["docker", "build", "--file", "ci/Dockerfile", "--tag", tag, "--build-arg", "A=1", "ci"]
    assert kwargs["cwd"] == str(tmp_path)


def test_build_failure_carries_stderr(monkeypatch, tmp_path):
    monkeypatch.setattr(docker.subprocess, "run", Recorder(returncode=1, stderr=b"Dockerfile not found"))
    with pytest.raises(BuildError) as exc:
        DockerRuntime().build_image(BuildImage(name="mine"), workdir=tmp_path)
    assert exc.value.details["stderr"] == "Dockerfile not found"


def test_cleanup_is_best_effort(monkeypatch, caplog):
    monkeypatch.setattr(docker.subprocess, "run", Recorder(returncode=1, stderr=b"No such container"))
    rt = DockerRuntime()
    rt.remove("gone")
    rt.remove_image("gone")
    rt.stop("gone")
    assert "No such container" in caplog.text


@pytest.mark.docker
def test_exec_in_real_container(tmp_path):
    rt = DockerRuntime()
    handle = rt.create_and_start("busybox", f"fake-ci-test-{docker.random_docker_chars(4)}", workdir=tmp_path)
    try:
        assert handle.exec("export A=1; echo $A").stdout == b"1\n"
        handle.exec("touch made_here")
        assert (tmp_path / "made_here").exists()
    finally:
        handle.remove()
