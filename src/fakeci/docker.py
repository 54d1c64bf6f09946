# docker.py
# Thin wrapper around the docker CLI.
# The rest of the codebase never calls subprocess(["docker", ...]) directly.
from __future__ import annotations

import logging
import os
import random
import string
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Optional

from .errors import BuildError, ContainerCreateError, ContainerError

if TYPE_CHECKING:
    from .model import BuildImage

logger = logging.getLogger(__name__)

CONTAINER_WORKDIR = "/code"
DOCKER_NAME_CHARSET = frozenset(string.ascii_lowercase + string.digits + "_-")
RANDOM_CHARSET = string.ascii_lowercase + string.digits
TIMEOUT_EXIT_STATUS = 124

DOCKER_HINT = "Install Docker and ensure the daemon is running."


# ---------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------

def random_docker_chars(n: int) -> str:
    """N random characters that are valid in both image and container names."""
    return "".join(random.choices(RANDOM_CHARSET, k=n))


def sanitize_docker_name(name: str) -> str:
    lowered = name.lower().replace(" ", "-")
    return "".join(c for c in lowered if c in DOCKER_NAME_CHARSET)


def random_image_name() -> str:
    return f"fake-ci-{random_docker_chars(12)}"


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ExecOutput:
    stdout: bytes
    stderr: bytes
    exit_status: int

    @property
    def success(self) -> bool:
        return self.exit_status == 0


@dataclass(frozen=True)
class ContainerHandle:
    """
    A long-lived container waiting for commands.

    Each `exec` is one request/response exchange with the container; all of
    them share the container's filesystem and environment.
    """
    runtime: "DockerRuntime"
    name: str
    container_id: str = ""

    def exec(self, command: str, *, timeout: float | None = None) -> ExecOutput:
        return self.runtime.exec(self.name, command, timeout=timeout)

    def stop(self) -> None:
        self.runtime.stop(self.name)

    def remove(self) -> None:
        self.runtime.remove(self.name)


# ---------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------

class DockerRuntime:
    """Build images and drive containers through the `docker` binary."""

    def __init__(self, docker: str = "docker", shell: str = "sh"):
        self.docker = docker
        self.shell = shell

    def _run(
        self,
        args: list[str],
        *,
        cwd: str | Path | None = None,
        env: Dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess:
        cmd = [self.docker, *args]
        logger.debug("Running %s", " ".join(cmd))
        return subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            capture_output=True,
            timeout=timeout,
        )

    def available(self) -> bool:
        try:
            return self._run(["--version"]).returncode == 0
        except OSError:
            return False

    def build_image(self, spec: "BuildImage", *, workdir: str | Path) -> str:
        """Build `spec` from `workdir`, return the resulting tag."""
        tag = spec.name or random_image_name()
        args = ["build", "--file", spec.dockerfile or "Dockerfile", "--tag", tag]
        for build_arg in spec.build_args:
            args.extend(["--build-arg", build_arg])
        args.append(spec.context or ".")

        try:
            proc = self._run(args, cwd=workdir)
        except OSError as e:
            raise BuildError(f"could not run {self.docker} build", details={"error": e, "hint": DOCKER_HINT}) from e
        if proc.returncode != 0:
            raise BuildError(
                f"docker build failed for image {tag}",
                details={
                    "exit_code": proc.returncode,
                    "stderr": proc.stderr.decode("utf-8", errors="replace"),
                },
            )
        logger.info("Built image %s", tag)
        return tag

    def create_and_start(
        self,
        image: str,
        name: str,
        *,
        workdir: str | Path,
        shell: str | None = None,
        volumes: Iterable[str] = (),
        env: Dict[str, str] | None = None,
        one_time: bool = False,
        privileged: bool = False,
        pull: bool = True,
    ) -> ContainerHandle:
        """
        Start `shell` in a detached, interactive container named `name`.

        `workdir` is mounted at /code, which is also the container's working
        directory. Env values travel through the docker client's environment
        (`--env KEY`), never through its argv.
        """
        env = env or {}
        args = [
            "run",
            "--detach",
            "--interactive",
            "--name", name,
            "--volume", f"{Path(workdir).resolve()}:{CONTAINER_WORKDIR}",
            "--workdir", CONTAINER_WORKDIR,
            "--pull", "always" if pull else "never",
        ]
        for vol in volumes:
            args.extend(["--volume", vol])
        for key in env:
            args.extend(["--env", key])
        if privileged:
            args.append("--privileged")
        if one_time:
            args.append("--rm")
        args.extend([image, shell or self.shell])

        client_env = os.environ.copy()
        client_env.update(env)

        try:
            proc = self._run(args, env=client_env)
        except OSError as e:
            raise ContainerCreateError(
                f"could not run {self.docker}", details={"error": e, "hint": DOCKER_HINT}
            ) from e
        if proc.returncode != 0:
            raise ContainerCreateError(
                f"failure to create container {name}",
                details={
                    "image": image,
                    "stderr": proc.stderr.decode("utf-8", errors="replace").strip(),
                },
            )
        container_id = proc.stdout.decode("utf-8", errors="replace").strip()
        logger.debug("Created container %s (%s)", name, container_id[:12])
        return ContainerHandle(runtime=self, name=name, container_id=container_id)

    def exec(self, name: str, command: str, *, timeout: float | None = None) -> ExecOutput:
        """Run one command line inside the running container `name`."""
        try:
            proc = self._run(["exec", name, self.shell, "-c", command], timeout=timeout)
        except subprocess.TimeoutExpired as e:
            note = f"command timed out after {timeout}s\n".encode()
            return ExecOutput(
                stdout=e.stdout or b"",
                stderr=(e.stderr or b"") + note,
                exit_status=TIMEOUT_EXIT_STATUS,
            )
        except OSError as e:
            raise ContainerError(f"could not exec in container {name}", details={"error": e}) from e
        return ExecOutput(stdout=proc.stdout, stderr=proc.stderr, exit_status=proc.returncode)

    def stop(self, name: str) -> None:
        self._best_effort(["stop", name], f"stop container {name}")

    def remove(self, name: str) -> None:
        self._best_effort(["rm", "--force", name], f"remove container {name}")

    def remove_image(self, ref: str) -> None:
        self._best_effort(["rmi", ref], f"remove image {ref}")

    def _best_effort(self, args: list[str], what: str) -> Optional[subprocess.CompletedProcess]:
        try:
            proc = self._run(args)
        except OSError as e:
            logger.warning("Could not %s: %s", what, e)
            return None
        if proc.returncode != 0:
            logger.warning(
                "Could not %s: %s", what, proc.stderr.decode("utf-8", errors="replace").strip()
            )
        return proc
