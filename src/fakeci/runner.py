# runner.py
from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .docker import ContainerHandle, DockerRuntime
from .errors import BuildError, ConfigError, ContainerCreateError, ContainerError, GitError
from .git_facts import git
from .model import PIPELINE_FILE, BuildImage, Image, Job, PipelineConfig
from .results import ExecutionContext, ExecutionResult, JobResult, LaunchOptions, now_utc

logger = logging.getLogger(__name__)

# repository checkout ---> .fakeci.yml ---> one container per job ---> results ---> notifiers


@dataclass(frozen=True)
class _PlannedJob:
    job: Job
    image: Image
    env: Dict[str, str]


# ----------------------------------------------------------------------
# Planning (configuration errors surface here, before any container exists)
# ----------------------------------------------------------------------

def compose_env(config: PipelineConfig, job: Job, opts: LaunchOptions) -> Dict[str, str]:
    """
    Merge, in increasing precedence:
      default env < job env < launch environment < the job's secrets
    """
    env = config.default_env()
    env.update(job.env)
    env.update(opts.environment)

    missing = [s for s in job.secrets if s not in opts.secrets]
    if missing:
        raise ConfigError(
            f"could not find secret(s) {', '.join(missing)} in the executor's secrets",
            job=job.name,
        )
    env.update({s: opts.secrets[s] for s in job.secrets})
    return env


def plan(config: PipelineConfig, opts: LaunchOptions) -> List[_PlannedJob]:
    """Resolve every job's image and environment, failing fast on config errors."""
    return [
        _PlannedJob(job=job, image=config.image_for(job), env=compose_env(config, job, opts))
        for job in config.pipeline
    ]


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _run_steps(job: Job, container: ContainerHandle, logs: List[str], opts: LaunchOptions) -> bool:
    """
    Run every step of `job` in `container`. Returns False on the first
    failing command; nothing after it runs, in this step or the next ones.
    """
    for index, step in enumerate(job.steps):
        label = step.label(index)
        logger.info(" Running step \"%s\"", label)
        logs.append(f"--- Step {label} ---")

        for command in step.commands:
            logger.info("  - %s", command)
            try:
                output = container.exec(command, timeout=opts.step_timeout)
            except ContainerError as e:
                logger.error("[%s] could not exec %r: %s", job.name, command, e)
                logs.append(f"ERROR: could not execute command: {e.message}")
                logs.append(f"Step \"{label}\" returned execution failure! aborting next steps")
                return False

            if output.stdout:
                out = _decode(output.stdout)
                for line in out.splitlines():
                    logger.debug("    stdout: %s", line)
                logs.append(out)
            if output.stderr:
                err = _decode(output.stderr)
                for line in err.splitlines():
                    logger.debug("    stderr: %s", line)
                logs.append(err)

            if output.exit_status != 0:
                logger.error(
                    "Step \"%s\" returned execution failure (exit=%d)! aborting next steps",
                    label,
                    output.exit_status,
                )
                logs.append(f"Step \"{label}\" returned execution failure! aborting next steps")
                return False
    return True


def _run_job(
    planned: _PlannedJob,
    runtime: DockerRuntime,
    workdir: Path,
    opts: LaunchOptions,
) -> Tuple[JobResult, bool]:
    """
    Run one job in its own container.

    Returns (result, keep_going). keep_going is False only when the
    container could not be created: later jobs would hit the same broken
    environment.
    """
    job, image = planned.job, planned.image
    start = now_utc()
    logs: List[str] = []

    def result(success: bool) -> JobResult:
        return JobResult(
            name=job.name,
            success=success,
            start_date=start,
            end_date=now_utc(),
            logs=tuple(logs),
        )

    # ---- image ----
    built_image: Optional[str] = None
    if isinstance(image, BuildImage):
        try:
            built_image = runtime.build_image(image, workdir=workdir)
        except BuildError as e:
            logger.error("[%s] %s", job.name, e.message)
            logs.append(f"ERROR: {e.message}")
            stderr = e.details.get("stderr")
            if stderr:
                logs.append(stderr)
            return result(False), True
        image_ref = built_image
    else:
        image_ref = image.name

    # ---- container ----
    cname = job.container_name()
    try:
        container = runtime.create_and_start(
            image_ref,
            cname,
            workdir=workdir,
            volumes=job.volumes,
            env=planned.env,
            one_time=False,
            privileged=image.privileged,
            pull=built_image is None,
        )
    except ContainerCreateError as e:
        logger.error("Failure to create container %s: %s", cname, e)
        logs.append(f"ERROR: Failure to create container {cname}")
        if built_image and not image.name:
            runtime.remove_image(built_image)
        return result(False), False
    logger.debug("Successfully created container %s", cname)

    # ---- steps ----
    try:
        success = _run_steps(job, container, logs, opts)
        res = result(success)
    finally:
        container.remove()
        # randomly named images are ours alone; named ones are kept for reuse
        if built_image and not image.name:
            runtime.remove_image(built_image)

    return res, True


def _resolve_commit(workdir: Path) -> git.Commit:
    try:
        return git.get_commit("HEAD", cwd=workdir)
    except GitError as e:
        logger.warning("Could not read HEAD commit in %s: %s", workdir, e.message)
        return git.Commit()


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def execute_config(
    config: PipelineConfig,
    opts: LaunchOptions,
    *,
    workdir: str | Path,
    runtime: Optional[DockerRuntime] = None,
) -> ExecutionResult:
    """
    Run every job of `config`, in order, against the files in `workdir`.

    Raises ConfigError (before any container is created) when a job has no
    image or declares a secret that `opts` does not provide. Failed steps
    and failed builds are reported in the result, not raised.
    """
    runtime = runtime or DockerRuntime()
    workdir_p = Path(workdir).resolve()
    start = now_utc()

    planned_jobs = plan(config, opts)

    job_results: List[JobResult] = []
    for planned in planned_jobs:
        logger.info("Running job \"%s\"", planned.job.name)
        res, keep_going = _run_job(planned, runtime, workdir_p, opts)
        job_results.append(res)
        if not keep_going:
            logger.error("Aborting pipeline: job \"%s\" could not get a container", planned.job.name)
            break

    end = now_utc()
    context = ExecutionContext(
        repo_name=opts.repo_name,
        repo_url=opts.repo_url,
        branch=opts.branch,
        commit=_resolve_commit(workdir_p),
    )
    return ExecutionResult(
        job_results=tuple(job_results),
        context=context,
        start_date=start,
        end_date=end,
    )


def execute_from_file(
    path: str | Path,
    opts: LaunchOptions,
    *,
    workdir: str | Path | None = None,
    runtime: Optional[DockerRuntime] = None,
) -> ExecutionResult:
    """
    Load a pipeline file and run it. `workdir` defaults to the file's directory.
    """
    p = Path(path).expanduser().resolve()
    logger.debug("Execute from file %s", p)
    try:
        config = PipelineConfig.from_yaml(p)
    except ConfigError as e:
        logger.warning(
            "Could not parse pipeline config for branch %s in repo %s: %s",
            opts.branch or "-",
            opts.repo_name or "-",
            e,
        )
        raise
    return execute_config(
        config,
        opts,
        workdir=workdir if workdir is not None else p.parent,
        runtime=runtime,
    )


def launch(opts: LaunchOptions, *, runtime: Optional[DockerRuntime] = None) -> ExecutionResult:
    """
    Clone `opts.repo_url` at `opts.branch` into a fresh temporary directory
    and run its pipeline there. The directory is removed afterwards.

    Raises GitError if the clone or checkout fails.
    """
    logger.debug("launch called with repo %s", opts.repo_url)
    with tempfile.TemporaryDirectory(prefix="fakeci_execution") as tmp:
        root = Path(tmp)
        logger.debug("running in dir %s", root)
        git.clone(opts.repo_url, opts.branch, root)
        return execute_from_file(root / PIPELINE_FILE, opts, workdir=root, runtime=runtime)
