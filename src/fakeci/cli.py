# cli.py
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from fakeci.docker import DOCKER_HINT, DockerRuntime
from fakeci.errors import CIError, ConfigError
from fakeci.model import PIPELINE_FILE, PipelineConfig
from fakeci.results import LaunchOptions
from fakeci.runner import execute_config
from fakeci.ui.console import Console, get_console, set_console
from fakeci.watch.cache import RefCache
from fakeci.watch.config import DEFAULT_CONFIG_FILE, WatchConfig
from fakeci.watch.watcher import run_watch


def parse_pairs(pairs: tuple[str, ...], what: str) -> dict[str, str]:
    """Turn ("A=1", "B=2") into {"A": "1", "B": "2"}."""
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint=what)
        out[key] = value
    return out


def print_ci_error(console: Console, title: str, e: CIError) -> None:
    message = f"{e.message} (job: {e.job})" if e.job else e.message
    details = [f"{k}: {v}" for k, v in e.details.items()]
    console.print_error(title, message, details=details or None)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """fakeci: a minimal CI that runs pipelines in containers."""
    console = Console(debug=debug)
    set_console(console)
    setup_logging(debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--workdir",
    default=".",
    show_default=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Directory mounted as /code in every job container",
)
@click.option("--file", "pipeline_file", default=None, help=f"Pipeline file (defaults to <workdir>/{PIPELINE_FILE})")
@click.option("--secret", "secrets", multiple=True, metavar="KEY=VALUE", help="Secret made available to jobs declaring it")
@click.option("--env", "environment", multiple=True, metavar="KEY=VALUE", help="Extra environment for every job")
@click.option("--branch", default="", help="Branch name reported in results")
@click.option("--repo-name", default=None, help="Repository name reported in results (defaults to the workdir name)")
@click.option("--step-timeout", default=None, type=float, help="Per-command timeout in seconds")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result as JSON")
@click.pass_context
def run(ctx, workdir, pipeline_file, secrets, environment, branch, repo_name, step_timeout, as_json):
    """Run a pipeline once against a working directory."""
    console = get_console()

    workdir = workdir.resolve()
    path = Path(pipeline_file) if pipeline_file else workdir / PIPELINE_FILE
    if not path.exists():
        console.print_error(
            "Pipeline file not found",
            f"Could not find pipeline file: {path}",
            suggestion=f"Create a {PIPELINE_FILE} or point to one:\n  fakeci run --file path/to/pipeline.yml",
        )
        sys.exit(1)

    runtime = DockerRuntime()
    if not runtime.available():
        console.print_error("Docker is not available", "Could not run `docker --version`.", suggestion=DOCKER_HINT)
        sys.exit(1)

    opts = LaunchOptions(
        repo_name=repo_name or workdir.name,
        repo_url=str(workdir),
        branch=branch,
        secrets=parse_pairs(secrets, "--secret"),
        environment=parse_pairs(environment, "--env"),
        step_timeout=step_timeout,
    )

    try:
        config = PipelineConfig.from_yaml(path)
        if not as_json:
            console.print_run_started(
                repository=opts.repo_name,
                pipeline=str(path),
                job_count=len(config.pipeline),
            )
        result = execute_config(config, opts, workdir=workdir, runtime=runtime)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ConfigError as e:
        print_ci_error(console, "Invalid pipeline", e)
        sys.exit(1)
    except CIError as e:
        console.print_exception(e)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print_execution_result(result)

    if not result.success:
        sys.exit(1)


@cli.command()
@click.option(
    "--config",
    "config_path",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Watch configuration file",
)
@click.option("--cache-dir", default=None, type=click.Path(file_okay=False, path_type=Path), help="Ref cache directory")
@click.pass_context
def watch(ctx, config_path, cache_dir):
    """Watch repositories and run their pipelines when branches move."""
    console = get_console()

    try:
        config = WatchConfig.from_yaml(config_path)
        cache = RefCache(cache_dir or config.cache_dir)
        run_watch(config, cache=cache)
    except ConfigError as e:
        print_ci_error(console, "Invalid configuration", e)
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


if __name__ == "__main__":
    cli()
