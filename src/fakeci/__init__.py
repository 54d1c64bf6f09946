from .errors import BuildError, CIError, ConfigError, ContainerCreateError, ContainerError, GitError
from .model import Job, PipelineConfig, Step
from .results import ExecutionResult, JobResult, LaunchOptions
from .runner import execute_config, execute_from_file, launch
from .docker import DockerRuntime
from .watch import WatchConfig, Watcher

__all__ = [
    "CIError", "ConfigError", "ContainerError", "BuildError", "ContainerCreateError", "GitError",
    "Job", "Step", "PipelineConfig",
    "LaunchOptions", "JobResult", "ExecutionResult",
    "execute_config", "execute_from_file", "launch",
    "DockerRuntime", "WatchConfig", "Watcher",
]
