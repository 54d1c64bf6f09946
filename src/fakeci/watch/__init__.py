from .cache import RefCache, default_cache_dir
from .config import RepositoryConfig, WatchConfig
from .state import RepositoryWatchState
from .watcher import Watcher, run_watch

__all__ = [
    "RefCache",
    "default_cache_dir",
    "RepositoryConfig",
    "WatchConfig",
    "RepositoryWatchState",
    "Watcher",
    "run_watch",
]
