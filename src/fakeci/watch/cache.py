# watch/cache.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Ref cache:
#   <cache_dir>/<repository name>.yml  ->  {branch: commit sha}
#
# Read once at startup, rewritten wholesale after every watch cycle.
# A missing or corrupt file means "nothing seen yet", never an error.
# ---------------------------------------------------------------------


def default_cache_dir() -> Path:
    env = os.environ.get("FAKECI_CACHE_DIR")
    if env:
        return Path(env).expanduser()
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".cache"
    return base / "fake-ci"


class RefCache:
    """
    File-based ref store:
      root/
        <repo name>.yml
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root).expanduser().resolve() if root is not None else default_cache_dir()

    def path_for(self, name: str) -> Path:
        return self.root / f"{name}.yml"

    def load(self, name: str) -> Dict[str, str]:
        p = self.path_for(name)
        try:
            text = p.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("No persisted branch info for %s at %s, starting fresh", name, p)
            return {}
        except OSError as e:
            logger.warning("Could not open %s for persisted branch info: %s", p, e)
            return {}

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            logger.error("Could not deserialize %s, using fresh values: %s", p, e)
            return {}
        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error("Unexpected content in %s, using fresh values", p)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def save(self, name: str, refs: Dict[str, str]) -> Path:
        """Rewrite the whole cache file for `name`. Raises OSError on failure."""
        p = self.path_for(name)
        # "org/repo" lives in root/org/
        p.parent.mkdir(parents=True, exist_ok=True)
        tmp = p.with_suffix(".yml.tmp")
        try:
            tmp.write_text(yaml.safe_dump(dict(refs), default_flow_style=False, sort_keys=True), encoding="utf-8")
            tmp.replace(p)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
        logger.debug("Finished persisting branch values to %s", p)
        return p
