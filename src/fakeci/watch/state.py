"""What the watch loop knows about one repository between cycles."""

from __future__ import annotations

import logging
import re
from fnmatch import translate
from typing import Callable, Dict, List

from ..git_facts import git
from .config import RepositoryConfig

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Dict[str, str]]


class RepositoryWatchState:
    """
    A watched repository: its config, the last observed {branch: sha}
    refs, and its branch globs, compiled once.
    """

    def __init__(self, config: RepositoryConfig, refs: Dict[str, str] | None = None):
        self.config = config
        self.refs: Dict[str, str] = dict(refs or {})
        self.patterns: List[re.Pattern] = []
        for p in config.branch_patterns:
            logger.debug("Compiling branch pattern %s for %s", p, config.name)
            self.patterns.append(re.compile(translate(p)))

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def uri(self) -> str:
        return self.config.uri

    def matches(self, branch: str) -> bool:
        return any(p.match(branch) for p in self.patterns)

    def update_branches(self, fetch: Fetcher | None = None) -> Dict[str, str]:
        """
        Fetch the remote heads and fold them into `refs`.

        Returns the branches whose head is new information: added branches
        and branches that moved. Deleted branches are dropped from `refs`
        but not reported. If the fetch fails, `refs` is left untouched.
        """
        remote = (fetch or git.fetch)(self.uri)

        for deleted in [b for b in self.refs if b not in remote]:
            logger.debug("Branch %s disappeared from %s", deleted, self.name)
            del self.refs[deleted]

        diff: Dict[str, str] = {}
        for branch, sha in remote.items():
            if self.refs.get(branch) != sha:
                diff[branch] = sha
                self.refs[branch] = sha
        return diff
