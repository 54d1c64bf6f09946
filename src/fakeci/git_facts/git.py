# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import GitError

logger = logging.getLogger(__name__)

# `git ls-remote --heads` prints "<sha>\trefs/heads/<branch>"
REF_PATTERN = re.compile(r"^([0-9a-fA-F]+)\s+refs/heads/(\S+)$")

# "Jane Doe <jane@example.org> 1638209781 +0100"
PERSON_PATTERN = re.compile(r"^(.*?)\s*<([^>]*)>\s+(\d+)\s+([+-])(\d{2})(\d{2})$")


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a string.

    This is the single low-level entry point for all Git operations in this file.
    Every other function builds on top of this to ensure:
    - consistent invocation of git
    - consistent error type (GitError, carrying git's stderr)
    - output decoded permissively, a weird byte in a commit message is not fatal

    Args:
        args: List of git arguments (e.g. ["ls-remote", "--heads", uri])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command.
    """
    cmd = ["git", *args]
    logger.debug("Running %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
        )
    except OSError as e:
        raise GitError("git command not found", details={"hint": "Install Git or fix PATH."}) from e

    if proc.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed",
            details={
                "exit_code": proc.returncode,
                "stderr": proc.stderr.decode("utf-8", errors="replace").strip(),
            },
        )
    return proc.stdout.decode("utf-8", errors="replace")


# ----------------------------------------------------------------------
# Remote refs
# ----------------------------------------------------------------------

def parse_ls_remote(output: str) -> Dict[str, str]:
    """
    Turn `git ls-remote --heads` output into a {branch: sha} map.

    Lines that don't look like a branch head are ignored.
    """
    refs: Dict[str, str] = {}
    for line in output.splitlines():
        m = REF_PATTERN.match(line.strip())
        if m:
            refs[m.group(2)] = m.group(1)
    return refs


def fetch(uri: str) -> Dict[str, str]:
    """
    List the branches of the remote at `uri` and the commit each one points to.

    Nothing is downloaded; this only asks the remote for its heads.
    """
    return parse_ls_remote(_git(["ls-remote", "--heads", uri]))


def clone(uri: str, branch: str, dest: str | Path) -> Path:
    """
    Clone `uri` into `dest` with `branch` checked out.

    The branch is selected by `git clone --branch`, so a branch that shares
    its name with a path in the repository is never mistaken for that path.

    Returns:
        Path to the checked out working tree.
    """
    dest = Path(dest)
    _git(["clone", "--branch", branch, "--", uri, str(dest)])
    return dest


# ----------------------------------------------------------------------
# Commits
# ----------------------------------------------------------------------

@dataclass
class CommitPerson:
    name: str = ""
    email: str = ""
    date: Optional[datetime] = None

    @classmethod
    def parse(cls, s: str) -> "CommitPerson":
        m = PERSON_PATTERN.match(s.strip())
        if not m:
            return cls()
        name, email, ts, sign, hh, mm = m.groups()
        # git stores a UTC timestamp plus the author's offset; keep UTC
        offset = timedelta(hours=int(hh), minutes=int(mm))
        tz = timezone(offset if sign == "+" else -offset)
        date = datetime.fromtimestamp(int(ts), tz=tz).astimezone(timezone.utc)
        return cls(name=name, email=email, date=date)

    def __str__(self) -> str:
        date = self.date.isoformat() if self.date else ""
        return f"{self.name} <{self.email}> {date}".rstrip()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "email": self.email,
            "date": self.date.isoformat() if self.date else None,
        }


@dataclass
class Commit:
    hash: str = ""
    author: CommitPerson = field(default_factory=CommitPerson)
    committer: CommitPerson = field(default_factory=CommitPerson)
    message: str = ""
    tree: str = ""
    parents: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "author": self.author.to_dict(),
            "committer": self.committer.to_dict(),
            "message": self.message,
            "tree": self.tree,
            "parents": list(self.parents),
        }


def parse_raw_commit(raw: str) -> Commit:
    """
    Parse the output of `git log -n 1 --format=raw <ref>`.

    Header lines come first ("commit", "tree", "parent", "author",
    "committer", possibly a multi-line "gpgsig"), then the message, indented
    by four spaces. Message lines are joined with newlines, blank ones dropped.
    """
    c = Commit()
    message: List[str] = []
    in_message = False
    in_gpgsig = False

    for line in raw.splitlines():
        if line.startswith("    "):
            in_message = True
            message.append(line[4:])
            continue
        if in_message or not line.strip():
            continue
        # signature continuation lines start with a single space
        if in_gpgsig and line.startswith(" "):
            continue
        in_gpgsig = False

        key, _, value = line.partition(" ")
        if key == "commit":
            c.hash = value.split()[0] if value else ""
        elif key == "tree":
            c.tree = value.strip()
        elif key == "parent":
            c.parents.append(value.strip())
        elif key == "author":
            c.author = CommitPerson.parse(value)
        elif key == "committer":
            c.committer = CommitPerson.parse(value)
        elif key == "gpgsig":
            in_gpgsig = True

    c.message = "\n".join(m for m in message if m.strip())
    return c


def get_commit(ref: str = "HEAD", *, cwd: Optional[str | Path] = None) -> Commit:
    """Return the commit `ref` points to in the repository at `cwd`."""
    return parse_raw_commit(_git(["log", "-n", "1", "--format=raw", ref], cwd=cwd))
