"""git sync for the encrypted store.

Only the encrypted artifact, the recipient manifest and the template are ever
staged. Encrypted files can't be merged, so pulls are fast-forward only and a
diverged history fails instead of silently picking a side.
"""

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List

from .errors import SyncError

log = logging.getLogger(__name__)


def git(directory: Path, *args: str) -> subprocess.CompletedProcess:
    command = ["git", "-C", str(directory), *args]
    log.debug("Running git %s", " ".join(args))
    try:
        result = subprocess.run(command, capture_output=True, text=True)
    except FileNotFoundError:
        raise SyncError("git not found in PATH")

    if result.returncode != 0:
        raise SyncError(f"git {args[0]} failed: {result.stderr.strip()}")
    return result


def is_repository(directory: Path) -> bool:
    if not directory.is_dir():
        return False
    try:
        result = git(directory, "rev-parse", "--is-inside-work-tree")
    except SyncError:
        return False
    return result.stdout.strip() == "true"


def has_remote(directory: Path) -> bool:
    return bool(git(directory, "remote").stdout.strip())


def pull(directory: Path) -> str:
    if not is_repository(directory):
        raise SyncError(
            f"{directory} is not a git repository",
            hint=f"Clone your secrets repository into {directory}",
        )
    return git(directory, "pull", "--ff-only").stdout.strip()


def commit(directory: Path, paths: Iterable[Path], message: str, push: bool = True) -> bool:
    """
    Stage the given paths, commit and optionally push.

    Returns False when there was nothing to commit.
    """
    if not is_repository(directory):
        raise SyncError(
            f"{directory} is not a git repository",
            hint=f"Run: git -C {directory} init",
        )

    names: List[str] = []
    for path in paths:
        if not path.exists():
            continue
        try:
            names.append(str(path.resolve().relative_to(directory.resolve())))
        except ValueError:
            log.warning("Not committing %s: outside of %s", path, directory)
    if not names:
        return False

    git(directory, "add", "--", *names)
    staged = git(directory, "diff", "--cached", "--name-only", "--", *names).stdout.split()
    if not staged:
        log.info("Nothing to commit in %s", directory)
        return False

    git(directory, "commit", "-m", message, "--", *names)
    log.info("Committed %s", ", ".join(staged))

    if push and has_remote(directory):
        git(directory, "push")
        log.info("Pushed to remote")
    return True
