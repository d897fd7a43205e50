"""
contribs/git/sync.py — Repository Synchronizer.

Guarantees a complete, current local clone for a repository slug:

    1. git clone --no-tags <url> <dir>     (only when <dir> is missing)
    2. git fetch --all --tags              (always)
    3. git fetch --unshallow               (only for shallow clones)
    4. git pull --ff-only                  (failure tolerated: WARNING only)

Clones live in <git_root>/<owner>---<name>. All subprocess output is streamed
through the Progress Event Bus under a human-readable command label; the
consumer is responsible for coalescing repeated output.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from contribs.cancellation import CancellationSignal, raise_if_cancelled
from contribs.errors import ValidationError
from contribs.events import ProgressEmitter
from contribs.git.runner import DEFAULT_GRACE_SECONDS, CommandResult, run_command

logger = logging.getLogger(__name__)

DIR_SEPARATOR = "---"
_UNSAFE_PART = re.compile(r"[\\/]")


def parse_slug(slug: str) -> tuple[str, str]:
    """Split 'owner/name'. Raises ValidationError for anything else.

    Examples:
        >>> parse_slug("torvalds/linux")
        ('torvalds', 'linux')
        >>> parse_slug("torvalds")
        Traceback (most recent call last):
        ...
        contribs.errors.ValidationError: Invalid repository slug "torvalds". Expected the form "owner/name".
    """
    parts = (slug or "").strip().split("/")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ValidationError(
            f'Invalid repository slug "{slug}". Expected the form "owner/name".'
        )
    return parts[0].strip(), parts[1].strip()


def _safe_part(part: str) -> str:
    return _UNSAFE_PART.sub("_", part)


def repo_directory_for_slug(slug: str, git_root: str) -> Path:
    """Deterministic clone directory for *slug* under *git_root*."""
    owner, name = parse_slug(slug)
    return Path(git_root) / f"{_safe_part(owner)}{DIR_SEPARATOR}{_safe_part(name)}"


def list_local_repositories(git_root: str) -> dict[str, list[str]]:
    """Map owner -> sorted repository names for every clone under *git_root*.

    Directories that do not follow the <owner>---<name> convention are ignored.
    A missing or unreadable root yields an empty map.
    """
    owners: dict[str, list[str]] = {}
    try:
        children = list(Path(git_root).iterdir())
    except OSError as exc:
        logger.warning("Failed to read local git directory %s: %s", git_root, exc)
        return {}
    for child in children:
        if not child.is_dir():
            continue
        owner, sep, repo = child.name.partition(DIR_SEPARATOR)
        repo = repo.strip()
        if not owner or not sep or not repo:
            continue
        names = owners.setdefault(owner, [])
        if repo not in names:
            names.append(repo)
    for names in owners.values():
        names.sort(key=str.lower)
    return owners


def directory_size(root: str) -> int:
    """Total size in bytes of regular files below *root*; symlinks are skipped."""
    total = 0
    for dirpath, dirnames, filenames in os.walk(root, onerror=lambda exc: None):
        dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))]
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            try:
                if not os.path.islink(path):
                    total += os.stat(path).st_size
            except OSError:
                # vanished during traversal
                continue
    return total


class RepositorySynchronizer:
    """Clone-or-refresh a repository and report every git step as progress.

    Args:
        git_root:       Directory holding all clones.
        clone_base_url: Prefix for clone URLs ("https://github.com").
        grace_seconds:  SIGTERM→SIGKILL delay on cancellation.
    """

    def __init__(
        self,
        git_root: str,
        clone_base_url: str = "https://github.com",
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self.git_root = git_root
        self.clone_base_url = clone_base_url.rstrip("/")
        self.grace_seconds = grace_seconds

    def clone_url(self, slug: str) -> str:
        owner, name = parse_slug(slug)
        return f"{self.clone_base_url}/{owner}/{name}.git"

    async def _git(
        self,
        args: list[str],
        *,
        cwd: str,
        label: Optional[str],
        emitter: ProgressEmitter,
        signal: Optional[CancellationSignal],
        allow_failure: bool = False,
    ) -> CommandResult:
        on_stdout, on_stderr = emitter.handlers_for(label) if label else (None, None)
        return await run_command(
            ["git", *args],
            cwd=cwd,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            signal=signal,
            allow_failure=allow_failure,
            grace_seconds=self.grace_seconds,
        )

    async def ensure(
        self,
        slug: str,
        *,
        emitter: Optional[ProgressEmitter] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> Path:
        """Make sure a full, up-to-date clone of *slug* exists; return its path."""
        emitter = emitter or ProgressEmitter()
        repo_path = repo_directory_for_slug(slug, self.git_root)
        raise_if_cancelled(signal)
        Path(self.git_root).mkdir(parents=True, exist_ok=True)

        if not repo_path.exists():
            emitter.status(f"Cloning {slug} for the first time...")
            logger.info("Cloning %s into %s", slug, repo_path)
            await self._git(
                ["clone", "--no-tags", self.clone_url(slug), str(repo_path)],
                cwd=self.git_root,
                label=f"git clone {slug}",
                emitter=emitter,
                signal=signal,
            )
            emitter.status("Clone complete.")

        cwd = str(repo_path)
        emitter.status("Fetching remote references...")
        await self._git(
            ["fetch", "--all", "--tags"],
            cwd=cwd,
            label="git fetch --all --tags",
            emitter=emitter,
            signal=signal,
        )

        shallow = await self._git(
            ["rev-parse", "--is-shallow-repository"],
            cwd=cwd,
            label=None,
            emitter=emitter,
            signal=signal,
        )
        if shallow.stdout.strip() == "true":
            emitter.status("Expanding shallow clone...")
            await self._git(
                ["fetch", "--unshallow"],
                cwd=cwd,
                label="git fetch --unshallow",
                emitter=emitter,
                signal=signal,
            )

        emitter.status("Fast-forwarding to latest default branch...")
        pull = await self._git(
            ["pull", "--ff-only"],
            cwd=cwd,
            label="git pull --ff-only",
            emitter=emitter,
            signal=signal,
            allow_failure=True,
        )
        if not pull.ok:
            logger.warning(
                "git pull --ff-only failed for %s (exit %d): %s",
                slug, pull.returncode, pull.stderr.strip(),
            )
            emitter.status("Fast-forward failed; continuing with fetched history.")

        emitter.status("Repository up to date.")
        return repo_path
