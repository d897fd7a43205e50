"""
contribs.git — Local clones and subprocess execution.

Modules:
    runner — run_command(): cancellable, streaming subprocess wrapper.
    sync   — RepositorySynchronizer: clone, fetch, unshallow, fast-forward.
"""

from contribs.git.runner import CommandResult, run_command, terminate_process
from contribs.git.sync import (
    RepositorySynchronizer,
    directory_size,
    list_local_repositories,
    parse_slug,
    repo_directory_for_slug,
)

__all__ = [
    "CommandResult",
    "RepositorySynchronizer",
    "directory_size",
    "list_local_repositories",
    "parse_slug",
    "repo_directory_for_slug",
    "run_command",
    "terminate_process",
]
