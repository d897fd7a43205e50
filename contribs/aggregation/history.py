"""
contribs/aggregation/history.py — Git queries against a local clone.

    resolve_commit_window  earliest/latest author date across all refs
    shortlog_for_period    per-author commit counts within one period
    count_commits          number of commits reachable from any ref
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from contribs.aggregation.periods import as_utc
from contribs.cancellation import CancellationSignal
from contribs.errors import WindowError
from contribs.git.runner import DEFAULT_GRACE_SECONDS, run_command
from contribs.models import PeriodDefinition

logger = logging.getLogger(__name__)


def parse_commit_date(raw: str) -> datetime:
    """Parse a strict ISO-8601 git date ('Z' or ±HH:MM offset) into UTC."""
    parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    return as_utc(parsed)


def window_from_dates(lines: list[str]) -> tuple[datetime, datetime]:
    """(first, last) of the non-blank ISO dates in *lines*."""
    raw_dates = [line.strip() for line in lines if line.strip()]
    if not raw_dates:
        raise WindowError("No commits found in repository.")
    try:
        dates = [parse_commit_date(raw) for raw in raw_dates]
    except ValueError as exc:
        raise WindowError("Failed to parse commit dates from git history.") from exc
    return min(dates), max(dates)


async def resolve_commit_window(
    repo_path: Path,
    *,
    signal: Optional[CancellationSignal] = None,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
) -> tuple[datetime, datetime]:
    """Earliest and latest author dates over every ref of the clone."""
    result = await run_command(
        ["git", "log", "--all", "--format=%aI"],
        cwd=str(repo_path),
        signal=signal,
        grace_seconds=grace_seconds,
    )
    first, last = window_from_dates(result.stdout.splitlines())
    logger.debug("Commit window for %s: %s .. %s", repo_path, first, last)
    return first, last


def shortlog_args(period: PeriodDefinition) -> list[str]:
    return [
        "git", "shortlog", "-s", "-n", "--all", "--no-merges", "--email",
        f"--since={period.start} 00:00:00 +0000",
        f"--until={period.end} 23:59:59 +0000",
    ]


async def shortlog_for_period(
    repo_path: Path,
    period: PeriodDefinition,
    *,
    signal: Optional[CancellationSignal] = None,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
) -> str:
    result = await run_command(
        shortlog_args(period),
        cwd=str(repo_path),
        signal=signal,
        grace_seconds=grace_seconds,
    )
    return result.stdout


async def count_commits(
    repo_path: Path,
    *,
    signal: Optional[CancellationSignal] = None,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
) -> Optional[int]:
    """Commits reachable from any ref, or None if git could not count them."""
    result = await run_command(
        ["git", "rev-list", "--count", "--all"],
        cwd=str(repo_path),
        signal=signal,
        allow_failure=True,
        grace_seconds=grace_seconds,
    )
    try:
        return int(result.stdout.strip()) if result.ok else None
    except ValueError:
        return None
