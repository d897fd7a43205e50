"""
contribs/aggregation/remote.py — Contribution summary from GitHub's statistics API.

An alternative to cloning: GET /repos/{slug}/stats/contributors returns, per
author, weekly commit counts. GitHub computes these lazily and answers 202
until they are ready; GitHubClient retries with bounded backoff.

The sanitized payload is cached (github-contributor-stats.json, 6 h TTL by
default). Weekly counts are bucketed into the same month/year periods as the
local pipeline with pandas, ranked per period, and folded into series.

Returns None when GitHub reports no contributors with commits.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import pandas as pd

from contribs.aggregation.periods import determine_interval, generate_periods, label_for_date
from contribs.aggregation.shortlog import validate_limit
from contribs.cache.persistent import PersistentCache
from contribs.cancellation import CancellationSignal
from contribs.events import ProgressEmitter
from contribs.git.sync import repo_directory_for_slug
from contribs.github.client import GitHubClient, profile_url_for_login
from contribs.models import (
    ContributorSeries,
    PeriodContributor,
    PeriodRecord,
    RepoContributionSummary,
    SeriesPoint,
)

logger = logging.getLogger(__name__)

REMOTE_STATS_CACHE_FILE = "github-contributor-stats.json"


def sanitize_contributor_stats(payload: list[dict], fetched_at: Optional[datetime] = None) -> dict:
    """Reduce the API payload to what the aggregation needs (JSON-safe)."""
    contributors = []
    for index, entry in enumerate(payload or []):
        author = entry.get("author") if isinstance(entry.get("author"), dict) else {}
        login = author.get("login")
        weeks = [
            [int(week["w"]), int(week["c"])]
            for week in (entry.get("weeks") or [])
            if isinstance(week, dict)
            and isinstance(week.get("w"), (int, float))
            and isinstance(week.get("c"), (int, float))
        ]
        contributors.append({
            "key": login.lower() if login else f"anon-{index}",
            "name": login or f"Contributor {index + 1}",
            "profile_url": author.get("html_url") or profile_url_for_login(login),
            "weeks": weeks,
        })
    return {
        "fetched_at": (fetched_at or datetime.now(tz=timezone.utc)).isoformat(),
        "contributors": contributors,
    }


def weekly_frame(stats: dict) -> pd.DataFrame:
    """One row per (contributor, week) with commits > 0."""
    rows = [
        {
            "key": contributor["key"],
            "name": contributor["name"],
            "profile_url": contributor.get("profile_url"),
            "week": week_seconds,
            "commits": commits,
        }
        for contributor in stats.get("contributors", [])
        for week_seconds, commits in contributor.get("weeks", [])
        if commits and commits > 0
    ]
    frame = pd.DataFrame(rows, columns=["key", "name", "profile_url", "week", "commits"])
    if frame.empty:
        return frame
    frame["date"] = pd.to_datetime(frame["week"].astype("int64"), unit="s", utc=True)
    return frame


def summarize_weekly_stats(slug: str, stats: dict, limit: int, git_root: str) -> Optional[RepoContributionSummary]:
    """Bucket weekly counts into periods and rank the top *limit* per period."""
    frame = weekly_frame(stats)
    if frame.empty:
        return None

    first_day = frame["date"].min().normalize().to_pydatetime()
    last_day = frame["date"].max().normalize().to_pydatetime()
    interval = determine_interval(first_day, last_day)
    definitions = generate_periods(first_day, last_day, interval)

    frame["label"] = frame["date"].map(lambda moment: label_for_date(moment.to_pydatetime(), interval))
    pivot = frame.pivot_table(index="key", columns="label", values="commits", aggfunc="sum", fill_value=0)
    identities = frame.drop_duplicates("key").set_index("key")

    def _contributor(key: str, commits: int) -> PeriodContributor:
        url = identities.at[key, "profile_url"]
        return PeriodContributor(
            author=str(identities.at[key, "name"]),
            commits=commits,
            profile_url=url if isinstance(url, str) and url else None,
        )

    selected: list[str] = []
    periods: list[PeriodRecord] = []
    for definition in definitions:
        contributors = []
        if definition.label in pivot.columns:
            column = pivot[definition.label]
            ranked = column[column > 0].sort_values(ascending=False, kind="stable").head(limit)
            for key, commits in ranked.items():
                if key not in selected:
                    selected.append(key)
                contributors.append(_contributor(key, int(commits)))
        periods.append(PeriodRecord(definition.label, definition.start, definition.end, contributors))

    if not selected:
        return None

    series = []
    for key in selected:
        row = pivot.loc[key]
        values = [SeriesPoint(d.label, int(row.get(d.label, 0))) for d in definitions]
        head = _contributor(key, 0)
        series.append(ContributorSeries(
            name=head.author,
            total=sum(point.commits for point in values),
            values=values,
            profile_url=head.profile_url,
        ))
    series.sort(key=lambda s: s.total, reverse=True)

    return RepoContributionSummary(
        slug=slug,
        interval=interval,
        start_date=first_day.isoformat(),
        # the last bucket is a week starting on last_day
        end_date=(last_day + timedelta(days=6)).isoformat(),
        periods=periods,
        series=series,
        repo_path=str(repo_directory_for_slug(slug, git_root)),
    )


async def load_contributor_stats(
    slug: str,
    client: GitHubClient,
    cache: PersistentCache,
    *,
    signal: Optional[CancellationSignal] = None,
    emitter: Optional[ProgressEmitter] = None,
) -> dict:
    """Sanitized contributor stats for *slug*, from cache when fresh."""
    cached = await cache.get(slug)
    if cached is not None and cached.value:
        logger.debug("Remote stats cache hit for %s", slug)
        return cached.value
    payload = await client.get_contributor_stats(slug, signal=signal, emitter=emitter)
    stats = sanitize_contributor_stats(payload)
    await cache.set(slug, stats)
    return stats


async def collect_remote_contribution_summary(
    slug: str,
    limit: int,
    client: GitHubClient,
    cache: PersistentCache,
    *,
    git_root: str,
    emitter: Optional[ProgressEmitter] = None,
    signal: Optional[CancellationSignal] = None,
) -> Optional[RepoContributionSummary]:
    """Summary built purely from the GitHub statistics API (no clone)."""
    validate_limit(limit)
    emitter = emitter or ProgressEmitter()
    emitter.status(f"Fetching GitHub API contributor statistics for {slug}...")
    stats = await load_contributor_stats(slug, client, cache, signal=signal, emitter=emitter)
    summary = summarize_weekly_stats(slug, stats, limit, git_root)
    if summary is not None:
        emitter.status(f"GitHub API contributor statistics ready for {slug}.")
    return summary
