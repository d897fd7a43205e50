"""
contribs.aggregation — Turning git history into per-period contributor rankings.

Modules:
    periods  — commit-window bucketing (month / year) via pandas.period_range.
    history  — git queries: commit window, per-period shortlog, commit count.
    shortlog — parsing and ranking `git shortlog -s -n --email` rows.
    series   — SeriesAccumulator: global per-identity time series.
    remote   — the same summary from GitHub's contributor statistics API.
"""

from contribs.aggregation.history import (
    count_commits,
    resolve_commit_window,
    shortlog_for_period,
    window_from_dates,
)
from contribs.aggregation.periods import determine_interval, generate_periods, label_for_date
from contribs.aggregation.remote import (
    REMOTE_STATS_CACHE_FILE,
    collect_remote_contribution_summary,
    summarize_weekly_stats,
)
from contribs.aggregation.series import SeriesAccumulator
from contribs.aggregation.shortlog import (
    parse_shortlog,
    parse_shortlog_line,
    parse_shortlog_rows,
    validate_limit,
)

__all__ = [
    "REMOTE_STATS_CACHE_FILE",
    "SeriesAccumulator",
    "collect_remote_contribution_summary",
    "count_commits",
    "determine_interval",
    "generate_periods",
    "label_for_date",
    "parse_shortlog",
    "parse_shortlog_line",
    "parse_shortlog_rows",
    "resolve_commit_window",
    "shortlog_for_period",
    "summarize_weekly_stats",
    "validate_limit",
    "window_from_dates",
]
