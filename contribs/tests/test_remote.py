"""
Tests for contribs.aggregation.remote (summary from GitHub's statistics API).

Week timestamps are Sundays 00:00 UTC, as the API reports them.
"""
import json

import httpx
import pytest

from contribs.aggregation.remote import (
    REMOTE_STATS_CACHE_FILE,
    collect_remote_contribution_summary,
    sanitize_contributor_stats,
    summarize_weekly_stats,
)
from contribs.cache.persistent import create_persistent_cache
from contribs.errors import ValidationError
from contribs.github.client import GitHubClient
from contribs.models import MONTH

JAN_01 = 1672531200  # 2023-01-01
JAN_08 = JAN_01 + 7 * 86400
FEB_05 = JAN_01 + 35 * 86400

RAW_STATS = [
    {
        "author": {"login": "Jane", "html_url": "https://github.com/Jane"},
        "total": 5,
        "weeks": [{"w": JAN_01, "a": 10, "d": 1, "c": 3}, {"w": JAN_08, "c": 2}, {"w": FEB_05, "c": 0}],
    },
    {
        "author": {"login": "bob"},
        "total": 5,
        "weeks": [{"w": JAN_08, "c": 1}, {"w": FEB_05, "c": 4}],
    },
    {"author": None, "total": 1, "weeks": [{"w": FEB_05, "c": 1}, {"w": "bad", "c": 1}]},
]


# ---------------------------------------------------------------------------
# sanitize_contributor_stats
# ---------------------------------------------------------------------------


def test_sanitize_keeps_only_needed_fields():
    stats = sanitize_contributor_stats(RAW_STATS)
    assert "fetched_at" in stats
    jane, bob, anonymous = stats["contributors"]
    assert jane == {
        "key": "jane",
        "name": "Jane",
        "profile_url": "https://github.com/Jane",
        "weeks": [[JAN_01, 3], [JAN_08, 2], [FEB_05, 0]],
    }
    assert bob["profile_url"] == "https://github.com/bob"
    assert anonymous["key"] == "anon-2"
    assert anonymous["profile_url"] is None
    assert anonymous["weeks"] == [[FEB_05, 1]]
    json.dumps(stats)


# ---------------------------------------------------------------------------
# summarize_weekly_stats
# ---------------------------------------------------------------------------


def test_summarize_buckets_weeks_into_months(tmp_path):
    summary = summarize_weekly_stats("acme/widget", sanitize_contributor_stats(RAW_STATS), 1, str(tmp_path))
    assert summary.interval == MONTH
    assert summary.start_date == "2023-01-01T00:00:00+00:00"
    assert summary.end_date == "2023-02-11T00:00:00+00:00"
    assert [p.label for p in summary.periods] == ["2023-01", "2023-02"]
    assert [(c.author, c.commits) for c in summary.periods[0].contributors] == [("Jane", 5)]
    assert [(c.author, c.commits) for c in summary.periods[1].contributors] == [("bob", 4)]
    assert summary.repo_path == str(tmp_path / "acme---widget")


def test_summarize_series_totals_span_all_periods(tmp_path):
    summary = summarize_weekly_stats("acme/widget", sanitize_contributor_stats(RAW_STATS), 1, str(tmp_path))
    series = {s.name: s for s in summary.series}
    assert set(series) == {"Jane", "bob"}
    assert series["bob"].total == 5
    assert [p.commits for p in series["bob"].values] == [1, 4]
    assert series["Jane"].profile_url == "https://github.com/Jane"


def test_summarize_no_commits_is_none(tmp_path):
    stats = sanitize_contributor_stats([{"author": {"login": "idle"}, "weeks": [{"w": JAN_01, "c": 0}]}])
    assert summarize_weekly_stats("acme/widget", stats, 3, str(tmp_path)) is None
    assert summarize_weekly_stats("acme/widget", sanitize_contributor_stats([]), 3, str(tmp_path)) is None


# ---------------------------------------------------------------------------
# collect_remote_contribution_summary
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_collect_remote_waits_for_202_and_caches(tmp_path):
    responses = [httpx.Response(202), httpx.Response(200, json=RAW_STATS)]
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return responses.pop(0)

    cache = create_persistent_cache(REMOTE_STATS_CACHE_FILE, state_dir=str(tmp_path / "state"))
    async with GitHubClient(base_url="https://api.github.test", backoff_base=0,
                            transport=httpx.MockTransport(handler)) as client:
        first = await collect_remote_contribution_summary(
            "acme/widget", 2, client, cache, git_root=str(tmp_path)
        )
        second = await collect_remote_contribution_summary(
            "acme/widget", 2, client, cache, git_root=str(tmp_path)
        )

    assert calls == ["/repos/acme/widget/stats/contributors"] * 2
    assert first.to_dict() == second.to_dict()
    assert (await cache.get("acme/widget")).value["contributors"][0]["key"] == "jane"


@pytest.mark.asyncio
async def test_collect_remote_rejects_bad_limit(tmp_path):
    cache = create_persistent_cache(REMOTE_STATS_CACHE_FILE, state_dir=str(tmp_path))
    async with GitHubClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[]))) as client:
        with pytest.raises(ValidationError):
            await collect_remote_contribution_summary("acme/widget", 0, client, cache, git_root=str(tmp_path))
