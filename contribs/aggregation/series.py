"""
contribs/aggregation/series.py — Folding periods into a global time series.

SeriesAccumulator keeps every shortlog row of every period (not only the
top-N cut), plus what it has learned about identities:

    normalized email -> profile URL
    lowercased name  -> profile URL

A row's identity key is its profile URL when one is known, else its
lowercased display name. Identities learned late (after a period was already
emitted) are applied retroactively: apply_to_records() fills profile URLs into
emitted period records and merges rows that now share an identity, and
build_series() groups rows by their *current* key, so two emails belonging to
one person converge once either resolves.

A series is built for every identity that made the top-N cut of at least one
period; its total counts that identity's commits in every period, cut or not.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional

from contribs.identity.normalize import normalize_email
from contribs.models import ContributorSeries, PeriodContributor, PeriodRecord, SeriesPoint

logger = logging.getLogger(__name__)


@dataclass
class _Row:
    label: str
    name: str
    email: Optional[str]
    commits: int
    profile_url: Optional[str]


class SeriesAccumulator:
    """Collects per-period rows and builds ContributorSeries for a window.

    Args:
        labels: Every period label of the window, in chronological order.
    """

    def __init__(self, labels: Iterable[str]) -> None:
        self.labels = list(labels)
        self._rows: list[_Row] = []
        self._by_email: dict[str, str] = {}
        self._by_name: dict[str, str] = {}

    # ── Identity knowledge ────────────────────────────────────────────────────

    def learn(self, email: Optional[str], name: Optional[str], profile_url: Optional[str]) -> None:
        """Record that (email, name) belongs to *profile_url*."""
        if not profile_url:
            return
        email_key = normalize_email(email)
        if email_key:
            self._by_email.setdefault(email_key, profile_url)
        name_key = (name or "").strip().lower()
        if name_key:
            self._by_name.setdefault(name_key, profile_url)

    def profile_url_for(
        self, name: str, email: Optional[str] = None, profile_url: Optional[str] = None
    ) -> Optional[str]:
        if profile_url:
            return profile_url
        email_key = normalize_email(email)
        if email_key and email_key in self._by_email:
            return self._by_email[email_key]
        return self._by_name.get((name or "").strip().lower())

    def key_for(self, name: str, email: Optional[str] = None, profile_url: Optional[str] = None) -> str:
        url = self.profile_url_for(name, email, profile_url)
        if url:
            return url.rstrip("/").lower()
        return "name:" + (name or "").strip().lower()

    def _contributor_key(self, contributor: PeriodContributor) -> str:
        return self.key_for(contributor.author, contributor.email, contributor.profile_url)

    # ── Rows ──────────────────────────────────────────────────────────────────

    def add_rows(self, label: str, rows: Iterable[PeriodContributor]) -> None:
        """Add every shortlog row of *label* (the untruncated list)."""
        for row in rows:
            self.learn(row.email, row.author, row.profile_url)
            self._rows.append(_Row(label, row.author, row.email, row.commits, row.profile_url))

    def rows_by_label(self) -> dict[str, list[PeriodContributor]]:
        """Every collected row (not only the top-N cut), grouped by period label."""
        grouped: dict[str, list[PeriodContributor]] = {label: [] for label in self.labels}
        for row in self._rows:
            grouped.setdefault(row.label, []).append(
                PeriodContributor(
                    author=row.name,
                    commits=row.commits,
                    profile_url=row.profile_url,
                    email=row.email,
                )
            )
        return grouped

    def add_cached_series(self, labels: Iterable[str], series: Iterable[ContributorSeries]) -> None:
        """Seed rows for reused periods from a previously built series.

        Only identities that had a series are covered; prefer add_rows() with
        the persisted untruncated rows when they are available.
        """
        reused = set(labels)
        for entry in series:
            for point in entry.values:
                if point.label in reused and point.commits > 0:
                    self._rows.append(
                        _Row(point.label, entry.name, None, point.commits, entry.profile_url)
                    )

    def unresolved(self, contributors: Iterable[PeriodContributor]) -> list[PeriodContributor]:
        """Contributors for which no profile URL is known yet."""
        return [
            c for c in contributors
            if not self.profile_url_for(c.author, c.email, c.profile_url)
        ]

    # ── Retroactive re-keying ─────────────────────────────────────────────────

    def apply_to_records(self, records: Iterable[PeriodRecord]) -> None:
        """Fill known profile URLs into records and merge rows sharing an identity."""
        for record in records:
            merged: dict[str, PeriodContributor] = {}
            for contributor in record.contributors:
                url = self.profile_url_for(contributor.author, contributor.email, contributor.profile_url)
                if url and not contributor.profile_url:
                    contributor.profile_url = url
                key = self._contributor_key(contributor)
                existing = merged.get(key)
                if existing is None:
                    merged[key] = contributor
                    continue
                existing.commits += contributor.commits
                existing.email = existing.email or contributor.email
            if len(merged) != len(record.contributors):
                logger.debug("Merged %d duplicate identities in %s",
                             len(record.contributors) - len(merged), record.label)
            record.contributors = sorted(merged.values(), key=lambda c: c.commits, reverse=True)

    # ── Series ────────────────────────────────────────────────────────────────

    def build_series(self, records: Iterable[PeriodRecord]) -> list[ContributorSeries]:
        """One series per identity that appears in any record, totals descending."""
        selected: list[str] = []
        for record in records:
            for contributor in record.contributors:
                key = self._contributor_key(contributor)
                if key not in selected:
                    selected.append(key)

        names: dict[str, str] = {}
        urls: dict[str, Optional[str]] = {}
        per_label: dict[str, Counter] = {}
        for row in self._rows:
            key = self.key_for(row.name, row.email, row.profile_url)
            per_label.setdefault(key, Counter())[row.label] += row.commits
            names.setdefault(key, row.name)
            if not urls.get(key):
                urls[key] = self.profile_url_for(row.name, row.email, row.profile_url)

        series: list[ContributorSeries] = []
        for key in selected:
            counts = per_label.get(key, Counter())
            values = [SeriesPoint(label, counts.get(label, 0)) for label in self.labels]
            series.append(
                ContributorSeries(
                    name=names.get(key, key.removeprefix("name:")),
                    total=sum(point.commits for point in values),
                    values=values,
                    profile_url=urls.get(key),
                )
            )
        series.sort(key=lambda s: s.total, reverse=True)
        return series
