"""
contribs/models.py — Records produced by the aggregation pipeline.

All records serialise to plain JSON-compatible dicts (to_dict / from_dict) so
that a RepoContributionSummary can be stored in a PersistentCache and relayed
to presentation layers unchanged.
"""

from dataclasses import dataclass, field
from typing import Optional

MONTH = "month"
YEAR = "year"
INTERVALS = (MONTH, YEAR)


@dataclass(frozen=True)
class PeriodDefinition:
    """A calendar bucket. start/end are inclusive ISO dates (YYYY-MM-DD)."""

    label: str
    start: str
    end: str


@dataclass
class PeriodContributor:
    """One ranked row of a period: a contributor and their commit count."""

    author: str
    commits: int
    profile_url: Optional[str] = None
    email: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "author": self.author,
            "commits": self.commits,
            "profile_url": self.profile_url,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PeriodContributor":
        return cls(
            author=str(data.get("author", "")),
            commits=int(data.get("commits", 0) or 0),
            profile_url=data.get("profile_url"),
            email=data.get("email"),
        )


@dataclass
class PeriodRecord:
    """A period plus its top contributors (commits descending, <= limit rows)."""

    label: str
    start: str
    end: str
    contributors: list[PeriodContributor] = field(default_factory=list)

    @property
    def definition(self) -> PeriodDefinition:
        return PeriodDefinition(self.label, self.start, self.end)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "start": self.start,
            "end": self.end,
            "contributors": [c.to_dict() for c in self.contributors],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PeriodRecord":
        return cls(
            label=str(data["label"]),
            start=str(data["start"]),
            end=str(data["end"]),
            contributors=[PeriodContributor.from_dict(c) for c in data.get("contributors", [])],
        )


@dataclass
class SeriesPoint:
    label: str
    commits: int


@dataclass
class ContributorSeries:
    """One contributor's commit counts across every period of the window."""

    name: str
    total: int
    values: list[SeriesPoint] = field(default_factory=list)
    profile_url: Optional[str] = None

    def commits_for(self, label: str) -> int:
        for point in self.values:
            if point.label == label:
                return point.commits
        return 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "total": self.total,
            "profile_url": self.profile_url,
            "values": [{"label": p.label, "commits": p.commits} for p in self.values],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContributorSeries":
        return cls(
            name=str(data.get("name", "")),
            total=int(data.get("total", 0) or 0),
            profile_url=data.get("profile_url"),
            values=[
                SeriesPoint(str(v["label"]), int(v.get("commits", 0) or 0))
                for v in data.get("values", [])
            ],
        )


@dataclass
class RepoContributionSummary:
    """Complete per-period contribution statistics for one repository.

    repo_path is only meaningful for the invocation that produced the summary
    and is never persisted.
    """

    slug: str
    interval: str
    start_date: str
    end_date: str
    periods: list[PeriodRecord] = field(default_factory=list)
    series: list[ContributorSeries] = field(default_factory=list)
    repo_path: Optional[str] = None
    description: Optional[str] = None
    clone_depth: Optional[int] = None
    disk_size: Optional[int] = None

    def to_dict(self, include_repo_path: bool = True) -> dict:
        data = {
            "slug": self.slug,
            "description": self.description,
            "clone_depth": self.clone_depth,
            "disk_size": self.disk_size,
            "interval": self.interval,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "periods": [p.to_dict() for p in self.periods],
            "series": [s.to_dict() for s in self.series],
        }
        if include_repo_path:
            data["repo_path"] = self.repo_path
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RepoContributionSummary":
        interval = data.get("interval")
        if interval not in INTERVALS:
            raise ValueError(f"Unknown interval {interval!r}")
        return cls(
            slug=str(data["slug"]),
            interval=interval,
            start_date=str(data["start_date"]),
            end_date=str(data["end_date"]),
            periods=[PeriodRecord.from_dict(p) for p in data.get("periods", [])],
            series=[ContributorSeries.from_dict(s) for s in data.get("series", [])],
            repo_path=data.get("repo_path"),
            description=data.get("description"),
            clone_depth=data.get("clone_depth"),
            disk_size=data.get("disk_size"),
        )
