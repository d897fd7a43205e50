"""
contribs/aggregation/shortlog.py — Parsing `git shortlog -s -n --email` output.

Each row is "<count>\\t<Display Name> <email>":

    >>> parse_shortlog_line("12\\tJane Doe <jane@users.noreply.github.com>")
    PeriodContributor(author='Jane Doe', commits=12, profile_url='https://github.com/jane', email='jane@users.noreply.github.com')

Rows are ranked by commit count (descending, stable) and truncated to the
caller's per-period limit by parse_shortlog().
"""

from typing import Optional

from contribs.errors import SyncError, ValidationError
from contribs.identity.normalize import derive_profile_url, parse_identity
from contribs.models import PeriodContributor


def validate_limit(limit) -> int:
    """Per-period contributor limit; must be a positive integer."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValidationError(f"Contributor limit must be a positive integer, got {limit!r}.")
    return limit


def parse_shortlog_line(line: str) -> PeriodContributor:
    """Parse one shortlog row. Raises SyncError when the row has no tab."""
    count_part, sep, identity = line.strip().partition("\t")
    if not sep or not count_part.strip() or not identity.strip():
        raise SyncError(f'Unexpected shortlog row: "{line.strip()}"')
    try:
        commits = int(count_part.strip())
    except ValueError:
        commits = 0
    name, email = parse_identity(identity)
    return PeriodContributor(
        author=name,
        commits=commits,
        profile_url=derive_profile_url(email),
        email=email,
    )


def parse_shortlog_rows(output: str) -> list[PeriodContributor]:
    """Every row of *output*, ranked by commits descending."""
    rows = [parse_shortlog_line(line) for line in output.splitlines() if line.strip()]
    rows.sort(key=lambda row: row.commits, reverse=True)
    return rows


def parse_shortlog(output: str, limit: Optional[int] = None) -> list[PeriodContributor]:
    """Ranked rows of *output*, truncated to *limit* when given."""
    rows = parse_shortlog_rows(output)
    return rows if limit is None else rows[:limit]
