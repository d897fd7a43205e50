"""
contribs/aggregation/periods.py — Commit-window bucketing.

A window shorter than 365 days is bucketed by calendar month, anything longer
by calendar year. Buckets are generated with pandas.period_range, so they are
calendar-aligned, contiguous and non-overlapping by construction:

    2023-03-01 .. 2023-11-20  ->  2023-03, 2023-04, ..., 2023-11
    2018-01-05 .. 2023-06-01  ->  2018, 2019, ..., 2023

All dates are interpreted in UTC.
"""

from datetime import datetime, timedelta, timezone

import pandas as pd

from contribs.models import MONTH, YEAR, PeriodDefinition

ONE_YEAR = timedelta(days=365)

_FREQ = {MONTH: "M", YEAR: "Y"}
_LABEL_FORMAT = {MONTH: "%Y-%m", YEAR: "%Y"}


def as_utc(moment: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken to already be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def determine_interval(first_commit: datetime, last_commit: datetime) -> str:
    """'month' iff the window spans less than 365 days, else 'year'."""
    return MONTH if as_utc(last_commit) - as_utc(first_commit) < ONE_YEAR else YEAR


def _period_for(moment: datetime, interval: str) -> pd.Period:
    naive_utc = as_utc(moment).replace(tzinfo=None)
    return pd.Timestamp(naive_utc).to_period(_FREQ[interval])


def label_for_date(moment: datetime, interval: str) -> str:
    """Label of the bucket containing *moment* ('2023-03' or '2023')."""
    return _period_for(moment, interval).strftime(_LABEL_FORMAT[interval])


def generate_periods(
    first_commit: datetime, last_commit: datetime, interval: str
) -> list[PeriodDefinition]:
    """Every bucket from the one containing first_commit to the one containing last_commit."""
    if interval not in _FREQ:
        raise ValueError(f"Unknown interval {interval!r}")
    if as_utc(last_commit) < as_utc(first_commit):
        raise ValueError("last_commit precedes first_commit")

    buckets = pd.period_range(
        start=_period_for(first_commit, interval),
        end=_period_for(last_commit, interval),
        freq=_FREQ[interval],
    )
    return [
        PeriodDefinition(
            label=bucket.strftime(_LABEL_FORMAT[interval]),
            start=str(bucket.asfreq("D", how="start")),
            end=str(bucket.asfreq("D", how="end")),
        )
        for bucket in buckets
    ]
