"""
Hierarchical rollup of status percentages: day -> week -> month -> year.

Each coarser bucket is the unweighted mean of the finer buckets it contains,
rounded with the same sum-to-100 correction as the classifier. This is an
approximation of a duration-weighted recompute: a partial first week counts
as much as a full one.
"""

from typing import Callable, List, Sequence

import pandas as pd

from awghub.models import STATUS_FIELDS, StatusPercentages, StatusPoint
from awghub.periods import PERIOD_MONTH, PERIOD_WEEK, PERIOD_YEAR, period_start


def _rollup(points: Sequence[StatusPoint], group_key: Callable) -> List[StatusPoint]:
    if not points:
        return []
    df = pd.DataFrame([
        {'group': group_key(p.period_start), **p.status.as_dict()}
        for p in points
    ])
    means = df.groupby('group', sort=True)[list(STATUS_FIELDS)].mean()
    return [
        StatusPoint(period_start=group, status=StatusPercentages.from_unrounded(row.to_dict()))
        for group, row in means.iterrows()
    ]


def weekly_from_daily(points: Sequence[StatusPoint]) -> List[StatusPoint]:
    """Group daily points by ISO week (Monday start)."""
    return _rollup(points, lambda d: period_start(d, PERIOD_WEEK))


def monthly_from_weekly(points: Sequence[StatusPoint]) -> List[StatusPoint]:
    """Group weekly points by the month containing the week's Monday."""
    return _rollup(points, lambda d: period_start(d, PERIOD_MONTH))


def yearly_from_monthly(points: Sequence[StatusPoint]) -> List[StatusPoint]:
    return _rollup(points, lambda d: period_start(d, PERIOD_YEAR))
