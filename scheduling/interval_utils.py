import datetime
from collections.abc import Iterable

from scheduling.services.dataclasses import Interval


def intervals_overlap(
    start: datetime.datetime,
    end: datetime.datetime,
    other_start: datetime.datetime,
    other_end: datetime.datetime,
) -> bool:
    """Half-open overlap: intervals that only touch at an endpoint don't overlap."""
    return start < other_end and other_start < end


def pad_interval(
    start: datetime.datetime, end: datetime.datetime, minutes: int
) -> Interval:
    padding = datetime.timedelta(minutes=minutes)
    return start - padding, end + padding


def overlaps_any(
    start: datetime.datetime, end: datetime.datetime, intervals: Iterable[Interval]
) -> bool:
    return any(intervals_overlap(start, end, *interval) for interval in intervals)
