"""
Per-day, per-project aggregation of completed intervals.

This module handles:
- Grouping intervals by (project, local day) for the merged view
- Re-bucketing those day groups into day/week/month/project statistics
"""

import logging
from collections import defaultdict

import store
from dates import day_bounds, local_day, parse_day
from errors import InvalidInterval
from models import MergedDay

logger = logging.getLogger(__name__)

GRANULARITIES = ('day', 'week', 'month', 'project')


def parse_range(start_value, end_value):
    start_day = parse_day(start_value, 'startDate')
    end_day = parse_day(end_value, 'endDate')
    if start_day > end_day:
        raise InvalidInterval('startDate must not be after endDate', field='endDate')
    return start_day, end_day


def group_by_project_day(intervals, tz, start_day=None, end_day=None):
    """
    Group completed intervals by (project, local day of start).

    Running intervals are skipped. Groups outside [start_day, end_day] are
    dropped. The result is sorted by day, then project.
    """
    groups = {}
    for interval in sorted(intervals, key=lambda i: (i.start_time, i.created_at or i.start_time)):
        if not interval.is_completed:
            continue
        day = local_day(interval.start_time, tz)
        if start_day is not None and day < start_day:
            continue
        if end_day is not None and day > end_day:
            continue

        key = (interval.project, day)
        group = groups.get(key)
        if group is None:
            group = groups[key] = MergedDay(
                project=interval.project,
                day=day,
                start_time=interval.start_time,
                end_time=interval.end_time,
            )
        group.start_time = min(group.start_time, interval.start_time)
        group.end_time = max(group.end_time, interval.end_time)
        group.total_duration += interval.duration or 0
        group.effective_duration += interval.effective_duration
        if interval.corrected_duration is not None:
            group.corrected_duration += interval.corrected_duration
            group.has_corrected_duration = True
        group.comments.append(interval.description or '')
        group.entry_ids.append(interval.id)

    return [groups[k] for k in sorted(groups, key=lambda k: (k[1], k[0]))]


def merged_range(conn, owner, start_day, end_day, tz):
    """Read the owner's intervals for the inclusive local-day range and group them."""
    range_start, _ = day_bounds(start_day, tz)
    _, range_end = day_bounds(end_day, tz)
    intervals = store.find_by_owner_date_range(conn, owner, range_start, range_end)
    merged = group_by_project_day(intervals, tz, start_day, end_day)
    logger.info('Merged range owner=%s %s..%s: %d interval(s) -> %d group(s)',
                owner, start_day, end_day, len(intervals), len(merged))
    return merged


def bucket_key(group: MergedDay, granularity: str) -> str:
    if granularity == 'day':
        return group.day.isoformat()
    if granularity == 'week':
        year, week, _ = group.day.isocalendar()
        return f'{year}-W{week:02d}'
    if granularity == 'month':
        return group.day.strftime('%Y-%m')
    return group.project


def _hours(seconds):
    return round(seconds / 3600, 2)


def rebucket(merged, granularity='day'):
    """Sum per-day groups into coarser buckets, sorted by bucket key."""
    if granularity not in GRANULARITIES:
        raise InvalidInterval(
            f"groupBy must be one of: {', '.join(GRANULARITIES)}", field='groupBy'
        )
    buckets = defaultdict(lambda: {'totalDuration': 0, 'effectiveDuration': 0, 'entries': 0})
    for group in merged:
        bucket = buckets[bucket_key(group, granularity)]
        bucket['totalDuration'] += group.total_duration
        bucket['effectiveDuration'] += group.effective_duration
        bucket['entries'] += 1

    results = []
    for key in sorted(buckets):
        bucket = buckets[key]
        results.append({
            'key': key,
            'totalDuration': bucket['totalDuration'],
            'effectiveDuration': bucket['effectiveDuration'],
            'totalHours': _hours(bucket['effectiveDuration']),
            'entries': bucket['entries'],
        })
    return results


def statistics(merged, granularity='day'):
    """
    Summary statistics over merged day groups.

    Hours are effective hours: corrected durations where a day was balanced,
    raw durations otherwise.
    """
    buckets = rebucket(merged, granularity)
    total_seconds = sum(g.effective_duration for g in merged)
    days = {g.day for g in merged if g.effective_duration > 0}
    return {
        'groupBy': granularity,
        'totalHours': _hours(total_seconds),
        'totalEntries': sum(len(g.entry_ids) for g in merged),
        'averageHoursPerDay': _hours(total_seconds / len(days)) if days else 0,
        'buckets': buckets,
        'projectBreakdown': [
            {'name': b['key'], 'hours': b['totalHours']}
            for b in rebucket(merged, 'project')
        ],
    }
