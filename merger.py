"""
Same-day merging of completed time intervals.

When a completed interval arrives, every completed interval of the same owner
and project that started on the same local day is folded together with it
into one new record. The sources are deleted and the folded record is
inserted with a fresh id, inside one write transaction.
"""

import logging
import sqlite3

import config
import store
from dates import day_bounds, local_day, parse_timestamp
from errors import InvalidInterval, MergeConflict, NotFound
from models import Replace, TimeInterval

logger = logging.getLogger(__name__)


def check_bounds(start, end):
    if end is not None and end <= start:
        raise InvalidInterval('endTime must be after startTime', field='endTime')


def duration_between(start, end):
    if end is None:
        return None
    return int(round((end - start).total_seconds()))


def interval_from_payload(owner, data, tz):
    """Validate a create payload and build an unsaved TimeInterval."""
    project = data.get('project')
    if not isinstance(project, str) or not project.strip():
        raise InvalidInterval('project is required', field='project')
    description = data.get('description') or ''
    if not isinstance(description, str):
        raise InvalidInterval('description must be a string', field='description')
    tags = data.get('tags') or []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise InvalidInterval('tags must be a list of strings', field='tags')

    start = parse_timestamp(data.get('startTime'), 'startTime', tz)
    end = None
    if data.get('endTime'):
        end = parse_timestamp(data.get('endTime'), 'endTime', tz)
    check_bounds(start, end)

    return TimeInterval(
        id=store.new_id(),
        owner=owner,
        project=project.strip(),
        description=description,
        start_time=start,
        end_time=end,
        duration=duration_between(start, end),
        tags=set(tags),
    )


def fold(sources, interval, separator=config.DESCRIPTION_SEPARATOR):
    """
    Combine stored `sources` and the incoming `interval` into one new record.

    Descriptions keep the stored order with the new one last; durations are
    summed; tags are united; the span runs from the earliest start to the
    latest end. Earlier corrections do not carry over.
    """
    members = list(sources) + [interval]
    descriptions = [m.description for m in members if m.description]
    tags = set()
    for m in members:
        tags |= m.tags
    return TimeInterval(
        id=store.new_id(),
        owner=interval.owner,
        project=interval.project,
        description=separator.join(descriptions),
        start_time=min(m.start_time for m in members),
        end_time=max(m.end_time for m in members),
        duration=sum(m.duration or 0 for m in members),
        tags=tags,
    )


def _begin(conn):
    try:
        conn.execute('BEGIN IMMEDIATE')
    except sqlite3.OperationalError as e:
        logger.warning('Could not lock database for merge: %s', e)
        raise MergeConflict('Another submission for this day is being saved, retry')


def submit_interval(conn, interval, tz, replaces=(), separator=config.DESCRIPTION_SEPARATOR):
    """
    Store `interval`, merging it into same-day records when it is completed.

    `replaces` names stored ids that `interval` stands for (a running
    interval being stopped); they are removed when a merge happens and
    otherwise overwritten in place. They are re-read under the write lock and
    must still exist and still be running.

    Returns (stored_record, merged_ids).
    """
    _begin(conn)
    try:
        for rid in replaces:
            current = store.get(conn, rid)
            if current is None:
                raise NotFound(f'Entry {rid} no longer exists', field='id')
            if current.is_completed:
                raise MergeConflict(f'Entry {rid} was already stopped', field='id')

        if not interval.is_completed:
            store.insert(conn, interval)
            conn.commit()
            return interval, []

        day = local_day(interval.start_time, tz)
        day_start, day_end = day_bounds(day, tz)
        existing = [
            e for e in store.find_by_owner_project_day_range(
                conn, interval.owner, interval.project, day_start, day_end)
            if e.id not in replaces
        ]
        logger.info('Merge check owner=%s project=%s day=%s existing=%d',
                    interval.owner, interval.project, day, len(existing))

        if not existing:
            if replaces:
                store.update_fields(conn, interval)
            else:
                store.insert(conn, interval)
            conn.commit()
            return interval, []

        merged = fold(existing, interval, separator)
        source_ids = tuple(e.id for e in existing) + tuple(replaces)
        store.apply(conn, Replace(ids=source_ids, record=merged))
        conn.commit()
        logger.info('Merged %d interval(s) into %s', len(existing) + 1, merged.id)
        return merged, list(source_ids)
    except sqlite3.OperationalError as e:
        conn.rollback()
        if 'locked' in str(e):
            raise MergeConflict('Another submission for this day is being saved, retry')
        raise
    except Exception:
        conn.rollback()
        raise
