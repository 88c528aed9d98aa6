"""
sqlite3 access for time intervals.

Functions here never commit; the caller owns the transaction so that merges
and balance commits can group several statements into one.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from dates import to_iso
from models import Annotate, Replace, StorageMutation, TimeInterval

logger = logging.getLogger(__name__)

# Columns an Annotate mutation may touch
ANNOTATION_FIELDS = {'corrected_duration'}

COLUMNS = ('id', 'owner', 'project', 'description', 'start_ts', 'end_ts',
           'duration', 'corrected_duration', 'tags', 'created_at')

UPDATABLE_FIELDS = ['project', 'description', 'start_ts', 'end_ts', 'duration',
                    'corrected_duration', 'tags']


def connect(db_path, timeout=5.0):
    conn = sqlite3.connect(str(Path(db_path)), timeout=timeout)
    conn.row_factory = sqlite3.Row
    return conn


def new_id():
    return uuid.uuid4().hex


def utcnow():
    return datetime.now(timezone.utc).replace(microsecond=0)


def _row_values(interval):
    return (
        interval.id,
        interval.owner,
        interval.project,
        interval.description or '',
        to_iso(interval.start_time),
        to_iso(interval.end_time) if interval.end_time else None,
        interval.duration,
        interval.corrected_duration,
        json.dumps(sorted(interval.tags)),
        to_iso(interval.created_at or utcnow()),
    )


def insert(conn, interval):
    if interval.created_at is None:
        interval.created_at = utcnow()
    placeholders = ','.join('?' * len(COLUMNS))
    conn.execute(
        f'INSERT INTO entries ({", ".join(COLUMNS)}) VALUES ({placeholders})',
        _row_values(interval),
    )
    return interval


def delete_many(conn, ids):
    ids = list(ids)
    if not ids:
        return 0
    placeholders = ','.join('?' * len(ids))
    cur = conn.execute(f'DELETE FROM entries WHERE id IN ({placeholders})', ids)
    return cur.rowcount


def get(conn, entry_id):
    cur = conn.execute('SELECT * FROM entries WHERE id = ?', (entry_id,))
    row = cur.fetchone()
    return TimeInterval.from_row(row) if row else None


def find_by_owner_project_day_range(conn, owner, project, day_start, day_end):
    """Completed intervals of one owner and project starting in [day_start, day_end)."""
    cur = conn.execute('''
        SELECT * FROM entries
        WHERE owner = ? AND project = ?
          AND start_ts >= ? AND start_ts < ?
          AND end_ts IS NOT NULL
        ORDER BY start_ts, created_at
    ''', (owner, project, to_iso(day_start), to_iso(day_end)))
    return [TimeInterval.from_row(r) for r in cur.fetchall()]


def find_by_owner_date_range(conn, owner, start=None, end=None, completed_only=True):
    """Intervals of one owner starting in [start, end); open bounds when None."""
    q = 'SELECT * FROM entries WHERE owner = ?'
    params = [owner]
    if completed_only:
        q += ' AND end_ts IS NOT NULL'
    if start is not None:
        q += ' AND start_ts >= ?'
        params.append(to_iso(start))
    if end is not None:
        q += ' AND start_ts < ?'
        params.append(to_iso(end))
    q += ' ORDER BY start_ts, created_at'
    cur = conn.execute(q, params)
    return [TimeInterval.from_row(r) for r in cur.fetchall()]


def find_active(conn, owner):
    cur = conn.execute('''
        SELECT * FROM entries
        WHERE owner = ? AND end_ts IS NULL
        ORDER BY start_ts DESC
        LIMIT 1
    ''', (owner,))
    row = cur.fetchone()
    return TimeInterval.from_row(row) if row else None


def update_fields(conn, interval):
    """Write every updatable column of `interval` back to its row."""
    by_column = dict(zip(COLUMNS, _row_values(interval)))
    updates = [f'{c} = ?' for c in UPDATABLE_FIELDS]
    params = [by_column[c] for c in UPDATABLE_FIELDS] + [interval.id]
    conn.execute(f'UPDATE entries SET {", ".join(updates)} WHERE id = ?', params)


def update_corrected_duration(conn, entry_id, value):
    """Set (or clear with None) the corrected duration of one interval."""
    return apply(conn, Annotate(entry_id, 'corrected_duration', value))


def apply(conn, mutation: StorageMutation):
    """Apply a Replace or Annotate mutation. The record is inserted before the sources go."""
    if isinstance(mutation, Replace):
        insert(conn, mutation.record)
        removed = delete_many(conn, mutation.ids)
        logger.info('Replaced %d interval(s) with %s', removed, mutation.record.id)
        return mutation.record
    if isinstance(mutation, Annotate):
        if mutation.field not in ANNOTATION_FIELDS:
            raise ValueError(f"Cannot annotate field '{mutation.field}'")
        cur = conn.execute(
            f'UPDATE entries SET {mutation.field} = ? WHERE id = ?',
            (mutation.value, mutation.id),
        )
        return cur.rowcount
    raise TypeError(f'Unknown mutation: {mutation!r}')
