"""
Day balancing: fit a day's tracked time to the hours actually worked.

The worked time is derived from a work start, a work end and the breaks
taken. It is split across the day's completed intervals in proportion to
their tracked durations, each share is rounded to a quarter hour, and any
drift the rounding left is pushed back in quarter-hour steps onto the largest
shares. The result is stored as `corrected_duration`; the tracked start, end
and duration of an interval are never touched, and undo clears the
correction again.
"""

import logging
import math

import config
import store
from dates import day_bounds, local_day, local_instant, parse_clock, parse_day
from errors import (
    Forbidden,
    IncompleteBalanceInput,
    InvalidInterval,
    NotFound,
    ZeroBaseDurationForProportion,
)
from models import Annotate, BalanceProposal, ProposedEntry

logger = logging.getLogger(__name__)


def round_half_up(value):
    return int(math.floor(value + 0.5))


def round_to_unit(seconds, unit=config.QUARTER_HOUR_SECONDS):
    return round_half_up(seconds / unit) * unit


def _break_minutes(data, field):
    value = data.get(field) or 0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise InvalidInterval(f'{field} must be a non-negative number of minutes', field=field)
    if value != int(value):
        raise InvalidInterval(f'{field} must be whole minutes', field=field)
    return int(value)


def effective_minutes(day, work_start, work_end, lunch_break, other_breaks, tz):
    """
    Minutes worked between `work_start` and `work_end` on `day`, less breaks.

    The span is measured between the actual instants, so DST switches count.
    Breaks longer than the span give 0.
    """
    start = local_instant(day, work_start, tz)
    end = local_instant(day, work_end, tz)
    span = int((end - start).total_seconds() // 60)
    return max(0, span - lunch_break - other_breaks)


def parse_request(data, tz):
    """Validate a propose payload. Returns (day, effective minutes)."""
    day = parse_day(data.get('day'), 'day')
    if not data.get('workStart') or not data.get('workEnd'):
        missing = 'workStart' if not data.get('workStart') else 'workEnd'
        raise IncompleteBalanceInput(
            'workStart and workEnd are both needed to balance a day', field=missing
        )
    work_start = parse_clock(data['workStart'], 'workStart')
    work_end = parse_clock(data['workEnd'], 'workEnd')
    if work_end <= work_start:
        raise InvalidInterval('workEnd must be after workStart', field='workEnd')
    lunch = _break_minutes(data, 'lunchBreak')
    other = _break_minutes(data, 'otherBreaks')
    return day, effective_minutes(day, work_start, work_end, lunch, other, tz)


def propose(day, intervals, minutes, unit=config.QUARTER_HOUR_SECONDS,
            tolerance=config.BALANCE_TOLERANCE_HOURS):
    """
    Distribute `minutes` of work over `intervals` and round to `unit` seconds.

    Pure computation; nothing is stored. Raises
    ZeroBaseDurationForProportion when there is no tracked time to take
    proportions from.
    """
    total_seconds = sum(i.duration or 0 for i in intervals)
    if not intervals or total_seconds <= 0:
        raise ZeroBaseDurationForProportion(
            'Cannot redistribute, no existing entries with tracked time on this day',
            field='day',
        )

    effective_seconds = minutes * 60
    effective_hours = effective_seconds / 3600
    current_hours = total_seconds / 3600

    entries = []
    for interval in intervals:
        target = effective_seconds * (interval.duration or 0) / total_seconds
        entries.append(ProposedEntry(
            id=interval.id,
            duration=interval.duration or 0,
            unrounded=target,
            corrected_duration=round_to_unit(target, unit),
        ))

    rounded_diff_seconds = effective_seconds - sum(e.corrected_duration for e in entries)
    rounded_difference = rounded_diff_seconds / 3600
    residual_seconds = rounded_diff_seconds
    infeasible = False

    if abs(rounded_difference) >= tolerance:
        # Largest unrounded shares absorb the drift first
        candidates = [[e.id, e.corrected_duration]
                      for e in sorted(entries, key=lambda e: e.unrounded, reverse=True)]
        steps = round_half_up(abs(rounded_diff_seconds) / unit)
        step = unit if rounded_diff_seconds > 0 else -unit
        i = 0
        idle = 0
        while steps > 0 and idle < len(candidates):
            if candidates[i][1] + step >= 0:
                candidates[i][1] += step
                steps -= 1
                idle = 0
            else:
                idle += 1
            i = (i + 1) % len(candidates)
        infeasible = steps > 0

        corrected = dict(candidates)
        for e in entries:
            e.corrected_duration = corrected[e.id]
        residual_seconds = effective_seconds - sum(corrected.values())

    residual = residual_seconds / 3600
    proposal = BalanceProposal(
        day=day,
        effective_hours=effective_hours,
        current_hours=current_hours,
        raw_difference=effective_hours - current_hours,
        rounded_difference=rounded_difference,
        residual_difference=residual,
        entries=entries,
        infeasible=infeasible,
        requires_confirmation=abs(residual) > tolerance,
    )
    if infeasible:
        logger.warning('Balance for %s left %.2fh that no entry could absorb', day, residual)
    return proposal


def day_intervals(conn, owner, day, tz):
    day_start, day_end = day_bounds(day, tz)
    return store.find_by_owner_date_range(conn, owner, day_start, day_end)


def propose_day_balance(conn, owner, data, tz):
    day, minutes = parse_request(data, tz)
    intervals = day_intervals(conn, owner, day, tz)
    proposal = propose(day, intervals, minutes)
    logger.info('Proposed balance owner=%s day=%s effective=%.2fh current=%.2fh residual=%.2fh',
                owner, day, proposal.effective_hours, proposal.current_hours,
                proposal.residual_difference)
    return proposal


def _owned(conn, owner, entry_id):
    interval = store.get(conn, entry_id)
    if interval is None:
        raise NotFound(f'Entry {entry_id} not found', field='id')
    if interval.owner != owner:
        raise Forbidden(f'No permission for entry {entry_id}', field='id')
    return interval


def parse_commit(data):
    entries = data.get('entries')
    if not isinstance(entries, list) or not entries:
        raise InvalidInterval('entries must be a non-empty list', field='entries')
    updates = []
    for item in entries:
        if not isinstance(item, dict) or not item.get('id'):
            raise InvalidInterval('every entry needs an id', field='entries')
        value = item.get('correctedDuration')
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise InvalidInterval(
                'correctedDuration must be a non-negative number of seconds',
                field='correctedDuration',
            )
        updates.append(Annotate(item['id'], 'corrected_duration', int(round(value))))

    residual = data.get('residualDifference') or 0
    if isinstance(residual, bool) or not isinstance(residual, (int, float)):
        raise InvalidInterval('residualDifference must be a number of hours',
                              field='residualDifference')
    if abs(residual) > config.BALANCE_TOLERANCE_HOURS and not data.get('confirm'):
        raise InvalidInterval(
            f'A difference of {residual:.2f}h remains after rounding; resend with confirm=true',
            field='confirm',
        )
    return updates


def commit_day_balance(conn, owner, data, tz):
    """
    Store the proposed corrected durations in one transaction.

    Every entry must be owned, completed and start on the same local day,
    which is what a proposal covers.
    """
    updates = parse_commit(data)
    try:
        days = set()
        for update in updates:
            interval = _owned(conn, owner, update.id)
            if not interval.is_completed:
                raise InvalidInterval(f'Entry {update.id} is still running', field='entries')
            days.add(local_day(interval.start_time, tz))
        if len(days) > 1:
            raise InvalidInterval('A balance covers the entries of a single day',
                                  field='entries')
        for update in updates:
            store.apply(conn, update)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    logger.info('Committed balance owner=%s entries=%d', owner, len(updates))
    return [store.get(conn, u.id) for u in updates]


def undo_day_balance(conn, owner, tz, day=None, entry_id=None):
    """Clear corrected durations for one entry or for every entry of a day."""
    if entry_id:
        targets = [_owned(conn, owner, entry_id)]
    elif day:
        targets = [i for i in day_intervals(conn, owner, parse_day(day, 'day'), tz)
                   if i.corrected_duration is not None]
    else:
        raise InvalidInterval('day or id is required', field='day')

    try:
        for interval in targets:
            store.update_corrected_duration(conn, interval.id, None)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    logger.info('Undid balance owner=%s cleared=%d', owner, len(targets))
    return [i.id for i in targets]
