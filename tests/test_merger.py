"""Tests for same-day merging of completed intervals."""

import threading
from datetime import datetime, timezone

import pytest

import store
from errors import InvalidInterval, MergeConflict, NotFound
from merger import fold, interval_from_payload, submit_interval


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def all_rows(conn):
    return store.find_by_owner_date_range(conn, 'alice', completed_only=False) + \
        store.find_by_owner_date_range(conn, 'bob', completed_only=False)


# ---- Merging ----

class TestSameDayMerge:
    def test_first_interval_is_stored_as_is(self, conn, tz, make_interval):
        first = make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8), description='setup')
        record, merged_ids = submit_interval(conn, first, tz)
        assert record.id == first.id
        assert merged_ids == []
        assert [r.id for r in all_rows(conn)] == [first.id]

    def test_two_submissions_collapse_to_one(self, conn, tz, make_interval):
        a = make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8), description='A', tags=['x'])
        b = make_interval(utc(2024, 6, 3, 12), utc(2024, 6, 3, 12, 30), description='B',
                          tags=['y', 'x'])
        submit_interval(conn, a, tz)
        record, merged_ids = submit_interval(conn, b, tz)

        rows = all_rows(conn)
        assert len(rows) == 1
        stored = rows[0]
        assert stored.id == record.id
        assert stored.id not in (a.id, b.id)
        assert merged_ids == [a.id]
        assert stored.duration == 3600 + 1800
        assert stored.description == 'A\n---\nB'
        assert stored.tags == {'x', 'y'}
        assert stored.start_time == utc(2024, 6, 3, 7)
        assert stored.end_time == utc(2024, 6, 3, 12, 30)

    def test_descriptions_keep_submission_order(self, conn, tz, make_interval):
        for i, hour in enumerate([9, 7, 14]):
            submit_interval(conn, make_interval(
                utc(2024, 6, 3, hour), utc(2024, 6, 3, hour, 15), description=f'd{i}'), tz)
        rows = all_rows(conn)
        assert len(rows) == 1
        assert rows[0].description == 'd0\n---\nd1\n---\nd2'
        assert rows[0].start_time == utc(2024, 6, 3, 7)
        assert rows[0].duration == 3 * 900

    def test_empty_descriptions_are_dropped(self, conn, tz, make_interval):
        submit_interval(conn, make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8)), tz)
        record, _ = submit_interval(
            conn, make_interval(utc(2024, 6, 3, 9), utc(2024, 6, 3, 10), description='only'), tz)
        assert record.description == 'only'

    def test_span_may_contain_gaps(self, conn, tz, make_interval):
        submit_interval(conn, make_interval(utc(2024, 6, 3, 6), utc(2024, 6, 3, 7)), tz)
        record, _ = submit_interval(conn, make_interval(utc(2024, 6, 3, 15), utc(2024, 6, 3, 16)), tz)
        # Duration is the tracked sum, not end - start
        assert record.duration == 7200
        assert (record.end_time - record.start_time).total_seconds() == 10 * 3600

    def test_earlier_correction_does_not_carry_over(self, make_interval):
        source = make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8), corrected=5400)
        new = make_interval(utc(2024, 6, 3, 9), utc(2024, 6, 3, 10))
        assert fold([source], new).corrected_duration is None


class TestMergeBoundaries:
    def test_different_projects_stay_apart(self, conn, tz, make_interval):
        submit_interval(conn, make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8), project='A'), tz)
        submit_interval(conn, make_interval(utc(2024, 6, 3, 9), utc(2024, 6, 3, 10), project='B'), tz)
        assert len(all_rows(conn)) == 2

    def test_different_owners_stay_apart(self, conn, tz, make_interval):
        submit_interval(conn, make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8), owner='alice'), tz)
        submit_interval(conn, make_interval(utc(2024, 6, 3, 9), utc(2024, 6, 3, 10), owner='bob'), tz)
        assert len(all_rows(conn)) == 2

    def test_different_days_stay_apart(self, conn, tz, make_interval):
        submit_interval(conn, make_interval(utc(2024, 6, 3, 7), utc(2024, 6, 3, 8)), tz)
        submit_interval(conn, make_interval(utc(2024, 6, 4, 7), utc(2024, 6, 4, 8)), tz)
        assert len(all_rows(conn)) == 2

    def test_day_is_taken_in_reference_zone(self, conn, tz, make_interval):
        # 22:30 UTC on June 3rd is 00:30 on June 4th in Zurich (UTC+2)
        late = make_interval(utc(2024, 6, 3, 22, 30), utc(2024, 6, 3, 23, 0))
        next_morning = make_interval(utc(2024, 6, 4, 6), utc(2024, 6, 4, 7))
        evening = make_interval(utc(2024, 6, 3, 21, 0), utc(2024, 6, 3, 21, 30))
        submit_interval(conn, late, tz)
        submit_interval(conn, next_morning, tz)
        submit_interval(conn, evening, tz)

        rows = all_rows(conn)
        assert len(rows) == 2
        durations = sorted(r.duration for r in rows)
        assert durations == [1800, 1800 + 3600]

    def test_running_interval_is_not_merged(self, conn, tz, make_interval):
        running = make_interval(utc(2024, 6, 3, 7))
        submit_interval(conn, running, tz)
        record, merged_ids = submit_interval(
            conn, make_interval(utc(2024, 6, 3, 9), utc(2024, 6, 3, 10)), tz)
        assert merged_ids == []
        assert len(all_rows(conn)) == 2
        assert store.find_active(conn, 'alice').id == running.id


class TestStopMerges:
    def test_stopping_updates_in_place_without_siblings(self, conn, tz, make_interval):
        running = make_interval(utc(2024, 6, 3, 7))
        submit_interval(conn, running, tz)
        running.end_time = utc(2024, 6, 3, 8)
        running.duration = 3600
        record, merged_ids = submit_interval(conn, running, tz, replaces=(running.id,))
        assert record.id == running.id
        assert merged_ids == []
        assert store.get(conn, running.id).duration == 3600

    def test_stopping_folds_into_same_day_record(self, conn, tz, make_interval):
        done = make_interval(utc(2024, 6, 3, 6), utc(2024, 6, 3, 7), description='morning')
        submit_interval(conn, done, tz)
        running = make_interval(utc(2024, 6, 3, 9), description='later')
        submit_interval(conn, running, tz)

        running.end_time = utc(2024, 6, 3, 9, 30)
        running.duration = 1800
        record, merged_ids = submit_interval(conn, running, tz, replaces=(running.id,))

        rows = all_rows(conn)
        assert [r.id for r in rows] == [record.id]
        assert set(merged_ids) == {done.id, running.id}
        assert record.duration == 5400
        assert record.description == 'morning\n---\nlater'

    def test_stopping_twice_after_fold_counts_once(self, conn, tz, make_interval):
        done = make_interval(utc(2024, 6, 3, 6), utc(2024, 6, 3, 7))
        submit_interval(conn, done, tz)
        running = make_interval(utc(2024, 6, 3, 9))
        submit_interval(conn, running, tz)

        # Two stop requests that both read the entry while it was running
        first = store.get(conn, running.id)
        second = store.get(conn, running.id)
        for copy in (first, second):
            copy.end_time = utc(2024, 6, 3, 9, 30)
            copy.duration = 1800

        record, _ = submit_interval(conn, first, tz, replaces=(running.id,))
        with pytest.raises(NotFound):
            submit_interval(conn, second, tz, replaces=(running.id,))

        rows = all_rows(conn)
        assert [r.id for r in rows] == [record.id]
        assert rows[0].duration == 3600 + 1800

    def test_stopping_twice_in_place_is_rejected(self, conn, tz, make_interval):
        running = make_interval(utc(2024, 6, 3, 9))
        submit_interval(conn, running, tz)
        first = store.get(conn, running.id)
        second = store.get(conn, running.id)
        first.end_time, first.duration = utc(2024, 6, 3, 10), 3600
        second.end_time, second.duration = utc(2024, 6, 3, 11), 7200

        submit_interval(conn, first, tz, replaces=(running.id,))
        with pytest.raises(MergeConflict):
            submit_interval(conn, second, tz, replaces=(running.id,))
        assert store.get(conn, running.id).duration == 3600


class TestConcurrentSubmissions:
    def test_parallel_same_day_submissions_leave_one_record(self, db_path, tz, make_interval):
        intervals = [
            make_interval(utc(2024, 6, 3, 7 + i), utc(2024, 6, 3, 7 + i, 30), description=f'w{i}')
            for i in range(4)
        ]
        barrier = threading.Barrier(len(intervals))
        errors = []

        def worker(interval):
            c = store.connect(db_path, timeout=10)
            try:
                barrier.wait()
                submit_interval(c, interval, tz)
            except Exception as e:  # collected and asserted below
                errors.append(e)
            finally:
                c.close()

        threads = [threading.Thread(target=worker, args=(i,)) for i in intervals]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        c = store.connect(db_path)
        rows = store.find_by_owner_date_range(c, 'alice')
        c.close()
        assert len(rows) == 1
        assert rows[0].duration == 4 * 1800
        assert set(rows[0].description.split('\n---\n')) == {'w0', 'w1', 'w2', 'w3'}


# ---- Payload validation ----

class TestIntervalFromPayload:
    def test_builds_completed_interval(self, tz):
        interval = interval_from_payload('alice', {
            'project': ' PRJ-001 ',
            'description': 'review',
            'startTime': '2024-06-03T07:00:00Z',
            'endTime': '2024-06-03T08:15:00Z',
            'tags': ['a', 'b'],
        }, tz)
        assert interval.project == 'PRJ-001'
        assert interval.duration == 4500
        assert interval.tags == {'a', 'b'}
        assert interval.is_completed

    def test_naive_timestamps_are_local(self, tz):
        interval = interval_from_payload('alice', {
            'project': 'P', 'startTime': '2024-01-15T09:00:00',
        }, tz)
        # Zurich is UTC+1 in January
        assert interval.start_time == utc(2024, 1, 15, 8)
        assert interval.end_time is None
        assert interval.duration is None

    @pytest.mark.parametrize('payload, field', [
        ({'startTime': '2024-06-03T07:00:00Z'}, 'project'),
        ({'project': '  ', 'startTime': '2024-06-03T07:00:00Z'}, 'project'),
        ({'project': 'P'}, 'startTime'),
        ({'project': 'P', 'startTime': 'yesterday'}, 'startTime'),
        ({'project': 'P', 'startTime': '2024-06-03T08:00:00Z',
          'endTime': '2024-06-03T08:00:00Z'}, 'endTime'),
        ({'project': 'P', 'startTime': '2024-06-03T08:00:00Z',
          'endTime': '2024-06-03T07:00:00Z'}, 'endTime'),
        ({'project': 'P', 'startTime': '2024-06-03T08:00:00Z', 'tags': 'x'}, 'tags'),
    ])
    def test_rejects_bad_payload(self, tz, payload, field):
        with pytest.raises(InvalidInterval) as exc:
            interval_from_payload('alice', payload, tz)
        assert exc.value.field == field
