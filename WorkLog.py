from flask import Flask, g, jsonify, request
from datetime import datetime, timezone
import logging

import config
import store
from aggregation import merged_range, parse_range, statistics
from balancer import commit_day_balance, propose_day_balance, undo_day_balance
from dates import day_bounds, load_zone, parse_timestamp
from db_init import init_db
from errors import Forbidden, InvalidInterval, NotFound, WorkLogError
from merger import check_bounds, duration_between, interval_from_payload, submit_interval

app = Flask(__name__)
app.config.update(
    DATABASE=str(config.DB_PATH),
    DB_TIMEOUT=config.DB_TIMEOUT,
    TIMEZONE=config.TIMEZONE,
    DEFAULT_OWNER=config.DEFAULT_OWNER,
)
app.logger.setLevel(config.LOG_LEVEL)


def get_conn():
    if 'conn' not in g:
        g.conn = store.connect(app.config['DATABASE'], timeout=app.config['DB_TIMEOUT'])
    return g.conn


@app.teardown_appcontext
def close_conn(exc):
    conn = g.pop('conn', None)
    if conn is not None:
        conn.close()


def get_zone():
    return load_zone(app.config['TIMEZONE'])


def current_owner():
    return request.headers.get('X-User-Id') or app.config['DEFAULT_OWNER']


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInterval('request body must be a JSON object')
    return data


def owned_entry(conn, entry_id):
    entry = store.get(conn, entry_id)
    if not entry:
        raise NotFound('Entry not found', field='id')
    if entry.owner != current_owner():
        raise Forbidden('No permission for this entry', field='id')
    return entry


@app.errorhandler(WorkLogError)
def handle_worklog_error(e):
    if e.status >= 409:
        app.logger.warning(f"{type(e).__name__}: {e.message}")
    return jsonify(e.to_dict()), e.status


# ---------------------------------------------------------------------------
# Time entries
# ---------------------------------------------------------------------------

@app.route('/api/entries')
def entries():
    tz = get_zone()
    conn = get_conn()
    start = end = None
    if request.args.get('startDate') or request.args.get('endDate'):
        start_day, end_day = parse_range(request.args.get('startDate'),
                                         request.args.get('endDate'))
        start, end = store_range(start_day, end_day, tz)
    rows = store.find_by_owner_date_range(conn, current_owner(), start, end,
                                          completed_only=False)
    rows.reverse()
    return jsonify([r.to_dict() for r in rows])


def store_range(start_day, end_day, tz):
    return day_bounds(start_day, tz)[0], day_bounds(end_day, tz)[1]


@app.route('/api/entries', methods=['POST'])
def add_entry():
    data = json_body()
    tz = get_zone()
    interval = interval_from_payload(current_owner(), data, tz)
    record, merged_ids = submit_interval(get_conn(), interval, tz)
    body = record.to_dict()
    body['merged'] = bool(merged_ids)
    body['mergedIds'] = merged_ids
    return jsonify(body), 201


@app.route('/api/start', methods=['POST'])
def start():
    data = dict(json_body())
    data.pop('endTime', None)
    data.setdefault('startTime', datetime.now(timezone.utc).isoformat())
    tz = get_zone()
    interval = interval_from_payload(current_owner(), data, tz)
    record, _ = submit_interval(get_conn(), interval, tz)
    return jsonify(record.to_dict()), 201


@app.route('/api/stop', methods=['POST'])
def stop():
    data = json_body()
    eid = data.get('id')
    conn = get_conn()
    tz = get_zone()
    if eid:
        entry = owned_entry(conn, eid)
    else:
        entry = store.find_active(conn, current_owner())
    if not entry or entry.is_completed:
        return jsonify({'error': 'No running entry found'}), 404
    end = parse_timestamp(data.get('endTime') or datetime.now(timezone.utc), 'endTime', tz)
    check_bounds(entry.start_time, end)
    entry.end_time = end
    entry.duration = duration_between(entry.start_time, end)
    record, merged_ids = submit_interval(conn, entry, tz, replaces=(entry.id,))
    body = record.to_dict()
    body['merged'] = record.id != entry.id
    body['mergedIds'] = [i for i in merged_ids if i != entry.id]
    return jsonify(body)


@app.route('/api/entries/active')
def active_entry():
    entry = store.find_active(get_conn(), current_owner())
    return jsonify(entry.to_dict() if entry else None)


@app.route('/api/entries/merged')
def merged_entries():
    start_day, end_day = parse_range(request.args.get('startDate'), request.args.get('endDate'))
    merged = merged_range(get_conn(), current_owner(), start_day, end_day, get_zone())
    return jsonify([m.to_dict() for m in merged])


@app.route('/api/entries/<entry_id>')
def get_entry(entry_id):
    return jsonify(owned_entry(get_conn(), entry_id).to_dict())


@app.route('/api/entries/<entry_id>', methods=['PUT'])
def edit_entry(entry_id):
    data = json_body()
    conn = get_conn()
    tz = get_zone()
    entry = owned_entry(conn, entry_id)

    if 'project' in data:
        if not isinstance(data['project'], str) or not data['project'].strip():
            raise InvalidInterval('project must not be empty', field='project')
        entry.project = data['project'].strip()
    if 'description' in data:
        entry.description = data['description'] or ''
    if 'tags' in data:
        tags = data['tags'] or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise InvalidInterval('tags must be a list of strings', field='tags')
        entry.tags = set(tags)
    if 'startTime' in data:
        entry.start_time = parse_timestamp(data['startTime'], 'startTime', tz)
    if 'endTime' in data:
        entry.end_time = (parse_timestamp(data['endTime'], 'endTime', tz)
                          if data['endTime'] else None)
    check_bounds(entry.start_time, entry.end_time)
    entry.duration = duration_between(entry.start_time, entry.end_time)

    # An edit drops the day balance unless the caller sends a new one
    value = data.get('correctedDuration')
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))
                              or value < 0):
        raise InvalidInterval('correctedDuration must be a non-negative number of seconds',
                              field='correctedDuration')
    entry.corrected_duration = int(round(value)) if value is not None else None

    store.update_fields(conn, entry)
    conn.commit()
    return jsonify(entry.to_dict())


@app.route('/api/entries/<entry_id>', methods=['DELETE'])
def delete_entry(entry_id):
    conn = get_conn()
    owned_entry(conn, entry_id)
    store.delete_many(conn, [entry_id])
    conn.commit()
    return jsonify({'deleted': entry_id})


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

@app.route('/api/stats')
def stats():
    start_day, end_day = parse_range(request.args.get('startDate'), request.args.get('endDate'))
    group_by = request.args.get('groupBy', 'day')
    merged = merged_range(get_conn(), current_owner(), start_day, end_day, get_zone())
    return jsonify(statistics(merged, group_by))


# ---------------------------------------------------------------------------
# Day balancing
# ---------------------------------------------------------------------------

@app.route('/api/balance/propose', methods=['POST'])
def propose_balance():
    data = json_body()
    proposal = propose_day_balance(get_conn(), current_owner(), data, get_zone())
    return jsonify(proposal.to_dict())


@app.route('/api/balance/commit', methods=['POST'])
def commit_balance():
    data = json_body()
    updated = commit_day_balance(get_conn(), current_owner(), data, get_zone())
    return jsonify([u.to_dict() for u in updated])


@app.route('/api/balance/undo', methods=['POST'])
def undo_balance():
    data = json_body()
    cleared = undo_day_balance(get_conn(), current_owner(), get_zone(),
                               day=data.get('day'), entry_id=data.get('id'))
    return jsonify({'cleared': cleared})


if __name__ == '__main__':
    logging.basicConfig(level=config.LOG_LEVEL,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_db(app.config["DATABASE"])
    app.run(debug=True, host='0.0.0.0')
