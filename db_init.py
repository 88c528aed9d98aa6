import sqlite3
from pathlib import Path

import config

DB_PATH = Path(config.DB_PATH)

def init_db(db_path=DB_PATH):
    conn = sqlite3.connect(str(db_path))
    cur = conn.cursor()
    cur.execute('''
    CREATE TABLE IF NOT EXISTS entries (
        id TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        project TEXT NOT NULL,
        description TEXT DEFAULT '',
        start_ts TEXT NOT NULL,
        end_ts TEXT,
        duration INTEGER,
        corrected_duration INTEGER,
        tags TEXT DEFAULT '[]',
        created_at TEXT NOT NULL
    )
    ''')
    # Merge lookups and range reads both filter on owner + start
    cur.execute('''
    CREATE INDEX IF NOT EXISTS idx_entries_owner_project_start
        ON entries (owner, project, start_ts)
    ''')
    cur.execute('''
    CREATE INDEX IF NOT EXISTS idx_entries_owner_start
        ON entries (owner, start_ts)
    ''')
    conn.commit()
    conn.close()

if __name__ == '__main__':
    init_db()
    print(f"Initialized database at {DB_PATH}")
