import sqlite3

from sitescout.db import connect_db
from sitescout.migrations import _get_migrations, _table_columns, apply_migrations


def test_apply_migrations_idempotent(tmp_path):
    db_path = tmp_path / "state.sqlite3"
    conn = sqlite3.connect(str(db_path))
    apply_migrations(conn)
    apply_migrations(conn)

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    versions = [row[0] for row in rows]
    expected = [version for version, _ in _get_migrations()]
    assert sorted(versions) == sorted(expected)
    assert len(versions) == len(set(versions))
    conn.close()


def test_schema_has_tracking_unique_index(tmp_path):
    conn = connect_db(str(tmp_path / "state.sqlite3"))
    try:
        columns = _table_columns(conn, "sites")
        assert {"fetch_settings_json", "successful_runs", "last_test_json"} <= columns
        indexes = conn.execute("PRAGMA index_list(url_tracking)").fetchall()
        assert any(row[2] == 1 for row in indexes)
    finally:
        conn.close()
