"""Ad-hoc database migrations for the sync layer."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_kv_table(conn) -> None:
    conn.execute(
        text(
            """
            CREATE TABLE IF NOT EXISTS kventry (
                key VARCHAR NOT NULL PRIMARY KEY,
                value VARCHAR NOT NULL,
                updated_at DATETIME NOT NULL
            )
            """
        )
    )
    if not _column_exists(conn, "kventry", "updated_at"):
        conn.execute(text("ALTER TABLE kventry ADD COLUMN updated_at DATETIME"))


def run_all(engine) -> None:
    with engine.begin() as conn:
        # SQLModel creates kventry, but ensure the column exists in legacy DBs
        ensure_kv_table(conn)


__all__ = ["run_all"]
