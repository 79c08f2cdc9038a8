import logging
import os
import re
import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

import psycopg2

from utils.constants import MIGRATIONS_DIR, SUPABASE_DB_URL

logger = logging.getLogger(__name__)

_NAMED_PARAM = re.compile(r"%\((\w+)\)s")

# Errors raised by either driver; callers treat both as persistence failures.
DB_ERRORS = (psycopg2.Error, sqlite3.Error)


def _database_url() -> Optional[str]:
    # Read at call time so tests can point at a fresh database per run
    return os.environ.get("SUPABASE_DB_URL") or SUPABASE_DB_URL


def is_sqlite_url(url: Optional[str]) -> bool:
    return bool(url) and url.startswith("sqlite://")


def get_connection():
    """Get database connection - supports both PostgreSQL and SQLite for testing."""
    url = _database_url()
    if not url:
        raise RuntimeError("SUPABASE_DB_URL environment variable not set")

    if is_sqlite_url(url):
        # SQLite connection for testing
        db_path = url.replace("sqlite://", "")
        return sqlite3.connect(db_path)
    else:
        # PostgreSQL connection for production
        return psycopg2.connect(url)


def execute(conn, sql: str, params: Optional[Mapping[str, Any]] = None):
    """Execute a statement written with psycopg2 named parameters and return the cursor.

    On SQLite the ``%(name)s`` placeholders are rewritten to ``:name`` and
    date/datetime/Decimal values are converted to types sqlite3 stores natively.
    """
    cur = conn.cursor()
    if isinstance(conn, sqlite3.Connection):
        sql = _NAMED_PARAM.sub(r":\1", sql)
        params = {k: _adapt_sqlite_value(v) for k, v in (params or {}).items()}
    cur.execute(sql, params or {})
    return cur


def _adapt_sqlite_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bool):
        return int(value)
    return value


def run_migrations() -> None:
    logger.info("Starting database migrations...")
    conn = get_connection()
    cur = conn.cursor()

    # Check if this is SQLite or PostgreSQL
    is_sqlite = is_sqlite_url(_database_url())

    migration_files = sorted(
        [f for f in os.listdir(MIGRATIONS_DIR) if f.endswith(".sql")]
    )

    if not migration_files:
        logger.info("No migration files found.")
        cur.close()
        conn.close()
        return

    try:
        for filename in migration_files:
            logger.info(f"Executing migration: {filename}")
            with open(os.path.join(MIGRATIONS_DIR, filename), "r") as f:
                sql_code = f.read()

            if is_sqlite:
                # Convert PostgreSQL SQL to SQLite-compatible SQL
                sql_code = _convert_postgres_to_sqlite(sql_code)

            try:
                if is_sqlite:
                    # SQLite doesn't support executing multiple statements at once
                    statements = [stmt.strip() for stmt in sql_code.split(';') if stmt.strip()]
                    for statement in statements:
                        cur.execute(statement)
                else:
                    cur.execute(sql_code)
                conn.commit()
                logger.info(f"Successfully executed migration: {filename}")
            except DB_ERRORS as e:
                conn.rollback()
                logger.error(f"Migration {filename} failed: {e}")
                raise
    finally:
        cur.close()
        conn.close()
    logger.info("Finished executing migrations.")


def _convert_postgres_to_sqlite(sql_code: str) -> str:
    """Convert PostgreSQL-specific SQL to SQLite-compatible SQL."""
    sql_code = sql_code.replace("VARCHAR(255)", "TEXT")
    sql_code = sql_code.replace("VARCHAR(32)", "TEXT")
    sql_code = sql_code.replace("VARCHAR(3)", "TEXT")
    sql_code = sql_code.replace("DECIMAL(12, 2)", "REAL")
    sql_code = sql_code.replace("TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP", "DATETIME DEFAULT CURRENT_TIMESTAMP")
    sql_code = sql_code.replace("TIMESTAMPTZ", "DATETIME")
    sql_code = sql_code.replace("BOOLEAN DEFAULT FALSE", "INTEGER DEFAULT 0")
    sql_code = sql_code.replace("BOOLEAN DEFAULT TRUE", "INTEGER DEFAULT 1")
    sql_code = sql_code.replace("BOOLEAN", "INTEGER")

    # Remove PostgreSQL-specific syntax that SQLite doesn't support
    sql_code = sql_code.replace("ON DELETE CASCADE", "")
    sql_code = sql_code.replace("ON DELETE SET NULL", "")

    # Drop comment lines so statement splitting is not confused by them
    lines = sql_code.split('\n')
    filtered_lines = []
    for line in lines:
        if not line.strip().startswith('--'):
            filtered_lines.append(line)

    return '\n'.join(filtered_lines)
