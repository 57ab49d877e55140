import os
import sqlite3
from contextlib import contextmanager
from typing import Optional

_db_file: Optional[str] = None


def configure(path: Optional[str]) -> None:
    global _db_file
    _db_file = path or None


def _db_path() -> str:
    if _db_file:
        os.makedirs(os.path.dirname(os.path.abspath(_db_file)), exist_ok=True)
        return _db_file
    base_dir = os.environ.get("PWCH_DATA_DIR")
    if not base_dir:
        base_dir = os.path.join(os.getcwd(), "data")
    os.makedirs(base_dir, exist_ok=True)
    return os.path.join(base_dir, "pwch.db")


def init_db() -> None:
    with get_conn() as conn:
        conn.execute(
            """
            create table if not exists accounts (
                username text not null,
                domain text not null,
                password text not null,
                enabled integer not null default 1,
                primary key (username, domain)
            )
            """
        )
        conn.commit()


@contextmanager
def get_conn():
    # isolation_level=None: transactions are opened explicitly with "begin".
    conn = sqlite3.connect(_db_path(), timeout=30, isolation_level=None)
    try:
        conn.row_factory = sqlite3.Row
        yield conn
    finally:
        conn.close()
