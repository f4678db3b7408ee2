from contextlib import contextmanager
from typing import Iterator

from psycopg import Connection
from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import Settings


class Database:
    """
    Owns the connection pool for one process.

    Built once at startup (see `main.create_app`) and handed to request handlers
    through `deps.get_db`; scripts build their own instance.
    """

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 10):
        self.conninfo = conninfo
        # Rows come back as dicts; repositories map them onto dataclasses.
        self._pool = ConnectionPool(
            conninfo=conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.db_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )

    def open(self) -> None:
        self._pool.open()

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        # Commit on success, rollback on exception, return connection to pool.
        with self._pool.connection() as conn:
            yield conn

    def ping(self) -> None:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
