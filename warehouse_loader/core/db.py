"""
Query wrapper around a DB-API connection.

All statements issued by the drivers go through DB so that context checks,
query timeouts, slow query logging and secret redaction happen in one place.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .context import Context
from .errors import DeadlineExceeded, WarehouseError
from .redact import AWS_SECRETS_REGEX, redact

logger = logging.getLogger(__name__)

# (connection, statement, params, timeout seconds or None) -> object with fetchone/fetchall
ExecuteFn = Callable[[Any, str, Optional[Sequence], Optional[float]], Any]


class QueryError(WarehouseError):
    """Backend failure with secrets already masked out of the message."""
    pass


def dbapi_execute(conn, statement: str, params: Optional[Sequence], timeout: Optional[float]):
    cursor = conn.cursor()
    if params is None:
        cursor.execute(statement)
    else:
        cursor.execute(statement, params)
    return cursor


class DB:
    def __init__(
        self,
        conn,
        execute_fn: ExecuteFn = dbapi_execute,
        secrets_regex: Mapping[str, str] = AWS_SECRETS_REGEX,
        slow_query_threshold: float = 300.0,
        query_timeout: float = 0.0,
        log_fields: Optional[Dict[str, str]] = None,
        closer: Optional[Callable[[], None]] = None,
    ):
        self.conn = conn
        self._execute_fn = execute_fn
        self._secrets_regex = dict(secrets_regex)
        self._slow_query_threshold = slow_query_threshold
        self._query_timeout = query_timeout
        self._log_fields = ' '.join(f"{k}={v}" for k, v in (log_fields or {}).items())
        self._closer = closer
        self._closed = False

    def redact(self, statement: str) -> str:
        return redact(statement, self._secrets_regex)

    def _timeout(self, ctx: Context) -> Optional[float]:
        remaining = ctx.remaining()
        if self._query_timeout > 0:
            return self._query_timeout if remaining is None else min(self._query_timeout, remaining)
        return remaining

    def _run(self, ctx: Context, statement: str, params: Optional[Sequence], fetch: Optional[str]):
        if self._closed:
            raise WarehouseError("sql: database is closed")
        ctx.check()

        start = time.monotonic()
        try:
            result = self._execute_fn(self.conn, statement, params, self._timeout(ctx))
            if fetch == 'one':
                return result.fetchone()
            if fetch == 'all':
                return result.fetchall()
            if fetch == 'df':
                columns = [d[0] for d in (result.description or [])]
                return pd.DataFrame.from_records(result.fetchall(), columns=columns)
            return None
        except WarehouseError:
            raise
        except Exception as e:
            message = self.redact(str(e))
            if ctx.expired():
                raise DeadlineExceeded(f"context deadline exceeded: {message}") from e
            raise QueryError(message) from e
        finally:
            elapsed = time.monotonic() - start
            if elapsed > self._slow_query_threshold:
                logger.warning(
                    f"Executing query took {elapsed:.2f}s {self._log_fields} "
                    f"query={self.redact(statement)}"
                )

    def execute(self, ctx: Context, statement: str, params: Optional[Sequence] = None) -> None:
        self._run(ctx, statement, params, None)

    def query_row(self, ctx: Context, statement: str, params: Optional[Sequence] = None) -> Optional[tuple]:
        return self._run(ctx, statement, params, 'one')

    def query(self, ctx: Context, statement: str, params: Optional[Sequence] = None) -> List[tuple]:
        return self._run(ctx, statement, params, 'all') or []

    def query_df(self, ctx: Context, statement: str, params: Optional[Sequence] = None) -> pd.DataFrame:
        return self._run(ctx, statement, params, 'df')

    def ping(self, ctx: Context) -> None:
        self.query_row(ctx, "SELECT 1")

    @contextmanager
    def transaction(self, ctx: Context):
        self.execute(ctx, "BEGIN TRANSACTION")
        try:
            yield self
        except BaseException:
            try:
                self.execute(Context.background(), "ROLLBACK")
            except WarehouseError as e:
                logger.warning(f"Rollback failed {self._log_fields}: {e}")
            raise
        self.execute(ctx, "COMMIT")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._closer is not None:
            self._closer()
        else:
            self.conn.close()

    @property
    def closed(self) -> bool:
        return self._closed
