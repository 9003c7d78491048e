import logging
import time

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from walletlink.config import settings
from walletlink.request_context import current_endpoint


Base = declarative_base()

_slow_logger = logging.getLogger('walletlink.db.slow_query')


def store_connect_args(database_url: str, timeout_seconds: float) -> dict:
    """Driver-level timeout so a locked or unreachable store fails instead of hanging."""
    if database_url.startswith('sqlite'):
        return {'check_same_thread': False, 'timeout': float(timeout_seconds)}
    if database_url.startswith('postgresql'):
        return {'options': f'-c statement_timeout={int(timeout_seconds * 1000)}'}
    return {}


def build_engine(database_url: str, timeout_seconds: float | None = None) -> Engine:
    timeout = settings.store_timeout_seconds if timeout_seconds is None else timeout_seconds
    built = create_engine(database_url, connect_args=store_connect_args(database_url, timeout))
    event.listen(built, 'before_cursor_execute', _before_cursor_execute)
    event.listen(built, 'after_cursor_execute', _after_cursor_execute)
    return built


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    start = getattr(context, '_query_start_time', None)
    if start is None:
        return
    duration_ms = (time.perf_counter() - start) * 1000.0
    if duration_ms >= settings.db_slow_query_ms:
        sql_text = (statement or '').replace('\n', ' ').strip()
        _slow_logger.warning(
            'slow_query duration_ms=%.2f endpoint=%s sql=%s',
            duration_ms,
            current_endpoint.get(),
            sql_text,
        )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
