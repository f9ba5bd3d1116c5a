from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
import os

from circuit_boq.logger import get_logger

logger = get_logger(__name__)

_engine = None
_SessionLocal = None


def build_engine(db_url: str):
    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False}
        )
        _enable_sqlite_savepoints(engine)
        return engine
    return create_engine(db_url)


def _enable_sqlite_savepoints(engine) -> None:
    # pysqlite 自带的事务处理会破坏 SAVEPOINT，交给 SQLAlchemy 自己发 BEGIN
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine():
    global _engine
    if _engine is None:
        db_url = os.environ.get("DATABASE_URL")
        if not db_url:
            raise RuntimeError("DATABASE_URL not set")
        logger.info(f"Using database URL: {db_url}")
        _engine = build_engine(db_url)
    return _engine


def get_session():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine()
        )
    return _SessionLocal()


def reset_engine() -> None:
    """Dispose the cached engine so the next call re-reads DATABASE_URL."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
