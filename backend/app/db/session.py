"""Database session management"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from app.models.base import Base
from app.core.config import settings


def enable_sqlite_write_locking(engine: Engine) -> Engine:
    """Make every SQLite transaction take the database write lock up front.

    SQLite ignores ``SELECT ... FOR UPDATE``, so ledger transactions are
    serialized with ``BEGIN IMMEDIATE`` instead. pysqlite's own transaction
    handling is disabled so SQLAlchemy controls BEGIN.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine for ``url``; SQLite engines get write locking"""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        return enable_sqlite_write_locking(create_engine(url, connect_args=connect_args, **kwargs))
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600, **kwargs)


# Create engine
engine = build_engine(settings.DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    Base.metadata.create_all(bind=engine)
