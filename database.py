# database.py - Database configuration
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()

SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fleet_database.sqlite")

Base = declarative_base()


def create_db_engine(url: str, **kwargs):
    """Build an engine for ``url``.

    SQLite gets a cross-thread connection (FastAPI runs sync handlers in a
    threadpool); server databases get a pre-pinged connection pool.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        sqlite_engine = create_engine(url, connect_args=connect_args, **kwargs)
        _begin_on_first_statement(sqlite_engine)
        return sqlite_engine

    kwargs.setdefault("pool_pre_ping", True)  # Enable connection health checks
    kwargs.setdefault("pool_size", 5)         # Set connection pool size
    kwargs.setdefault("max_overflow", 10)     # Maximum number of connections to create beyond pool_size
    return create_engine(url, **kwargs)


def _begin_on_first_statement(sqlite_engine):
    # pysqlite opens a transaction only at the first write; open it at
    # session begin instead so guard reads share the transaction
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


engine = create_db_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_engine():
    """Create missing tables on the process-wide engine."""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")
        raise


def dispose_engine():
    engine.dispose()
    logger.info("Database connections closed")


# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """Commit everything done inside the block, or nothing.

    Multi-write operations (stop transfers, guarded deletes, account
    creation, imports) run inside one of these so a failure at any step
    leaves the database as it was before the block.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
