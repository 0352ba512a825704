from sqlalchemy import event
from sqlmodel import SQLModel, Session, create_engine
from .config import DATABASE_URL

# Execution option marking a transaction that will write
WRITE_LOCK = "crackzone_write_lock"


def configure_sqlite(engine):
    """Give SQLite explicit transactions and a write lock for mutations.

    SQLite has no row locks, so `SELECT ... FOR UPDATE` is a no-op there.
    Transactions opened through `begin_write` start with BEGIN IMMEDIATE,
    which serializes writers and keeps commit-time capacity checks honest.
    Everything else starts a deferred transaction. WAL mode lets those
    readers run while a writer holds the lock.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    @event.listens_for(engine, "begin")
    def _begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str = DATABASE_URL, **kwargs):
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        return configure_sqlite(
            create_engine(url, echo=False, connect_args=connect_args, **kwargs)
        )
    return create_engine(url, echo=False, pool_pre_ping=True, **kwargs)


engine = build_engine()


def begin_write(db: Session) -> None:
    """Start the session's next transaction as a write transaction.

    A read transaction still open on the session is ended first. Other
    backends ignore the option and rely on row locks.
    """
    if db.in_transaction():
        db.commit()
    db.connection(execution_options={WRITE_LOCK: True})


def create_db_and_tables():
    """Create all database tables."""
    # Registers every table on SQLModel.metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database sessions."""
    with Session(engine) as session:
        yield session
