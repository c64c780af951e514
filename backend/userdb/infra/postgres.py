import logging
import os
from contextlib import contextmanager
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================
# DATABASE_URL wins when set. Otherwise the URL is assembled from the
# CockroachDB/Postgres settings below, one database per network.

DATABASE_ID = "users"

DATABASE_URL = os.getenv("DATABASE_URL")
DB_USER = os.getenv("DB_USER", "politeiawww")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "26257")
DB_NETWORK = os.getenv("DB_NETWORK", "testnet3")
DB_SSLROOTCERT = os.getenv("DB_SSLROOTCERT")
DB_SSLCERT = os.getenv("DB_SSLCERT")
DB_SSLKEY = os.getenv("DB_SSLKEY")

ENCRYPTION_KEY_PATH = os.getenv("USERDB_ENCRYPTION_KEY", "userdb.key")


def build_database_url(
    host: str = DB_HOST,
    port: str = DB_PORT,
    network: str = DB_NETWORK,
    user: str = DB_USER,
    sslrootcert: str | None = DB_SSLROOTCERT,
    sslcert: str | None = DB_SSLCERT,
    sslkey: str | None = DB_SSLKEY,
) -> URL:
    """
    postgresql://<user>@<host>:<port>/users_<network>?sslmode=require&...
    """
    query = {}
    tls = {"sslrootcert": sslrootcert, "sslcert": sslcert, "sslkey": sslkey}
    if any(tls.values()):
        query["sslmode"] = "require"
        query.update({k: v for k, v in tls.items() if v})

    return URL.create(
        "postgresql",
        username=user,
        host=host,
        port=int(port) if port else None,
        database=f"{DATABASE_ID}_{network}",
        query=query,
    )


def get_database_url():
    return make_url(DATABASE_URL) if DATABASE_URL else build_database_url()


# =========================
# ENGINE CONFIGURATION
# =========================

def _serialize_sqlite_transactions(engine):
    # pysqlite's own BEGIN handling is disabled and every transaction takes
    # the write lock up front, so read-modify-write of the paywall counter
    # can't interleave between connections.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url=None, echo=False):
    """
    Build an engine whose isolation is strong enough for paywall index
    allocation: SERIALIZABLE on Postgres/CockroachDB, BEGIN IMMEDIATE on
    SQLite.
    """
    url = make_url(url) if url is not None else get_database_url()

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo,
        )
        _serialize_sqlite_transactions(engine)
    else:
        engine = create_engine(
            url,
            isolation_level="SERIALIZABLE",
            pool_pre_ping=True,  # Check connections before using them
            pool_size=5,         # Maintain 5 connections in the pool
            max_overflow=10,     # Allow 10 extra connections if needed
            pool_recycle=3600,   # Recycle connections every hour
            echo=echo,
        )

    # Never log the password
    logger.info("UserDB host: %s", url.render_as_string(hide_password=True))
    return engine


# =========================
# SESSION CONFIGURATION
# =========================

def make_session_factory(engine):
    return sessionmaker(
        autoflush=False,
        expire_on_commit=False,
        bind=engine
    )


@contextmanager
def transaction(session_factory):
    """
    One transaction. Commits on success, rolls back fully on any error.

    Usage:
        with transaction(factory) as tx:
            tx.add(row)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def read_session(session_factory):
    """Session for lookups; nothing is committed."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def check_connection(engine) -> bool:
    """
    Test DB connection.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")
            return True
    except Exception as e:
        logger.error("Database connection failed: %s", e)
        return False
