"""
Poker Persistence Database Configuration
PostgreSQL via asyncpg - SQLAlchemy 2.0 Async
"""
import os
import ssl
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import event
import logging

logger = logging.getLogger(__name__)

# Get DATABASE_URL from environment
DATABASE_URL = os.environ.get('DATABASE_URL', '')


def convert_url_for_asyncpg(url: str) -> str:
    """Convert standard PostgreSQL URL to asyncpg-compatible format"""
    if not url:
        return url

    parsed = urlparse(url)

    # Other drivers (sqlite+aiosqlite for tests) pass through untouched
    if not parsed.scheme.startswith('postgres'):
        return url

    # Parse query params and remove sslmode/channel_binding (asyncpg doesn't support them)
    query_params = parse_qs(parsed.query)
    query_params.pop('sslmode', None)
    query_params.pop('channel_binding', None)

    new_query = urlencode({k: v[0] for k, v in query_params.items()})

    return urlunparse((
        'postgresql+asyncpg',
        parsed.netloc,
        parsed.path,
        parsed.params,
        new_query,
        parsed.fragment
    ))


def is_sqlite_url(url: str) -> bool:
    return url.startswith('sqlite')


def _configure_sqlite_connection(dbapi_connection, connection_record):
    # Game deletes rely on ON DELETE CASCADE
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
    dbapi_connection.isolation_level = None


def _begin_sqlite_transaction(conn):
    conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine for a Postgres or SQLite URL"""
    url = convert_url_for_asyncpg(url)

    if is_sqlite_url(url):
        new_engine = create_async_engine(url, echo=False, **kwargs)
        event.listen(new_engine.sync_engine, "connect", _configure_sqlite_connection)
        event.listen(new_engine.sync_engine, "begin", _begin_sqlite_transaction)
        return new_engine

    connect_args = {}
    if os.environ.get('DATABASE_SSL', 'true').lower() != 'false':
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE
        connect_args["ssl"] = ssl_context

    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        connect_args=connect_args,
        **kwargs
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL) if DATABASE_URL else None


class Base(DeclarativeBase):
    pass


async def init_db(bind: AsyncEngine = None):
    """Initialize database - create all tables"""
    bind = bind or engine
    if not bind:
        logger.error("Database engine not initialized. Check DATABASE_URL.")
        return

    # Register every mapped table on Base.metadata
    from . import models, poker_models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database initialized with poker tables")
