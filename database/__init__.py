"""Database module for managing the marketplace store.

This module handles:
- PostgreSQL connection pool initialization
- Schema management
- Selection of the active MarketStore (in-memory or PostgreSQL)
- Connection lifecycle
"""

import json
import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from .exceptions import (
    DatabaseError, DatabaseSchemaError, DuplicateKeyError, ConcurrentModificationError,
    ReferencedRowError
)
from .lib.schema_manager import SchemaManager
from .memory import MemoryStore
from .postgres import PostgresStore
from .store import MarketStore

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None
_store: Optional[MarketStore] = None

# sslmode values that require an encrypted connection
SSL_MODES = ('require', 'verify-ca', 'verify-full')


def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for managed PostgreSQL connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context


def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }
    if params.get('sslmode', [''])[0] in SSL_MODES:
        kwargs['ssl'] = _get_ssl_context()

    return kwargs


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Register JSON codecs for the JSONB columns."""
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog'
    )


@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL
    """
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/') or 'projxchange'

    # Connect to the maintenance database
    base_url = parsed._replace(path='/postgres').geturl()
    logger.info(f"Connecting to postgres to create {db_name} if needed")

    conn = await asyncpg.connect(base_url, **_get_connection_kwargs(base_url))
    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
            db_name
        )
        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")
    finally:
        await conn.close()


@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If schema creation or migration fails
    """
    global _pool, _schema_manager

    # Import here to avoid circular imports
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise ValueError("Database URL not provided")

    try:
        await create_database_if_not_exists(url)

        _pool = await asyncpg.create_pool(
            url,
            min_size=2,
            max_size=20,
            max_queries=10000,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            init=_init_connection,
            **_get_connection_kwargs(url)
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize()

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    return _pool


async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool, initializing it on first use.

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool


async def get_store() -> MarketStore:
    """Get the active store, building it from settings on first use."""
    global _store

    if _store is None:
        from config import settings_conf

        backend = settings_conf.get('store_backend', 'memory')
        if backend == 'postgres':
            _store = PostgresStore(await get_pool())
        else:
            _store = MemoryStore()
        logger.info(f"Using {backend} store")

    return _store


def set_store(store: Optional[MarketStore]) -> None:
    """Replace the active store; passing None resets to settings on next use."""
    global _store
    _store = store


async def close() -> None:
    """Close the active store and the database connection pool."""
    global _pool, _schema_manager, _store

    if _store is not None:
        await _store.close()
        _store = None

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None


# Export public interface
__all__ = [
    'init_db', 'get_pool', 'get_store', 'set_store', 'close',
    'MarketStore', 'MemoryStore', 'PostgresStore', 'SchemaManager',
    'DatabaseError', 'DatabaseSchemaError', 'DuplicateKeyError', 'ConcurrentModificationError',
    'ReferencedRowError',
]
