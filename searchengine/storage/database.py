"""
Database plumbing for the relational store.

Every write goes through ``DatabaseManager.transaction``: it commits the
operation as one unit and retries it when a concurrent writer wins a unique
constraint or holds the database lock. Operations must therefore be safe to
re-run from the start, which they are as long as they look before they
insert.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy import event, func, make_url, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_incrementing

from ..exceptions import DatabaseError, StoreContentionError
from ..utils.config import DatabaseConfig
from .models import Base, DomainName, Keyword, KeywordWebpageRecord, UrlRecord, Webpage


T = TypeVar('T')


class DatabaseManager:
    """Owns the async engine and hands out sessions and retried transactions."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.engine = None
        self.session_factory: Optional[async_sessionmaker] = None
        self.is_sqlite = config.url.startswith('sqlite')
        # SQLite admits a single writer; queue ours instead of spinning on SQLITE_BUSY
        self._write_lock = asyncio.Lock() if self.is_sqlite else None
        self.stats = {
            'transactions': 0,
            'conflicts_retried': 0,
        }

    async def initialize(self):
        """Create the engine and the schema."""
        try:
            connect_args = {'timeout': 30} if self.is_sqlite else {}
            if self.is_sqlite:
                database = make_url(self.config.url).database
                if database and database != ':memory:':
                    Path(database).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_async_engine(
                self.config.url,
                echo=self.config.echo,
                connect_args=connect_args,
            )
            if self.is_sqlite:
                event.listen(self.engine.sync_engine, 'connect', _configure_sqlite)

            self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
            await self.create_tables()
            self.logger.info(f"Database initialized at {self.engine.url.render_as_string(hide_password=True)}")

        except (OSError, OperationalError) as e:
            raise DatabaseError(f"Failed to initialize database: {e}") from e

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read-only session."""
        if not self.session_factory:
            raise DatabaseError("Database not initialized")
        async with self.session_factory() as session:
            yield session

    async def transaction(self, operation: Callable[..., Awaitable[T]], *args: Any) -> T:
        """
        Run ``operation(session, *args)`` in its own transaction.

        Unique-constraint and lock conflicts roll back and re-run the whole
        operation, up to ``max_retries`` attempts.
        """
        if not self.session_factory:
            raise DatabaseError("Database not initialized")

        max_retries = self.config.max_retries
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_conflict),
            stop=stop_after_attempt(max_retries),
            wait=wait_incrementing(start=self.config.retry_delay, increment=self.config.retry_delay),
            before_sleep=self._conflict_retried,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._locked_run(operation, *args)
        except RetryError as e:
            error = e.last_attempt.exception()
            raise StoreContentionError(
                f"{getattr(operation, '__name__', 'operation')} still conflicting "
                f"after {max_retries} attempts: {getattr(error, 'orig', error)}"
            ) from error
        except OperationalError as e:
            raise DatabaseError(f"Database operation failed: {e.orig}") from e

    def _conflict_retried(self, retry_state):
        self.stats['conflicts_retried'] += 1
        error = retry_state.outcome.exception()
        self.logger.debug(
            f"Write conflict (attempt {retry_state.attempt_number}/{self.config.max_retries}): "
            f"{getattr(error, 'orig', error)}"
        )

    async def _locked_run(self, operation, *args):
        if self._write_lock is None:
            return await self._run(operation, *args)
        async with self._write_lock:
            return await self._run(operation, *args)

    async def _run(self, operation, *args):
        async with self.session_factory() as session:
            async with session.begin():
                result = await operation(session, *args)
        self.stats['transactions'] += 1
        return result

    async def flush(self):
        """Make everything committed so far durable in the main database file."""
        if self.engine is None or not self.is_sqlite:
            return
        async with self.engine.connect() as conn:
            await conn.execute(text('PRAGMA wal_checkpoint(PASSIVE)'))

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts of every entity plus transaction counters."""
        async with self.session() as session:
            counts = {}
            for name, model in (
                ('domains', DomainName),
                ('pending_urls', UrlRecord),
                ('webpages', Webpage),
                ('keywords', Keyword),
                ('associations', KeywordWebpageRecord),
            ):
                counts[name] = await session.scalar(select(func.count()).select_from(model))
        return {**counts, **self.stats}

    async def close(self):
        """Close database connections."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            self.logger.info("Database connections closed")


def _is_conflict(error: BaseException) -> bool:
    if isinstance(error, IntegrityError):
        return True
    return isinstance(error, OperationalError) and _is_lock_conflict(error)


def _is_lock_conflict(error: OperationalError) -> bool:
    message = str(error.orig).lower()
    return any(marker in message for marker in ('locked', 'busy', 'deadlock', 'serializ'))


def _configure_sqlite(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.close()
