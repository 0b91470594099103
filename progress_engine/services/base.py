"""
Base service class for the progress engine.

Provides async database session management, storage timeouts, error
translation and row-level conflict retries for every storage operation.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Any, Optional
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.config import Config
from progress_engine.utils.exceptions import ConflictRetry, StorageUnavailable

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for all services with async database session management."""
    
    def __init__(self, session_factory, storage_timeout: Optional[float] = None,
                 max_retries: Optional[int] = None):
        """
        Initialize base service with session factory.
        
        Args:
            session_factory: Async session factory from Database class
            storage_timeout: Seconds allowed for one storage operation
            max_retries: Attempts for an operation that hit a row conflict
        """
        self.session_factory = session_factory
        self.storage_timeout = storage_timeout or Config.STORAGE_TIMEOUT_SECONDS
        self.max_retries = max_retries or Config.CONFLICT_MAX_RETRIES
    
    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for async database operations."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
    
    async def execute_with_retry(self, func: Callable, max_retries: Optional[int] = None) -> Any:
        """Execute a function, retrying only when it reports a row conflict."""
        max_retries = max_retries or self.max_retries
        for attempt in range(max_retries):
            try:
                return await func()
            except ConflictRetry as e:
                if attempt == max_retries - 1:
                    raise
                logger.warning(f"Retry attempt {attempt + 1} for {func.__name__}: {e}")
                await asyncio.sleep(min(0.02 * (2 ** attempt), 0.2))
    
    async def run_atomic(self, operation: str, func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run one atomic storage operation under the storage timeout.
        
        Database failures are translated into the engine error taxonomy:
        unique-constraint races and lock contention become ConflictRetry (and
        are retried here), everything else becomes StorageUnavailable.
        """
        async def attempt():
            try:
                return await asyncio.wait_for(func(), timeout=self.storage_timeout)
            except IntegrityError as e:
                raise ConflictRetry(operation, str(e.orig)) from e
            except OperationalError as e:
                if 'locked' in str(e.orig).lower():
                    raise ConflictRetry(operation, str(e.orig)) from e
                raise StorageUnavailable(operation, str(e.orig)) from e
            except DBAPIError as e:
                raise StorageUnavailable(operation, str(e.orig)) from e
            except asyncio.TimeoutError as e:
                raise StorageUnavailable(operation, f"timed out after {self.storage_timeout}s") from e
        
        attempt.__name__ = operation
        return await self.execute_with_retry(attempt)
