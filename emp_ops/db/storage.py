"""Storage client owning the database connection lifecycle.

Services never open sessions themselves: they receive a store built on a
``StorageClient`` and every unit of work goes through ``StorageClient.run``.
That gives one place for commit/rollback, the reconnect-once policy and the
translation of driver failures into ``StorageError``.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from emp_ops.core.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_disconnect(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, OperationalError)


class StorageClient:
    """Runs units of work against the database, reconnecting once on a dead connection."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine,
    ):
        self._session_factory = session_factory
        self._engine = engine

    async def run(self, operation: Callable[[AsyncSession], Awaitable[T]], name: str) -> T:
        """
        Execute ``operation`` in its own session and commit it.

        A disconnect (invalidated connection / operational error) disposes the
        pool and retries the operation exactly once. Any other database failure,
        or a second disconnect, raises StorageError. Domain exceptions raised by
        the operation propagate unchanged (the session is rolled back).
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._session_factory() as session:
                    result = await operation(session)
                    await session.commit()
                    return result
            except SQLAlchemyError as exc:
                if attempt == 1 and _is_disconnect(exc):
                    logger.warning(
                        "Storage connection lost during %s, reconnecting",
                        name,
                        extra={"event_type": "storage.reconnect", "operation": name},
                    )
                    await self._engine.dispose()
                    continue
                logger.error(
                    "Storage operation %s failed: %s",
                    name,
                    exc,
                    extra={"event_type": "storage.error", "operation": name},
                )
                raise StorageError(f"{name} failed: {exc}") from exc

    async def ping(self) -> bool:
        """Health check: True when a trivial query succeeds."""

        async def _select_one(session: AsyncSession) -> bool:
            await session.execute(text("SELECT 1"))
            return True

        try:
            return await self.run(_select_one, "ping")
        except StorageError:
            return False
