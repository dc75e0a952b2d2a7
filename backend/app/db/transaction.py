"""
Transaction boundary for domain operations.

Every state-changing operation runs inside ``atomic(db)``: read current state,
validate, write every affected row, then commit. Any exception rolls the whole
unit back, and storage-level failures are translated into the domain error
taxonomy so callers never see a partial write.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backend.app.core.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed block as a single transaction.

    Usage:
        async with atomic(db):
            package.status = PackageStatus.ACCEPTED
            await db.flush()

    Raises:
        ConcurrentModificationError: optimistic version check failed
        ValidationFailedError: a database constraint rejected the write
        PersistenceError: the storage layer itself failed
    """
    try:
        yield db
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        logger.warning("Optimistic lock conflict: %s", exc)
        raise ConcurrentModificationError() from exc
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Integrity violation: %s", exc.orig)
        raise ValidationFailedError(
            "The write violates a data integrity constraint",
            details={"reason": str(exc.orig)}
        ) from exc
    except (DBAPIError, SQLAlchemyError) as exc:
        await db.rollback()
        logger.error("Storage failure, transaction rolled back: %s", exc)
        raise PersistenceError() from exc
    except BaseException:
        await db.rollback()
        raise
