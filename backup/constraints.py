"""
Foreign-key enforcement toggles per SQL dialect.

Restore repopulates tables in an order that cannot satisfy every
constraint while tables are half empty, so enforcement is switched off
on the restore connection for the duration of its transaction and
switched back on afterwards, whatever the outcome.

PostgreSQL needs a role allowed to set session_replication_role.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection
import logging

logger = logging.getLogger(__name__)

# dialect -> (disable, enable)
FOREIGN_KEY_TOGGLES = {
    "sqlite": ("PRAGMA foreign_keys=OFF", "PRAGMA foreign_keys=ON"),
    "postgresql": ("SET session_replication_role = replica", "SET session_replication_role = DEFAULT"),
    "mysql": ("SET FOREIGN_KEY_CHECKS = 0", "SET FOREIGN_KEY_CHECKS = 1"),
    "mariadb": ("SET FOREIGN_KEY_CHECKS = 0", "SET FOREIGN_KEY_CHECKS = 1"),
}


def _toggles(conn: AsyncConnection) -> Optional[Tuple[str, str]]:
    return FOREIGN_KEY_TOGGLES.get(conn.dialect.name)


async def _run_outside_transaction(conn: AsyncConnection, statement: str) -> None:
    # SQLite ignores the pragma inside an open transaction
    if conn.in_transaction():
        await conn.commit()
    await conn.execute(text(statement))
    await conn.commit()


@asynccontextmanager
async def foreign_keys_suspended(conn: AsyncConnection) -> AsyncIterator[None]:
    """
    Disable FK enforcement on this connection; re-enable on exit.

    The body is expected to open and close its own transaction.
    """
    toggles = _toggles(conn)
    if toggles is None:
        logger.warning(f"No foreign-key toggle for dialect {conn.dialect.name}; constraints stay enforced")
        yield
        return

    disable, enable = toggles
    await _run_outside_transaction(conn, disable)
    try:
        yield
    finally:
        try:
            if conn.in_transaction():
                await conn.rollback()
            await _run_outside_transaction(conn, enable)
        except SQLAlchemyError as e:
            # Connection is discarded on close (NullPool), so the setting dies with it
            logger.error(f"Failed to re-enable foreign keys: {e}")
