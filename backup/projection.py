"""
Schema-drift tolerant column projection.

Export and import may run against different versions of the schema.
Rows are restored through the intersection of the live table's columns
and the keys present in the archived row:

- archived columns no longer in the table are dropped silently
- table columns missing from the archive fall back to the table defaults
- derived, read-only export fields never reach the table

The live column set comes from reflecting the database at restore time,
never from the ORM models.
"""

from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy import types as sqltypes
import logging

from backup.tables import DERIVED_FIELDS

logger = logging.getLogger(__name__)


async def reflect_tables(conn: AsyncConnection, names: Sequence[str]) -> Dict[str, Table]:
    """
    Reflect the named tables from the live database.

    Tables that do not exist are left out of the result.
    """
    def _reflect(sync_conn) -> Dict[str, Table]:
        existing = set(inspect(sync_conn).get_table_names())
        wanted = [name for name in names if name in existing]
        metadata = MetaData()
        metadata.reflect(sync_conn, only=wanted)
        return {name: metadata.tables[name] for name in wanted}

    return await conn.run_sync(_reflect)


def project_columns(live_columns: Iterable[str], row_keys: Iterable[str]) -> List[str]:
    """Ordered intersection, in the order of the row's keys"""
    live = set(live_columns)
    return [key for key in row_keys if key in live]


def coerce_value(column_type: sqltypes.TypeEngine, value: Any) -> Any:
    """
    Convert a JSON scalar back to what the column type binds.

    Manifests carry datetimes as ISO text; drivers and SQLAlchemy's own
    type processors want Python objects. Unparseable values are passed
    through for the database to reject.
    """
    if value is None:
        return None
    try:
        if isinstance(column_type, sqltypes.DateTime) and isinstance(value, str):
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        if isinstance(column_type, sqltypes.Date) and isinstance(value, str):
            return date.fromisoformat(value[:10])
        if isinstance(column_type, sqltypes.Time) and isinstance(value, str):
            return time.fromisoformat(value)
    except ValueError:
        return value
    if isinstance(column_type, sqltypes.Boolean) and isinstance(value, int):
        return bool(value)
    return value


class ColumnProjector:
    """
    Projects archived rows onto the live schema.

    Built once per restore; the persistable allow-list of each table is
    computed from the reflected columns minus DERIVED_FIELDS.
    """

    def __init__(self, tables: Mapping[str, Table], derived_fields: Iterable[str] = DERIVED_FIELDS):
        self.tables = dict(tables)
        derived = frozenset(derived_fields)
        self._persistable: Dict[str, List[str]] = {
            name: [column.name for column in table.columns if column.name not in derived]
            for name, table in self.tables.items()
        }

    def persistable_columns(self, table_name: str) -> List[str]:
        return list(self._persistable.get(table_name, []))

    def project_row(self, table_name: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        table = self.tables[table_name]
        columns = project_columns(self._persistable[table_name], row.keys())
        return {name: coerce_value(table.c[name].type, row[name]) for name in columns}

    def project_rows(self, table_name: str, rows: Sequence[Mapping[str, Any]]) -> Optional[List[Dict[str, Any]]]:
        """
        Project every row of a table.

        Returns None when the table should be skipped: it is not in the live
        schema, or no row shares a single column with it.
        """
        if table_name not in self.tables:
            logger.warning(f"Table {table_name} not in live schema, skipping {len(rows)} rows")
            return None

        projected = [self.project_row(table_name, row) for row in rows]
        dropped = sum(1 for row in projected if not row)
        if rows and dropped == len(rows):
            logger.warning(f"No archived column of {table_name} exists in the live schema, skipping table")
            return None
        if dropped:
            logger.warning(f"Dropped {dropped} rows of {table_name} with no live columns")

        return [row for row in projected if row]
