"""
Snapshot of the full relational state as one self-describing document
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection
import logging

from backup.projection import reflect_tables
from backup.tables import SNAPSHOT_TABLES, TAGS_LIST_FIELD
from core.exceptions import ExportError

logger = logging.getLogger(__name__)

# table name -> rows (column name -> scalar)
SnapshotDocument = Dict[str, List[Dict[str, Any]]]


class SnapshotBuilder:
    """
    Reads every snapshot table in full.

    Read-only and not wrapped in a transaction: concurrent writers may be
    partially visible, which is acceptable for a backup export.
    """

    def __init__(self, conn: AsyncConnection):
        self.conn = conn

    async def build(self) -> SnapshotDocument:
        """
        Returns:
            Rows per table in SNAPSHOT_TABLES order; parts rows carry the
            derived tags_list field

        Raises:
            ExportError: If any table cannot be read
        """
        current_table: Optional[str] = None
        try:
            tables = await reflect_tables(self.conn, SNAPSHOT_TABLES)
            document: SnapshotDocument = {}

            for name in SNAPSHOT_TABLES:
                current_table = name
                table = tables.get(name)
                if table is None:
                    logger.warning(f"Table {name} missing from database, exported as empty")
                    document[name] = []
                    continue

                query = select(table)
                primary_key = list(table.primary_key.columns)
                if primary_key:
                    query = query.order_by(*primary_key)

                result = await self.conn.execute(query)
                document[name] = [dict(row) for row in result.mappings()]

            current_table = "part_tags"
            tag_lists = await self._tag_lists(tables)
            for part in document.get("parts", []):
                part[TAGS_LIST_FIELD] = tag_lists.get(part.get("id"))

        except SQLAlchemyError as e:
            raise ExportError(
                "Failed to read database for export",
                context={"table_name": current_table},
                original_exception=e
            )

        logger.info(
            "Snapshot built: " + ", ".join(f"{name}={len(rows)}" for name, rows in document.items())
        )
        return document

    async def _tag_lists(self, tables) -> Dict[Any, str]:
        """Comma-joined tag names per part id, ordered by tag id"""
        part_tags = tables.get("part_tags")
        tags = tables.get("tags")
        if part_tags is None or tags is None:
            return {}

        query = (
            select(part_tags.c.part_id, tags.c.name)
            .join(tags, tags.c.id == part_tags.c.tag_id)
            .order_by(part_tags.c.part_id, tags.c.id)
        )
        result = await self.conn.execute(query)

        names = defaultdict(list)
        for part_id, tag_name in result:
            names[part_id].append(tag_name)
        return {part_id: ",".join(tag_names) for part_id, tag_names in names.items()}
