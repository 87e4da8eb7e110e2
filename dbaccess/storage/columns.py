"""Writable column discovery for storage classes."""

import logging
from typing import List

from dbaccess.schema_constants import GENERATED_COLUMNS

logger = logging.getLogger(__name__)


def discover_writable_columns(db, table: str, schema: str) -> List[str]:
    """
    List the columns of a table that storage classes may write.

    Args:
        db: SchemaManager for the table's schema label
        table: Table name (without schema)
        schema: Schema name

    Returns:
        Column names in table order, excluding generated columns
    """
    excluded = ", ".join(f"'{col}'" for col in GENERATED_COLUMNS)
    columns = db.fetch_column(
        f"""
        SELECT column_name
        FROM information_schema.columns
        WHERE table_name = %s
          AND table_schema = %s
          AND column_name NOT IN ({excluded})
        ORDER BY ordinal_position
        """,
        [table, schema],
    )
    if columns is None:
        logger.error(f"Could not read columns of {schema}.{table}")
        return []
    return list(columns)
