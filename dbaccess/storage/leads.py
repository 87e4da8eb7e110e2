"""
Lead Storage Module.

Leads are created with every writable column of the leads table; the column
list is discovered from information_schema at construction.
"""

import logging
from typing import Any, Dict, List, Optional

from dbaccess.schema_constants import (
    APP_SCHEMA_LABEL,
    COL_DATE_CREATED,
    COL_ID,
    LEADS_FULL,
    LEADS_TABLE,
    SCHEMA,
)
from dbaccess.schema_manager import SchemaManager
from dbaccess.storage.columns import discover_writable_columns

logger = logging.getLogger(__name__)


class LeadStorage:
    """Manages rows of the leads table."""

    def __init__(self, db: Optional[SchemaManager] = None):
        self.db = db if db is not None else SchemaManager.instance(APP_SCHEMA_LABEL)
        self.table_keys = discover_writable_columns(self.db, LEADS_TABLE, SCHEMA)

    def get_lead(self, lead_id: Any) -> Optional[Dict[str, Any]]:
        """Get a lead by id, or None."""
        return self.db.fetch_row(f"SELECT * FROM {LEADS_FULL} WHERE {COL_ID} = %s", [lead_id])

    def list_leads(self, limit: int = 100, offset: int = 0) -> Optional[List[Dict[str, Any]]]:
        """Newest leads first."""
        return self.db.fetch_all(
            f"SELECT * FROM {LEADS_FULL} ORDER BY {COL_DATE_CREATED} DESC LIMIT %s OFFSET %s",
            [limit, offset],
        )

    def create_lead(self, lead: Dict[str, Any]) -> Any:
        """
        Insert a lead.

        Args:
            lead: Column -> value map; must contain every writable column

        Returns:
            The new lead id, or None if a column is missing or the insert failed
        """
        new_lead = {}
        for key in self.table_keys:
            if key not in lead:
                logger.warning(f"Cannot create lead: missing column {key}")
                return None
            new_lead[key] = lead[key]

        if not new_lead:
            return None

        lead_id = self.db.insert(LEADS_FULL, new_lead)
        if lead_id is not None:
            logger.info(f"Created lead: id={lead_id}")
        return lead_id

    def create_leads(self, leads: List[Dict[str, Any]]) -> Optional[int]:
        """Insert several leads in one statement. Returns the number inserted."""
        rows = []
        for lead in leads:
            missing = [key for key in self.table_keys if key not in lead]
            if missing:
                logger.warning(f"Cannot create leads: missing columns {missing}")
                return None
            rows.append({key: lead[key] for key in self.table_keys})

        if not rows or not self.table_keys:
            return None
        return self.db.multi_insert(LEADS_FULL, rows)
