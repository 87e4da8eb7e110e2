"""
User Storage Module.

Reads and writes application users in the users table. Writable columns are
discovered from information_schema at construction, so new columns need no
code change.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

from dbaccess.schema_constants import (
    APP_SCHEMA_LABEL,
    COL_ID,
    COL_PASSWORD,
    COL_USER_ID,
    COL_USERNAME,
    LEADS_FULL,
    SCHEMA,
    USERS_FULL,
    USERS_TABLE,
)
from dbaccess.schema_manager import SchemaManager
from dbaccess.storage.columns import discover_writable_columns

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """SHA-256 hex digest used for stored passwords."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class UserStorage:
    """Manages rows of the users table."""

    def __init__(self, db: Optional[SchemaManager] = None):
        self.db = db if db is not None else SchemaManager.instance(APP_SCHEMA_LABEL)
        self.table_keys = discover_writable_columns(self.db, USERS_TABLE, SCHEMA)

    # =========================================================================
    # READ
    # =========================================================================

    def get_user(self, user_id: Any) -> Optional[Dict[str, Any]]:
        """Get a user row by id, or None."""
        return self.db.fetch_row(f"SELECT * FROM {USERS_FULL} WHERE {COL_ID} = %s", [user_id])

    def get_user_id_by_username(self, username: str) -> Any:
        """Get the id of the user with this username, or None."""
        return self.db.fetch_one(
            f"SELECT {COL_ID} FROM {USERS_FULL} WHERE {COL_USERNAME} = %s",
            [username],
        )

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        user_id = self.get_user_id_by_username(username)
        if user_id is None:
            logger.debug(f"No user found for username: {username}")
            return None
        return self.get_user(user_id)

    def get_leads(self, user_id: Any) -> Optional[List[Dict[str, Any]]]:
        """All leads owned by a user."""
        if not user_id:
            return None
        return self.db.fetch_all(f"SELECT * FROM {LEADS_FULL} WHERE {COL_USER_ID} = %s", [user_id])

    @staticmethod
    def validate_password(user: Optional[Dict[str, Any]], password: str) -> bool:
        """Check a plain password against a user row."""
        if not user or not user.get(COL_PASSWORD):
            return False
        return hash_password(password) == user[COL_PASSWORD]

    # =========================================================================
    # WRITE
    # =========================================================================

    def create_user(self, user: Dict[str, Any]) -> Any:
        """
        Insert a user. Every writable column must be supplied.

        Returns:
            The new user id, or None if a column is missing or the insert failed
        """
        new_user = {}
        for key in self.table_keys:
            if key not in user:
                logger.warning(f"Cannot create user: missing column {key}")
                return None
            new_user[key] = user[key]

        if not new_user:
            return None
        if COL_PASSWORD in new_user:
            new_user[COL_PASSWORD] = hash_password(new_user[COL_PASSWORD])
        return self.db.insert(USERS_FULL, new_user)

    def update_user(self, user_id: Any, updates: Dict[str, Any]) -> Optional[int]:
        """
        Update writable columns of a user. Unknown keys are ignored.

        Returns:
            Number of rows updated (0 when nothing applicable was given),
            None on failure
        """
        user_updates = {k: v for k, v in updates.items() if k in self.table_keys}
        if not user_updates:
            return 0
        if COL_PASSWORD in user_updates:
            user_updates[COL_PASSWORD] = hash_password(user_updates[COL_PASSWORD])
        return self.db.update(USERS_FULL, user_updates, user_id)
