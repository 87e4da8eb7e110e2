"""
Schema constants for the application tables.

The schema name is configurable via the DB_SCHEMA env variable; the schema
label selects the credential set in the connection cache.
"""

import os
from dotenv import load_dotenv

# Load environment variables BEFORE reading DB_SCHEMA
load_dotenv()

# =============================================================================
# SCHEMA - Configurable via env
# =============================================================================

SCHEMA = os.getenv("DB_SCHEMA", "app")
APP_SCHEMA_LABEL = os.getenv("DB_APP_SCHEMA_LABEL", "APP")


# =============================================================================
# TABLE NAMES
# =============================================================================

USERS_TABLE = "users"
USERS_FULL = f"{SCHEMA}.{USERS_TABLE}"

LEADS_TABLE = "leads"
LEADS_FULL = f"{SCHEMA}.{LEADS_TABLE}"


# =============================================================================
# COLUMNS
# =============================================================================

COL_ID = "id"
COL_DATE_CREATED = "date_created"
COL_USER_ID = "user_id"
COL_USERNAME = "username"
COL_PASSWORD = "password"

# Managed by the database, never written by storage classes
GENERATED_COLUMNS = (COL_ID, COL_DATE_CREATED)
