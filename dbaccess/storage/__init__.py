"""
Database storage submodule.

Contains the storage classes for the application tables.
"""

from dbaccess.storage.leads import LeadStorage
from dbaccess.storage.users import UserStorage

__all__ = [
    "LeadStorage",
    "UserStorage",
]
