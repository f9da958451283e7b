"""Data layer — table definitions and operations.

DB_TABLES lists every table used by the application. It is the single
source of truth for storage initialisation (start_storage_thread).
"""

from memberdir.data.members import MEMBERS_TABLE
from memberdir.data.pictures import PICTURES_TABLE

DB_TABLES = [
    MEMBERS_TABLE,
    PICTURES_TABLE,
]
