"""
Declarative base shared by all Catalog Sync models.
"""

import uuid

from sqlalchemy.orm import declarative_base


Base = declarative_base()


def new_id() -> str:
    """Generate a local primary key."""
    return str(uuid.uuid4())
