"""All EcoSync database models.

Import all models here so SQLAlchemy can discover them.
"""

from ecosync.models.base import Base, BaseModel  # noqa: F401

# Local durable store
from ecosync.models.storage import KeyValueEntry  # noqa: F401
