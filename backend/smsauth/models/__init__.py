"""ORM models. Importing this package registers every table on Base.metadata."""

from smsauth.models.base import Base, TimestampMixin
from smsauth.models.identity import Identity

__all__ = [
    "Base",
    "Identity",
    "TimestampMixin",
]
