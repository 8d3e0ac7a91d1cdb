"""Named persistence operations and their SQLAlchemy implementation."""

from glocal.monetization.persistence.client import Operation, PersistenceClient
from glocal.monetization.persistence.procedures import SQLAlchemyPersistenceClient

__all__ = ["Operation", "PersistenceClient", "SQLAlchemyPersistenceClient"]
