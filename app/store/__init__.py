"""
Qub Drive Identity - Store Module

Credential store interface and its implementations.
"""

from app.store.base import CredentialStore, DuplicateRecordError
from app.store.memory import InMemoryCredentialStore
from app.store.sqlalchemy_store import SqlAlchemyCredentialStore

__all__ = [
    "CredentialStore",
    "DuplicateRecordError",
    "InMemoryCredentialStore",
    "SqlAlchemyCredentialStore",
]
