"""
Data layer: repository interface and its in-memory and SQL implementations.
"""

from .exceptions import StorageError, DataFetchError, EntityNotFoundError
from .repository import AlertRepository
from .memory import InMemoryRepository
from .sql import SqlAlertRepository

__all__ = [
    'StorageError',
    'DataFetchError',
    'EntityNotFoundError',
    'AlertRepository',
    'InMemoryRepository',
    'SqlAlertRepository'
]
