"""
Exceptions raised by the data layer.
"""


class StorageError(Exception):
    """Base exception for data layer errors."""
    pass


class DataFetchError(StorageError):
    """Raised when candidates cannot be read; fatal for the whole scan run."""

    def __init__(self, message: str, source: str = None):
        super().__init__(message)
        self.source = source


class EntityNotFoundError(StorageError):
    """Raised when an entity to update does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id
