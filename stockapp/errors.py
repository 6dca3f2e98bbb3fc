"""
Domain exceptions for inventory operations.

Every error carries a stable machine-readable ``kind`` and the HTTP status
the JSON error handler responds with. Services raise these; routes never
catch them.
"""

from __future__ import annotations


class InventoryError(Exception):
    """Base exception for all inventory domain errors"""

    kind = "inventory_error"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, str | None]:
        return {"error": self.message, "kind": self.kind, "field": self.field}


class ValidationError(InventoryError):
    """Raised when input is malformed or missing"""

    kind = "validation"
    status_code = 400


class NotFoundError(InventoryError):
    """Raised when a referenced item, location or movement is absent or inactive"""

    kind = "not_found"
    status_code = 404


class ConflictError(InventoryError):
    """Raised when a record is not in the state a transition requires"""

    kind = "conflict"
    status_code = 400


class StorageError(InventoryError):
    """Raised when a transaction could not be committed; nothing was applied"""

    kind = "storage"
    status_code = 500
