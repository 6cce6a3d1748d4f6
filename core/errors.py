"""Typed errors raised by the mutation engine and the sync layer.

Copyright (c) Bryn Gwalad 2025
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for all inventory errors. ``code`` is machine-readable."""

    code = "INVENTORY_ERROR"

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.identifier = identifier


class DuplicateIdentifierError(InventoryError):
    """A create or rename targeted an identifier that is already in use."""

    code = "DUPLICATE_IDENTIFIER"


class NotFoundError(InventoryError):
    """A serial number or warehouse id does not exist."""

    code = "NOT_FOUND"


class ValidationError(InventoryError):
    """A required field is missing or a value is not acceptable."""

    code = "VALIDATION_ERROR"


class TransportError(InventoryError):
    """Network failure, malformed response or parse failure talking to the mirror."""

    code = "TRANSPORT_ERROR"
