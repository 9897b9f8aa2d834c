"""
Error taxonomy shared by all services.

Handlers catch CityCupError and show `str(exc)` to the operator; anything
else bubbles up to the dispatcher's global error handler.
"""
from __future__ import annotations


class CityCupError(Exception):
    """Base class for expected, operator-facing failures."""


class InvalidInputError(CityCupError):
    """Malformed or out-of-bounds input. Raised before any mutation."""


class NotFoundError(CityCupError):
    """A referenced competition / city / round / certificate does not exist."""

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity    = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found (id={entity_id})")


class StateConflictError(CityCupError):
    """The operation is not allowed in the entity's current state."""


class PermissionDeniedError(CityCupError):
    """The caller lacks the privilege the operation requires."""
