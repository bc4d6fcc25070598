"""Error taxonomy for the PM engine."""

from __future__ import annotations


class PMEngineError(Exception):
    """Base class for PM engine errors."""


class NotFoundError(PMEngineError):
    """Raised when a schedule, trigger, asset or work order does not exist."""

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidConfigurationError(PMEngineError):
    """Raised when trigger fields are absent or inconsistent for its type."""


class CollaboratorFailure(PMEngineError):
    """Raised by collaborators such as notifiers when delivery fails."""
