"""Deletion record model.

Outcome of reclaiming a single resource, with attempt count and error detail.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .cluster_resource import Resource


class OutcomeKind(Enum):
    """Classification of a provider call result."""

    DELETED = "deleted"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    TIMEOUT = "timeout"
    PLANNED = "planned"

    @property
    def is_success(self) -> bool:
        """NotFound counts as success: the resource is already gone."""
        return self in (OutcomeKind.DELETED, OutcomeKind.NOT_FOUND)

    @property
    def is_retryable(self) -> bool:
        return self in (OutcomeKind.CONFLICT, OutcomeKind.TRANSIENT)


@dataclass
class DeletionRecord:
    """Deletion record entity.

    Pairs a resource with the final outcome of its deletion. Records are
    produced by the deleter, updated by the verifier (TIMEOUT for orphans)
    and stored in the audit log.

    Validation rules:
        - success outcomes carry no error_code
        - PERMANENT, CONFLICT, TRANSIENT and TIMEOUT require error_code
        - attempts is 0 only for PLANNED (dry run)

    Attributes:
        record_id: Unique identifier for this record
        operation_id: Parent operation identifier
        resource: The resource this record describes
        outcome: Final outcome classification
        timestamp: When the final attempt finished (UTC)
        attempts: Number of delete calls issued
        error_code: AWS error code of the last failure (optional)
        error_message: Human-readable error of the last failure (optional)
        warnings: Non-fatal notes (e.g. VPC attempted with failed dependents)
    """

    record_id: str
    operation_id: str
    resource: Resource
    outcome: OutcomeKind
    timestamp: datetime
    attempts: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def resource_type(self) -> str:
        return self.resource.resource_type.value

    @property
    def resource_id(self) -> str:
        return self.resource.resource_id

    def validate(self) -> bool:
        """Validate record invariants.

        Returns:
            True if validation passes

        Raises:
            ValueError: If any validation rule fails
        """
        if self.outcome.is_success and self.error_code:
            raise ValueError("Successful outcome cannot have an error code")

        if not self.outcome.is_success and self.outcome != OutcomeKind.PLANNED:
            if not self.error_code:
                raise ValueError(f"{self.outcome.value} outcome requires error_code")

        if self.outcome == OutcomeKind.PLANNED:
            if self.attempts != 0:
                raise ValueError("Planned outcome cannot have delete attempts")
        elif self.attempts < 1:
            raise ValueError("Executed outcome requires at least one attempt")

        return True
