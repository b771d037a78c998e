"""Deletion operation model.

Represents one reclamation run with its input source, mode, counts and timing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class OperationMode(Enum):
    """Operation execution mode."""

    DRY_RUN = "dry-run"
    EXECUTE = "execute"


class OperationStatus(Enum):
    """Operation execution status with state transitions."""

    PLANNED = "planned"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class DeletionOperation:
    """Deletion operation entity.

    State transitions:
        planned → executing → completed (residue empty)
        planned → executing → partial (some resources remain)
        planned → executing → failed (nothing could be reclaimed)

    Attributes:
        operation_id: Unique identifier for the operation
        cluster_name: Cluster identifier
        region: AWS region
        source: Resource source (live, report, records, vpc)
        timestamp: When operation was initiated (UTC)
        mode: dry-run or execute
        status: Current execution status
        total_resources: Resources in the deletion plan
        succeeded_count: Resources confirmed deleted
        failed_count: Resources whose deletion failed
        orphaned_count: Resources reported deleted but still present
        aws_profile: AWS profile used for credentials (optional)
        report_path: Residue report written for this run (optional)
        unknown_types: Resource types discovery could not list (optional)
        started_at: When execution started (optional)
        completed_at: When execution completed (optional)
        duration_seconds: Total execution duration (optional)
    """

    operation_id: str
    cluster_name: str
    region: str
    source: str
    timestamp: datetime
    mode: OperationMode
    status: OperationStatus
    total_resources: int
    succeeded_count: int = 0
    failed_count: int = 0
    orphaned_count: int = 0
    aws_profile: Optional[str] = None
    report_path: Optional[str] = None
    unknown_types: list[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    @property
    def residue_count(self) -> int:
        return self.failed_count + self.orphaned_count

    @property
    def converged(self) -> bool:
        """True when an executed run left nothing behind."""
        return self.mode == OperationMode.EXECUTE and self.status == OperationStatus.COMPLETED

    def validate(self) -> bool:
        """Validate operation invariants.

        Validation rules:
            - succeeded_count + failed_count + orphaned_count == total_resources (execute mode)
            - completed_at must be after started_at
            - dry-run mode must have planned status

        Returns:
            True if validation passes

        Raises:
            ValueError: If any validation rule fails
        """
        if self.mode == OperationMode.EXECUTE and self.status != OperationStatus.EXECUTING:
            if self.succeeded_count + self.failed_count + self.orphaned_count != self.total_resources:
                raise ValueError("Resource counts don't match total")

        if self.completed_at and self.started_at:
            if self.completed_at < self.started_at:
                raise ValueError("Completion time before start time")

        if self.mode == OperationMode.DRY_RUN and self.status != OperationStatus.PLANNED:
            raise ValueError("Dry-run mode must have planned status")

        return True
