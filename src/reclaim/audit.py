"""Audit storage for reclamation operations.

Stores and retrieves audit logs in YAML format for compliance and troubleshooting.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import yaml

from ..models.deletion_operation import DeletionOperation
from ..models.deletion_record import DeletionRecord


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + "Z"


class AuditStorage:
    """Audit log storage and retrieval.

    Stores one YAML file per operation, organized by year/month. Supports
    querying operations by date range and retrieving a single operation log.

    Storage structure:
        ~/.reaper/audit-logs/
            2025/
                11/
                    operation-op_123.yaml
                    operation-op_456.yaml

    Attributes:
        storage_dir: Base directory for audit logs
    """

    def __init__(self, storage_dir: Optional[str] = None) -> None:
        """Initialize audit storage.

        Args:
            storage_dir: Base directory for audit logs (default: ~/.reaper/audit-logs)
        """
        if storage_dir is None:
            storage_dir = str(Path.home() / ".reaper" / "audit-logs")

        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def log_operation(self, operation: DeletionOperation, records: list[DeletionRecord]) -> Path:
        """Log a reclamation operation with all of its deletion records.

        Overwrites an existing log with the same operation ID.

        Args:
            operation: Operation to log
            records: Deletion records produced by the operation

        Returns:
            Path of the audit file
        """
        year_month_dir = self.storage_dir / str(operation.timestamp.year) / f"{operation.timestamp.month:02d}"
        year_month_dir.mkdir(parents=True, exist_ok=True)

        audit_data = {
            "metadata": {
                "version": "1.0",
                "log_type": "cluster_reclamation",
                "created_at": _iso(datetime.now(timezone.utc)),
            },
            "operation": {
                "operation_id": operation.operation_id,
                "cluster_name": operation.cluster_name,
                "region": operation.region,
                "source": operation.source,
                "timestamp": _iso(operation.timestamp),
                "aws_profile": operation.aws_profile,
                "mode": operation.mode.value,
                "status": operation.status.value,
                "total_resources": operation.total_resources,
                "succeeded_count": operation.succeeded_count,
                "failed_count": operation.failed_count,
                "orphaned_count": operation.orphaned_count,
                "unknown_types": list(operation.unknown_types),
                "report_path": operation.report_path,
                "started_at": _iso(operation.started_at),
                "completed_at": _iso(operation.completed_at),
                "duration_seconds": operation.duration_seconds,
            },
            "records": [
                {
                    "record_id": record.record_id,
                    "operation_id": record.operation_id,
                    "resource_type": record.resource_type,
                    "resource_id": record.resource_id,
                    "display_name": record.resource.display_name,
                    "region": record.resource.region,
                    "state": record.resource.state.value,
                    "outcome": record.outcome.value,
                    "attempts": record.attempts,
                    "timestamp": _iso(record.timestamp),
                    "error_code": record.error_code,
                    "error_message": record.error_message,
                    "warnings": list(record.warnings),
                }
                for record in records
            ],
        }

        audit_file = year_month_dir / f"operation-{operation.operation_id}.yaml"
        with open(audit_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(audit_data, f, default_flow_style=False, sort_keys=False)
        return audit_file

    def get_operation(self, operation_id: str) -> Optional[dict]:
        """Retrieve operation audit log by ID.

        Args:
            operation_id: Operation ID to retrieve

        Returns:
            Audit log dictionary if found, None otherwise
        """
        for audit_file in self.storage_dir.glob(f"*/*/operation-{operation_id}.yaml"):
            with open(audit_file, "r", encoding="utf-8") as f:
                return yaml.safe_load(f)
        return None

    def query_operations(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> list[dict]:
        """Query operations within date range.

        Args:
            since: Start date (inclusive, naive UTC), None for all
            until: End date (inclusive, naive UTC), None for all

        Returns:
            List of operation audit logs matching criteria, oldest first
        """
        results = []

        for year_dir in sorted(self.storage_dir.glob("*")):
            if not year_dir.is_dir():
                continue

            for month_dir in sorted(year_dir.glob("*")):
                if not month_dir.is_dir():
                    continue

                for audit_file in sorted(month_dir.glob("operation-*.yaml")):
                    with open(audit_file, "r", encoding="utf-8") as f:
                        audit_data = yaml.safe_load(f)

                    timestamp = datetime.fromisoformat(audit_data["operation"]["timestamp"].rstrip("Z"))

                    if since and timestamp < since:
                        continue
                    if until and timestamp > until:
                        continue

                    results.append(audit_data)

        results.sort(key=lambda data: data["operation"]["timestamp"])
        return results
