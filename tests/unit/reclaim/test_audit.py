"""Tests for AuditStorage class.

Test coverage for audit log storage and retrieval with YAML format.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
import yaml

from src.models.cluster_resource import ResourceState, ResourceType
from src.models.deletion_operation import DeletionOperation, OperationMode, OperationStatus
from src.models.deletion_record import DeletionRecord, OutcomeKind
from src.reclaim.audit import AuditStorage
from tests.fixtures.clusters import create_resource


def _operation(operation_id: str, timestamp: datetime, **overrides) -> DeletionOperation:
    values = dict(
        operation_id=operation_id,
        cluster_name="test-cluster",
        region="us-east-1",
        source="live",
        timestamp=timestamp,
        mode=OperationMode.EXECUTE,
        status=OperationStatus.COMPLETED,
        total_resources=0,
    )
    values.update(overrides)
    return DeletionOperation(**values)


class TestAuditStorage:
    """Test suite for AuditStorage class."""

    @pytest.fixture
    def temp_storage_dir(self, tmp_path: Path) -> Path:
        """Create temporary storage directory for tests."""
        storage_dir = tmp_path / ".reaper" / "audit-logs"
        storage_dir.mkdir(parents=True)
        return storage_dir

    @pytest.fixture
    def audit_storage(self, temp_storage_dir: Path) -> AuditStorage:
        """Create AuditStorage instance with temp directory."""
        return AuditStorage(storage_dir=str(temp_storage_dir))

    def test_init_creates_storage_directory(self, tmp_path: Path) -> None:
        """Test initialization creates audit-logs directory if missing."""
        storage_dir = tmp_path / ".reaper-test" / "audit-logs"
        assert not storage_dir.exists()

        AuditStorage(storage_dir=str(storage_dir))

        assert storage_dir.is_dir()

    def test_log_operation_creates_yaml_file(self, audit_storage: AuditStorage, temp_storage_dir: Path) -> None:
        """Test logging operation creates YAML file with correct structure."""
        operation = _operation(
            "op_123",
            datetime(2025, 11, 11, 15, 30, 0),
            status=OperationStatus.PARTIAL,
            total_resources=2,
            succeeded_count=1,
            failed_count=1,
            report_path="/tmp/verification-report-test-cluster-20251111-153000.txt",
        )

        deleted = create_resource(ResourceType.SUBNET, "subnet-1")
        deleted.state = ResourceState.DELETED
        failed = create_resource(ResourceType.VPC, "vpc-1")
        failed.state = ResourceState.FAILED
        records = [
            DeletionRecord(
                record_id="rec_001",
                operation_id="op_123",
                resource=deleted,
                outcome=OutcomeKind.DELETED,
                timestamp=datetime(2025, 11, 11, 15, 31, 0),
                attempts=1,
            ),
            DeletionRecord(
                record_id="rec_002",
                operation_id="op_123",
                resource=failed,
                outcome=OutcomeKind.CONFLICT,
                timestamp=datetime(2025, 11, 11, 15, 31, 5),
                attempts=5,
                error_code="DependencyViolation",
                warnings=["attempted with 1 failed dependent(s)"],
            ),
        ]

        path = audit_storage.log_operation(operation, records)

        assert path == temp_storage_dir / "2025" / "11" / "operation-op_123.yaml"
        with open(path, "r") as f:
            data = yaml.safe_load(f)

        assert data["metadata"]["version"] == "1.0"
        assert data["metadata"]["log_type"] == "cluster_reclamation"
        assert data["operation"]["operation_id"] == "op_123"
        assert data["operation"]["status"] == "partial"
        assert data["operation"]["timestamp"] == "2025-11-11T15:30:00Z"
        assert data["operation"]["report_path"].endswith(".txt")
        assert len(data["records"]) == 2
        assert data["records"][0]["resource_type"] == "Subnet"
        assert data["records"][0]["state"] == "deleted"
        assert data["records"][1]["outcome"] == "conflict"
        assert data["records"][1]["attempts"] == 5
        assert data["records"][1]["error_code"] == "DependencyViolation"
        assert data["records"][1]["warnings"] == ["attempted with 1 failed dependent(s)"]

    def test_log_operation_overwrites_existing_file(self, audit_storage: AuditStorage) -> None:
        """Test logging operation overwrites existing audit log."""
        operation = _operation("op_456", datetime(2025, 11, 11))
        audit_storage.log_operation(operation, [])

        operation.status = OperationStatus.FAILED
        path = audit_storage.log_operation(operation, [])

        with open(path, "r") as f:
            data = yaml.safe_load(f)
        assert data["operation"]["status"] == "failed"

    def test_get_operation(self, audit_storage: AuditStorage) -> None:
        """Test retrieving a logged operation by ID."""
        audit_storage.log_operation(_operation("op_789", datetime(2025, 10, 1, 8, 0, 0)), [])

        data = audit_storage.get_operation("op_789")

        assert data is not None
        assert data["operation"]["cluster_name"] == "test-cluster"

    def test_get_operation_missing(self, audit_storage: AuditStorage) -> None:
        """Test unknown operation IDs return None."""
        assert audit_storage.get_operation("op_nope") is None

    def test_query_operations_by_date(self, audit_storage: AuditStorage) -> None:
        """Test date range filtering and ordering."""
        audit_storage.log_operation(_operation("op_b", datetime(2025, 11, 5)), [])
        audit_storage.log_operation(_operation("op_a", datetime(2025, 9, 20)), [])
        audit_storage.log_operation(_operation("op_c", datetime(2025, 12, 1)), [])

        all_ops = audit_storage.query_operations()
        assert [op["operation"]["operation_id"] for op in all_ops] == ["op_a", "op_b", "op_c"]

        recent = audit_storage.query_operations(since=datetime(2025, 11, 1))
        assert [op["operation"]["operation_id"] for op in recent] == ["op_b", "op_c"]

        window = audit_storage.query_operations(since=datetime(2025, 10, 1), until=datetime(2025, 11, 30))
        assert [op["operation"]["operation_id"] for op in window] == ["op_b"]

    def test_query_ignores_stray_files(self, audit_storage: AuditStorage, temp_storage_dir: Path) -> None:
        """Test non-directory entries at the top level are skipped."""
        (temp_storage_dir / "README").write_text("not an audit log")
        audit_storage.log_operation(_operation("op_x", datetime(2025, 11, 5)), [])

        assert len(audit_storage.query_operations()) == 1
