"""Cluster cleaner for reclamation runs.

Main orchestrator: discovery, ordering, deletion, verification and residue
reporting, with dry-run and execute modes.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from ..models.cluster_resource import Cluster, Resource, ResourceState, ResourceType
from ..models.deletion_operation import DeletionOperation, OperationMode, OperationStatus
from ..models.deletion_record import DeletionRecord
from .audit import AuditStorage
from .deleter import ResourceDeleter, RetryPolicy
from .dependency import DependencyResolver
from .discovery import DiscoveryResult, ResourceDiscovery
from .provider import AwsProvider
from .report import generate, write_report
from .verifier import ConvergenceVerifier, VerifyPolicy

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Everything a reclamation run produced.

    Attributes:
        operation: Run summary
        cluster: Cluster the run worked on
        records: Per-resource deletion records (PLANNED in dry runs)
        residue: Resources still present after verification
        report_path: Residue report, if one was written
        unknown_types: Types discovery could not list
    """

    operation: DeletionOperation
    cluster: Cluster
    records: list[DeletionRecord] = field(default_factory=list)
    residue: list[Resource] = field(default_factory=list)
    report_path: Optional[Path] = None
    unknown_types: list[ResourceType] = field(default_factory=list)


class ResourceCleaner:
    """Cluster reclamation orchestrator.

    Phases run strictly in sequence: discovery completes before ordering,
    ordering before deletion, deletion before verification.

    Attributes:
        provider: AWS provider for the target region
        audit_storage: Audit log storage (optional)
        reports_dir: Directory for residue reports (optional; no report without it)
        always_report: Write a report even when the residue is empty
        resolver: Dependency resolver
        discovery: Resource discovery
        deleter: Deletion executor
        verifier: Convergence verifier
    """

    def __init__(
        self,
        provider: AwsProvider,
        audit_storage: Optional[AuditStorage] = None,
        reports_dir: Optional[Union[str, Path]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        verify_policy: Optional[VerifyPolicy] = None,
        aws_profile: Optional[str] = None,
        always_report: bool = False,
    ) -> None:
        self.provider = provider
        self.always_report = always_report
        self.audit_storage = audit_storage
        self.reports_dir = Path(reports_dir) if reports_dir else None
        self.aws_profile = aws_profile
        self.resolver = DependencyResolver()
        self.resolver.validate()
        self.discovery = ResourceDiscovery(provider)
        self.deleter = ResourceDeleter(
            provider, resolver=self.resolver, policy=retry_policy, wait_policy=verify_policy
        )
        self.verifier = ConvergenceVerifier(provider, policy=verify_policy, resolver=self.resolver)

    def collect(self, cluster_identifier: str, region: str) -> DiscoveryResult:
        """Discover a cluster through live tag and name queries.

        Raises:
            DiscoveryError: If the cluster identifier is malformed
        """
        return self.discovery.discover(cluster_identifier, region)

    def collect_vpc(self, vpc_id: str, region: str) -> Cluster:
        """Build a cluster from one VPC and every resource inside it.

        Raises:
            DiscoveryError: If the VPC cannot be inspected
        """
        return self.discovery.discover_vpc_dependents(vpc_id, region)

    def preview(self, cluster: Cluster) -> list[tuple[ResourceType, list[Resource]]]:
        """Grouped deletion plan for a cluster, without side effects.

        Raises:
            OrdererError: If a resource type has no place in the deletion order
        """
        return self.resolver.group(cluster.resources)

    def verify(self, cluster_identifier: str, region: str) -> CleanupResult:
        """Check that nothing belonging to a cluster remains, without deleting.

        Every discovered resource that still exists is residue. A report is
        always written when a reports directory is configured, so a follow-up
        cleanup can run from it.

        Raises:
            DiscoveryError: If the cluster identifier is malformed
        """
        discovered = self.discovery.discover(cluster_identifier, region)
        cluster = discovered.cluster
        started_at = datetime.now(timezone.utc)

        residue = self.verifier.verify(cluster.resources)
        report_path = self._write_report(cluster, residue, always=True)

        completed_at = datetime.now(timezone.utc)
        operation = DeletionOperation(
            operation_id=f"op_{uuid.uuid4()}",
            cluster_name=cluster.name,
            region=cluster.region,
            source=cluster.source,
            timestamp=started_at,
            mode=OperationMode.DRY_RUN,
            status=OperationStatus.PLANNED,
            total_resources=len(residue),
            aws_profile=self.aws_profile,
            report_path=str(report_path) if report_path else None,
            unknown_types=[t.value for t in discovered.unknown_types],
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )
        return CleanupResult(
            operation=operation,
            cluster=cluster,
            residue=residue,
            report_path=report_path,
            unknown_types=list(discovered.unknown_types),
        )

    def run(
        self,
        cluster: Cluster,
        dry_run: bool = False,
        confirmed: bool = False,
        unknown_types: Optional[list[ResourceType]] = None,
    ) -> CleanupResult:
        """Order, delete, verify and report one cluster.

        Args:
            cluster: Cluster to reclaim
            dry_run: Plan only, no delete calls, no verification
            confirmed: Must be True to delete anything
            unknown_types: Types discovery could not list (carried into the result)

        Returns:
            CleanupResult

        Raises:
            ValueError: If a real run is not confirmed
            OrdererError: If a resource type has no place in the deletion order
        """
        if not dry_run and not confirmed:
            raise ValueError("Deletion requires explicit confirmation. Set confirmed=True or use --yes.")

        unknown_types = list(unknown_types or [])
        operation_id = f"op_{uuid.uuid4()}"
        started_at = datetime.now(timezone.utc)
        ordered = self.resolver.order_cluster(cluster)

        logger.info(
            f"{'Planning' if dry_run else 'Reclaiming'} {len(ordered)} resource(s) "
            f"for {cluster.name or '<unnamed>'} in {cluster.region} (source: {cluster.source})"
        )

        records = self.deleter.execute(ordered, dry_run=dry_run, operation_id=operation_id)

        residue: list[Resource] = []
        report_path: Optional[Path] = None
        if not dry_run:
            residue = self.verifier.verify(records)
            report_path = self._write_report(cluster, residue, always=self.always_report)

        completed_at = datetime.now(timezone.utc)
        operation = self._build_operation(
            operation_id=operation_id,
            cluster=cluster,
            ordered=ordered,
            dry_run=dry_run,
            started_at=started_at,
            completed_at=completed_at,
            report_path=report_path,
            unknown_types=unknown_types,
        )

        if self.audit_storage is not None:
            self.audit_storage.log_operation(operation, records)

        return CleanupResult(
            operation=operation,
            cluster=cluster,
            records=records,
            residue=residue,
            report_path=report_path,
            unknown_types=unknown_types,
        )

    def _write_report(self, cluster: Cluster, residue: list[Resource], always: bool = False) -> Optional[Path]:
        if self.reports_dir is None or (not residue and not always):
            return None
        report = generate(cluster.name or "unnamed", residue, region=cluster.region)
        return write_report(report, self.reports_dir)

    def _build_operation(
        self,
        operation_id: str,
        cluster: Cluster,
        ordered: list[Resource],
        dry_run: bool,
        started_at: datetime,
        completed_at: datetime,
        report_path: Optional[Path],
        unknown_types: list[ResourceType],
    ) -> DeletionOperation:
        succeeded = sum(1 for r in ordered if r.state == ResourceState.DELETED)
        failed = sum(1 for r in ordered if r.state == ResourceState.FAILED)
        orphaned = sum(1 for r in ordered if r.state == ResourceState.ORPHANED)

        if dry_run:
            status = OperationStatus.PLANNED
        elif failed + orphaned == 0:
            status = OperationStatus.COMPLETED
        elif succeeded > 0:
            status = OperationStatus.PARTIAL
        else:
            status = OperationStatus.FAILED

        return DeletionOperation(
            operation_id=operation_id,
            cluster_name=cluster.name,
            region=cluster.region,
            source=cluster.source,
            timestamp=started_at,
            mode=OperationMode.DRY_RUN if dry_run else OperationMode.EXECUTE,
            status=status,
            total_resources=len(ordered),
            succeeded_count=succeeded,
            failed_count=failed,
            orphaned_count=orphaned,
            aws_profile=self.aws_profile,
            report_path=str(report_path) if report_path else None,
            unknown_types=[t.value for t in unknown_types],
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )
