"""Resource deletion executor.

Deletes resources group by group in dependency order, with bounded
parallelism inside a group, outcome classification, and retry with
exponential backoff and jitter.
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..models.cluster_resource import Resource, ResourceState, ResourceType
from ..models.deletion_record import DeletionRecord, OutcomeKind
from .dependency import DependencyResolver
from .errors import classify_error, error_code, error_message
from .provider import AwsProvider
from .verifier import SLOW_DELETING_TYPES, ConvergenceVerifier, VerifyPolicy

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Retry and concurrency settings for deletion.

    Attributes:
        max_attempts: Delete calls per resource before it is marked failed
        base_delay: Backoff base in seconds
        max_delay: Backoff cap in seconds
        max_workers: Worker pool size inside one resource-type group
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_workers: int = 4

    def backoff(self, attempt: int) -> float:
        """Delay before the next attempt (full jitter).

        Args:
            attempt: Zero-based index of the attempt that just failed
        """
        ceiling = min(self.max_delay, self.base_delay * (2**attempt))
        return random.uniform(0, ceiling)


@dataclass
class _CallResult:
    outcome: OutcomeKind
    attempts: int
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class ResourceDeleter:
    """AWS resource deletion orchestrator.

    Groups are processed strictly one after another; resources inside a group
    share no ordering constraint and are deleted by a bounded worker pool.
    A failure on one resource is recorded and never stops the run. After a
    group of slow-deleting resources (instances, load balancers, NAT gateways)
    the next group only starts once they are gone or the wait budget is spent.

    Attributes:
        provider: AWS provider for the target region
        resolver: Dependency resolver supplying the group order
        policy: Default retry policy
        waiter: Existence poller used between groups
    """

    def __init__(
        self,
        provider: AwsProvider,
        resolver: Optional[DependencyResolver] = None,
        policy: Optional[RetryPolicy] = None,
        wait_policy: Optional[VerifyPolicy] = None,
    ) -> None:
        self.provider = provider
        self.resolver = resolver or DependencyResolver()
        self.policy = policy or RetryPolicy()
        self.waiter = ConvergenceVerifier(provider, policy=wait_policy, resolver=self.resolver)

    def execute(
        self,
        resources: Iterable[Resource],
        policy: Optional[RetryPolicy] = None,
        dry_run: bool = False,
        operation_id: Optional[str] = None,
    ) -> list[DeletionRecord]:
        """Delete resources in dependency order.

        Args:
            resources: Resources to delete (re-grouped by the resolver)
            policy: Retry policy for this run (default: the deleter's policy)
            dry_run: Plan only; no provider calls are made
            operation_id: Parent operation ID for the records

        Returns:
            One DeletionRecord per resource, in execution order

        Raises:
            OrdererError: If a resource type has no place in the deletion order
        """
        policy = policy or self.policy
        operation_id = operation_id or f"op_{uuid.uuid4()}"
        groups = self.resolver.group(resources)
        records: list[DeletionRecord] = []

        for resource_type, group in groups:
            warnings = self._group_warnings(resource_type, records)
            logger.info(f"{'Planning' if dry_run else 'Deleting'} {len(group)} {resource_type.value} resource(s)")

            if dry_run:
                group_records = [self._planned_record(resource, operation_id, warnings) for resource in group]
            else:
                if resource_type == ResourceType.SECURITY_GROUP:
                    # Rules on one group can reference another; clear them all before any delete
                    self._strip_security_groups(group, policy)
                group_records = self._delete_group(group, policy, operation_id, warnings)
                if resource_type in SLOW_DELETING_TYPES:
                    self._wait_for_group(resource_type, group_records)

            records.extend(group_records)

        return records

    def _wait_for_group(self, resource_type: ResourceType, records: list[DeletionRecord]) -> None:
        """Block until the group's deleted resources are gone, within the polling budget."""
        deleted = [record.resource for record in records if record.resource.state == ResourceState.DELETED]
        if not deleted:
            return

        logger.info(f"Waiting for {len(deleted)} {resource_type.value} resource(s) to finish deleting")
        remaining = self.waiter.wait_until_gone(deleted)
        if remaining:
            logger.warning(
                f"{len(remaining)} {resource_type.value} resource(s) still present after waiting; "
                f"continuing with the next group"
            )

    def _group_warnings(self, resource_type: ResourceType, records: list[DeletionRecord]) -> list[str]:
        if resource_type != ResourceType.VPC:
            return []
        failed = [r for r in records if r.resource.state == ResourceState.FAILED]
        if not failed:
            return []
        names = ", ".join(r.resource.label() for r in failed)
        warning = f"VPC deletion attempted with {len(failed)} failed dependent resource(s): {names}"
        logger.warning(warning)
        return [warning]

    def _planned_record(self, resource: Resource, operation_id: str, warnings: list[str]) -> DeletionRecord:
        logger.info(f"DRY RUN: would delete {resource.label()}")
        return DeletionRecord(
            record_id=f"rec_{uuid.uuid4()}",
            operation_id=operation_id,
            resource=resource,
            outcome=OutcomeKind.PLANNED,
            timestamp=datetime.now(timezone.utc),
            attempts=0,
            warnings=list(warnings),
        )

    def _delete_group(
        self,
        group: list[Resource],
        policy: RetryPolicy,
        operation_id: str,
        warnings: list[str],
    ) -> list[DeletionRecord]:
        workers = max(1, min(policy.max_workers, len(group)))
        if workers == 1:
            return [self.delete_resource(resource, policy, operation_id, warnings) for resource in group]

        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(lambda r: self.delete_resource(r, policy, operation_id, warnings), group))

    def _strip_security_groups(self, group: list[Resource], policy: RetryPolicy) -> None:
        for resource in group:
            result = self._call_with_retry(
                lambda: self.provider.strip_security_group_rules(resource.resource_id),
                f"strip rules of {resource.label()}",
                policy,
            )
            if result.outcome.is_success:
                logger.debug(f"Stripped rules from {resource.label()}")
            else:
                logger.warning(f"Could not strip rules from {resource.label()}: {result.error_code}")

    def delete_resource(
        self,
        resource: Resource,
        policy: Optional[RetryPolicy] = None,
        operation_id: str = "",
        warnings: Optional[list[str]] = None,
    ) -> DeletionRecord:
        """Delete one resource, retrying Conflict and Transient outcomes.

        Args:
            resource: Resource to delete
            policy: Retry policy (default: the deleter's policy)
            operation_id: Parent operation ID
            warnings: Warnings to attach to the record

        Returns:
            DeletionRecord with the final outcome; the resource ends in
            DELETED or FAILED state
        """
        policy = policy or self.policy
        record_warnings = list(warnings or [])
        # A resource deleted earlier in this process is deleted again without a state change
        already_deleted = resource.state == ResourceState.DELETED
        if not already_deleted:
            resource.advance(ResourceState.DELETION_REQUESTED)

        pre_step = self._pre_delete_step(resource)
        if pre_step is not None:
            pre = self._call_with_retry(pre_step, f"prepare {resource.label()}", policy)
            if not pre.outcome.is_success:
                record_warnings.append(f"Pre-delete step failed: {pre.error_code}: {pre.error_message}")

        result = self._call_with_retry(
            lambda: self.provider.delete(resource),
            f"delete {resource.label()}",
            policy,
        )

        if result.outcome.is_success:
            resource.advance(ResourceState.DELETED)
            if result.outcome == OutcomeKind.NOT_FOUND:
                logger.info(f"{resource.label()} already deleted")
            else:
                logger.info(f"Deleted {resource.label()}")
        elif already_deleted:
            logger.warning(
                f"Repeated delete of {resource.label()} failed: {result.error_code}: {result.error_message}"
            )
        else:
            resource.advance(ResourceState.FAILED)
            logger.warning(
                f"Failed to delete {resource.label()} after {result.attempts} attempt(s): "
                f"{result.error_code}: {result.error_message}"
            )

        return DeletionRecord(
            record_id=f"rec_{uuid.uuid4()}",
            operation_id=operation_id,
            resource=resource,
            outcome=result.outcome,
            timestamp=datetime.now(timezone.utc),
            attempts=result.attempts,
            error_code=result.error_code,
            error_message=result.error_message,
            warnings=record_warnings,
        )

    def _pre_delete_step(self, resource: Resource) -> Optional[Callable[[], object]]:
        """Provider call that must succeed before a resource can be deleted."""
        if resource.resource_type == ResourceType.INTERNET_GATEWAY:
            return lambda: self.provider.detach_internet_gateway(resource.resource_id)
        if resource.resource_type == ResourceType.ELASTIC_IP:
            return lambda: self.provider.disassociate_address(resource.resource_id)
        if resource.resource_type == ResourceType.ROUTE_TABLE:
            return lambda: self.provider.disassociate_route_table(resource.resource_id)
        return None

    def _call_with_retry(self, call: Callable[[], object], description: str, policy: RetryPolicy) -> _CallResult:
        """Run a provider call under the retry policy and classify the result."""
        max_attempts = max(1, policy.max_attempts)
        attempt = 0

        while True:
            try:
                call()
                return _CallResult(OutcomeKind.DELETED, attempt + 1)
            except ClientError as e:
                outcome = classify_error(e)
                last = _CallResult(outcome, attempt + 1, error_code(e), error_message(e))
            except BotoCoreError as e:
                last = _CallResult(OutcomeKind.TRANSIENT, attempt + 1, type(e).__name__, str(e))
            except Exception as e:
                logger.error(f"Unexpected error during {description}: {e}")
                return _CallResult(OutcomeKind.PERMANENT, attempt + 1, "UnexpectedError", str(e))

            if last.outcome == OutcomeKind.NOT_FOUND:
                return _CallResult(OutcomeKind.NOT_FOUND, attempt + 1)
            if not last.outcome.is_retryable or attempt + 1 >= max_attempts:
                return last

            wait_time = policy.backoff(attempt)
            logger.debug(
                f"{last.outcome.value} during {description} ({last.error_code}), "
                f"retrying in {wait_time:.1f}s (attempt {attempt + 1}/{max_attempts})"
            )
            time.sleep(wait_time)
            attempt += 1
