"""Convergence verification.

Re-checks each resource after the deletion pass and collects the residue:
resources that failed to delete, or that reported success but are still
present once the polling budget is spent (orphaned).
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from ..models.cluster_resource import Resource, ResourceState, ResourceType
from ..models.deletion_record import DeletionRecord, OutcomeKind
from .dependency import DependencyResolver
from .errors import classify_error
from .provider import AwsProvider

logger = logging.getLogger(__name__)

# Types whose deletion completes asynchronously on the provider side
SLOW_DELETING_TYPES = frozenset(
    {
        ResourceType.LOAD_BALANCER,
        ResourceType.NAT_GATEWAY,
        ResourceType.INSTANCE,
    }
)


@dataclass
class VerifyPolicy:
    """Polling budget for slow-deleting types.

    Attributes:
        poll_interval: Seconds between existence checks
        poll_attempts: Maximum existence checks per resource
        max_workers: Worker pool size inside one resource-type group
    """

    poll_interval: float = 5.0
    poll_attempts: int = 12
    max_workers: int = 4


class ConvergenceVerifier:
    """Targeted existence checks after a deletion pass.

    Attributes:
        provider: AWS provider for the target region
        policy: Polling budget
        resolver: Used to check groups in deletion order
    """

    def __init__(
        self,
        provider: AwsProvider,
        policy: Optional[VerifyPolicy] = None,
        resolver: Optional[DependencyResolver] = None,
    ) -> None:
        self.provider = provider
        self.policy = policy or VerifyPolicy()
        self.resolver = resolver or DependencyResolver()

    def verify(self, items: Iterable[Union[Resource, DeletionRecord]]) -> list[Resource]:
        """Check which resources are still present.

        Accepts resources or deletion records. Records of orphaned resources
        are updated in place to the TIMEOUT outcome.

        Args:
            items: Resources or deletion records from the executor

        Returns:
            Residue in deletion order: every resource that is not confirmed gone
        """
        records: dict[tuple, DeletionRecord] = {}
        resources: list[Resource] = []
        for item in items:
            if isinstance(item, DeletionRecord):
                records[item.resource.identity] = item
                resources.append(item.resource)
            else:
                resources.append(item)

        residue: list[Resource] = []
        for resource_type, group in self.resolver.group(resources):
            still_present = self._check_group(group)
            for resource, present in zip(group, still_present):
                if not present:
                    continue
                self._mark_residue(resource, records.get(resource.identity))
                residue.append(resource)

        if residue:
            logger.warning(f"{len(residue)} resource(s) remain after verification")
        else:
            logger.info("Verification passed: no resources remain")
        return residue

    def wait_until_gone(self, resources: list[Resource]) -> list[Resource]:
        """Poll resources until they disappear, without changing their state.

        Returns:
            Resources still present once the polling budget is spent
        """
        still_present = self._check_group(resources)
        return [resource for resource, present in zip(resources, still_present) if present]

    def _check_group(self, group: list[Resource]) -> list[bool]:
        workers = max(1, min(self.policy.max_workers, len(group)))
        if workers == 1:
            return [self.is_present(resource) for resource in group]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self.is_present, group))

    def is_present(self, resource: Resource) -> bool:
        """Existence check, polled for slow-deleting types.

        Only resources whose delete call succeeded are polled; for a failed
        or never-attempted resource one check is enough. Throttling and other
        transient errors are retried within the polling budget. Any other
        error, or a transient one that outlasts the budget, counts as "still
        present" so the resource is reported.
        """
        budget = max(1, self.policy.poll_attempts)
        polls = 1
        if resource.resource_type in SLOW_DELETING_TYPES and resource.state == ResourceState.DELETED:
            polls = budget

        attempt = 0
        while True:
            try:
                if not self.provider.exists(resource):
                    logger.debug(f"{resource.label()} confirmed gone")
                    return False
            except (ClientError, BotoCoreError) as e:
                outcome = classify_error(e)
                if outcome == OutcomeKind.NOT_FOUND:
                    return False
                if outcome != OutcomeKind.TRANSIENT:
                    logger.warning(f"Existence check failed for {resource.label()}: {e}")
                    return True
                logger.debug(f"Existence check for {resource.label()} hit a transient error: {e}")
                polls = budget

            attempt += 1
            if attempt >= polls:
                return True

            logger.debug(
                f"{resource.label()} not confirmed gone, checking again in {self.policy.poll_interval}s "
                f"({attempt}/{polls})"
            )
            time.sleep(self.policy.poll_interval)

    def _mark_residue(self, resource: Resource, record: Optional[DeletionRecord]) -> None:
        if resource.state == ResourceState.DELETED:
            resource.advance(ResourceState.ORPHANED)
            logger.warning(f"{resource.label()} reported deleted but still exists (orphaned)")
            if record is not None:
                record.outcome = OutcomeKind.TIMEOUT
                record.error_code = "VerificationTimeout"
                record.error_message = "Resource still present after the verification polling budget"
        elif resource.state == ResourceState.FAILED:
            logger.warning(f"{resource.label()} could not be deleted")
        else:
            logger.warning(f"{resource.label()} still exists")
