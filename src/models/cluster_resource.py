"""Cluster resource model.

Typed descriptors for the AWS resources that make up a cluster environment,
and the Cluster aggregate that groups them for one reclamation run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ResourceType(Enum):
    """AWS resource types the reaper knows how to reclaim."""

    INSTANCE = "Instance"
    LOAD_BALANCER = "LoadBalancer"
    NETWORK_INTERFACE = "NetworkInterface"
    SECURITY_GROUP = "SecurityGroup"
    SUBNET = "Subnet"
    NAT_GATEWAY = "NatGateway"
    ELASTIC_IP = "ElasticIP"
    ROUTE_TABLE = "RouteTable"
    NETWORK_ACL = "NetworkAcl"
    INTERNET_GATEWAY = "InternetGateway"
    VPC = "Vpc"
    KEY_PAIR = "KeyPair"


class ResourceState(Enum):
    """Lifecycle state of a resource within one run."""

    DISCOVERED = "discovered"
    DELETION_REQUESTED = "deletion_requested"
    DELETED = "deleted"
    FAILED = "failed"
    ORPHANED = "orphaned"


# Allowed forward transitions. ORPHANED is only reachable from DELETED,
# and only the verifier moves a resource there.
_TRANSITIONS: dict[ResourceState, frozenset[ResourceState]] = {
    ResourceState.DISCOVERED: frozenset({ResourceState.DELETION_REQUESTED}),
    ResourceState.DELETION_REQUESTED: frozenset({ResourceState.DELETED, ResourceState.FAILED}),
    ResourceState.DELETED: frozenset({ResourceState.ORPHANED}),
    ResourceState.FAILED: frozenset(),
    ResourceState.ORPHANED: frozenset(),
}


class InvalidStateTransition(ValueError):
    """Raised when a resource state would move backwards or skip a step."""


@dataclass
class Resource:
    """A single AWS resource belonging to a cluster.

    Attributes:
        resource_type: Resource type
        resource_id: Provider-assigned identifier (unique within type and region)
        region: AWS region
        cluster_tag: Cluster identifier the resource was matched on
        display_name: Human-readable name (Name tag, group name, key name)
        state: Current lifecycle state
        attributes: Provider details used by pre-delete steps (VpcId, GroupName, ...)
    """

    resource_type: ResourceType
    resource_id: str
    region: str
    cluster_tag: str = ""
    display_name: str = ""
    state: ResourceState = ResourceState.DISCOVERED
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[ResourceType, str]:
        """(type, id) pair used for report round trips."""
        return (self.resource_type, self.resource_id)

    @property
    def identity(self) -> tuple[ResourceType, str, str]:
        return (self.resource_type, self.region, self.resource_id)

    def advance(self, new_state: ResourceState) -> None:
        """Move the resource to a later lifecycle state.

        Setting the current state again is a no-op.

        Raises:
            InvalidStateTransition: If the transition is not a forward step
        """
        if new_state == self.state:
            return
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"{self.resource_type.value} {self.resource_id}: "
                f"cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    @property
    def is_terminal(self) -> bool:
        return self.state in (ResourceState.DELETED, ResourceState.FAILED, ResourceState.ORPHANED)

    def label(self) -> str:
        if self.display_name and self.display_name != self.resource_id:
            return f"{self.resource_type.value} {self.resource_id} ({self.display_name})"
        return f"{self.resource_type.value} {self.resource_id}"


@dataclass
class Cluster:
    """All resources discovered for one logical cluster in one region.

    A Cluster is rebuilt on every run, either from live discovery, from a
    residue report, or from recorded resource IDs.

    Attributes:
        name: Cluster identifier
        region: AWS region
        resources: Resources in discovery order (no duplicates)
        source: Where the resources came from (live, report, records, vpc)
    """

    name: str
    region: str
    resources: list[Resource] = field(default_factory=list)
    source: str = "live"

    def add(self, resource: Resource) -> bool:
        """Add a resource unless one with the same identity is already present.

        Returns:
            True if the resource was added
        """
        if any(existing.identity == resource.identity for existing in self.resources):
            return False
        self.resources.append(resource)
        return True

    def types_present(self) -> set[ResourceType]:
        return {r.resource_type for r in self.resources}

    def by_type(self, resource_type: ResourceType) -> list[Resource]:
        return [r for r in self.resources if r.resource_type == resource_type]

    def find(self, resource_type: ResourceType, resource_id: str) -> Optional[Resource]:
        for resource in self.resources:
            if resource.resource_type == resource_type and resource.resource_id == resource_id:
                return resource
        return None

    def __len__(self) -> int:
        return len(self.resources)
