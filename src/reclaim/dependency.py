"""Type-level dependency ordering for resource deletion.

The deletion order is a fixed table over resource types. The edge table
records why each type must wait for another; DependencyResolver checks that
the order honours every edge and groups a cluster's resources accordingly.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, NamedTuple, Optional

from ..models.cluster_resource import Cluster, Resource, ResourceType
from .errors import OrdererError


class DependencyEdge(NamedTuple):
    """``before`` must be fully deleted before ``after`` may be attempted."""

    before: ResourceType
    after: ResourceType


DELETION_ORDER: tuple[ResourceType, ...] = (
    ResourceType.INSTANCE,
    ResourceType.LOAD_BALANCER,
    ResourceType.NETWORK_INTERFACE,
    ResourceType.SECURITY_GROUP,
    ResourceType.SUBNET,
    ResourceType.NAT_GATEWAY,
    ResourceType.ELASTIC_IP,
    ResourceType.ROUTE_TABLE,
    ResourceType.NETWORK_ACL,
    ResourceType.INTERNET_GATEWAY,
    ResourceType.VPC,
    # No dependency on the VPC; last so reports list it after the network
    ResourceType.KEY_PAIR,
)

DEPENDENCY_EDGES: tuple[DependencyEdge, ...] = (
    # Instances hold network interfaces in subnets and reference security groups
    DependencyEdge(ResourceType.INSTANCE, ResourceType.NETWORK_INTERFACE),
    DependencyEdge(ResourceType.INSTANCE, ResourceType.SECURITY_GROUP),
    DependencyEdge(ResourceType.INSTANCE, ResourceType.SUBNET),
    # Load balancers own interfaces and sit in subnets
    DependencyEdge(ResourceType.LOAD_BALANCER, ResourceType.NETWORK_INTERFACE),
    DependencyEdge(ResourceType.LOAD_BALANCER, ResourceType.SECURITY_GROUP),
    DependencyEdge(ResourceType.LOAD_BALANCER, ResourceType.SUBNET),
    DependencyEdge(ResourceType.NETWORK_INTERFACE, ResourceType.SECURITY_GROUP),
    DependencyEdge(ResourceType.NETWORK_INTERFACE, ResourceType.SUBNET),
    DependencyEdge(ResourceType.SECURITY_GROUP, ResourceType.VPC),
    DependencyEdge(ResourceType.SUBNET, ResourceType.ROUTE_TABLE),
    DependencyEdge(ResourceType.SUBNET, ResourceType.NETWORK_ACL),
    DependencyEdge(ResourceType.SUBNET, ResourceType.VPC),
    # A NAT gateway keeps its elastic IP associated until it is deleted
    DependencyEdge(ResourceType.NAT_GATEWAY, ResourceType.ELASTIC_IP),
    DependencyEdge(ResourceType.NAT_GATEWAY, ResourceType.ROUTE_TABLE),
    DependencyEdge(ResourceType.NAT_GATEWAY, ResourceType.INTERNET_GATEWAY),
    DependencyEdge(ResourceType.ELASTIC_IP, ResourceType.INTERNET_GATEWAY),
    DependencyEdge(ResourceType.ROUTE_TABLE, ResourceType.VPC),
    DependencyEdge(ResourceType.NETWORK_ACL, ResourceType.VPC),
    DependencyEdge(ResourceType.INTERNET_GATEWAY, ResourceType.VPC),
)


class DependencyResolver:
    """Orders cluster resources for deletion.

    Attributes:
        order: Total order over resource types
        edges: Type-level dependency edges
        graph: Mapping of type -> types that must be deleted before it
    """

    def __init__(
        self,
        order: Iterable[ResourceType] = DELETION_ORDER,
        edges: Iterable[DependencyEdge] = DEPENDENCY_EDGES,
    ) -> None:
        self.order: tuple[ResourceType, ...] = tuple(order)
        self.edges: tuple[DependencyEdge, ...] = tuple(edges)
        self.graph: dict[ResourceType, set[ResourceType]] = defaultdict(set)
        for edge in self.edges:
            self.graph[edge.after].add(edge.before)
        self._rank = {resource_type: index for index, resource_type in enumerate(self.order)}

    def has_cycle(self) -> bool:
        """Check the edge table for cycles with Kahn's algorithm."""
        return len(self._kahn()) != len(self._nodes())

    def _nodes(self) -> set[ResourceType]:
        nodes = set(self.order)
        for edge in self.edges:
            nodes.add(edge.before)
            nodes.add(edge.after)
        return nodes

    def _kahn(self) -> list[ResourceType]:
        nodes = self._nodes()
        in_degree = {node: len(self.graph.get(node, set())) for node in nodes}
        successors: dict[ResourceType, list[ResourceType]] = defaultdict(list)
        for edge in self.edges:
            successors[edge.before].append(edge.after)

        # Tie-break by table rank so the result is stable
        queue = sorted((n for n in nodes if in_degree[n] == 0), key=self._sort_key)
        result = []
        while queue:
            node = queue.pop(0)
            result.append(node)
            for successor in successors[node]:
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    queue.append(successor)
            queue.sort(key=self._sort_key)
        return result

    def _sort_key(self, resource_type: ResourceType) -> tuple[int, str]:
        return (self._rank.get(resource_type, len(self._rank)), resource_type.value)

    def validate(self) -> bool:
        """Check that the order table covers every type and honours every edge.

        Returns:
            True if the tables are consistent

        Raises:
            OrdererError: On a cycle, a missing type, or an edge the order violates
        """
        if self.has_cycle():
            raise OrdererError("Circular dependency in resource type edges")

        missing = [t.value for t in ResourceType if t not in self._rank]
        if missing:
            raise OrdererError(f"Resource types missing from deletion order: {', '.join(missing)}")

        for edge in self.edges:
            if self._rank[edge.before] >= self._rank[edge.after]:
                raise OrdererError(
                    f"Deletion order places {edge.after.value} before {edge.before.value}, "
                    f"which must be deleted first"
                )
        return True

    def rank(self, resource_type: ResourceType) -> int:
        """Position of a type in the deletion order.

        Raises:
            OrdererError: If the type is not in the order table
        """
        if resource_type not in self._rank:
            raise OrdererError(f"Resource type {resource_type.value} has no place in the deletion order")
        return self._rank[resource_type]

    def group(self, resources: Iterable[Resource]) -> list[tuple[ResourceType, list[Resource]]]:
        """Group resources by type in deletion order.

        Within a group, resources are sorted by ascending resource ID.

        Raises:
            OrdererError: If any resource type is not in the order table
        """
        buckets: dict[ResourceType, list[Resource]] = defaultdict(list)
        for resource in resources:
            self.rank(resource.resource_type)
            buckets[resource.resource_type].append(resource)

        return [
            (resource_type, sorted(buckets[resource_type], key=lambda r: r.resource_id))
            for resource_type in self.order
            if buckets.get(resource_type)
        ]

    def order_resources(self, resources: Iterable[Resource]) -> list[Resource]:
        """Flatten the grouped deletion order into one list."""
        return [resource for _, group in self.group(resources) for resource in group]

    def order_cluster(self, cluster: Cluster) -> list[Resource]:
        """Deletion order for every resource in a cluster."""
        return self.order_resources(cluster.resources)

    def get_deletion_tiers(self, types: Optional[Iterable[ResourceType]] = None) -> dict[int, list[ResourceType]]:
        """Assign resource types to dependency tiers.

        Tier 1 types depend on nothing; tier N types wait on tier N-1 at most.
        Only edges between the given types are considered.

        Args:
            types: Types to tier (default: all types in the order table)

        Returns:
            Mapping of tier number to types, each tier sorted by deletion order
        """
        selected = set(types) if types is not None else set(self.order)
        tiers: dict[ResourceType, int] = {}

        for resource_type in sorted(selected, key=self._sort_key):
            tiers[resource_type] = self._tier(resource_type, selected, tiers)

        result: dict[int, list[ResourceType]] = defaultdict(list)
        for resource_type in sorted(selected, key=self._sort_key):
            result[tiers[resource_type]].append(resource_type)
        return dict(result)

    def _tier(
        self,
        resource_type: ResourceType,
        selected: set[ResourceType],
        memo: dict[ResourceType, int],
    ) -> int:
        if resource_type in memo:
            return memo[resource_type]
        parents = [p for p in self.graph.get(resource_type, set()) if p in selected]
        tier = 1 + max((self._tier(p, selected, memo) for p in parents), default=0)
        memo[resource_type] = tier
        return tier
