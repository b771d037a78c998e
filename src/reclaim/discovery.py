"""Resource discovery.

Builds a Cluster from one of three explicitly selected sources: live tag/name
queries, the dependents of a single VPC, or the resource IDs recorded by the
provisioning scripts. Report-driven discovery lives in report.py.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from ..models.cluster_resource import Cluster, Resource, ResourceType
from .errors import DiscoveryError, error_code, is_not_found
from .provider import AwsProvider

logger = logging.getLogger(__name__)

CLUSTER_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Record file name -> resource type, as written by the provisioning scripts
RECORD_FILES: dict[str, ResourceType] = {
    "bastion-instance-id": ResourceType.INSTANCE,
    "cluster-security-group-id": ResourceType.SECURITY_GROUP,
    "bastion-security-group-id": ResourceType.SECURITY_GROUP,
    "nat-gateway-id": ResourceType.NAT_GATEWAY,
    "eip-id": ResourceType.ELASTIC_IP,
    "vpc-id": ResourceType.VPC,
    "key-name": ResourceType.KEY_PAIR,
}


@dataclass
class DiscoveryResult:
    """Discovered cluster plus the types that could not be listed.

    Attributes:
        cluster: Cluster built from the successful queries
        unknown_types: Types whose query failed; their resources are absent
        errors: Error text per unknown type
    """

    cluster: Cluster
    unknown_types: list[ResourceType] = field(default_factory=list)
    errors: dict[ResourceType, str] = field(default_factory=dict)

    @property
    def is_partial(self) -> bool:
        return bool(self.unknown_types)


def validate_cluster_identifier(identifier: str) -> str:
    """Validate a cluster identifier before it is used in provider filters.

    Raises:
        DiscoveryError: If the identifier is empty or contains unsupported characters
    """
    if not identifier or not identifier.strip():
        raise DiscoveryError("Cluster identifier must not be empty")
    identifier = identifier.strip()
    if not CLUSTER_IDENTIFIER_PATTERN.match(identifier):
        raise DiscoveryError(
            f"Invalid cluster identifier '{identifier}': use letters, digits, '.', '_' and '-' only"
        )
    return identifier


class ResourceDiscovery:
    """Discovers the resources that belong to a cluster.

    Attributes:
        provider: AWS provider bound to the target region
    """

    def __init__(self, provider: AwsProvider) -> None:
        self.provider = provider

    def discover(self, cluster_identifier: str, region: str) -> DiscoveryResult:
        """Discover every resource whose name or tags match the cluster identifier.

        Each resource type is queried independently. A failing query marks its
        type as unknown and discovery carries on with the remaining types.

        Args:
            cluster_identifier: Cluster name used in Name tags and resource names
            region: AWS region

        Returns:
            DiscoveryResult with the cluster and any unknown types

        Raises:
            DiscoveryError: If the cluster identifier is malformed
        """
        identifier = validate_cluster_identifier(cluster_identifier)
        result = DiscoveryResult(cluster=Cluster(name=identifier, region=region, source="live"))

        for resource_type in ResourceType:
            try:
                items = self.provider.list_resources(resource_type, identifier)
            except (ClientError, BotoCoreError) as e:
                message = error_code(e) if isinstance(e, ClientError) else str(e)
                logger.warning(f"Could not list {resource_type.value} resources in {region}: {message}")
                result.unknown_types.append(resource_type)
                result.errors[resource_type] = message
                continue

            for item in items:
                result.cluster.add(self._to_resource(resource_type, item, identifier, region))
            logger.debug(f"Found {len(items)} {resource_type.value} resource(s) for {identifier}")

        if result.is_partial:
            logger.warning(
                f"Discovery for {identifier} is partial; unknown types: "
                f"{', '.join(t.value for t in result.unknown_types)}"
            )
        logger.info(f"Discovered {len(result.cluster)} resource(s) for cluster {identifier} in {region}")
        return result

    def discover_vpc_dependents(self, vpc_id: str, region: str, cluster_name: Optional[str] = None) -> Cluster:
        """Build a cluster from one VPC and everything inside it.

        Args:
            vpc_id: VPC ID
            region: AWS region
            cluster_name: Name for the resulting cluster (default: the VPC ID)

        Returns:
            Cluster containing the VPC and its dependents (empty if the VPC is gone)

        Raises:
            DiscoveryError: If the VPC cannot be inspected
        """
        name = cluster_name or vpc_id
        cluster = Cluster(name=name, region=region, source="vpc")
        vpc = Resource(resource_type=ResourceType.VPC, resource_id=vpc_id, region=region, cluster_tag=name)

        try:
            if not self.provider.exists(vpc):
                logger.info(f"VPC {vpc_id} no longer exists")
                return cluster
            dependents = self.provider.list_vpc_dependents(vpc_id)
        except (ClientError, BotoCoreError) as e:
            raise DiscoveryError(f"Unable to inspect VPC {vpc_id}: {e}")

        for resource_type, items in dependents.items():
            for item in items:
                cluster.add(self._to_resource(resource_type, item, name, region))
        cluster.add(vpc)

        logger.info(f"VPC {vpc_id} has {len(cluster) - 1} dependent resource(s)")
        return cluster

    def expand_vpcs(self, cluster: Cluster) -> Cluster:
        """Add the dependents of every VPC in a cluster.

        VPCs recorded by name (not starting with "vpc-") are resolved through
        their Name tag first; names that no longer resolve are dropped.

        Args:
            cluster: Cluster to expand in place

        Returns:
            The same cluster
        """
        for vpc in list(cluster.by_type(ResourceType.VPC)):
            vpc_id = vpc.resource_id
            if not vpc_id.startswith("vpc-"):
                try:
                    resolved = self.provider.find_vpc_id_by_name(vpc_id)
                except (ClientError, BotoCoreError) as e:
                    logger.warning(f"Could not resolve VPC name '{vpc_id}': {e}")
                    continue
                if resolved is None:
                    logger.warning(f"VPC '{vpc_id}' not found, skipping")
                    cluster.resources.remove(vpc)
                    continue
                logger.info(f"Resolved VPC name '{vpc_id}' to {resolved}")
                cluster.resources.remove(vpc)
                vpc = Resource(
                    resource_type=ResourceType.VPC,
                    resource_id=resolved,
                    region=vpc.region,
                    cluster_tag=vpc.cluster_tag,
                    display_name=vpc_id,
                )
                cluster.add(vpc)

            try:
                dependents = self.provider.list_vpc_dependents(vpc.resource_id)
            except ClientError as e:
                if is_not_found(e):
                    continue
                logger.warning(f"Could not list dependents of {vpc.resource_id}: {error_code(e)}")
                continue
            except BotoCoreError as e:
                logger.warning(f"Could not list dependents of {vpc.resource_id}: {e}")
                continue

            added = 0
            for resource_type, items in dependents.items():
                for item in items:
                    if cluster.add(self._to_resource(resource_type, item, cluster.name, cluster.region)):
                        added += 1
            logger.info(f"Added {added} dependent resource(s) of {vpc.resource_id}")
        return cluster

    @staticmethod
    def _to_resource(resource_type: ResourceType, item: dict[str, Any], cluster_tag: str, region: str) -> Resource:
        return Resource(
            resource_type=resource_type,
            resource_id=item["id"],
            region=region,
            cluster_tag=cluster_tag,
            display_name=item.get("name") or "",
            attributes=dict(item.get("attributes") or {}),
        )


def discover_from_records(records_dir: Union[str, Path], cluster_name: str, region: Optional[str] = None) -> Cluster:
    """Build a cluster from resource IDs recorded during provisioning.

    Reads one-value files such as ``vpc-id`` and ``bastion-instance-id``.
    Missing files are skipped and empty or "None" values ignored. A ``region``
    file, when present, wins over the region argument.

    Args:
        records_dir: Directory holding the record files
        cluster_name: Cluster name to assign
        region: Fallback region when no region file exists

    Returns:
        Cluster with source "records"

    Raises:
        DiscoveryError: If the directory does not exist or no region is known
    """
    directory = Path(records_dir)
    if not directory.is_dir():
        raise DiscoveryError(f"Records directory not found: {directory}")

    region_file = directory / "region"
    if region_file.is_file():
        recorded_region = region_file.read_text(encoding="utf-8").strip()
        if recorded_region:
            region = recorded_region
    if not region:
        raise DiscoveryError("No region given and no region record found")

    cluster = Cluster(name=cluster_name, region=region, source="records")
    for file_name, resource_type in RECORD_FILES.items():
        path = directory / file_name
        if not path.is_file():
            continue
        value = path.read_text(encoding="utf-8").strip()
        if not value or value == "None":
            continue
        cluster.add(
            Resource(
                resource_type=resource_type,
                resource_id=value,
                region=region,
                cluster_tag=cluster_name,
                display_name=file_name,
            )
        )

    logger.info(f"Loaded {len(cluster)} recorded resource(s) from {directory}")
    return cluster
