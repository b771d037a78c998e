"""AWS provider boundary.

Every EC2 and ELBv2 call the reaper makes goes through AwsProvider. Listing
returns plain dictionaries ({"id", "name", "attributes"}); deletion raises
botocore ClientError and leaves classification to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from botocore.exceptions import ClientError

from ..aws.client import create_boto_client
from ..models.cluster_resource import Resource, ResourceType
from .errors import is_not_found

logger = logging.getLogger(__name__)

KUBERNETES_CLUSTER_TAG = "kubernetes.io/cluster/{}"

LIVE_INSTANCE_STATES = ["pending", "running", "shutting-down", "stopping", "stopped"]

# Deletion method mapping: resource_type -> (service, method, id_field)
DELETION_METHODS: dict[ResourceType, tuple[str, str, str]] = {
    ResourceType.INSTANCE: ("ec2", "terminate_instances", "InstanceIds"),
    ResourceType.LOAD_BALANCER: ("elbv2", "delete_load_balancer", "LoadBalancerArn"),
    ResourceType.NETWORK_INTERFACE: ("ec2", "delete_network_interface", "NetworkInterfaceId"),
    ResourceType.SECURITY_GROUP: ("ec2", "delete_security_group", "GroupId"),
    ResourceType.SUBNET: ("ec2", "delete_subnet", "SubnetId"),
    ResourceType.NAT_GATEWAY: ("ec2", "delete_nat_gateway", "NatGatewayId"),
    ResourceType.ELASTIC_IP: ("ec2", "release_address", "AllocationId"),
    ResourceType.ROUTE_TABLE: ("ec2", "delete_route_table", "RouteTableId"),
    ResourceType.NETWORK_ACL: ("ec2", "delete_network_acl", "NetworkAclId"),
    ResourceType.INTERNET_GATEWAY: ("ec2", "delete_internet_gateway", "InternetGatewayId"),
    ResourceType.VPC: ("ec2", "delete_vpc", "VpcId"),
    ResourceType.KEY_PAIR: ("ec2", "delete_key_pair", "KeyName"),
}

# Existence check mapping: resource_type -> (service, describe method, id_field, response key)
DESCRIBE_METHODS: dict[ResourceType, tuple[str, str, str, str]] = {
    ResourceType.INSTANCE: ("ec2", "describe_instances", "InstanceIds", "Reservations"),
    ResourceType.LOAD_BALANCER: ("elbv2", "describe_load_balancers", "LoadBalancerArns", "LoadBalancers"),
    ResourceType.NETWORK_INTERFACE: (
        "ec2",
        "describe_network_interfaces",
        "NetworkInterfaceIds",
        "NetworkInterfaces",
    ),
    ResourceType.SECURITY_GROUP: ("ec2", "describe_security_groups", "GroupIds", "SecurityGroups"),
    ResourceType.SUBNET: ("ec2", "describe_subnets", "SubnetIds", "Subnets"),
    ResourceType.NAT_GATEWAY: ("ec2", "describe_nat_gateways", "NatGatewayIds", "NatGateways"),
    ResourceType.ELASTIC_IP: ("ec2", "describe_addresses", "AllocationIds", "Addresses"),
    ResourceType.ROUTE_TABLE: ("ec2", "describe_route_tables", "RouteTableIds", "RouteTables"),
    ResourceType.NETWORK_ACL: ("ec2", "describe_network_acls", "NetworkAclIds", "NetworkAcls"),
    ResourceType.INTERNET_GATEWAY: (
        "ec2",
        "describe_internet_gateways",
        "InternetGatewayIds",
        "InternetGateways",
    ),
    ResourceType.VPC: ("ec2", "describe_vpcs", "VpcIds", "Vpcs"),
    ResourceType.KEY_PAIR: ("ec2", "describe_key_pairs", "KeyNames", "KeyPairs"),
}


def _tags(item: dict) -> dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in item.get("Tags", []) or []}


def _name_tag(item: dict) -> str:
    return _tags(item).get("Name", "")


class AwsProvider:
    """Thin wrapper over the EC2 and ELBv2 APIs for one region.

    Clients are created lazily so that a provider can be constructed (and
    dry runs planned) without touching the network.
    """

    def __init__(
        self,
        region: str,
        aws_profile: Optional[str] = None,
        ec2_client: Any = None,
        elbv2_client: Any = None,
    ) -> None:
        self.region = region
        self.aws_profile = aws_profile
        self._clients: dict[str, Any] = {}
        if ec2_client is not None:
            self._clients["ec2"] = ec2_client
        if elbv2_client is not None:
            self._clients["elbv2"] = elbv2_client

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = create_boto_client(
                service_name=service,
                region_name=self.region,
                profile_name=self.aws_profile,
            )
        return self._clients[service]

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_resources(self, resource_type: ResourceType, identifier: str) -> list[dict[str, Any]]:
        """List resources of one type whose name or tags match a cluster identifier.

        Args:
            resource_type: Resource type to list
            identifier: Cluster identifier (substring match on names)

        Returns:
            List of {"id", "name", "attributes"} dictionaries, de-duplicated by id

        Raises:
            ClientError: If the listing call fails
        """
        lister = getattr(self, f"_list_{resource_type.name.lower()}")
        items = lister(identifier)

        unique: dict[str, dict[str, Any]] = {}
        for item in items:
            unique.setdefault(item["id"], item)
        return list(unique.values())

    def _name_filters(self, identifier: str) -> list[list[dict[str, Any]]]:
        """Filter sets for a Name-tag match and for the kubernetes ownership tag."""
        return [
            [{"Name": "tag:Name", "Values": [f"*{identifier}*"]}],
            [{"Name": f"tag:{KUBERNETES_CLUSTER_TAG.format(identifier)}", "Values": ["owned"]}],
        ]

    def _paginate(self, method: str, key: str, **kwargs: Any) -> list[dict]:
        paginator = self._client("ec2").get_paginator(method)
        items: list[dict] = []
        for page in paginator.paginate(**kwargs):
            items.extend(page.get(key, []))
        return items

    def _list_instance(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        state_filter = {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES}
        for filters in self._name_filters(identifier):
            for reservation in self._paginate("describe_instances", "Reservations", Filters=filters + [state_filter]):
                for instance in reservation.get("Instances", []):
                    results.append(
                        {
                            "id": instance["InstanceId"],
                            "name": _name_tag(instance),
                            "attributes": {
                                "VpcId": instance.get("VpcId"),
                                "SubnetId": instance.get("SubnetId"),
                                "State": instance.get("State", {}).get("Name"),
                            },
                        }
                    )
        return results

    def _list_load_balancer(self, identifier: str) -> list[dict[str, Any]]:
        paginator = self._client("elbv2").get_paginator("describe_load_balancers")
        results = []
        for page in paginator.paginate():
            for lb in page.get("LoadBalancers", []):
                if identifier in lb.get("LoadBalancerName", ""):
                    results.append(self._load_balancer_item(lb))
        return results

    @staticmethod
    def _load_balancer_item(lb: dict) -> dict[str, Any]:
        return {
            "id": lb["LoadBalancerArn"],
            "name": lb.get("LoadBalancerName", ""),
            "attributes": {"VpcId": lb.get("VpcId"), "Type": lb.get("Type")},
        }

    def _list_network_interface(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        filter_sets = [[{"Name": "description", "Values": [f"*{identifier}*"]}]] + self._name_filters(identifier)
        for filters in filter_sets:
            for eni in self._paginate("describe_network_interfaces", "NetworkInterfaces", Filters=filters):
                results.append(self._network_interface_item(eni))
        return results

    @staticmethod
    def _network_interface_item(eni: dict) -> dict[str, Any]:
        return {
            "id": eni["NetworkInterfaceId"],
            "name": eni.get("Description") or _name_tag(eni),
            "attributes": {
                "VpcId": eni.get("VpcId"),
                "Status": eni.get("Status"),
                "AttachmentId": eni.get("Attachment", {}).get("AttachmentId"),
            },
        }

    def _list_security_group(self, identifier: str) -> list[dict[str, Any]]:
        filters = [{"Name": "group-name", "Values": [f"*{identifier}*"]}]
        groups = self._paginate("describe_security_groups", "SecurityGroups", Filters=filters)
        return [self._security_group_item(sg) for sg in groups if sg.get("GroupName") != "default"]

    @staticmethod
    def _security_group_item(sg: dict) -> dict[str, Any]:
        return {
            "id": sg["GroupId"],
            "name": sg.get("GroupName", ""),
            "attributes": {"VpcId": sg.get("VpcId"), "GroupName": sg.get("GroupName")},
        }

    def _list_subnet(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        for filters in self._name_filters(identifier):
            for subnet in self._paginate("describe_subnets", "Subnets", Filters=filters):
                results.append(self._subnet_item(subnet))
        return results

    @staticmethod
    def _subnet_item(subnet: dict) -> dict[str, Any]:
        return {
            "id": subnet["SubnetId"],
            "name": _name_tag(subnet),
            "attributes": {"VpcId": subnet.get("VpcId"), "CidrBlock": subnet.get("CidrBlock")},
        }

    def _list_nat_gateway(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        for filters in self._name_filters(identifier):
            for nat in self._paginate("describe_nat_gateways", "NatGateways", Filter=filters):
                if nat.get("State") not in ("deleted", "deleting"):
                    results.append(self._nat_gateway_item(nat))
        return results

    @staticmethod
    def _nat_gateway_item(nat: dict) -> dict[str, Any]:
        return {
            "id": nat["NatGatewayId"],
            "name": _name_tag(nat),
            "attributes": {
                "VpcId": nat.get("VpcId"),
                "State": nat.get("State"),
                "AllocationIds": [
                    address["AllocationId"]
                    for address in nat.get("NatGatewayAddresses", [])
                    if address.get("AllocationId")
                ],
            },
        }

    def _list_elastic_ip(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        ec2 = self._client("ec2")
        for filters in self._name_filters(identifier):
            response = ec2.describe_addresses(Filters=filters)
            for address in response.get("Addresses", []):
                if address.get("AllocationId"):
                    results.append(self._address_item(address))
        return results

    @staticmethod
    def _address_item(address: dict) -> dict[str, Any]:
        return {
            "id": address["AllocationId"],
            "name": _name_tag(address) or address.get("PublicIp", ""),
            "attributes": {
                "PublicIp": address.get("PublicIp"),
                "AssociationId": address.get("AssociationId"),
            },
        }

    def _list_route_table(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        for filters in self._name_filters(identifier):
            for table in self._paginate("describe_route_tables", "RouteTables", Filters=filters):
                if not self._is_main_route_table(table):
                    results.append(self._route_table_item(table))
        return results

    @staticmethod
    def _is_main_route_table(table: dict) -> bool:
        return any(assoc.get("Main") for assoc in table.get("Associations", []))

    @staticmethod
    def _route_table_item(table: dict) -> dict[str, Any]:
        return {
            "id": table["RouteTableId"],
            "name": _name_tag(table),
            "attributes": {
                "VpcId": table.get("VpcId"),
                "AssociationIds": [
                    assoc["RouteTableAssociationId"]
                    for assoc in table.get("Associations", [])
                    if assoc.get("RouteTableAssociationId") and not assoc.get("Main")
                ],
            },
        }

    def _list_network_acl(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        for filters in self._name_filters(identifier):
            for acl in self._paginate("describe_network_acls", "NetworkAcls", Filters=filters):
                if not acl.get("IsDefault"):
                    results.append(self._network_acl_item(acl))
        return results

    @staticmethod
    def _network_acl_item(acl: dict) -> dict[str, Any]:
        return {"id": acl["NetworkAclId"], "name": _name_tag(acl), "attributes": {"VpcId": acl.get("VpcId")}}

    def _list_internet_gateway(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        for filters in self._name_filters(identifier):
            for igw in self._paginate("describe_internet_gateways", "InternetGateways", Filters=filters):
                results.append(self._internet_gateway_item(igw))
        return results

    @staticmethod
    def _internet_gateway_item(igw: dict) -> dict[str, Any]:
        return {
            "id": igw["InternetGatewayId"],
            "name": _name_tag(igw),
            "attributes": {"VpcIds": [a["VpcId"] for a in igw.get("Attachments", []) if a.get("VpcId")]},
        }

    def _list_vpc(self, identifier: str) -> list[dict[str, Any]]:
        results = []
        for filters in self._name_filters(identifier):
            for vpc in self._paginate("describe_vpcs", "Vpcs", Filters=filters):
                if not vpc.get("IsDefault"):
                    results.append(
                        {
                            "id": vpc["VpcId"],
                            "name": _name_tag(vpc),
                            "attributes": {"CidrBlock": vpc.get("CidrBlock")},
                        }
                    )
        return results

    def _list_key_pair(self, identifier: str) -> list[dict[str, Any]]:
        response = self._client("ec2").describe_key_pairs()
        return [
            {"id": key["KeyName"], "name": key["KeyName"], "attributes": {"KeyPairId": key.get("KeyPairId")}}
            for key in response.get("KeyPairs", [])
            if identifier in key.get("KeyName", "")
        ]

    def find_vpc_id_by_name(self, name: str) -> Optional[str]:
        """Resolve a VPC Name tag to its VPC ID.

        Returns:
            VPC ID, or None if no VPC carries that name
        """
        response = self._client("ec2").describe_vpcs(Filters=[{"Name": "tag:Name", "Values": [name]}])
        vpcs = response.get("Vpcs", [])
        if not vpcs:
            return None
        if len(vpcs) > 1:
            logger.warning(f"{len(vpcs)} VPCs are named '{name}', using {vpcs[0]['VpcId']}")
        return vpcs[0]["VpcId"]

    def list_vpc_dependents(self, vpc_id: str) -> dict[ResourceType, list[dict[str, Any]]]:
        """List everything that must be removed before a VPC can be deleted.

        Args:
            vpc_id: VPC ID

        Returns:
            Mapping of resource type to listed items (the VPC itself excluded)

        Raises:
            ClientError: If any listing call fails
        """
        vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]
        dependents: dict[ResourceType, list[dict[str, Any]]] = {}

        instances = []
        state_filter = {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES}
        for reservation in self._paginate("describe_instances", "Reservations", Filters=vpc_filter + [state_filter]):
            for instance in reservation.get("Instances", []):
                instances.append(
                    {"id": instance["InstanceId"], "name": _name_tag(instance), "attributes": {"VpcId": vpc_id}}
                )
        dependents[ResourceType.INSTANCE] = instances

        elbv2 = self._client("elbv2").get_paginator("describe_load_balancers")
        dependents[ResourceType.LOAD_BALANCER] = [
            self._load_balancer_item(lb)
            for page in elbv2.paginate()
            for lb in page.get("LoadBalancers", [])
            if lb.get("VpcId") == vpc_id
        ]

        dependents[ResourceType.NETWORK_INTERFACE] = [
            self._network_interface_item(eni)
            for eni in self._paginate("describe_network_interfaces", "NetworkInterfaces", Filters=vpc_filter)
        ]
        dependents[ResourceType.SECURITY_GROUP] = [
            self._security_group_item(sg)
            for sg in self._paginate("describe_security_groups", "SecurityGroups", Filters=vpc_filter)
            if sg.get("GroupName") != "default"
        ]
        dependents[ResourceType.SUBNET] = [
            self._subnet_item(subnet) for subnet in self._paginate("describe_subnets", "Subnets", Filters=vpc_filter)
        ]

        nat_gateways = [
            self._nat_gateway_item(nat)
            for nat in self._paginate("describe_nat_gateways", "NatGateways", Filter=vpc_filter)
            if nat.get("State") not in ("deleted", "deleting")
        ]
        dependents[ResourceType.NAT_GATEWAY] = nat_gateways

        # Only addresses held by this VPC's NAT gateways; other VPC-domain
        # addresses in the account may belong to unrelated workloads.
        allocation_ids = [a for nat in nat_gateways for a in nat["attributes"]["AllocationIds"]]
        addresses = []
        if allocation_ids:
            response = self._client("ec2").describe_addresses(AllocationIds=allocation_ids)
            addresses = [self._address_item(address) for address in response.get("Addresses", [])]
        dependents[ResourceType.ELASTIC_IP] = addresses

        dependents[ResourceType.ROUTE_TABLE] = [
            self._route_table_item(table)
            for table in self._paginate("describe_route_tables", "RouteTables", Filters=vpc_filter)
            if not self._is_main_route_table(table)
        ]
        dependents[ResourceType.NETWORK_ACL] = [
            self._network_acl_item(acl)
            for acl in self._paginate("describe_network_acls", "NetworkAcls", Filters=vpc_filter)
            if not acl.get("IsDefault")
        ]
        dependents[ResourceType.INTERNET_GATEWAY] = [
            self._internet_gateway_item(igw)
            for igw in self._paginate(
                "describe_internet_gateways",
                "InternetGateways",
                Filters=[{"Name": "attachment.vpc-id", "Values": [vpc_id]}],
            )
        ]
        return dependents

    # ------------------------------------------------------------------
    # Existence checks
    # ------------------------------------------------------------------

    def exists(self, resource: Resource) -> bool:
        """Check whether a resource is still present.

        Terminated instances, deleted NAT gateways and NotFound responses
        all count as absent.

        Raises:
            ClientError: For errors other than NotFound
        """
        service, method, id_field, key = DESCRIBE_METHODS[resource.resource_type]
        try:
            response = getattr(self._client(service), method)(**{id_field: [resource.resource_id]})
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

        items = response.get(key, [])
        if resource.resource_type == ResourceType.INSTANCE:
            states = [
                instance.get("State", {}).get("Name")
                for reservation in items
                for instance in reservation.get("Instances", [])
            ]
            return any(state != "terminated" for state in states)
        if resource.resource_type == ResourceType.NAT_GATEWAY:
            return any(item.get("State") != "deleted" for item in items)
        return bool(items)

    # ------------------------------------------------------------------
    # Deletion and pre-delete steps
    # ------------------------------------------------------------------

    def delete(self, resource: Resource) -> None:
        """Issue the delete call for a resource.

        Raises:
            ClientError: If the provider rejects the call
        """
        service, method, id_field = DELETION_METHODS[resource.resource_type]
        params: dict[str, Any]
        if id_field.endswith("Ids"):
            params = {id_field: [resource.resource_id]}
        else:
            params = {id_field: resource.resource_id}
        getattr(self._client(service), method)(**params)

    def strip_security_group_rules(self, group_id: str) -> int:
        """Revoke every ingress and egress rule of a security group.

        Returns:
            Number of permission entries revoked (0 if the group is gone)

        Raises:
            ClientError: For errors other than NotFound
        """
        ec2 = self._client("ec2")
        try:
            response = ec2.describe_security_groups(GroupIds=[group_id])
        except ClientError as e:
            if is_not_found(e):
                return 0
            raise

        revoked = 0
        for group in response.get("SecurityGroups", []):
            ingress = group.get("IpPermissions", [])
            egress = group.get("IpPermissionsEgress", [])
            if ingress:
                self._revoke(ec2.revoke_security_group_ingress, group_id, ingress)
                revoked += len(ingress)
            if egress:
                self._revoke(ec2.revoke_security_group_egress, group_id, egress)
                revoked += len(egress)
        return revoked

    @staticmethod
    def _revoke(method: Any, group_id: str, permissions: list[dict]) -> None:
        try:
            method(GroupId=group_id, IpPermissions=permissions)
        except ClientError as e:
            if not is_not_found(e):
                raise

    def detach_internet_gateway(self, igw_id: str) -> int:
        """Detach an internet gateway from every VPC it is attached to.

        Returns:
            Number of attachments removed
        """
        ec2 = self._client("ec2")
        try:
            response = ec2.describe_internet_gateways(InternetGatewayIds=[igw_id])
        except ClientError as e:
            if is_not_found(e):
                return 0
            raise

        detached = 0
        for igw in response.get("InternetGateways", []):
            for attachment in igw.get("Attachments", []):
                try:
                    ec2.detach_internet_gateway(InternetGatewayId=igw_id, VpcId=attachment["VpcId"])
                    detached += 1
                except ClientError as e:
                    if not is_not_found(e):
                        raise
        return detached

    def disassociate_address(self, allocation_id: str) -> bool:
        """Disassociate an elastic IP if it is associated.

        Returns:
            True if an association was removed
        """
        ec2 = self._client("ec2")
        try:
            response = ec2.describe_addresses(AllocationIds=[allocation_id])
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

        for address in response.get("Addresses", []):
            association_id = address.get("AssociationId")
            if association_id:
                try:
                    ec2.disassociate_address(AssociationId=association_id)
                except ClientError as e:
                    if not is_not_found(e):
                        raise
                    return False
                return True
        return False

    def disassociate_route_table(self, route_table_id: str) -> int:
        """Remove explicit subnet associations from a non-main route table.

        Returns:
            Number of associations removed
        """
        ec2 = self._client("ec2")
        try:
            response = ec2.describe_route_tables(RouteTableIds=[route_table_id])
        except ClientError as e:
            if is_not_found(e):
                return 0
            raise

        removed = 0
        for table in response.get("RouteTables", []):
            for assoc in table.get("Associations", []):
                if assoc.get("Main") or not assoc.get("RouteTableAssociationId"):
                    continue
                try:
                    ec2.disassociate_route_table(AssociationId=assoc["RouteTableAssociationId"])
                    removed += 1
                except ClientError as e:
                    if not is_not_found(e):
                        raise
        return removed
