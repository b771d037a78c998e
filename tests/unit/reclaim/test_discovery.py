"""Tests for ResourceDiscovery and record-file discovery."""

from __future__ import annotations

from pathlib import Path

import pytest
from botocore.exceptions import EndpointConnectionError

from src.models.cluster_resource import Cluster, Resource, ResourceType
from src.reclaim.discovery import ResourceDiscovery, discover_from_records, validate_cluster_identifier
from src.reclaim.errors import DiscoveryError
from tests.fixtures.clusters import FakeProvider, client_error, standard_cluster_entries


@pytest.fixture
def provider() -> FakeProvider:
    fake = FakeProvider()
    fake.add_cluster(standard_cluster_entries(), name="test-cluster")
    fake.add(ResourceType.INSTANCE, "i-other", name="other-cluster-node")
    return fake


class TestValidateClusterIdentifier:
    """Test suite for identifier validation."""

    @pytest.mark.parametrize("identifier", ["my-cluster", "cluster_01", "a.b-c", "X"])
    def test_valid_identifiers(self, identifier: str) -> None:
        assert validate_cluster_identifier(identifier) == identifier

    @pytest.mark.parametrize("identifier", ["", "   ", "-leading", "has space", "wild*card", "semi;colon"])
    def test_invalid_identifiers(self, identifier: str) -> None:
        with pytest.raises(DiscoveryError):
            validate_cluster_identifier(identifier)


class TestResourceDiscovery:
    """Test suite for live discovery."""

    def test_discover_matches_identifier(self, provider: FakeProvider) -> None:
        """Test only resources whose name contains the identifier are found."""
        result = ResourceDiscovery(provider).discover("test-cluster", "us-east-1")

        assert len(result.cluster) == 12
        assert result.cluster.find(ResourceType.INSTANCE, "i-other") is None
        assert result.cluster.source == "live"
        assert result.is_partial is False

    def test_discover_zero_matches(self, provider: FakeProvider) -> None:
        """Test an unknown cluster yields an empty, complete result."""
        result = ResourceDiscovery(provider).discover("nothing-here", "us-east-1")

        assert len(result.cluster) == 0
        assert result.unknown_types == []

    def test_failed_listing_marks_type_unknown(self, provider: FakeProvider) -> None:
        """Test one failing type is excluded and discovery continues."""
        provider.fail_list(ResourceType.LOAD_BALANCER, client_error("AccessDenied", operation="DescribeLoadBalancers"))
        provider.fail_list(ResourceType.KEY_PAIR, EndpointConnectionError(endpoint_url="https://ec2"))

        result = ResourceDiscovery(provider).discover("test-cluster", "us-east-1")

        assert result.unknown_types == [ResourceType.LOAD_BALANCER, ResourceType.KEY_PAIR]
        assert result.is_partial is True
        assert result.errors[ResourceType.LOAD_BALANCER] == "AccessDenied"
        assert ResourceType.LOAD_BALANCER not in result.cluster.types_present()
        assert len(result.cluster) == 10

    def test_malformed_identifier_is_fatal(self, provider: FakeProvider) -> None:
        """Test a bad identifier raises before any provider call."""
        with pytest.raises(DiscoveryError):
            ResourceDiscovery(provider).discover("bad name", "us-east-1")
        assert provider.calls == []


class TestVpcDiscovery:
    """Test suite for VPC dependents and report expansion."""

    def test_discover_vpc_dependents(self) -> None:
        """Test a VPC is collected with everything inside it."""
        provider = FakeProvider()
        provider.add(ResourceType.VPC, "vpc-1")
        provider.vpc_dependents["vpc-1"] = {
            ResourceType.SUBNET: [{"id": "subnet-1", "name": "a", "attributes": {}}],
            ResourceType.INTERNET_GATEWAY: [{"id": "igw-1", "name": "", "attributes": {}}],
        }

        cluster = ResourceDiscovery(provider).discover_vpc_dependents("vpc-1", "us-east-1")

        assert cluster.source == "vpc"
        assert cluster.name == "vpc-1"
        assert {r.key for r in cluster.resources} == {
            (ResourceType.SUBNET, "subnet-1"),
            (ResourceType.INTERNET_GATEWAY, "igw-1"),
            (ResourceType.VPC, "vpc-1"),
        }

    def test_discover_vpc_dependents_gone(self) -> None:
        """Test a VPC that no longer exists yields an empty cluster."""
        cluster = ResourceDiscovery(FakeProvider()).discover_vpc_dependents("vpc-gone", "us-east-1")

        assert len(cluster) == 0

    def test_discover_vpc_dependents_error_is_fatal(self) -> None:
        """Test inspection errors surface as DiscoveryError."""
        provider = FakeProvider()
        provider.add(ResourceType.VPC, "vpc-1")
        provider.fail_exists(ResourceType.VPC, "vpc-1", client_error("UnauthorizedOperation"))

        with pytest.raises(DiscoveryError, match="vpc-1"):
            ResourceDiscovery(provider).discover_vpc_dependents("vpc-1", "us-east-1")

    def test_expand_vpcs_resolves_names(self) -> None:
        """Test VPC names are resolved and their dependents added."""
        provider = FakeProvider()
        provider.add(ResourceType.VPC, "vpc-123")
        provider.vpc_names["legacy-vpc"] = "vpc-123"
        provider.vpc_dependents["vpc-123"] = {
            ResourceType.SUBNET: [{"id": "subnet-9", "name": "", "attributes": {}}],
        }
        cluster = Cluster(name="legacy", region="us-east-1", source="report")
        cluster.add(Resource(ResourceType.VPC, "legacy-vpc", "us-east-1"))
        cluster.add(Resource(ResourceType.VPC, "missing-vpc", "us-east-1"))

        ResourceDiscovery(provider).expand_vpcs(cluster)

        assert {r.key for r in cluster.resources} == {
            (ResourceType.VPC, "vpc-123"),
            (ResourceType.SUBNET, "subnet-9"),
        }
        assert cluster.find(ResourceType.VPC, "vpc-123").display_name == "legacy-vpc"

    def test_expand_vpcs_skips_deleted_vpc(self) -> None:
        """Test a VPC ID that is already gone is kept without dependents."""
        cluster = Cluster(name="legacy", region="us-east-1", source="report")
        cluster.add(Resource(ResourceType.VPC, "vpc-gone", "us-east-1"))

        ResourceDiscovery(FakeProvider()).expand_vpcs(cluster)

        assert [r.key for r in cluster.resources] == [(ResourceType.VPC, "vpc-gone")]


class TestDiscoverFromRecords:
    """Test suite for provisioning record files."""

    def test_reads_record_files(self, tmp_path: Path) -> None:
        """Test each record file becomes a resource and the region file wins."""
        (tmp_path / "vpc-id").write_text("vpc-1\n")
        (tmp_path / "bastion-instance-id").write_text("i-1\n")
        (tmp_path / "cluster-security-group-id").write_text("sg-1")
        (tmp_path / "bastion-security-group-id").write_text("sg-2")
        (tmp_path / "nat-gateway-id").write_text("None")
        (tmp_path / "eip-id").write_text("")
        (tmp_path / "key-name").write_text("my-key")
        (tmp_path / "region").write_text("us-east-2\n")

        cluster = discover_from_records(tmp_path, "my-cluster", region="us-east-1")

        assert cluster.region == "us-east-2"
        assert cluster.source == "records"
        assert {r.key for r in cluster.resources} == {
            (ResourceType.VPC, "vpc-1"),
            (ResourceType.INSTANCE, "i-1"),
            (ResourceType.SECURITY_GROUP, "sg-1"),
            (ResourceType.SECURITY_GROUP, "sg-2"),
            (ResourceType.KEY_PAIR, "my-key"),
        }

    def test_falls_back_to_region_argument(self, tmp_path: Path) -> None:
        (tmp_path / "vpc-id").write_text("vpc-1")

        assert discover_from_records(tmp_path, "c", region="eu-west-1").region == "eu-west-1"

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="not found"):
            discover_from_records(tmp_path / "missing", "c", region="us-east-1")

    def test_no_region_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="region"):
            discover_from_records(tmp_path, "c")
