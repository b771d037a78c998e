"""Integration tests for the reaper CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from src.aws.credentials import CredentialValidationError
from src.cli.main import app
from src.models.cluster_resource import ResourceType
from tests.fixtures.clusters import FakeProvider, client_error, standard_cluster_entries


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's config file and environment out of the tests."""
    monkeypatch.setenv("REAPER_CONFIG", str(tmp_path / "no-config.yaml"))
    for name in ["AWS_PROFILE", "AWS_DEFAULT_REGION", "REAPER_STORAGE_PATH", "REAPER_LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def provider() -> FakeProvider:
    fake = FakeProvider()
    fake.add_cluster(standard_cluster_entries())
    return fake


@pytest.fixture
def aws(provider: FakeProvider):
    """Patch credential validation and the provider; skip backoff and polling sleeps."""
    with patch("src.cli.main.validate_credentials", return_value="123456789012") as mock_validate, patch(
        "src.cli.main.AwsProvider", return_value=provider
    ), patch("src.reclaim.deleter.time.sleep"), patch("src.reclaim.verifier.time.sleep"):
        yield mock_validate


def invoke(runner: CliRunner, storage: Path, *args: str, input: str = None):
    return runner.invoke(app, ["--storage-path", str(storage), *args], input=input)


class TestCleanupCommand:
    """Tests for 'reaper cleanup'."""

    def test_full_cleanup_exits_zero(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--yes")

        assert result.exit_code == 0, result.output
        assert "Authenticated for account: 123456789012" in result.output
        assert "All resources reclaimed" in result.output
        assert provider.live == {}
        assert not (tmp_path / "reports").exists()

    def test_residue_exits_one_with_report(
        self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider
    ) -> None:
        provider.fail_delete(ResourceType.VPC, "vpc-1", "DependencyViolation")

        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--yes")

        assert result.exit_code == 1, result.output
        assert "- VPC: vpc-1" in result.output
        reports = list((tmp_path / "reports").glob("verification-report-test-cluster-*.txt"))
        assert len(reports) == 1
        assert "- VPC: vpc-1" in reports[0].read_text()

    def test_dry_run_deletes_nothing(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--dry-run")

        assert result.exit_code == 0, result.output
        assert "Dry run complete: 12 resource(s) would be deleted" in result.output
        assert provider.calls_for("delete") == []

    def test_declined_confirmation(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        result = invoke(runner, tmp_path, "cleanup", "test-cluster", input="n\n")

        assert result.exit_code == 0
        assert "Cancelled." in result.output
        assert provider.calls_for("delete") == []

    def test_always_report(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--yes", "--always-report")

        assert result.exit_code == 0, result.output
        assert len(list((tmp_path / "reports").glob("*.txt"))) == 1

    def test_partial_discovery_exits_one(
        self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider
    ) -> None:
        provider.fail_list(ResourceType.LOAD_BALANCER, client_error("AccessDenied", operation="DescribeLoadBalancers"))

        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--yes")

        assert result.exit_code == 1, result.output
        assert "could not list: LoadBalancer" in result.output

    def test_malformed_identifier_exits_two(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        result = invoke(runner, tmp_path, "cleanup", "bad name!", "--yes")

        assert result.exit_code == 2
        assert "Invalid cluster identifier" in result.output

    def test_bad_credentials_exit_two(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        aws.side_effect = CredentialValidationError("No AWS credentials found.")

        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--yes")

        assert result.exit_code == 2
        assert "No AWS credentials found" in result.output

    def test_nothing_to_delete(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        provider.live.clear()

        result = invoke(runner, tmp_path, "cleanup", "test-cluster", "--yes")

        assert result.exit_code == 0
        assert "Nothing to delete" in result.output


class TestReportAndRecordsCommands:
    """Tests for cleanup-from-report, cleanup-from-records and force-delete-vpc."""

    def test_cleanup_from_report(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        report = tmp_path / "report.txt"
        report.write_text(
            "Cluster: test-cluster\n"
            "Region: us-east-1\n"
            "\n"
            "Uncleaned Resources:\n"
            "- Subnet: subnet-1\n"
            "- VPC: vpc-1\n"
        )

        result = invoke(runner, tmp_path, "cleanup-from-report", str(report), "--yes", "--no-expand-vpcs")

        assert result.exit_code == 0, result.output
        assert "Loaded 2 resource(s)" in result.output
        assert provider.calls_for("delete") == ["subnet-1", "vpc-1"]

    def test_cleanup_from_report_expands_vpcs(
        self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider
    ) -> None:
        provider.vpc_dependents["vpc-1"] = {ResourceType.SECURITY_GROUP: [{"id": "sg-1", "name": "sg", "attributes": {}}]}
        report = tmp_path / "report.txt"
        report.write_text("Region: us-east-1\nUncleaned Resources:\n- VPC: vpc-1\n")

        result = invoke(runner, tmp_path, "cleanup-from-report", str(report), "--yes")

        assert result.exit_code == 0, result.output
        assert provider.calls_for("delete") == ["sg-1", "vpc-1"]

    def test_missing_report_exits_two(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        result = invoke(runner, tmp_path, "cleanup-from-report", str(tmp_path / "nope.txt"), "--yes")

        assert result.exit_code == 2
        assert "Report not found" in result.output

    def test_cleanup_from_records(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        records = tmp_path / "records"
        records.mkdir()
        (records / "region").write_text("us-east-1\n")
        (records / "vpc-id").write_text("vpc-1\n")
        (records / "bastion-instance-id").write_text("i-1\n")
        (records / "eip-id").write_text("None\n")

        result = invoke(runner, tmp_path, "cleanup-from-records", str(records), "test-cluster", "--yes")

        assert result.exit_code == 0, result.output
        assert provider.calls_for("delete") == ["i-1", "vpc-1"]

    def test_force_delete_vpc_rejects_bad_id(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        result = invoke(runner, tmp_path, "force-delete-vpc", "my-vpc", "--yes")

        assert result.exit_code == 2
        assert "Invalid VPC ID" in result.output

    def test_force_delete_vpc(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        provider.vpc_dependents["vpc-1"] = {ResourceType.SUBNET: [{"id": "subnet-1", "name": "a", "attributes": {}}]}

        result = invoke(runner, tmp_path, "force-delete-vpc", "vpc-1", "--yes")

        assert result.exit_code == 0, result.output
        assert provider.calls_for("delete") == ["subnet-1", "vpc-1"]


class TestVerifyAndPlanCommands:
    """Tests for verify and plan."""

    def test_verify_with_residue_exits_one(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        result = invoke(runner, tmp_path, "verify", "test-cluster")

        assert result.exit_code == 1
        assert "12 resource(s) remain" in result.output
        assert len(list((tmp_path / "reports").glob("*.txt"))) == 1

    def test_verify_clean_exits_zero(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        provider.live.clear()

        result = invoke(runner, tmp_path, "verify", "test-cluster")

        assert result.exit_code == 0, result.output
        assert "All resources reclaimed" in result.output

    def test_plan(self, runner: CliRunner, tmp_path: Path, aws, provider: FakeProvider) -> None:
        result = invoke(runner, tmp_path, "plan", "test-cluster")

        assert result.exit_code == 0, result.output
        assert "Dependency Tiers:" in result.output
        assert provider.calls_for("delete") == []


class TestAuditAndVersionCommands:
    """Tests for audit list/show and version."""

    def test_audit_list_and_show(self, runner: CliRunner, tmp_path: Path, aws) -> None:
        invoke(runner, tmp_path, "cleanup", "test-cluster", "--dry-run")

        listed = invoke(runner, tmp_path, "audit", "list")
        assert listed.exit_code == 0, listed.output
        assert "Total Operations: 1" in listed.output

        audit_files = list((tmp_path / "audit-logs").glob("*/*/operation-*.yaml"))
        assert len(audit_files) == 1
        operation_id = audit_files[0].stem[len("operation-") :]

        shown = invoke(runner, tmp_path, "audit", "show", operation_id)
        assert shown.exit_code == 0, shown.output
        assert "cluster_name: test-cluster" in shown.output

    def test_audit_list_empty(self, runner: CliRunner, tmp_path: Path) -> None:
        result = invoke(runner, tmp_path, "audit", "list")

        assert result.exit_code == 0
        assert "No operations found" in result.output

    def test_audit_list_bad_date(self, runner: CliRunner, tmp_path: Path) -> None:
        result = invoke(runner, tmp_path, "audit", "list", "--since", "11/05/2025")

        assert result.exit_code == 2
        assert "Invalid date format" in result.output

    def test_audit_show_unknown(self, runner: CliRunner, tmp_path: Path) -> None:
        result = invoke(runner, tmp_path, "audit", "show", "op_missing")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_version(self, runner: CliRunner, tmp_path: Path) -> None:
        result = invoke(runner, tmp_path, "version")

        assert result.exit_code == 0
        assert "aws-cluster-reaper version" in result.output
