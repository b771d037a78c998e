"""Main CLI entry point using Typer."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ..aws.credentials import CredentialValidationError, validate_credentials
from ..models.cluster_resource import Cluster, ResourceType
from ..models.deletion_operation import OperationMode
from ..reclaim.audit import AuditStorage
from ..reclaim.cleaner import CleanupResult, ResourceCleaner
from ..reclaim.deleter import RetryPolicy
from ..reclaim.discovery import discover_from_records
from ..reclaim.errors import ReclaimError
from ..reclaim.provider import AwsProvider
from ..reclaim.report import REPORT_TOKENS, parse_report
from ..reclaim.verifier import VerifyPolicy
from ..utils.logging import setup_logging
from .config import Config

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="reaper",
    help="AWS Cluster Reaper - dependency-ordered cleanup of cluster resources",
    add_completion=False,
)

# Create Rich console for output
console = Console()

# Global config
config: Optional[Config] = None


@app.callback()
def main(
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="AWS profile name"),
    storage_path: Optional[str] = typer.Option(
        None,
        "--storage-path",
        help="Directory for reports and audit logs (default: ~/.reaper or $REAPER_STORAGE_PATH)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    """AWS Cluster Reaper - dependency-ordered cleanup of cluster resources."""
    global config

    # Load configuration
    config = Config.load()

    # Override with CLI options
    if profile:
        config.aws_profile = profile
    if storage_path:
        config.storage_path = storage_path

    # Setup logging
    log_level = "ERROR" if quiet else ("DEBUG" if verbose else config.log_level)
    setup_logging(level=log_level, verbose=verbose)

    # Disable colors if requested
    if no_color:
        console.no_color = True


@app.command()
def version():
    """Show version information."""
    import boto3

    from .. import __version__

    console.print(f"aws-cluster-reaper version {__version__}")
    console.print(f"Python {sys.version.split()[0]}")
    console.print(f"boto3 {boto3.__version__}")


def _build_cleaner(
    region: str,
    report_dir: Optional[str] = None,
    always_report: bool = False,
) -> ResourceCleaner:
    """Validate credentials and wire a cleaner for one region."""
    console.print("🔐 Validating AWS credentials...")
    account_id = validate_credentials(config.aws_profile, region)
    console.print(f"✓ Authenticated for account: {account_id}\n", style="green")

    provider = AwsProvider(region=region, aws_profile=config.aws_profile)
    return ResourceCleaner(
        provider=provider,
        audit_storage=AuditStorage(str(config.audit_dir)),
        reports_dir=Path(report_dir).expanduser() if report_dir else config.reports_dir,
        retry_policy=RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            max_workers=config.max_workers,
        ),
        verify_policy=VerifyPolicy(
            poll_interval=config.poll_interval,
            poll_attempts=config.poll_attempts,
            max_workers=config.max_workers,
        ),
        aws_profile=config.aws_profile,
        always_report=always_report,
    )


def _print_plan(cleaner: ResourceCleaner, cluster: Cluster, dry_run: bool) -> None:
    groups = cleaner.preview(cluster)
    title = f"{'Dry Run' if dry_run else 'Deletion'} Plan: {cluster.name or '<unnamed>'} ({cluster.region})"
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Step", justify="right", width=5)
    table.add_column("Type", style="cyan", width=18)
    table.add_column("Count", justify="center", width=7)
    table.add_column("Resources", width=60)

    for step, (resource_type, group) in enumerate(groups, start=1):
        ids = ", ".join(resource.resource_id for resource in group)
        table.add_row(str(step), resource_type.value, str(len(group)), ids)

    console.print()
    console.print(table)
    console.print(f"Source: {cluster.source}  Total Resources: {len(cluster)}\n")


def _warn_unknown_types(unknown_types: list[ResourceType]) -> None:
    if unknown_types:
        console.print(
            f"⚠️  Discovery is partial; could not list: {', '.join(t.value for t in unknown_types)}",
            style="bold yellow",
        )


def _confirm(cluster: Cluster, yes: bool, dry_run: bool) -> None:
    if dry_run or yes:
        return
    confirm = typer.confirm(f"Delete {len(cluster)} resource(s) for '{cluster.name or cluster.region}'?", default=False)
    if not confirm:
        console.print("Cancelled.")
        raise typer.Exit(code=0)


def _print_result(result: CleanupResult) -> None:
    operation = result.operation

    if operation.mode == OperationMode.DRY_RUN:
        console.print(f"✓ Dry run complete: {operation.total_resources} resource(s) would be deleted", style="green")
        console.print(f"  Operation ID: {operation.operation_id}")
        _warn_unknown_types(result.unknown_types)
        return

    console.print()
    console.print("[bold]Cleanup Summary:[/bold]")
    console.print(f"  Operation ID: {operation.operation_id}")
    console.print(f"  Status: {operation.status.value}")
    console.print(f"  Deleted: {operation.succeeded_count}")
    console.print(f"  Failed: {operation.failed_count}")
    console.print(f"  Orphaned: {operation.orphaned_count}")
    if operation.duration_seconds is not None:
        console.print(f"  Duration: {operation.duration_seconds:.1f}s")

    failed = [record for record in result.records if not record.outcome.is_success]
    if failed:
        table = Table(title="Unresolved Resources", show_header=True, header_style="bold red")
        table.add_column("Type", style="cyan", width=18)
        table.add_column("ID", width=28)
        table.add_column("Outcome", width=10)
        table.add_column("Attempts", justify="center", width=9)
        table.add_column("Error", width=40)
        for record in failed:
            table.add_row(
                record.resource_type,
                record.resource_id,
                record.outcome.value,
                str(record.attempts),
                record.error_code or "",
            )
        console.print()
        console.print(table)

    for record in result.records:
        for warning in record.warnings:
            console.print(f"⚠️  {warning}", style="yellow")

    _warn_unknown_types(result.unknown_types)
    _print_residue(result)


def _print_residue(result: CleanupResult) -> None:
    console.print()
    if result.residue:
        console.print(f"✗ {len(result.residue)} resource(s) remain:", style="bold red")
        for resource in result.residue:
            console.print(f"  - {REPORT_TOKENS[resource.resource_type]}: {resource.resource_id}")
    else:
        console.print("✓ All resources reclaimed", style="bold green")

    if result.report_path:
        console.print(f"\n📄 Report: [cyan]{result.report_path}[/cyan]")
        if result.residue:
            console.print(f"  Re-run with: reaper cleanup-from-report {result.report_path}")


def _exit_for(result: CleanupResult) -> None:
    if result.operation.mode == OperationMode.DRY_RUN:
        return
    if result.residue or result.unknown_types:
        raise typer.Exit(code=1)


def _execute(cleaner: ResourceCleaner, cluster: Cluster, dry_run: bool, yes: bool, unknown_types=None) -> None:
    """Shared tail of every cleanup command: plan, confirm, run, report."""
    if not len(cluster):
        console.print(f"✓ Nothing to delete for '{cluster.name or cluster.region}'", style="green")
        _warn_unknown_types(unknown_types or [])
        if unknown_types and not dry_run:
            raise typer.Exit(code=1)
        return

    _print_plan(cleaner, cluster, dry_run)
    _warn_unknown_types(unknown_types or [])
    _confirm(cluster, yes, dry_run)

    result = cleaner.run(cluster, dry_run=dry_run, confirmed=True, unknown_types=unknown_types)
    _print_result(result)
    _exit_for(result)


@app.command()
def cleanup(
    cluster_name: str = typer.Argument(..., help="Cluster identifier used in Name tags and resource names"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region (default: from config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the deletion plan without deleting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Directory for the residue report"),
    always_report: bool = typer.Option(False, "--always-report", help="Write a report even when nothing remains"),
):
    """Discover a cluster's resources and delete them in dependency order.

    Examples:
        # Preview what would be deleted
        reaper cleanup my-cluster --region us-east-2 --dry-run

        # Delete without prompting
        reaper cleanup my-cluster --region us-east-2 --yes
    """
    try:
        target_region = region or config.region
        cleaner = _build_cleaner(target_region, report_dir, always_report)

        console.print(f"🔍 Discovering resources for [bold]{cluster_name}[/bold] in {target_region}...")
        discovered = cleaner.collect(cluster_name, target_region)

        _execute(cleaner, discovered.cluster, dry_run, yes, discovered.unknown_types)

    except typer.Exit:
        raise
    except (ReclaimError, CredentialValidationError) as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error during cleanup: {e}", style="bold red")
        logger.exception("Error in cleanup command")
        raise typer.Exit(code=2)


@app.command("cleanup-from-report")
def cleanup_from_report(
    report: str = typer.Argument(..., help="Verification report from an earlier run"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region (default: report header, then config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the deletion plan without deleting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    no_expand_vpcs: bool = typer.Option(False, "--no-expand-vpcs", help="Do not add the contents of reported VPCs"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Directory for the residue report"),
):
    """Delete the resources listed in a verification report.

    VPCs listed by name are resolved to IDs, and by default every resource
    inside a reported VPC is deleted with it.
    """
    try:
        cluster = parse_report(report, region=region, default_region=config.region)
        console.print(f"📄 Loaded {len(cluster)} resource(s) from {report}")

        cleaner = _build_cleaner(cluster.region, report_dir)
        if not no_expand_vpcs:
            cleaner.discovery.expand_vpcs(cluster)

        _execute(cleaner, cluster, dry_run, yes)

    except typer.Exit:
        raise
    except FileNotFoundError:
        console.print(f"✗ Report not found: {report}", style="bold red")
        raise typer.Exit(code=2)
    except (ReclaimError, CredentialValidationError) as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error during cleanup: {e}", style="bold red")
        logger.exception("Error in cleanup-from-report command")
        raise typer.Exit(code=2)


@app.command("cleanup-from-records")
def cleanup_from_records(
    records_dir: str = typer.Argument(..., help="Directory of resource ID files left by provisioning"),
    cluster_name: str = typer.Argument(..., help="Cluster name for the report and audit log"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region (default: region file, then config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the deletion plan without deleting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Directory for the residue report"),
):
    """Delete the resources recorded by the provisioning scripts."""
    try:
        cluster = discover_from_records(records_dir, cluster_name, region or config.region)
        console.print(f"📂 Loaded {len(cluster)} recorded resource(s) from {records_dir}")

        cleaner = _build_cleaner(cluster.region, report_dir)
        _execute(cleaner, cluster, dry_run, yes)

    except typer.Exit:
        raise
    except (ReclaimError, CredentialValidationError) as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error during cleanup: {e}", style="bold red")
        logger.exception("Error in cleanup-from-records command")
        raise typer.Exit(code=2)


@app.command("force-delete-vpc")
def force_delete_vpc(
    vpc_id: str = typer.Argument(..., help="VPC ID (vpc-...)"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region (default: from config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the deletion plan without deleting"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Directory for the residue report"),
):
    """Delete a VPC together with everything inside it."""
    try:
        if not vpc_id.startswith("vpc-"):
            console.print(f"✗ Invalid VPC ID: {vpc_id}", style="bold red")
            raise typer.Exit(code=2)

        target_region = region or config.region
        cleaner = _build_cleaner(target_region, report_dir)

        console.print(f"🔍 Inspecting {vpc_id} in {target_region}...")
        cluster = cleaner.collect_vpc(vpc_id, target_region)
        _execute(cleaner, cluster, dry_run, yes)

    except typer.Exit:
        raise
    except (ReclaimError, CredentialValidationError) as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error deleting VPC: {e}", style="bold red")
        logger.exception("Error in force-delete-vpc command")
        raise typer.Exit(code=2)


@app.command()
def verify(
    cluster_name: str = typer.Argument(..., help="Cluster identifier used in Name tags and resource names"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region (default: from config)"),
    report_dir: Optional[str] = typer.Option(None, "--report-dir", help="Directory for the verification report"),
):
    """Check that no resources of a cluster remain, without deleting anything.

    Exits with code 1 when anything is left, and writes a report that
    cleanup-from-report can consume.
    """
    try:
        target_region = region or config.region
        cleaner = _build_cleaner(target_region, report_dir)

        console.print(f"🔍 Verifying cleanup of [bold]{cluster_name}[/bold] in {target_region}...")
        result = cleaner.verify(cluster_name, target_region)

        _warn_unknown_types(result.unknown_types)
        _print_residue(result)
        if result.residue or result.unknown_types:
            raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except (ReclaimError, CredentialValidationError) as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error during verification: {e}", style="bold red")
        logger.exception("Error in verify command")
        raise typer.Exit(code=2)


@app.command()
def plan(
    cluster_name: str = typer.Argument(..., help="Cluster identifier used in Name tags and resource names"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region (default: from config)"),
):
    """Show the deletion order and dependency tiers for a cluster."""
    try:
        target_region = region or config.region
        cleaner = _build_cleaner(target_region)

        discovered = cleaner.collect(cluster_name, target_region)
        cluster = discovered.cluster
        _print_plan(cleaner, cluster, dry_run=True)

        tiers = cleaner.resolver.get_deletion_tiers(cluster.types_present())
        if tiers:
            console.print("[bold]Dependency Tiers:[/bold]")
            for tier, types in sorted(tiers.items()):
                console.print(f"  Tier {tier}: {', '.join(t.value for t in types)}")
            console.print()
        _warn_unknown_types(discovered.unknown_types)

    except typer.Exit:
        raise
    except (ReclaimError, CredentialValidationError) as e:
        console.print(f"✗ {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        console.print(f"✗ Error building plan: {e}", style="bold red")
        logger.exception("Error in plan command")
        raise typer.Exit(code=2)


# Audit commands group
audit_app = typer.Typer(help="Audit log commands")
app.add_typer(audit_app, name="audit")


@audit_app.command("list")
def audit_list(
    since: Optional[str] = typer.Option(None, "--since", help="Only operations on or after this date (YYYY-MM-DD)"),
):
    """List logged reclamation operations."""
    try:
        since_dt = None
        if since:
            try:
                since_dt = datetime.strptime(since, "%Y-%m-%d")
            except ValueError:
                console.print(f"✗ Invalid date format: {since}. Use YYYY-MM-DD", style="bold red")
                raise typer.Exit(code=2)

        storage = AuditStorage(str(config.audit_dir))
        operations = storage.query_operations(since=since_dt)

        if not operations:
            console.print("No operations found", style="yellow")
            return

        table = Table(title="Reclamation Operations", show_header=True, header_style="bold magenta")
        table.add_column("Operation ID", style="cyan", width=42)
        table.add_column("Cluster", width=20)
        table.add_column("Region", width=12)
        table.add_column("Mode", width=8)
        table.add_column("Status", width=10)
        table.add_column("Deleted", justify="right", width=8)
        table.add_column("Residue", justify="right", width=8)
        table.add_column("Timestamp", width=20)

        for data in operations:
            op = data["operation"]
            residue = (op.get("failed_count") or 0) + (op.get("orphaned_count") or 0)
            table.add_row(
                op["operation_id"],
                op.get("cluster_name") or "",
                op.get("region") or "",
                op["mode"],
                op["status"],
                str(op.get("succeeded_count") or 0),
                str(residue),
                op["timestamp"],
            )

        console.print()
        console.print(table)
        console.print(f"\nTotal Operations: {len(operations)}\n")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error listing operations: {e}", style="bold red")
        raise typer.Exit(code=2)


@audit_app.command("show")
def audit_show(
    operation_id: str = typer.Argument(..., help="Operation ID to display"),
):
    """Show the full audit log of one operation."""
    try:
        storage = AuditStorage(str(config.audit_dir))
        data = storage.get_operation(operation_id)
        if data is None:
            console.print(f"✗ Operation '{operation_id}' not found", style="bold red")
            console.print("\nList available operations with: reaper audit list")
            raise typer.Exit(code=1)

        console.print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), markup=False)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error showing operation: {e}", style="bold red")
        raise typer.Exit(code=2)


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
