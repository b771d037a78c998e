"""Residue report generation and parsing.

The report is a UTF-8 text file with a greppable resource list:

    Uncleaned Resources:
    - Instance: i-0123456789abcdef0
    - VPC: my-cluster-vpc

A report written by one run can be parsed back into a Cluster to drive a
narrower follow-up cleanup pass.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from ..models.cluster_resource import Cluster, Resource, ResourceState, ResourceType
from .dependency import DependencyResolver
from .errors import ReportFormatError

logger = logging.getLogger(__name__)

RESOURCE_SECTION_MARKER = "Uncleaned Resources:"

# Report token for each resource type. Generator and parser share this table.
REPORT_TOKENS: dict[ResourceType, str] = {
    ResourceType.INSTANCE: "Instance",
    ResourceType.LOAD_BALANCER: "LoadBalancer",
    ResourceType.NETWORK_INTERFACE: "NetworkInterface",
    ResourceType.SECURITY_GROUP: "SecurityGroup",
    ResourceType.SUBNET: "Subnet",
    ResourceType.NAT_GATEWAY: "NatGateway",
    ResourceType.ELASTIC_IP: "ElasticIP",
    ResourceType.ROUTE_TABLE: "RouteTable",
    ResourceType.NETWORK_ACL: "NetworkAcl",
    ResourceType.INTERNET_GATEWAY: "InternetGateway",
    ResourceType.VPC: "VPC",
    ResourceType.KEY_PAIR: "KeyPair",
}
TOKEN_TYPES: dict[str, ResourceType] = {token: resource_type for resource_type, token in REPORT_TOKENS.items()}

RESOURCE_LINE = re.compile(r"^- (?P<token>[A-Za-z]+): (?P<id>\S.*?)\s*$")
HEADER_LINE = re.compile(r"^(?P<key>Cluster|Region): (?P<value>\S.*?)\s*$")


@dataclass(frozen=True)
class Report:
    """Residue report.

    Attributes:
        cluster_name: Cluster identifier
        generated_at: Generation time (UTC)
        residue: Resources left behind, in deletion order
        region: AWS region
    """

    cluster_name: str
    generated_at: datetime
    residue: tuple[Resource, ...] = field(default_factory=tuple)
    region: str = ""

    @property
    def passed(self) -> bool:
        return not self.residue

    def counts(self) -> Counter:
        return Counter(resource.resource_type for resource in self.residue)

    def render(self) -> str:
        """Render the report text."""
        title = "Cluster Cleanup Verification Report"
        lines = [
            title,
            "=" * len(title),
            f"Cluster: {self.cluster_name}",
            f"Region: {self.region}",
            f"Date: {self.generated_at.isoformat()}",
            f"Total Issues Found: {len(self.residue)}",
            "",
            "Residue by Type:",
        ]
        counts = self.counts()
        for resource_type in REPORT_TOKENS:
            if counts.get(resource_type):
                lines.append(f"  {REPORT_TOKENS[resource_type]}: {counts[resource_type]}")
        if not counts:
            lines.append("  (none)")

        lines.extend(
            [
                "",
                f"Verification Result: {'PASSED' if self.passed else 'FAILED'}",
                "",
                RESOURCE_SECTION_MARKER,
            ]
        )
        for resource in self.residue:
            lines.append(f"- {REPORT_TOKENS[resource.resource_type]}: {resource.resource_id}")

        lines.extend(
            [
                "",
                "Next Steps:",
                "1. Review the uncleaned resources above",
                "2. Re-run cleanup from this report: reaper cleanup-from-report <report-file>",
                "3. Manually remove anything that still fails and re-run verification",
                "",
                "Notes:",
                "- Some resources take time to be fully deleted (instances, NAT gateways, load balancers)",
                "- Resources marked orphaned reported a successful delete but were still present",
                "",
            ]
        )
        return "\n".join(lines)


def generate(
    cluster_name: str,
    residue: Iterable[Resource],
    region: str = "",
    generated_at: Optional[datetime] = None,
) -> Report:
    """Build a report from a residue set.

    Resources are emitted in deletion order so the report reads like the plan
    that would be re-run.
    """
    ordered = DependencyResolver().order_resources(residue)
    return Report(
        cluster_name=cluster_name,
        generated_at=generated_at or datetime.now(timezone.utc),
        residue=tuple(ordered),
        region=region,
    )


def report_filename(report: Report, sequence: int = 1) -> str:
    """File name for a report; later reports in the same second get a -N suffix."""
    stamp = report.generated_at.strftime("%Y%m%d-%H%M%S")
    suffix = f"-{sequence}" if sequence > 1 else ""
    return f"verification-report-{report.cluster_name}-{stamp}{suffix}.txt"


def write_report(report: Report, directory: Union[str, Path]) -> Path:
    """Write a report to a directory.

    Existing reports are never overwritten: when the name is taken, the next
    free -N suffix is used.

    Args:
        report: Report to write
        directory: Target directory (created if missing)

    Returns:
        Path of the written file
    """
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)

    sequence = 1
    while True:
        path = target_dir / report_filename(report, sequence)
        try:
            f = open(path, "x", encoding="utf-8")
        except FileExistsError:
            sequence += 1
            continue
        with f:
            f.write(report.render())
        break

    logger.info(f"Wrote report with {len(report.residue)} resource(s) to {path}")
    return path


def parse_report(
    path: Union[str, Path],
    region: Optional[str] = None,
    default_region: Optional[str] = None,
) -> Cluster:
    """Rebuild a cluster from a report file.

    Lines before the resource section are only read for the Cluster and
    Region headers. The resource list ends at the first blank line after the
    marker; lines with unknown type tokens are skipped.

    Args:
        path: Report file path
        region: Region override (wins over the Region header)
        default_region: Region used when neither an override nor a Region header is given

    Returns:
        Cluster with source "report" and every resource in DISCOVERED state

    Raises:
        FileNotFoundError: If the report file does not exist
        ReportFormatError: If the report has no resource section or no region
    """
    report_path = Path(path)
    with open(report_path, "r", encoding="utf-8") as f:
        lines = f.read().splitlines()

    return parse_report_lines(lines, region=region, default_region=default_region, source=str(report_path))


def parse_report_lines(
    lines: Iterable[str],
    region: Optional[str] = None,
    default_region: Optional[str] = None,
    source: str = "<report>",
) -> Cluster:
    """Parse report text already split into lines. See parse_report."""
    headers: dict[str, str] = {}
    entries: list[tuple[ResourceType, str]] = []
    in_section = False
    found_marker = False

    for number, raw_line in enumerate(lines, start=1):
        line = raw_line.rstrip()

        if not in_section:
            if line.strip() == RESOURCE_SECTION_MARKER:
                in_section = True
                found_marker = True
                continue
            match = HEADER_LINE.match(line)
            if match and match.group("key") not in headers:
                headers[match.group("key")] = match.group("value")
            continue

        if not line.strip():
            break

        match = RESOURCE_LINE.match(line.strip())
        if not match:
            logger.warning(f"{source}:{number}: ignoring unrecognised line: {line.strip()}")
            continue
        resource_type = TOKEN_TYPES.get(match.group("token"))
        if resource_type is None:
            logger.warning(f"{source}:{number}: ignoring unknown resource type '{match.group('token')}'")
            continue
        entries.append((resource_type, match.group("id")))

    if not found_marker:
        raise ReportFormatError(f"{source}: no '{RESOURCE_SECTION_MARKER}' section found")

    resolved_region = region or headers.get("Region") or default_region
    if not resolved_region:
        raise ReportFormatError(f"{source}: no Region header; pass a region explicitly")

    cluster_name = headers.get("Cluster", "")
    cluster = Cluster(name=cluster_name, region=resolved_region, source="report")
    for resource_type, resource_id in entries:
        cluster.add(
            Resource(
                resource_type=resource_type,
                resource_id=resource_id,
                region=resolved_region,
                cluster_tag=cluster_name,
                state=ResourceState.DISCOVERED,
            )
        )

    logger.info(f"Parsed {len(cluster)} resource(s) from {source}")
    return cluster
