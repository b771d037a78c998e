"""Cluster reclamation module.

This module deletes every AWS resource that belongs to a cluster in
dependency order, verifies convergence, and reports what was left behind.

Classes:
    ResourceCleaner: Main orchestrator for reclamation runs
    ResourceDiscovery: Live, VPC and record-file discovery
    DependencyResolver: Deletion order and grouping
    ResourceDeleter: Grouped deletion with retry
    ConvergenceVerifier: Post-deletion existence checks
    AuditStorage: Audit log storage and retrieval
"""

from __future__ import annotations

__all__ = [
    "ResourceCleaner",
    "ResourceDiscovery",
    "DependencyResolver",
    "ResourceDeleter",
    "ConvergenceVerifier",
    "AuditStorage",
]
