"""Boto3 client factory.

All AWS clients used by the reaper are created here so that profile handling
and retry configuration live in one place.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig

logger = logging.getLogger(__name__)

# Botocore's own retries are kept low; the deleter applies its own backoff policy
# and needs to see throttling errors to classify them.
DEFAULT_BOTO_CONFIG = BotoConfig(
    retries={"max_attempts": 2, "mode": "standard"},
    connect_timeout=10,
    read_timeout=30,
)


def create_session(profile_name: Optional[str] = None, region_name: Optional[str] = None) -> boto3.Session:
    """Create a boto3 session for the given profile and region."""
    if profile_name:
        return boto3.Session(profile_name=profile_name, region_name=region_name)
    return boto3.Session(region_name=region_name)


def create_boto_client(
    service_name: str,
    region_name: Optional[str] = None,
    profile_name: Optional[str] = None,
) -> Any:
    """Create a boto3 client.

    Args:
        service_name: AWS service name (e.g., "ec2", "elbv2")
        region_name: AWS region (optional)
        profile_name: AWS profile name (optional)

    Returns:
        Configured boto3 client
    """
    session = create_session(profile_name=profile_name, region_name=region_name)
    logger.debug(f"Creating {service_name} client in {region_name or session.region_name}")
    return session.client(service_name, region_name=region_name, config=DEFAULT_BOTO_CONFIG)
