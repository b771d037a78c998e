"""AWS credential validation."""

from __future__ import annotations

import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .client import create_boto_client

logger = logging.getLogger(__name__)


class CredentialValidationError(Exception):
    """Raised when AWS credentials are missing or rejected."""


def validate_credentials(profile_name: Optional[str] = None, region_name: Optional[str] = None) -> str:
    """Validate AWS credentials with STS.

    Args:
        profile_name: AWS profile name (optional)
        region_name: AWS region used for the STS endpoint (optional)

    Returns:
        AWS account ID of the authenticated identity

    Raises:
        CredentialValidationError: If no credentials are found or they are rejected
    """
    try:
        sts = create_boto_client("sts", region_name=region_name, profile_name=profile_name)
        identity = sts.get_caller_identity()
    except NoCredentialsError:
        raise CredentialValidationError(
            "No AWS credentials found. Configure a profile with 'aws configure' or pass --profile."
        )
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        raise CredentialValidationError(f"AWS credentials were rejected: {error_code}")
    except BotoCoreError as e:
        raise CredentialValidationError(f"Unable to validate AWS credentials: {e}")

    account_id = identity["Account"]
    logger.debug(f"Authenticated as {identity.get('Arn')} in account {account_id}")
    return account_id
