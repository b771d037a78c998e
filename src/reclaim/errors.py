"""Reclamation errors and provider error classification."""

from __future__ import annotations

from typing import Union

from botocore.exceptions import BotoCoreError, ClientError

from ..models.deletion_record import OutcomeKind


class ReclaimError(Exception):
    """Base class for structural reclamation errors.

    Structural errors abort the run: no safe deletion plan can be computed.
    Per-resource failures are never raised, they are recorded instead.
    """


class DiscoveryError(ReclaimError):
    """Raised for malformed cluster identifiers or unusable discovery input."""


class OrdererError(ReclaimError):
    """Raised when a resource type is missing from the deletion order table."""


class ReportFormatError(ReclaimError):
    """Raised when a residue report cannot be parsed."""


# Error codes that mean the resource (or the rule being revoked) is already gone
NOT_FOUND_CODES = frozenset(
    {
        "InvalidInstanceID.NotFound",
        "InvalidGroup.NotFound",
        "InvalidGroupId.NotFound",
        "InvalidSubnetID.NotFound",
        "InvalidVpcID.NotFound",
        "InvalidRouteTableID.NotFound",
        "InvalidInternetGatewayID.NotFound",
        "InvalidNetworkAclID.NotFound",
        "InvalidNetworkInterfaceID.NotFound",
        "InvalidAllocationID.NotFound",
        "InvalidAssociationID.NotFound",
        "InvalidKeyPair.NotFound",
        "InvalidPermission.NotFound",
        "NatGatewayNotFound",
        "NatGatewayMalformed.NotFound",
        "LoadBalancerNotFound",
        "Gateway.NotAttached",
    }
)

# Still referenced by something else; retrying later may succeed
CONFLICT_CODES = frozenset(
    {
        "DependencyViolation",
        "ResourceInUse",
        "InvalidIPAddress.InUse",
        "InvalidNetworkInterface.InUse",
        "IncorrectState",
        "IncorrectInstanceState",
        "InvalidState",
    }
)

TRANSIENT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "Unavailable",
        "InternalError",
        "InternalFailure",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


def error_message(error: Union[ClientError, BotoCoreError]) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Message", str(error))
    return str(error)


def is_not_found(error: ClientError) -> bool:
    code = error_code(error)
    return code in NOT_FOUND_CODES or code.endswith(".NotFound")


def classify_error(error: Union[ClientError, BotoCoreError]) -> OutcomeKind:
    """Map a provider error to an outcome kind.

    Args:
        error: Botocore client or transport error

    Returns:
        NOT_FOUND, CONFLICT, TRANSIENT or PERMANENT
    """
    if isinstance(error, BotoCoreError):
        # Endpoint, connection and read timeout failures
        return OutcomeKind.TRANSIENT

    if is_not_found(error):
        return OutcomeKind.NOT_FOUND

    code = error_code(error)
    if code in CONFLICT_CODES:
        return OutcomeKind.CONFLICT
    if code in TRANSIENT_CODES:
        return OutcomeKind.TRANSIENT

    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    if status >= 500:
        return OutcomeKind.TRANSIENT

    return OutcomeKind.PERMANENT
