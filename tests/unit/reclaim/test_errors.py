"""Tests for provider error classification."""

from __future__ import annotations

import pytest
from botocore.exceptions import EndpointConnectionError, ReadTimeoutError

from src.models.deletion_record import OutcomeKind
from src.reclaim.errors import (
    DiscoveryError,
    OrdererError,
    ReclaimError,
    ReportFormatError,
    classify_error,
    error_code,
    error_message,
    is_not_found,
)
from tests.fixtures.clusters import client_error


class TestClassifyError:
    """Test suite for classify_error."""

    @pytest.mark.parametrize(
        "code",
        [
            "InvalidInstanceID.NotFound",
            "InvalidGroup.NotFound",
            "InvalidAllocationID.NotFound",
            "NatGatewayNotFound",
            "LoadBalancerNotFound",
            "InvalidSomethingNew.NotFound",
        ],
    )
    def test_not_found_codes(self, code: str) -> None:
        """Test NotFound codes, including unlisted *.NotFound codes."""
        assert classify_error(client_error(code)) == OutcomeKind.NOT_FOUND

    @pytest.mark.parametrize("code", ["DependencyViolation", "ResourceInUse", "InvalidIPAddress.InUse"])
    def test_conflict_codes(self, code: str) -> None:
        """Test in-use codes are conflicts."""
        assert classify_error(client_error(code)) == OutcomeKind.CONFLICT

    @pytest.mark.parametrize("code", ["Throttling", "RequestLimitExceeded", "ServiceUnavailable", "InternalError"])
    def test_transient_codes(self, code: str) -> None:
        """Test throttling and service errors are transient."""
        assert classify_error(client_error(code)) == OutcomeKind.TRANSIENT

    def test_unknown_5xx_is_transient(self) -> None:
        """Test an unrecognised code with a 5xx status is transient."""
        assert classify_error(client_error("SomethingOdd", status=503)) == OutcomeKind.TRANSIENT

    @pytest.mark.parametrize("code", ["UnauthorizedOperation", "AccessDenied", "InvalidParameterValue"])
    def test_permanent_codes(self, code: str) -> None:
        """Test authorization and validation errors are permanent."""
        assert classify_error(client_error(code)) == OutcomeKind.PERMANENT

    def test_connection_errors_are_transient(self) -> None:
        """Test botocore transport errors are transient."""
        assert classify_error(EndpointConnectionError(endpoint_url="https://ec2")) == OutcomeKind.TRANSIENT
        assert classify_error(ReadTimeoutError(endpoint_url="https://ec2")) == OutcomeKind.TRANSIENT


class TestErrorHelpers:
    """Test suite for error helper functions."""

    def test_error_code_and_message(self) -> None:
        """Test code and message are read from the response."""
        error = client_error("DependencyViolation", "vpc-1 has dependencies")

        assert error_code(error) == "DependencyViolation"
        assert error_message(error) == "vpc-1 has dependencies"

    def test_is_not_found(self) -> None:
        """Test NotFound detection."""
        assert is_not_found(client_error("InvalidVpcID.NotFound")) is True
        assert is_not_found(client_error("DependencyViolation")) is False

    def test_structural_errors_share_base(self) -> None:
        """Test every structural error is a ReclaimError."""
        for error_class in (DiscoveryError, OrdererError, ReportFormatError):
            assert issubclass(error_class, ReclaimError)
