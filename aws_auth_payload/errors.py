"""
Error taxonomy for AWS IAM identity proofs.

Every failure raised by the signer, the payload codec and the verifier is an
``AwsAuthPayloadError`` subclass, so callers can catch one base class at the
boundary and still inspect exactly why a proof failed.
"""

from typing import Optional


class AwsAuthPayloadError(Exception):
    """Base class for all errors raised by this package."""

    # Whether a caller may retry the same operation with backoff.
    retryable: bool = False

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        # Verifier state in which the attempt stopped (None outside the verifier).
        self.stage = stage
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Short, stable name of the error kind for logs and metrics."""
        return type(self).__name__


class CredentialError(AwsAuthPayloadError):
    """Missing or invalid credential material."""


class CanonicalizationError(AwsAuthPayloadError):
    """Disallowed characters or malformed URI/headers while canonicalizing."""


class MalformedPayloadError(AwsAuthPayloadError):
    """The payload cannot be parsed or is missing required fields."""


class PolicyRejectedError(AwsAuthPayloadError):
    """The request violates verifier policy (host, freshness, binding)."""

    HOST_NOT_ALLOWED = "host_not_allowed"
    STALE = "stale"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    BINDING_HEADER_MISSING = "binding_header_missing"
    BINDING_HEADER_UNSIGNED = "binding_header_unsigned"
    BINDING_MISMATCH = "binding_mismatch"

    def __init__(self, reason: str, message: str, stage: Optional[str] = None):
        self.reason = reason
        super().__init__(f"{message} ({reason})", stage)


class VerificationTimeoutError(AwsAuthPayloadError):
    """STS did not answer the replay within the caller's timeout."""

    retryable = True

    def __init__(self, timeout: float, stage: Optional[str] = None):
        self.timeout = timeout
        super().__init__(f"STS replay timed out after {timeout:.2f} seconds", stage)


class VerificationCancelledError(AwsAuthPayloadError):
    """The caller cancelled an in-flight verification."""


class TransportError(AwsAuthPayloadError):
    """The STS replay failed at the network level for a reason other than a timeout."""


class IdentityRejectedError(AwsAuthPayloadError):
    """STS refused the replayed request, or answered without an identity."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message, stage)
