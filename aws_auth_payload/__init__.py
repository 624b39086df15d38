"""AWS IAM identity proofs: sign STS GetCallerIdentity requests and verify them by replay."""

from .auth import AWSCredentials, SignedRequest, SigV4Auth, get_aws_credentials
from .client import (
    build_iam_payload,
    decode_kubernetes_token,
    kubernetes_token,
    presigned_url,
    sign_get_caller_identity,
)
from .clock import SYSTEM_CLOCK, Clock, FixedClock, SystemClock
from .endpoints import DEFAULT_STS_ENDPOINTS, StsEndpoint, StsEndpointTable
from .errors import (
    AwsAuthPayloadError,
    CanonicalizationError,
    CredentialError,
    IdentityRejectedError,
    MalformedPayloadError,
    PolicyRejectedError,
    TransportError,
    VerificationCancelledError,
    VerificationTimeoutError,
)
from .metrics import AuthMetricName, MetricsEmitter, get_metrics_emitter, init_metrics
from .payload import AwsAuthIamPayload, deserialize, serialize
from .transport import HttpTransport, HttpxTransport, TransportResponse
from .verifier import (
    CallerIdentity,
    VerificationState,
    Verifier,
    VerifierConfig,
    parse_caller_identity,
)

__all__ = [
    # Signing
    "AWSCredentials",
    "SignedRequest",
    "SigV4Auth",
    "get_aws_credentials",
    "build_iam_payload",
    "sign_get_caller_identity",
    "presigned_url",
    "kubernetes_token",
    "decode_kubernetes_token",
    # Payload envelope
    "AwsAuthIamPayload",
    "serialize",
    "deserialize",
    # Verification
    "Verifier",
    "VerifierConfig",
    "VerificationState",
    "CallerIdentity",
    "parse_caller_identity",
    # Capabilities
    "Clock",
    "SystemClock",
    "FixedClock",
    "SYSTEM_CLOCK",
    "HttpTransport",
    "HttpxTransport",
    "TransportResponse",
    "StsEndpoint",
    "StsEndpointTable",
    "DEFAULT_STS_ENDPOINTS",
    # Errors
    "AwsAuthPayloadError",
    "CredentialError",
    "CanonicalizationError",
    "MalformedPayloadError",
    "PolicyRejectedError",
    "VerificationTimeoutError",
    "VerificationCancelledError",
    "TransportError",
    "IdentityRejectedError",
    # Metrics
    "AuthMetricName",
    "MetricsEmitter",
    "get_metrics_emitter",
    "init_metrics",
]
