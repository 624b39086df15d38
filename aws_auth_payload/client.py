"""
Principal-side builders for AWS IAM identity proofs.

Vault's AWS IAM auth method takes a signed POST to STS ``GetCallerIdentity``;
the Kubernetes AWS IAM authenticator takes a pre-signed GET URL. Both are
built here from caller-supplied credentials, without any network I/O.

Usage:
    from aws_auth_payload.client import build_iam_payload, presigned_url

    payload = build_iam_payload(
        credentials,
        region="us-east-1",
        additional_headers={"X-Vault-AWS-IAM-Server-ID": "vault.example.com"},
    )
    print(payload.to_json())

    url = presigned_url(credentials, additional_headers={"x-k8s-aws-id": "my-cluster"})
"""

import base64
import logging
from typing import Mapping, Optional

from .auth.credentials import AWSCredentials
from .auth.sigv4 import SignedRequest, SigV4Auth
from .clock import Clock
from .endpoints import DEFAULT_STS_ENDPOINTS, StsEndpointTable
from .metrics import get_metrics_emitter
from .payload import AwsAuthIamPayload
from .tracing import traced

logger = logging.getLogger(__name__)

GET_CALLER_IDENTITY_ACTION = "GetCallerIdentity"
STS_API_VERSION = "2011-06-15"
GET_CALLER_IDENTITY_PARAMS = f"Action={GET_CALLER_IDENTITY_ACTION}&Version={STS_API_VERSION}"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=utf-8"

VAULT_SERVER_ID_HEADER = "X-Vault-AWS-IAM-Server-ID"
K8S_CLUSTER_ID_HEADER = "x-k8s-aws-id"
K8S_TOKEN_PREFIX = "k8s-aws-v1."
K8S_TOKEN_EXPIRES = 60


def sign_get_caller_identity(
    credentials: AWSCredentials,
    region: Optional[str] = None,
    additional_headers: Optional[Mapping[str, str]] = None,
    clock: Optional[Clock] = None,
    method: str = "POST",
    endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
) -> SignedRequest:
    """
    Sign an STS GetCallerIdentity request.

    Args:
        credentials: AWS credentials to sign with
        region: STS region; the global endpoint (signed as us-east-1) when None
        additional_headers: Extra headers to sign, e.g. a verifier server ID
        clock: Clock for the request timestamp
        method: "POST" sends the action as a form body, "GET" in the query
        endpoints: STS endpoint table

    Returns:
        SignedRequest for the chosen endpoint
    """
    endpoint = endpoints.endpoint_for(region)
    auth = SigV4Auth(
        region=endpoint.region,
        service="sts",
        credentials=credentials,
        clock=clock,
    )

    headers = {
        name: value
        for name, value in (additional_headers or {}).items()
        if name.lower() != "content-type"
    }
    if method == "POST":
        headers["Content-Type"] = FORM_CONTENT_TYPE
        return auth.sign_request(
            method="POST",
            url=endpoint.url,
            headers=headers,
            body=GET_CALLER_IDENTITY_PARAMS.encode("utf-8"),
        )
    if method == "GET":
        return auth.sign_request(
            method="GET",
            url=f"{endpoint.url}?{GET_CALLER_IDENTITY_PARAMS}",
            headers=headers,
        )
    raise ValueError(f"Unsupported method for GetCallerIdentity: {method!r}")


@traced("aws_auth.build_iam_payload")
def build_iam_payload(
    credentials: AWSCredentials,
    region: Optional[str] = None,
    additional_headers: Optional[Mapping[str, str]] = None,
    clock: Optional[Clock] = None,
    method: str = "POST",
    endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
) -> AwsAuthIamPayload:
    """
    Build a login payload for AWS IAM authentication.

    This is the payload Vault's AWS IAM auth method expects. If no region is
    given, the global STS endpoint is used.
    """
    logger.info("Building login payload for AWS authentication")
    request = sign_get_caller_identity(
        credentials,
        region=region,
        additional_headers=additional_headers,
        clock=clock,
        method=method,
        endpoints=endpoints,
    )
    payload = AwsAuthIamPayload.from_signed_request(request)
    logger.debug(f"AWS payload: {payload.redacted()}")
    get_metrics_emitter().record_payload_signed(kind="iam_payload", host=request.host or "")
    return payload


@traced("aws_auth.presigned_url")
def presigned_url(
    credentials: AWSCredentials,
    region: Optional[str] = None,
    additional_headers: Optional[Mapping[str, str]] = None,
    expires_in: int = 60,
    clock: Optional[Clock] = None,
    endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
) -> str:
    """
    Generate a pre-signed URL to STS GetCallerIdentity.

    This is the form used by the Kubernetes AWS IAM authenticator. Headers in
    ``additional_headers`` are signed and must be sent along with the URL.
    """
    logger.info("Building pre-signed URL for AWS authentication")
    endpoint = endpoints.endpoint_for(region)
    auth = SigV4Auth(
        region=endpoint.region,
        service="sts",
        credentials=credentials,
        clock=clock,
    )
    url = auth.presign_url(
        url=f"{endpoint.url}?{GET_CALLER_IDENTITY_PARAMS}",
        headers=additional_headers,
        expires_in=expires_in,
    )
    get_metrics_emitter().record_payload_signed(kind="presigned_url", host=endpoint.host)
    return url


def kubernetes_token(
    credentials: AWSCredentials,
    cluster_id: str,
    region: Optional[str] = None,
    clock: Optional[Clock] = None,
    endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
) -> str:
    """
    Create a bearer token for the Kubernetes AWS IAM authenticator.

    The token is ``k8s-aws-v1.`` followed by the unpadded URL-safe base64 of a
    pre-signed GetCallerIdentity URL bound to ``cluster_id``.
    """
    url = presigned_url(
        credentials,
        region=region,
        additional_headers={K8S_CLUSTER_ID_HEADER: cluster_id},
        expires_in=K8S_TOKEN_EXPIRES,
        clock=clock,
        endpoints=endpoints,
    )
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{K8S_TOKEN_PREFIX}{encoded}"


def decode_kubernetes_token(token: str) -> str:
    """
    Recover the pre-signed URL from a Kubernetes AWS IAM authenticator token.

    Raises:
        ValueError: If the token does not have the expected prefix or encoding
    """
    if not token.startswith(K8S_TOKEN_PREFIX):
        raise ValueError("Token does not start with k8s-aws-v1.")
    encoded = token[len(K8S_TOKEN_PREFIX):]
    if not encoded:
        raise ValueError("Token has no payload")
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
        return raw.decode("utf-8")
    except (ValueError, UnicodeError) as e:
        raise ValueError(f"Token is not valid base64: {e}") from e
