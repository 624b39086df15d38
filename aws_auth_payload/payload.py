"""
Payload envelope for AWS IAM identity proofs.

The envelope is the HashiCorp Vault IAM login shape:

    {
        "iam_http_request_method": "POST",
        "iam_request_url": "<base64 URL>",
        "iam_request_body": "<base64 body>",
        "iam_request_headers": {"Authorization": ["AWS4-HMAC-SHA256 ..."], ...}
    }

Header values are carried exactly as signed (case and whitespace included);
trimming only ever happens inside canonicalization. ``iam_request_headers`` is
also accepted as a base64-encoded JSON string, which is what the Vault CLI and
older helper scripts send.

Usage:
    from aws_auth_payload.payload import serialize, deserialize

    blob = serialize(signed_request)
    request = deserialize(blob)
"""

import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Union
from urllib.parse import urlsplit

from .auth.sigv4 import SignedRequest, host_from_url
from .endpoints import DEFAULT_STS_ENDPOINTS, StsEndpointTable
from .errors import CanonicalizationError, MalformedPayloadError

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("Authorization", "X-Amz-Date", "Host")
ALLOWED_METHODS = ("POST", "GET")

_REDACTED_HEADERS = frozenset({"authorization", "x-amz-security-token"})


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: Any, field_name: str) -> bytes:
    if not isinstance(value, str):
        raise MalformedPayloadError(f"{field_name} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayloadError(f"{field_name} is not valid base64") from e


@dataclass
class AwsAuthIamPayload:
    """
    Wire form of a signed STS GetCallerIdentity request.

    Attributes:
        iam_http_request_method: HTTP method used in the signed request
        iam_request_url: Base64-encoded URL of the signed request
        iam_request_body: Base64-encoded body of the signed request
        iam_request_headers: Headers of the signed request, one value per name
    """
    iam_http_request_method: str
    iam_request_url: str
    iam_request_body: str
    iam_request_headers: dict[str, list[str]]

    @classmethod
    def from_signed_request(cls, request: SignedRequest) -> "AwsAuthIamPayload":
        return cls(
            iam_http_request_method=request.method,
            iam_request_url=_b64encode(request.url.encode("utf-8")),
            iam_request_body=_b64encode(request.body),
            iam_request_headers={name: [value] for name, value in request.headers.items()},
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AwsAuthIamPayload":
        """
        Build a payload from its JSON object form.

        Raises:
            MalformedPayloadError: If a field is missing or has the wrong type
        """
        if not isinstance(data, Mapping):
            raise MalformedPayloadError("Payload must be a JSON object")

        missing = [
            name for name in (
                "iam_http_request_method",
                "iam_request_url",
                "iam_request_body",
                "iam_request_headers",
            )
            if name not in data
        ]
        if missing:
            raise MalformedPayloadError(f"Payload is missing fields: {', '.join(missing)}")

        method = data["iam_http_request_method"]
        if not isinstance(method, str) or not method:
            raise MalformedPayloadError("iam_http_request_method must be a non-empty string")
        for name in ("iam_request_url", "iam_request_body"):
            if not isinstance(data[name], str):
                raise MalformedPayloadError(f"{name} must be a base64 string")

        return cls(
            iam_http_request_method=method,
            iam_request_url=data["iam_request_url"],
            iam_request_body=data["iam_request_body"],
            iam_request_headers=_parse_headers(data["iam_request_headers"]),
        )

    @classmethod
    def from_json(cls, blob: Union[str, bytes]) -> "AwsAuthIamPayload":
        try:
            data = json.loads(blob)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedPayloadError(f"Payload is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self, indent: Union[int, None] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def redacted(self) -> dict[str, Any]:
        """Dictionary form safe for logs: credentials-bearing header values are masked."""
        data = self.to_dict()
        data["iam_request_headers"] = {
            name: ["<redacted>"] if name.lower() in _REDACTED_HEADERS else values
            for name, values in self.iam_request_headers.items()
        }
        return data

    def to_signed_request(
        self,
        endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
    ) -> SignedRequest:
        """
        Decode the envelope back into the signed request.

        Args:
            endpoints: STS endpoint table used to recognize STS hosts

        Returns:
            SignedRequest with the exact method, URL, header values and body

        Raises:
            MalformedPayloadError: If fields cannot be decoded, required headers
                are absent, or the request does not target an STS host
        """
        method = self.iam_http_request_method
        if method not in ALLOWED_METHODS:
            raise MalformedPayloadError(f"Unsupported HTTP method: {method!r}")

        try:
            url = _b64decode(self.iam_request_url, "iam_request_url").decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayloadError("iam_request_url is not valid UTF-8") from e
        body = _b64decode(self.iam_request_body, "iam_request_body")

        headers: dict[str, str] = {}
        seen: set[str] = set()
        for name, values in self.iam_request_headers.items():
            lowered = name.lower()
            if lowered in seen:
                raise MalformedPayloadError(f"Header {name!r} appears more than once")
            seen.add(lowered)
            if len(values) != 1:
                raise MalformedPayloadError(f"Header {name!r} must have exactly one value")
            headers[name] = values[0]

        request = SignedRequest(method=method, url=url, headers=headers, body=body)

        missing = [name for name in REQUIRED_HEADERS if request.get_header(name) is None]
        if missing:
            raise MalformedPayloadError(f"Payload is missing required headers: {', '.join(missing)}")

        try:
            url_host = host_from_url(url)
        except CanonicalizationError as e:
            raise MalformedPayloadError(f"Invalid request URL: {e}") from e
        hostname = urlsplit(url).hostname or ""
        if not endpoints.is_sts_host(hostname):
            raise MalformedPayloadError(f"Request URL does not target an STS endpoint: {hostname!r}")
        if request.host.lower() != url_host:
            raise MalformedPayloadError(
                f"Host header {request.host!r} does not match request URL host {url_host!r}"
            )

        return request


def _parse_headers(value: Any) -> dict[str, list[str]]:
    """Accept headers as a JSON object or as base64-encoded JSON."""
    if isinstance(value, str):
        raw = _b64decode(value, "iam_request_headers")
        try:
            value = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedPayloadError("iam_request_headers is not valid JSON") from e

    if not isinstance(value, Mapping):
        raise MalformedPayloadError("iam_request_headers must be an object")

    headers: dict[str, list[str]] = {}
    for name, values in value.items():
        if isinstance(values, str):
            values = [values]
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise MalformedPayloadError(f"Header {name!r} values must be strings")
        headers[name] = list(values)
    return headers


def serialize(request: SignedRequest) -> str:
    """Encode a signed request as the JSON payload blob."""
    payload = AwsAuthIamPayload.from_signed_request(request)
    logger.debug(f"AWS payload: {payload.redacted()}")
    return payload.to_json()


def deserialize(
    blob: Union[str, bytes, Mapping[str, Any], AwsAuthIamPayload],
    endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
) -> SignedRequest:
    """
    Decode a payload blob (JSON text, parsed object or envelope) into a signed request.

    Raises:
        MalformedPayloadError: If the payload is unparseable, incomplete or not for STS
    """
    if isinstance(blob, AwsAuthIamPayload):
        payload = blob
    elif isinstance(blob, (str, bytes)):
        payload = AwsAuthIamPayload.from_json(blob)
    else:
        payload = AwsAuthIamPayload.from_dict(blob)
    return payload.to_signed_request(endpoints)
