"""
AWS SigV4 signing for STS identity proofs.

This module derives scoped signing keys and produces fully signed requests
without sending them anywhere. The signed request is the identity proof: a
verifier replays it to STS, and only a caller holding the real secret key could
have produced a signature STS accepts.

Usage:
    from aws_auth_payload.auth import AWSCredentials, SigV4Auth

    auth = SigV4Auth(region="us-east-1", service="sts", credentials=credentials)
    signed = auth.sign_request(
        method="POST",
        url="https://sts.amazonaws.com/",
        headers={"Content-Type": "application/x-www-form-urlencoded; charset=utf-8"},
        body=b"Action=GetCallerIdentity&Version=2011-06-15",
    )
    signed.headers["Authorization"]

    # Query-string signing (pre-signed URL)
    url = auth.presign_url(
        url="https://sts.amazonaws.com/?Action=GetCallerIdentity&Version=2011-06-15",
        expires_in=60,
    )
"""

import datetime
import hashlib
import hmac
import logging
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union
from urllib.parse import urlsplit

from ..clock import SYSTEM_CLOCK, Clock
from ..errors import CanonicalizationError
from .canonical import CanonicalRequest, build_canonical_request, uri_encode
from .credentials import AWSCredentials

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
TERMINATOR = "aws4_request"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_STAMP_FORMAT = "%Y%m%d"

# Longest lifetime AWS accepts for a pre-signed URL (7 days)
MAX_PRESIGN_EXPIRES = 604800

# Headers that are sent but never signed
UNSIGNED_HEADERS = frozenset({"authorization", "user-agent", "expect", "x-amzn-trace-id"})

# Headers the signer sets itself
_SIGNER_OWNED_HEADERS = frozenset({"host", "x-amz-date", "x-amz-security-token", "authorization"})

_AMZ_DATE = re.compile(r"\d{8}T\d{6}Z")
_DATE_STAMP = re.compile(r"\d{8}")


def format_amz_date(timestamp: datetime.datetime) -> str:
    """Format a datetime as ``YYYYMMDDTHHMMSSZ`` in UTC."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(datetime.timezone.utc)
    return timestamp.strftime(AMZ_DATE_FORMAT)


def parse_amz_date(value: str) -> datetime.datetime:
    """
    Parse an ``X-Amz-Date`` value into an aware UTC datetime.

    Raises:
        ValueError: If the value is not exactly ``YYYYMMDDTHHMMSSZ``
    """
    if not _AMZ_DATE.fullmatch(value):
        raise ValueError(f"Invalid X-Amz-Date: {value!r}")
    parsed = datetime.datetime.strptime(value, AMZ_DATE_FORMAT)
    return parsed.replace(tzinfo=datetime.timezone.utc)


@dataclass(frozen=True)
class CredentialScope:
    """Date, region and service a signing key is bound to."""
    date: str
    region: str
    service: str = "sts"
    terminator: str = TERMINATOR

    @classmethod
    def for_timestamp(
        cls,
        timestamp: datetime.datetime,
        region: str,
        service: str = "sts",
    ) -> "CredentialScope":
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(datetime.timezone.utc)
        return cls(date=timestamp.strftime(DATE_STAMP_FORMAT), region=region, service=service)

    @classmethod
    def from_string(cls, value: str) -> "CredentialScope":
        """
        Parse ``<date>/<region>/<service>/aws4_request``.

        Raises:
            ValueError: If the scope is malformed
        """
        parts = value.split("/")
        if len(parts) != 4 or not all(parts):
            raise ValueError(f"Invalid credential scope: {value!r}")
        date, region, service, terminator = parts
        if not _DATE_STAMP.fullmatch(date):
            raise ValueError(f"Invalid credential scope date: {date!r}")
        if terminator != TERMINATOR:
            raise ValueError(f"Invalid credential scope terminator: {terminator!r}")
        return cls(date=date, region=region, service=service, terminator=terminator)

    def __str__(self) -> str:
        return f"{self.date}/{self.region}/{self.service}/{self.terminator}"


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    """Create HMAC-SHA256 signature."""
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_key: str, scope: CredentialScope) -> bytes:
    """
    Derive the signing key for SigV4.

    kDate = HMAC("AWS4" + secret, date), then region, service and terminator
    are chained through HMAC-SHA256 in turn.

    Args:
        secret_key: AWS secret access key
        scope: Credential scope the key is bound to

    Returns:
        32-byte signing key
    """
    k_date = _hmac_sha256(f"AWS4{secret_key}".encode("utf-8"), scope.date)
    k_region = _hmac_sha256(k_date, scope.region)
    k_service = _hmac_sha256(k_region, scope.service)
    return _hmac_sha256(k_service, scope.terminator)


def string_to_sign(amz_date: str, scope: CredentialScope, canonical_request: CanonicalRequest) -> str:
    """Create the string to sign for SigV4."""
    return "\n".join([
        ALGORITHM,
        amz_date,
        str(scope),
        canonical_request.digest(),
    ])


def compute_signature(signing_key: bytes, to_sign: str) -> str:
    """Hex HMAC-SHA256 of the string to sign."""
    return hmac.new(signing_key, to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def host_from_url(url: str) -> str:
    """
    Return the ``Host`` header value for a URL: lower-cased host, plus the
    port when it is not the scheme default.
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise CanonicalizationError(f"Invalid URL: {url!r}") from e
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise CanonicalizationError(f"URL must be absolute http(s): {url!r}")
    default_port = 443 if parts.scheme == "https" else 80
    if port is not None and port != default_port:
        return f"{parts.hostname}:{port}"
    return parts.hostname


def _with_caller_headers(host: str, headers: Optional[Mapping[str, str]]) -> dict[str, str]:
    """Merge caller headers under ``Host``; signer-owned names are dropped."""
    merged = {"Host": host}
    seen: set[str] = set()
    for name, value in (headers or {}).items():
        lowered = name.lower()
        if lowered in seen:
            raise CanonicalizationError(f"Header {name!r} is given more than once (names are case-insensitive)")
        seen.add(lowered)
        if lowered not in _SIGNER_OWNED_HEADERS:
            merged[name] = value
    return merged


@dataclass
class SignedRequest:
    """A fully signed HTTP request, ready to be serialized or replayed."""
    method: str
    url: str
    headers: dict[str, str]
    body: bytes = b""
    # Set by the signer; not part of the serialized request
    canonical_request: Optional[CanonicalRequest] = field(default=None, compare=False, repr=False)

    def get_header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def host(self) -> Optional[str]:
        return self.get_header("host")


class SigV4Auth:
    """
    AWS Signature Version 4 signer.

    Signing is pure: no network I/O and no shared mutable state, so one instance
    can sign concurrently from several threads or tasks.

    Attributes:
        region: Signing region (e.g., "us-east-1")
        service: Signing service name ("sts" for identity proofs)
        credentials: AWS credentials for signing
        clock: Source of the request timestamp
    """

    ALGORITHM = ALGORITHM

    def __init__(
        self,
        region: str,
        service: str = "sts",
        credentials: Optional[AWSCredentials] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize SigV4Auth.

        Args:
            region: AWS region
            service: AWS service name
            credentials: Credentials to sign with; read from the default chain when None
            clock: Clock for timestamps; wall clock when None
        """
        if credentials is None:
            from .credentials import get_aws_credentials
            credentials = get_aws_credentials()
        self.region = region
        self.service = service
        self.credentials = credentials
        self.clock = clock or SYSTEM_CLOCK

    def _scope(self, timestamp: datetime.datetime) -> CredentialScope:
        return CredentialScope.for_timestamp(timestamp, self.region, self.service)

    def sign_request(
        self,
        method: str,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Union[bytes, str] = b"",
    ) -> SignedRequest:
        """
        Sign an HTTP request using AWS SigV4 header authentication.

        ``Host``, ``X-Amz-Date``, ``X-Amz-Security-Token`` (when the credentials
        carry a session token) and ``Authorization`` are set by the signer; any
        caller-supplied values for them are replaced. Every other caller header
        is signed, so an extra header such as a server ID binds the proof to
        one verifier.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Full request URL
            headers: Optional extra headers to include and sign
            body: Request body

        Returns:
            SignedRequest including the Authorization header

        Raises:
            CredentialError: If the access key or secret key is missing
            CanonicalizationError: If the request cannot be canonicalized
        """
        self.credentials.validate()
        if isinstance(body, str):
            body = body.encode("utf-8")

        timestamp = self.clock.now()
        amz_date = format_amz_date(timestamp)
        scope = self._scope(timestamp)

        signed_headers = _with_caller_headers(host_from_url(url), headers)
        signed_headers["X-Amz-Date"] = amz_date
        if self.credentials.session_token:
            signed_headers["X-Amz-Security-Token"] = self.credentials.session_token

        canonical_request = build_canonical_request(
            method=method,
            url=url,
            headers=signed_headers,
            body=body,
            signed_headers=[n for n in signed_headers if n.lower() not in UNSIGNED_HEADERS],
        )

        signature = compute_signature(
            derive_signing_key(self.credentials.secret_key, scope),
            string_to_sign(amz_date, scope, canonical_request),
        )

        signed_headers["Authorization"] = (
            f"{self.ALGORITHM} "
            f"Credential={self.credentials.access_key}/{scope}, "
            f"SignedHeaders={canonical_request.signed_headers}, "
            f"Signature={signature}"
        )

        return SignedRequest(
            method=method,
            url=url,
            headers=signed_headers,
            body=body,
            canonical_request=canonical_request,
        )

    def presign_url(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        expires_in: int = 60,
        method: str = "GET",
    ) -> str:
        """
        Create a pre-signed URL using SigV4 query-string authentication.

        The signing parameters are appended to the URL's query. Headers passed
        here are signed but not part of the URL; whoever uses the URL must send
        them with the same values.

        Args:
            url: Full request URL, optionally with query parameters
            headers: Extra headers to sign (``Host`` is always signed)
            expires_in: Validity in seconds (1 to 604800)
            method: HTTP method

        Returns:
            The pre-signed URL
        """
        self.credentials.validate()
        if not 1 <= expires_in <= MAX_PRESIGN_EXPIRES:
            raise ValueError(f"expires_in must be between 1 and {MAX_PRESIGN_EXPIRES} seconds")

        timestamp = self.clock.now()
        amz_date = format_amz_date(timestamp)
        scope = self._scope(timestamp)

        signed_headers = _with_caller_headers(host_from_url(url), headers)
        header_names = sorted({n.lower() for n in signed_headers if n.lower() not in UNSIGNED_HEADERS})

        params = [
            ("X-Amz-Algorithm", self.ALGORITHM),
            ("X-Amz-Credential", f"{self.credentials.access_key}/{scope}"),
            ("X-Amz-Date", amz_date),
            ("X-Amz-Expires", str(expires_in)),
            ("X-Amz-SignedHeaders", ";".join(header_names)),
        ]
        if self.credentials.session_token:
            params.append(("X-Amz-Security-Token", self.credentials.session_token))

        base, _, fragment = url.partition("#")
        if fragment:
            raise CanonicalizationError("Pre-signed URLs cannot carry a fragment")
        separator = "&" if urlsplit(base).query else ("" if base.endswith("?") else "?")
        query = "&".join(f"{uri_encode(k)}={uri_encode(v)}" for k, v in params)
        unsigned_url = f"{base}{separator}{query}"

        canonical_request = build_canonical_request(
            method=method,
            url=unsigned_url,
            headers=signed_headers,
            body=b"",
            signed_headers=header_names,
        )
        signature = compute_signature(
            derive_signing_key(self.credentials.secret_key, scope),
            string_to_sign(amz_date, scope, canonical_request),
        )
        return f"{unsigned_url}&X-Amz-Signature={signature}"
