"""
Verifier for AWS IAM identity proofs.

A proof is a signed STS ``GetCallerIdentity`` request. The verifier checks its
shape and its policy (host allow-list, freshness window, optional binding
header), then replays it to STS through an injected transport. Only a
successful replay establishes identity; every check before it is defense in
depth, and every failure is a typed ``AwsAuthPayloadError``.

Each attempt moves forward through:

    received -> structurally_validated -> policy_checked -> replayed -> accepted
                                                                   \\-> rejected

Usage:
    from aws_auth_payload.verifier import Verifier, VerifierConfig

    verifier = Verifier(
        VerifierConfig(
            allowed_hosts=frozenset({"sts.amazonaws.com"}),
            required_binding_header=("X-Vault-AWS-IAM-Server-ID", "vault.example.com"),
        )
    )
    identity = await verifier.verify(payload_json, timeout=5)
    print(identity.account_id, identity.canonical_arn)
"""

import asyncio
import datetime
import json
import logging
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlsplit

from .auth.canonical import CanonicalRequest, build_canonical_request, decode_query_pairs
from .auth.sigv4 import (
    ALGORITHM,
    MAX_PRESIGN_EXPIRES,
    CredentialScope,
    SignedRequest,
    host_from_url,
    parse_amz_date,
)
from .client import (
    FORM_CONTENT_TYPE,
    GET_CALLER_IDENTITY_ACTION,
    STS_API_VERSION,
    decode_kubernetes_token,
)
from .clock import SYSTEM_CLOCK, Clock
from .config import AuthPayloadConfig
from .endpoints import DEFAULT_STS_ENDPOINTS, GLOBAL_STS_HOST, StsEndpoint, StsEndpointTable
from .errors import (
    AwsAuthPayloadError,
    CanonicalizationError,
    IdentityRejectedError,
    MalformedPayloadError,
    PolicyRejectedError,
    TransportError,
    VerificationCancelledError,
    VerificationTimeoutError,
)
from .metrics import MetricsEmitter, get_metrics_emitter
from .payload import AwsAuthIamPayload, deserialize
from .tracing import add_identity_span_attributes, get_tracer
from .transport import HttpTransport, HttpxTransport, TransportResponse

logger = logging.getLogger(__name__)

PayloadInput = Union[SignedRequest, AwsAuthIamPayload, str, bytes, Mapping[str, Any]]

_SIGNATURE = re.compile(r"[0-9a-f]{64}")
_EXPECTED_ACTION = sorted([("Action", GET_CALLER_IDENTITY_ACTION), ("Version", STS_API_VERSION)])
_FORM_MEDIA_TYPE = FORM_CONTENT_TYPE.split(";")[0]
_PRESIGN_PARAMS = (
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "X-Amz-Expires",
    "X-Amz-SignedHeaders",
    "X-Amz-Signature",
)


class VerificationState(str, Enum):
    """States of one verification attempt."""
    RECEIVED = "received"
    STRUCTURALLY_VALIDATED = "structurally_validated"
    POLICY_CHECKED = "policy_checked"
    REPLAYED = "replayed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


_FORWARD = [
    VerificationState.RECEIVED,
    VerificationState.STRUCTURALLY_VALIDATED,
    VerificationState.POLICY_CHECKED,
    VerificationState.REPLAYED,
    VerificationState.ACCEPTED,
]


@dataclass
class VerificationAttempt:
    """Tracks the state of a single attempt; transitions only move forward."""
    state: VerificationState = VerificationState.RECEIVED
    history: list[VerificationState] = field(default_factory=lambda: [VerificationState.RECEIVED])

    @property
    def finished(self) -> bool:
        return self.state in (VerificationState.ACCEPTED, VerificationState.REJECTED)

    def advance(self, new_state: VerificationState) -> None:
        if self.finished:
            raise RuntimeError(f"Attempt already finished in state {self.state.value}")
        if new_state is not VerificationState.REJECTED:
            if _FORWARD.index(new_state) != _FORWARD.index(self.state) + 1:
                raise RuntimeError(f"Invalid transition {self.state.value} -> {new_state.value}")
        logger.debug(f"Verification attempt: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


@dataclass(frozen=True)
class CallerIdentity:
    """Identity established by a successful STS replay."""
    account_id: str
    arn: str
    user_id: str = ""
    raw_response: str = field(default="", repr=False)

    def _arn_parts(self) -> list[str]:
        return self.arn.split(":", 5)

    @property
    def partition(self) -> str:
        parts = self._arn_parts()
        return parts[1] if len(parts) == 6 else "aws"

    @property
    def principal_type(self) -> str:
        """"user", "assumed-role", "root", "federated-user" or "unknown"."""
        parts = self._arn_parts()
        if len(parts) != 6:
            return "unknown"
        resource = parts[5]
        if resource == "root":
            return "root"
        kind = resource.split("/", 1)[0]
        if kind in ("user", "assumed-role", "federated-user"):
            return kind
        return "unknown"

    @property
    def canonical_arn(self) -> str:
        """
        ARN of the principal itself.

        Assumed-role session ARNs
        (``arn:aws:sts::123456789012:assumed-role/Role/session``) map to the
        role ARN (``arn:aws:iam::123456789012:role/Role``); other ARNs are
        returned unchanged.
        """
        if self.principal_type != "assumed-role":
            return self.arn
        resource = self._arn_parts()[5]
        role_name = resource.split("/")[1]
        return f"arn:{self.partition}:iam::{self.account_id}:role/{role_name}"

    def to_dict(self) -> dict[str, str]:
        return {
            "account_id": self.account_id,
            "arn": self.arn,
            "canonical_arn": self.canonical_arn,
            "user_id": self.user_id,
            "principal_type": self.principal_type,
        }


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_caller_identity(body: bytes) -> CallerIdentity:
    """
    Parse an STS GetCallerIdentity response body.

    Accepts the XML response STS returns by default, the AWS JSON shape
    (``{"GetCallerIdentityResponse": {"GetCallerIdentityResult": {...}}}``)
    and a flat ``{"Account": ..., "Arn": ..., "UserId": ...}`` object.

    Raises:
        IdentityRejectedError: If the body cannot be parsed or lacks Account/Arn
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise IdentityRejectedError("STS response is not valid UTF-8", status_code=200) from e

    values: dict[str, Optional[str]] = {}
    if text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except ValueError as e:
            raise IdentityRejectedError(f"STS response is not valid JSON: {e}", status_code=200) from e
        if isinstance(data, dict) and "GetCallerIdentityResponse" in data:
            response = data["GetCallerIdentityResponse"]
            data = response.get("GetCallerIdentityResult") if isinstance(response, dict) else None
        if isinstance(data, dict):
            values = {key: data.get(key) for key in ("Account", "Arn", "UserId")}
    else:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise IdentityRejectedError(f"STS response is not valid XML: {e}", status_code=200) from e
        for elem in root.iter():
            name = _local_name(elem.tag)
            if name in ("Account", "Arn", "UserId") and name not in values:
                values[name] = (elem.text or "").strip()

    account = values.get("Account")
    arn = values.get("Arn")
    if not isinstance(account, str) or not account or not isinstance(arn, str) or not arn:
        raise IdentityRejectedError("STS response did not contain Account and Arn", status_code=200)

    user_id = values.get("UserId")
    return CallerIdentity(
        account_id=account,
        arn=arn,
        user_id=user_id if isinstance(user_id, str) else "",
        raw_response=text,
    )


def parse_sts_error_code(body: bytes) -> Optional[str]:
    """Extract the error code (e.g. ``SignatureDoesNotMatch``) from an STS error body."""
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            return None
        error = data.get("Error") if isinstance(data, dict) else None
        code = error.get("Code") if isinstance(error, dict) else None
        return code if isinstance(code, str) else None
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return None
    for elem in root.iter():
        if _local_name(elem.tag) == "Code" and elem.text:
            return elem.text.strip()
    return None


@dataclass(frozen=True)
class VerifierConfig:
    """
    Static verifier policy.

    Attributes:
        allowed_hosts: STS hosts a proof may target
        max_age: Oldest acceptable X-Amz-Date relative to now
        clock_skew_tolerance: How far in the future X-Amz-Date may be
        required_binding_header: (name, value) every proof must sign
        timeout_seconds: Default timeout for the STS replay
    """
    allowed_hosts: frozenset[str] = frozenset({GLOBAL_STS_HOST})
    max_age: datetime.timedelta = datetime.timedelta(minutes=5)
    clock_skew_tolerance: datetime.timedelta = datetime.timedelta(seconds=60)
    required_binding_header: Optional[tuple[str, str]] = None
    timeout_seconds: float = 10.0

    def __post_init__(self):
        object.__setattr__(self, "allowed_hosts", frozenset(h.lower() for h in self.allowed_hosts))
        if self.max_age < datetime.timedelta(0) or self.clock_skew_tolerance < datetime.timedelta(0):
            raise ValueError("max_age and clock_skew_tolerance must not be negative")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @classmethod
    def from_settings(cls, settings: AuthPayloadConfig) -> "VerifierConfig":
        """Derive verifier policy from the environment configuration."""
        binding = None
        if settings.server_id:
            binding = (settings.server_id_header, settings.server_id)
        return cls(
            allowed_hosts=frozenset(settings.allowed_sts_hosts),
            max_age=datetime.timedelta(seconds=settings.max_age_seconds),
            clock_skew_tolerance=datetime.timedelta(seconds=settings.clock_skew_seconds),
            required_binding_header=binding,
            timeout_seconds=settings.sts_timeout_seconds,
        )


@dataclass(frozen=True)
class _ParsedProof:
    """What structural validation learned about a request."""
    endpoint: StsEndpoint
    hostname: str
    timestamp: datetime.datetime
    access_key_id: str
    scope: CredentialScope
    signed_headers: tuple[str, ...]
    canonical_request: CanonicalRequest
    expires_in: Optional[int] = None


class Verifier:
    """
    Verifies identity proofs by replaying them to STS.

    The verifier keeps no per-attempt state, so one instance can verify many
    proofs concurrently.

    Attributes:
        config: Verifier policy
        transport: Capability used to replay requests to STS
        clock: Source of "now" for the freshness window
        endpoints: STS endpoint table
    """

    def __init__(
        self,
        config: Optional[VerifierConfig] = None,
        transport: Optional[HttpTransport] = None,
        clock: Optional[Clock] = None,
        endpoints: StsEndpointTable = DEFAULT_STS_ENDPOINTS,
        metrics: Optional[MetricsEmitter] = None,
    ):
        self.config = config or VerifierConfig()
        self.transport = transport or HttpxTransport()
        self.clock = clock or SYSTEM_CLOCK
        self.endpoints = endpoints
        self._metrics = metrics

    @property
    def metrics(self) -> MetricsEmitter:
        return self._metrics or get_metrics_emitter()

    async def verify(
        self,
        payload: PayloadInput,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CallerIdentity:
        """
        Verify a header-signed identity proof.

        Args:
            payload: Signed request, envelope, JSON blob or parsed JSON object
            timeout: Seconds to wait for STS; the configured default when None
            cancel_event: Setting this event aborts the STS replay

        Returns:
            CallerIdentity established by STS

        Raises:
            MalformedPayloadError: Payload unparseable or structurally invalid
            PolicyRejectedError: Host, freshness or binding policy violated
            VerificationTimeoutError: STS did not answer in time
            VerificationCancelledError: ``cancel_event`` was set during the replay
            TransportError: The replay failed at the network level
            IdentityRejectedError: STS rejected the request
        """
        return await self._verify(payload, presigned=False, timeout=timeout, cancel_event=cancel_event)

    async def verify_presigned_url(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CallerIdentity:
        """
        Verify a pre-signed GetCallerIdentity URL.

        Args:
            url: The pre-signed URL
            headers: Signed headers that travel beside the URL (e.g. ``x-k8s-aws-id``)
            timeout: Seconds to wait for STS
            cancel_event: Setting this event aborts the STS replay
        """
        request_headers: dict[str, str] = {}
        try:
            request_headers["Host"] = host_from_url(url)
        except CanonicalizationError as e:
            request = _InvalidProof(MalformedPayloadError(f"Invalid pre-signed URL: {e.message}"))
        else:
            for name, value in (headers or {}).items():
                if name.lower() != "host":
                    request_headers[name] = value
            request = SignedRequest(method="GET", url=url, headers=request_headers, body=b"")
        return await self._verify(request, presigned=True, timeout=timeout, cancel_event=cancel_event)

    async def verify_kubernetes_token(
        self,
        token: str,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CallerIdentity:
        """
        Verify a Kubernetes AWS IAM authenticator token.

        When a binding header is configured (normally ``x-k8s-aws-id`` with the
        cluster ID), it is sent with the replay and must be one of the URL's
        signed headers.
        """
        try:
            url = decode_kubernetes_token(token)
        except ValueError as e:
            return await self._verify(
                _InvalidProof(MalformedPayloadError(f"Invalid Kubernetes token: {e}")),
                presigned=True,
                timeout=timeout,
                cancel_event=cancel_event,
            )
        headers = {}
        if self.config.required_binding_header is not None:
            name, value = self.config.required_binding_header
            headers[name] = value
        return await self.verify_presigned_url(url, headers, timeout=timeout, cancel_event=cancel_event)

    def verify_blocking(self, payload: PayloadInput, timeout: Optional[float] = None) -> CallerIdentity:
        """Run ``verify`` to completion from synchronous code."""
        return asyncio.run(self.verify(payload, timeout=timeout))

    async def _verify(
        self,
        payload: Union[PayloadInput, "_InvalidProof"],
        presigned: bool,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> CallerIdentity:
        attempt = VerificationAttempt()
        started = time.monotonic()
        sts_host: Optional[str] = None
        tracer = get_tracer()

        with tracer.start_as_current_span("sts_identity.verify") as span:
            try:
                if isinstance(payload, _InvalidProof):
                    raise payload.error
                if isinstance(payload, SignedRequest):
                    request = payload
                else:
                    request = deserialize(payload, self.endpoints)

                proof = self._validate_structure(request, presigned)
                sts_host = proof.hostname
                add_identity_span_attributes(span, sts_host=proof.hostname, region=proof.endpoint.region)
                attempt.advance(VerificationState.STRUCTURALLY_VALIDATED)

                self._check_policy(request, proof)
                attempt.advance(VerificationState.POLICY_CHECKED)

                response = await self._replay(request, proof, timeout, cancel_event)
                attempt.advance(VerificationState.REPLAYED)

                if not response.ok:
                    error_code = parse_sts_error_code(response.body)
                    raise IdentityRejectedError(
                        f"STS rejected the identity proof with HTTP {response.status_code}"
                        + (f": {error_code}" if error_code else ""),
                        status_code=response.status_code,
                        error_code=error_code,
                    )
                identity = parse_caller_identity(response.body)
                attempt.advance(VerificationState.ACCEPTED)
            except AwsAuthPayloadError as e:
                if e.stage is None:
                    e.stage = attempt.state.value
                attempt.advance(VerificationState.REJECTED)
                add_identity_span_attributes(span, outcome=e.kind)
                logger.warning(f"AWS identity proof rejected after {e.stage}: {e.kind}: {e.message}")
                self.metrics.record_verification(
                    accepted=False,
                    latency_ms=(time.monotonic() - started) * 1000,
                    sts_host=sts_host,
                    error_type=e.kind,
                    stage=e.stage,
                )
                raise

            add_identity_span_attributes(
                span,
                account_id=identity.account_id,
                arn=identity.arn,
                outcome="accepted",
            )
            logger.info(f"Verified AWS identity {identity.arn} (account {identity.account_id})")
            self.metrics.record_verification(
                accepted=True,
                latency_ms=(time.monotonic() - started) * 1000,
                sts_host=sts_host,
            )
            return identity

    def _validate_structure(self, request: SignedRequest, presigned: bool) -> _ParsedProof:
        try:
            if presigned:
                return self._parse_presigned(request)
            return self._parse_header_signed(request)
        except CanonicalizationError as e:
            raise MalformedPayloadError(f"Request cannot be canonicalized: {e.message}") from e

    def _parse_target(self, request: SignedRequest) -> tuple[StsEndpoint, str, str]:
        """Check URL and Host; return (endpoint, hostname, raw query)."""
        try:
            parts = urlsplit(request.url)
            port = parts.port
        except ValueError as e:
            raise MalformedPayloadError(f"Invalid request URL: {request.url!r}") from e
        if parts.scheme != "https":
            raise MalformedPayloadError("Request URL must use https")
        if parts.username is not None or parts.password is not None or parts.fragment:
            raise MalformedPayloadError("Request URL must not carry userinfo or a fragment")
        if port not in (None, 443):
            raise MalformedPayloadError(f"Request URL must use the default port, not {port}")

        hostname = (parts.hostname or "").lower()
        endpoint = self.endpoints.lookup_host(hostname)
        if endpoint is None:
            raise MalformedPayloadError(f"Request URL does not target an STS endpoint: {hostname!r}")
        if parts.path not in ("", "/"):
            raise MalformedPayloadError(f"Request path must be '/', not {parts.path!r}")

        seen: set[str] = set()
        for name in request.headers:
            if name.lower() in seen:
                raise MalformedPayloadError(f"Header {name!r} appears more than once")
            seen.add(name.lower())

        host = request.get_header("host")
        if host is None:
            raise MalformedPayloadError("Host header is missing")
        if host.lower() != hostname:
            raise MalformedPayloadError(f"Host header {host!r} does not match request URL host {hostname!r}")
        return endpoint, hostname, parts.query

    def _parse_scope(
        self,
        credential: str,
        amz_date: str,
        endpoint: StsEndpoint,
    ) -> tuple[str, CredentialScope, datetime.datetime]:
        try:
            timestamp = parse_amz_date(amz_date)
        except ValueError as e:
            raise MalformedPayloadError(str(e)) from e

        access_key_id, _, scope_text = credential.partition("/")
        if not access_key_id:
            raise MalformedPayloadError("Credential has no access key ID")
        try:
            scope = CredentialScope.from_string(scope_text)
        except ValueError as e:
            raise MalformedPayloadError(str(e)) from e

        if scope.service != "sts":
            raise MalformedPayloadError(f"Credential scope service must be sts, not {scope.service!r}")
        if scope.region != endpoint.region:
            raise MalformedPayloadError(
                f"Credential scope region {scope.region!r} does not match endpoint region {endpoint.region!r}"
            )
        if scope.date != amz_date[:8]:
            raise MalformedPayloadError("Credential scope date does not match X-Amz-Date")
        return access_key_id, scope, timestamp

    def _parse_signed_headers(
        self,
        value: str,
        request: SignedRequest,
        required: tuple[str, ...],
    ) -> tuple[str, ...]:
        names = value.split(";")
        if any(not name for name in names):
            raise MalformedPayloadError(f"SignedHeaders contains an empty name: {value!r}")
        if names != sorted({name.lower() for name in names}):
            raise MalformedPayloadError(f"SignedHeaders is not canonicalized: {value!r}")
        for name in required:
            if name not in names:
                raise MalformedPayloadError(f"SignedHeaders must include {name}")
        for name in names:
            if request.get_header(name) is None:
                raise MalformedPayloadError(f"Signed header {name!r} is not present in the request")
        return tuple(names)

    def _check_action(self, pairs: list[tuple[str, str]]) -> None:
        if sorted(pairs) != _EXPECTED_ACTION:
            raise MalformedPayloadError(
                f"Request must be exactly Action={GET_CALLER_IDENTITY_ACTION}&Version={STS_API_VERSION}"
            )

    def _parse_header_signed(self, request: SignedRequest) -> _ParsedProof:
        if request.method not in ("POST", "GET"):
            raise MalformedPayloadError(f"Unsupported HTTP method: {request.method!r}")
        endpoint, hostname, query = self._parse_target(request)

        authorization = request.get_header("authorization")
        amz_date = request.get_header("x-amz-date")
        if authorization is None or amz_date is None:
            raise MalformedPayloadError("Authorization and X-Amz-Date headers are required")

        params = _parse_authorization(authorization)
        access_key_id, scope, timestamp = self._parse_scope(params["Credential"], amz_date, endpoint)
        signed_headers = self._parse_signed_headers(
            params["SignedHeaders"], request, required=("host", "x-amz-date"),
        )
        if request.get_header("x-amz-security-token") is not None and "x-amz-security-token" not in signed_headers:
            raise MalformedPayloadError("X-Amz-Security-Token is present but not signed")

        if request.method == "POST":
            if query:
                raise MalformedPayloadError("POST requests must not carry a query string")
            content_type = request.get_header("content-type") or ""
            if content_type.split(";")[0].strip().lower() != _FORM_MEDIA_TYPE:
                raise MalformedPayloadError(f"Unexpected Content-Type for POST: {content_type!r}")
            try:
                body_text = request.body.decode("ascii")
            except UnicodeDecodeError as e:
                raise MalformedPayloadError("Request body is not ASCII form data") from e
            self._check_action(decode_query_pairs(body_text))
        else:
            if request.body:
                raise MalformedPayloadError("GET requests must not carry a body")
            self._check_action(decode_query_pairs(query))

        canonical_request = build_canonical_request(
            method=request.method,
            url=request.url,
            headers=request.headers,
            body=request.body,
            signed_headers=signed_headers,
        )
        logger.debug(f"Reconstructed canonical request:\n{canonical_request}")

        return _ParsedProof(
            endpoint=endpoint,
            hostname=hostname,
            timestamp=timestamp,
            access_key_id=access_key_id,
            scope=scope,
            signed_headers=signed_headers,
            canonical_request=canonical_request,
        )

    def _parse_presigned(self, request: SignedRequest) -> _ParsedProof:
        if request.method != "GET":
            raise MalformedPayloadError("Pre-signed URLs must use GET")
        if request.body:
            raise MalformedPayloadError("Pre-signed requests must not carry a body")
        if request.get_header("authorization") is not None:
            raise MalformedPayloadError("Pre-signed requests must not carry an Authorization header")
        endpoint, hostname, query = self._parse_target(request)

        signing: dict[str, str] = {}
        action: list[tuple[str, str]] = []
        for key, value in decode_query_pairs(query):
            if key.startswith("X-Amz-"):
                if key in signing:
                    raise MalformedPayloadError(f"Query parameter {key} appears more than once")
                signing[key] = value
            else:
                action.append((key, value))
        self._check_action(action)

        missing = [name for name in _PRESIGN_PARAMS if name not in signing]
        if missing:
            raise MalformedPayloadError(f"Pre-signed URL is missing {', '.join(missing)}")
        unknown = set(signing) - set(_PRESIGN_PARAMS) - {"X-Amz-Security-Token"}
        if unknown:
            raise MalformedPayloadError(f"Unexpected query parameters: {', '.join(sorted(unknown))}")
        if signing["X-Amz-Algorithm"] != ALGORITHM:
            raise MalformedPayloadError(f"Unsupported algorithm: {signing['X-Amz-Algorithm']!r}")
        if not _SIGNATURE.fullmatch(signing["X-Amz-Signature"]):
            raise MalformedPayloadError("X-Amz-Signature is not a hex SHA-256 HMAC")
        try:
            expires_in = int(signing["X-Amz-Expires"])
        except ValueError as e:
            raise MalformedPayloadError("X-Amz-Expires is not an integer") from e
        if not 1 <= expires_in <= MAX_PRESIGN_EXPIRES or not signing["X-Amz-Expires"].isdigit():
            raise MalformedPayloadError(f"X-Amz-Expires out of range: {signing['X-Amz-Expires']!r}")

        access_key_id, scope, timestamp = self._parse_scope(
            signing["X-Amz-Credential"], signing["X-Amz-Date"], endpoint,
        )
        signed_headers = self._parse_signed_headers(
            signing["X-Amz-SignedHeaders"], request, required=("host",),
        )

        canonical_request = build_canonical_request(
            method="GET",
            url=request.url,
            headers=request.headers,
            body=b"",
            signed_headers=signed_headers,
            exclude_query=("X-Amz-Signature",),
        )
        logger.debug(f"Reconstructed canonical request:\n{canonical_request}")

        return _ParsedProof(
            endpoint=endpoint,
            hostname=hostname,
            timestamp=timestamp,
            access_key_id=access_key_id,
            scope=scope,
            signed_headers=signed_headers,
            canonical_request=canonical_request,
            expires_in=expires_in,
        )

    def _check_policy(self, request: SignedRequest, proof: _ParsedProof) -> None:
        if proof.hostname not in self.config.allowed_hosts:
            raise PolicyRejectedError(
                PolicyRejectedError.HOST_NOT_ALLOWED,
                f"STS host {proof.hostname!r} is not allowed",
            )

        now = self.clock.now()
        if proof.timestamp < now - self.config.max_age:
            raise PolicyRejectedError(
                PolicyRejectedError.STALE,
                f"Request timestamp {proof.timestamp.isoformat()} is older than {self.config.max_age}",
            )
        if proof.timestamp > now + self.config.clock_skew_tolerance:
            raise PolicyRejectedError(
                PolicyRejectedError.NOT_YET_VALID,
                f"Request timestamp {proof.timestamp.isoformat()} is in the future",
            )
        if proof.expires_in is not None:
            if now > proof.timestamp + datetime.timedelta(seconds=proof.expires_in):
                raise PolicyRejectedError(
                    PolicyRejectedError.EXPIRED,
                    f"Pre-signed URL expired {proof.expires_in} seconds after signing",
                )

        if self.config.required_binding_header is not None:
            name, expected = self.config.required_binding_header
            actual = request.get_header(name)
            if actual is None:
                raise PolicyRejectedError(
                    PolicyRejectedError.BINDING_HEADER_MISSING,
                    f"Required header {name} is missing",
                )
            if name.lower() not in proof.signed_headers:
                raise PolicyRejectedError(
                    PolicyRejectedError.BINDING_HEADER_UNSIGNED,
                    f"Required header {name} is not signed",
                )
            if actual != expected:
                raise PolicyRejectedError(
                    PolicyRejectedError.BINDING_MISMATCH,
                    f"Header {name} does not match this verifier",
                )

    async def _replay(
        self,
        request: SignedRequest,
        proof: _ParsedProof,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
    ) -> TransportResponse:
        """Send the exact request to STS, bounded by timeout and cancel_event."""
        effective_timeout = self.config.timeout_seconds if timeout is None else timeout
        tracer = get_tracer()

        with tracer.start_as_current_span("sts_identity.replay") as span:
            span.set_attribute("aws.sts.host", proof.hostname)
            started = time.monotonic()

            send = asyncio.ensure_future(self.transport.send(
                request.method,
                request.url,
                request.headers,
                request.body,
                effective_timeout,
            ))
            waiters = {send}
            cancel_wait = None
            if cancel_event is not None:
                cancel_wait = asyncio.ensure_future(cancel_event.wait())
                waiters.add(cancel_wait)

            try:
                done, _ = await asyncio.wait(
                    waiters, timeout=effective_timeout, return_when=asyncio.FIRST_COMPLETED,
                )
            except asyncio.CancelledError:
                send.cancel()
                raise
            finally:
                if cancel_wait is not None:
                    cancel_wait.cancel()

            if send not in done:
                send.cancel()
                await asyncio.wait({send})
                if cancel_wait is not None and cancel_wait in done:
                    raise VerificationCancelledError("Verification was cancelled before STS answered")
                raise VerificationTimeoutError(effective_timeout)

            try:
                response = send.result()
            except AwsAuthPayloadError:
                raise
            except Exception as e:
                raise TransportError(f"STS replay failed: {e}") from e

            latency_ms = (time.monotonic() - started) * 1000
            span.set_attribute("http.status_code", response.status_code)
            self.metrics.record_sts_replay(response.status_code, latency_ms, proof.hostname)
            return response


class _InvalidProof:
    """Carries an error found before a request could even be built."""

    def __init__(self, error: AwsAuthPayloadError):
        self.error = error


def _parse_authorization(value: str) -> dict[str, str]:
    """
    Parse ``AWS4-HMAC-SHA256 Credential=..., SignedHeaders=..., Signature=...``.

    Raises:
        MalformedPayloadError: On any other shape
    """
    prefix = ALGORITHM + " "
    if not value.startswith(prefix):
        raise MalformedPayloadError("Authorization header is not AWS SigV4")

    params: dict[str, str] = {}
    for part in value[len(prefix):].split(","):
        key, sep, item = part.strip().partition("=")
        if not sep:
            raise MalformedPayloadError("Invalid Authorization header: missing '='")
        if key in params:
            raise MalformedPayloadError(f"Invalid Authorization header: duplicate key {key!r}")
        params[key] = item

    if set(params) != {"Credential", "SignedHeaders", "Signature"}:
        raise MalformedPayloadError("Authorization header must have Credential, SignedHeaders and Signature")
    if not _SIGNATURE.fullmatch(params["Signature"]):
        raise MalformedPayloadError("Authorization signature is not a hex SHA-256 HMAC")
    return params
