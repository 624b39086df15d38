"""
SigV4 canonical request construction.

The canonical request is:

    METHOD \\n
    CanonicalURI \\n
    CanonicalQueryString \\n
    CanonicalHeaders \\n
    \\n
    SignedHeaders \\n
    HashedPayload

Every function here is strict: input that cannot be canonicalized unambiguously
(control characters, malformed percent-escapes, invalid header names, non-ASCII
header values) raises ``CanonicalizationError`` instead of being passed through.
Signer and verifier share these functions, so both sides always derive the same
string from the same request.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence, Union
from urllib.parse import quote, unquote, urlsplit

from ..errors import CanonicalizationError

HeaderValue = Union[str, Sequence[str]]

# SHA-256 digest of an empty string
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

# RFC 7230 token characters
_HEADER_NAME = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_METHOD = re.compile(r"[A-Z]+")
_WHITESPACE_RUN = re.compile(r"[ \t]+")
# A '%' that does not start a two-digit hex escape
_BAD_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _has_control_or_space(value: str) -> bool:
    return any(ord(c) <= 0x20 or ord(c) == 0x7F for c in value)


def hash_payload(body: Union[bytes, str]) -> str:
    """Create the lower-case hex SHA-256 of the payload."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def uri_encode(value: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set."""
    return quote(value, safe="")


def canonical_uri(path: str) -> str:
    """
    Canonicalize a URI path.

    Dot segments are resolved and empty segments dropped, then every segment is
    URI-encoded with ``/`` kept as the separator. The path is treated as its
    wire form, so an existing ``%XX`` is encoded again (``%`` becomes ``%25``),
    as AWS does for every service except S3.
    """
    if path == "":
        return "/"
    if _has_control_or_space(path):
        raise CanonicalizationError(f"URI path contains control characters or spaces: {path!r}")
    if not path.startswith("/"):
        raise CanonicalizationError(f"URI path is not absolute: {path!r}")

    segments: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)

    result = "/" + "/".join(uri_encode(segment) for segment in segments)
    if path.endswith("/") and segments:
        result += "/"
    return result


def _decode_component(component: str) -> str:
    try:
        return unquote(component, errors="strict")
    except UnicodeDecodeError as e:
        raise CanonicalizationError(f"Query component is not valid UTF-8: {component!r}") from e


def decode_query_pairs(query: str) -> list[tuple[str, str]]:
    """
    Split a raw query string into decoded ``(key, value)`` pairs, in order.

    ``+`` is a literal plus sign, not a space.

    Raises:
        CanonicalizationError: On raw spaces, control or non-ASCII characters,
            or malformed percent-escapes
    """
    if not query:
        return []
    if any(not 0x21 <= ord(c) <= 0x7E for c in query):
        raise CanonicalizationError(f"Query string contains characters outside the allowed set: {query!r}")
    if _BAD_PERCENT.search(query):
        raise CanonicalizationError(f"Query string contains a malformed percent-escape: {query!r}")

    pairs = []
    for piece in query.split("&"):
        if not piece:
            continue
        key, _, value = piece.partition("=")
        pairs.append((_decode_component(key), _decode_component(value)))
    return pairs


def canonical_query_string(query: str, exclude: Iterable[str] = ()) -> str:
    """
    Canonicalize a raw query string.

    Keys and values are decoded, re-encoded with ``uri_encode``, then sorted by
    encoded key and then by encoded value. Parameters whose decoded key is in
    ``exclude`` (e.g. ``X-Amz-Signature`` for presigned URLs) are skipped.
    """
    excluded = set(exclude)
    encoded = sorted(
        (uri_encode(key), uri_encode(value))
        for key, value in decode_query_pairs(query)
        if key not in excluded
    )
    return "&".join(f"{key}={value}" for key, value in encoded)


def canonical_header_value(value: str) -> str:
    """Trim a header value and collapse internal whitespace runs to one space."""
    for c in value:
        code = ord(c)
        if (code < 0x20 and c != "\t") or code >= 0x7F:
            raise CanonicalizationError(f"Header value contains a disallowed character: {value!r}")
    return _WHITESPACE_RUN.sub(" ", value.strip(" \t"))


def normalize_headers(headers: Mapping[str, HeaderValue]) -> dict[str, str]:
    """
    Lower-case header names, canonicalize values and merge repeats.

    Returns:
        Mapping of lower-cased name to comma-joined canonical value, sorted by name
    """
    merged: dict[str, list[str]] = {}
    for name, value in headers.items():
        if not _HEADER_NAME.fullmatch(name):
            raise CanonicalizationError(f"Invalid header name: {name!r}")
        values = [value] if isinstance(value, str) else list(value)
        merged.setdefault(name.lower(), []).extend(canonical_header_value(v) for v in values)
    return {name: ",".join(values) for name, values in sorted(merged.items())}


def canonical_headers(
    headers: Mapping[str, HeaderValue],
    signed_headers: Optional[Iterable[str]] = None,
) -> tuple[str, str]:
    """
    Build the canonical headers block and the signed headers list.

    Args:
        headers: Request headers
        signed_headers: Names to sign; all headers when None

    Returns:
        Tuple of (canonical headers block, semicolon-joined signed header names)

    Raises:
        CanonicalizationError: If a header to sign is not present
    """
    normalized = normalize_headers(headers)
    if signed_headers is None:
        names = list(normalized)
    else:
        names = sorted({name.lower() for name in signed_headers})
        missing = [name for name in names if name not in normalized]
        if missing:
            raise CanonicalizationError(f"Signed headers not present in request: {', '.join(missing)}")

    block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    return block, ";".join(names)


@dataclass(frozen=True)
class CanonicalRequest:
    """The exact request representation that SigV4 signs."""
    method: str
    canonical_uri: str
    canonical_query: str
    canonical_headers: str
    signed_headers: str
    payload_hash: str

    def to_string(self) -> str:
        return "\n".join([
            self.method,
            self.canonical_uri,
            self.canonical_query,
            self.canonical_headers,
            self.signed_headers,
            self.payload_hash,
        ])

    def digest(self) -> str:
        """Hex SHA-256 of the canonical request, as used in the string to sign."""
        return hashlib.sha256(self.to_string().encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return self.to_string()


def build_canonical_request(
    method: str,
    url: str,
    headers: Mapping[str, HeaderValue],
    body: Union[bytes, str] = b"",
    signed_headers: Optional[Iterable[str]] = None,
    payload_hash: Optional[str] = None,
    exclude_query: Iterable[str] = (),
) -> CanonicalRequest:
    """
    Create the canonical request for an HTTP request.

    Args:
        method: HTTP method (upper-case)
        url: Full request URL (path and query are canonicalized)
        headers: Request headers
        body: Request body
        signed_headers: Header names to sign; all headers when None
        payload_hash: Precomputed payload hash; SHA-256 of ``body`` when None
        exclude_query: Decoded query keys to leave out

    Returns:
        CanonicalRequest
    """
    if not _METHOD.fullmatch(method):
        raise CanonicalizationError(f"Invalid HTTP method: {method!r}")
    if _has_control_or_space(url):
        raise CanonicalizationError(f"URL contains control characters or spaces: {url!r}")

    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise CanonicalizationError(f"Invalid URL: {url!r}") from e
    header_block, signed = canonical_headers(headers, signed_headers)

    return CanonicalRequest(
        method=method,
        canonical_uri=canonical_uri(parts.path),
        canonical_query=canonical_query_string(parts.query, exclude=exclude_query),
        canonical_headers=header_block,
        signed_headers=signed,
        payload_hash=payload_hash if payload_hash is not None else hash_payload(body),
    )
