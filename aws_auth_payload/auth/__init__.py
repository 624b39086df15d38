"""
Authentication utilities for AWS IAM identity proofs.

This package provides SigV4 canonicalization, signing-key derivation and
request signing for STS GetCallerIdentity.
"""

from .canonical import (
    CanonicalRequest,
    build_canonical_request,
    canonical_headers,
    canonical_query_string,
    canonical_uri,
    hash_payload,
)
from .credentials import AWSCredentials, get_aws_credentials
from .sigv4 import (
    CredentialScope,
    SignedRequest,
    SigV4Auth,
    derive_signing_key,
    format_amz_date,
    parse_amz_date,
    string_to_sign,
)

__all__ = [
    "AWSCredentials",
    "CanonicalRequest",
    "CredentialScope",
    "SignedRequest",
    "SigV4Auth",
    "build_canonical_request",
    "canonical_headers",
    "canonical_query_string",
    "canonical_uri",
    "derive_signing_key",
    "format_amz_date",
    "get_aws_credentials",
    "hash_payload",
    "parse_amz_date",
    "string_to_sign",
]
