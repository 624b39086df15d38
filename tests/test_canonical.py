"""Tests for SigV4 canonical request construction."""

import pytest

from aws_auth_payload.auth.canonical import (
    EMPTY_SHA256,
    build_canonical_request,
    canonical_header_value,
    canonical_headers,
    canonical_query_string,
    canonical_uri,
    decode_query_pairs,
    hash_payload,
    normalize_headers,
)
from aws_auth_payload.errors import CanonicalizationError


class TestHashPayload:
    """Tests for payload hashing."""

    def test_empty_payload(self):
        assert hash_payload(b"") == EMPTY_SHA256

    def test_string_and_bytes_agree(self):
        assert hash_payload("hello") == hash_payload(b"hello")
        assert hash_payload(b"hello") == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


class TestCanonicalUri:
    """Tests for URI path canonicalization."""

    def test_empty_path_is_root(self):
        assert canonical_uri("") == "/"
        assert canonical_uri("/") == "/"

    def test_dot_segments_resolved(self):
        assert canonical_uri("/example/..") == "/"
        assert canonical_uri("/./a/./b/../c") == "/a/c"

    def test_empty_segments_dropped(self):
        assert canonical_uri("//a//b") == "/a/b"

    def test_trailing_slash_kept(self):
        assert canonical_uri("/a/b/") == "/a/b/"

    def test_unicode_is_percent_encoded(self):
        assert canonical_uri("/ሴ") == "/%E1%88%B4"

    def test_existing_escape_is_encoded_again(self):
        assert canonical_uri("/a%20b") == "/a%2520b"

    def test_reserved_characters_encoded(self):
        assert canonical_uri("/a:b=c") == "/a%3Ab%3Dc"

    def test_unreserved_characters_kept(self):
        assert canonical_uri("/A-z_0.9~") == "/A-z_0.9~"

    @pytest.mark.parametrize("path", ["/a b", "/a\nb", "/a\x00", "relative"])
    def test_invalid_paths_rejected(self, path):
        with pytest.raises(CanonicalizationError):
            canonical_uri(path)


class TestQueryString:
    """Tests for query string canonicalization."""

    def test_empty_query(self):
        assert canonical_query_string("") == ""

    def test_sorted_by_key_then_value(self):
        assert canonical_query_string("b=2&a=2&a=1") == "a=1&a=2&b=2"

    def test_plus_is_literal(self):
        assert decode_query_pairs("a=b+c") == [("a", "b+c")]
        assert canonical_query_string("a=b+c") == "a=b%2Bc"

    def test_values_are_reencoded(self):
        assert canonical_query_string("k=%7Evalue%2f") == "k=~value%2F"

    def test_key_without_value(self):
        assert canonical_query_string("flag") == "flag="

    def test_excluded_keys_skipped(self):
        query = "Action=GetCallerIdentity&X-Amz-Signature=abc&Version=2011-06-15"
        assert canonical_query_string(query, exclude=("X-Amz-Signature",)) == (
            "Action=GetCallerIdentity&Version=2011-06-15"
        )

    @pytest.mark.parametrize("query", ["a=%zz", "a=%4", "a=b c", "a=é"])
    def test_malformed_query_rejected(self, query):
        with pytest.raises(CanonicalizationError):
            decode_query_pairs(query)

    def test_invalid_utf8_escape_rejected(self):
        with pytest.raises(CanonicalizationError):
            decode_query_pairs("a=%FF")

    @pytest.mark.parametrize("query", [
        "b=2&a=2&a=1",
        "k=%7Evalue%2f&flag",
        "Action=GetCallerIdentity&Version=2011-06-15",
        "a=b+c&x=%E2%82%AC",
    ])
    def test_idempotent_on_canonical_output(self, query):
        once = canonical_query_string(query)

        assert canonical_query_string(once) == once


class TestCanonicalHeaders:
    """Tests for header canonicalization."""

    def test_value_trimmed_and_collapsed(self):
        assert canonical_header_value("  a   b\t\tc  ") == "a b c"

    def test_control_character_rejected(self):
        with pytest.raises(CanonicalizationError):
            canonical_header_value("a\nb")

    def test_non_ascii_rejected(self):
        with pytest.raises(CanonicalizationError):
            canonical_header_value("café")

    def test_names_lowercased_and_sorted(self):
        block, signed = canonical_headers({"X-Amz-Date": "20150830T123600Z", "Host": "example.com"})

        assert block == "host:example.com\nx-amz-date:20150830T123600Z\n"
        assert signed == "host;x-amz-date"

    def test_repeated_names_merged(self):
        block, signed = canonical_headers({"My-Header": ["value1", "value2"], "my-header": "value3"})

        assert block == "my-header:value1,value2,value3\n"
        assert signed == "my-header"

    def test_signed_subset(self):
        block, signed = canonical_headers(
            {"Host": "example.com", "User-Agent": "test", "X-Amz-Date": "20150830T123600Z"},
            signed_headers=["x-amz-date", "host"],
        )

        assert "user-agent" not in block
        assert signed == "host;x-amz-date"

    def test_missing_signed_header_rejected(self):
        with pytest.raises(CanonicalizationError, match="x-missing"):
            canonical_headers({"Host": "example.com"}, signed_headers=["host", "x-missing"])

    @pytest.mark.parametrize("name", ["Bad Name", "X-Foo\n", "X-Foo\r\n", "Host:"])
    def test_invalid_header_name_rejected(self, name):
        with pytest.raises(CanonicalizationError):
            canonical_headers({name: "value"})

    def test_normalize_is_idempotent(self):
        headers = {"Host": "Example.com", "X-Custom": ["  a   b ", "c"], "x-custom": "d\t e"}
        once = normalize_headers(headers)

        assert normalize_headers(once) == once
        assert canonical_headers(once) == canonical_headers(headers)


class TestBuildCanonicalRequest:
    """Tests for the full canonical request."""

    def test_get_vanilla(self):
        creq = build_canonical_request(
            method="GET",
            url="https://example.amazonaws.com/",
            headers={"Host": "example.amazonaws.com", "X-Amz-Date": "20150830T123600Z"},
        )

        assert creq.to_string() == (
            "GET\n"
            "/\n"
            "\n"
            "host:example.amazonaws.com\n"
            "x-amz-date:20150830T123600Z\n"
            "\n"
            "host;x-amz-date\n"
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )
        assert str(creq) == creq.to_string()

    def test_post_body_hashed(self):
        creq = build_canonical_request(
            method="POST",
            url="https://sts.amazonaws.com/",
            headers={"Host": "sts.amazonaws.com"},
            body=b"Action=GetCallerIdentity&Version=2011-06-15",
        )

        assert creq.payload_hash == hash_payload(b"Action=GetCallerIdentity&Version=2011-06-15")

    def test_precomputed_payload_hash(self):
        creq = build_canonical_request(
            method="GET",
            url="https://example.com/",
            headers={"Host": "example.com"},
            payload_hash="UNSIGNED-PAYLOAD",
        )

        assert creq.payload_hash == "UNSIGNED-PAYLOAD"

    def test_deterministic(self):
        kwargs = dict(
            method="GET",
            url="https://example.com/a/b?z=1&a=2",
            headers={"Host": "example.com", "X-Custom": "  v  "},
        )

        assert build_canonical_request(**kwargs).digest() == build_canonical_request(**kwargs).digest()

    @pytest.mark.parametrize("method", ["get", "GE T", "", "GET\n", "POST\r\n"])
    def test_invalid_method_rejected(self, method):
        with pytest.raises(CanonicalizationError):
            build_canonical_request(method, "https://example.com/", {"Host": "example.com"})

    def test_url_with_space_rejected(self):
        with pytest.raises(CanonicalizationError):
            build_canonical_request("GET", "https://example.com/a b", {"Host": "example.com"})

    def test_header_name_with_newline_not_canonicalized(self):
        with pytest.raises(CanonicalizationError, match="X-Foo"):
            build_canonical_request(
                "GET",
                "https://sts.amazonaws.com/",
                {"Host": "sts.amazonaws.com", "X-Foo\n": "v"},
            )

    def test_unparseable_url_rejected(self):
        with pytest.raises(CanonicalizationError, match="Invalid URL"):
            build_canonical_request("GET", "https://[::1/", {"Host": "example.com"})
