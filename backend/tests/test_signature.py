"""Tests for webhook signature and token verification."""

import base64

import pytest

from app.ci_providers.models import SignatureScheme
from app.services.signature import compute_signature, verify

BODY = b'{"ref":"refs/heads/main","after":"abc"}'
SECRET = "topsecret"


def flip_bit(header: str, position: int) -> str:
    """Flip the lowest bit of the hex digit at `position`."""
    digit = format(int(header[position], 16) ^ 0x01, "x")
    return header[:position] + digit + header[position + 1:]


class TestPrefixedHmac:
    """GitHub style "sha256=<hex>" signatures."""

    def test_valid_signature(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED)

        assert header.startswith("sha256=")
        assert verify(BODY, header, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is True

    def test_single_bit_flip_in_body_fails(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED)
        tampered = bytes([BODY[0] ^ 0x01]) + BODY[1:]

        assert verify(tampered, header, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False

    @pytest.mark.parametrize("position", [len("sha256="), -1])
    def test_single_bit_flip_in_signature_fails(self, position):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED)
        tampered = flip_bit(header, position % len(header))

        assert tampered != header
        assert verify(BODY, tampered, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False

    def test_reserialized_json_fails(self):
        """The digest covers the raw bytes, not an equivalent JSON document."""
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED)
        reformatted = b'{"ref": "refs/heads/main", "after": "abc"}'

        assert verify(reformatted, header, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False

    def test_wrong_secret_fails(self):
        header = compute_signature(BODY, "other", SignatureScheme.HMAC_SHA256_PREFIXED)

        assert verify(BODY, header, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False

    def test_missing_prefix_fails(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED)
        bare = header[len("sha256="):]

        assert verify(BODY, bare, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False

    def test_non_hex_digest_fails(self):
        assert verify(BODY, "sha256=" + "z" * 64, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False

    def test_missing_header_or_secret_fails(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED)

        assert verify(BODY, None, SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False
        assert verify(BODY, "", SECRET, SignatureScheme.HMAC_SHA256_PREFIXED) is False
        assert verify(BODY, header, "", SignatureScheme.HMAC_SHA256_PREFIXED) is False
        assert verify(BODY, header, None, SignatureScheme.HMAC_SHA256_PREFIXED) is False


class TestHexHmac:
    """CircleCI style "v1=<hex>" signatures."""

    def test_versioned_signature(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_HEX)

        assert header.startswith("v1=")
        assert verify(BODY, header, SECRET, SignatureScheme.HMAC_SHA256_HEX) is True

    @pytest.mark.parametrize("position", [len("v1="), -1])
    def test_single_bit_flip_in_signature_fails(self, position):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_HEX)
        tampered = flip_bit(header, position % len(header))

        assert tampered != header
        assert verify(BODY, tampered, SECRET, SignatureScheme.HMAC_SHA256_HEX) is False

    def test_bare_hex_signature(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_HEX)[len("v1="):]

        assert verify(BODY, header, SECRET, SignatureScheme.HMAC_SHA256_HEX) is True

    def test_one_matching_value_in_list(self):
        good = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_HEX)
        header = f"v1={'0' * 64},{good}"

        assert verify(BODY, header, SECRET, SignatureScheme.HMAC_SHA256_HEX) is True

    def test_unknown_versions_are_ignored(self):
        digest = compute_signature(BODY, SECRET, SignatureScheme.HMAC_SHA256_HEX)[len("v1="):]

        assert verify(BODY, f"v2={digest}", SECRET, SignatureScheme.HMAC_SHA256_HEX) is False


class TestTokens:
    def test_raw_token_equality(self):
        assert verify(BODY, SECRET, SECRET, SignatureScheme.RAW_TOKEN) is True
        assert verify(BODY, SECRET + "x", SECRET, SignatureScheme.RAW_TOKEN) is False
        assert verify(BODY, SECRET.upper(), SECRET, SignatureScheme.RAW_TOKEN) is False

    def test_basic_auth_password(self):
        header = compute_signature(BODY, SECRET, SignatureScheme.BASIC_AUTH_PASSWORD)

        assert verify(BODY, header, SECRET, SignatureScheme.BASIC_AUTH_PASSWORD) is True

    def test_basic_auth_username_is_not_checked(self):
        encoded = base64.b64encode(f"azure-devops:{SECRET}".encode()).decode()

        assert verify(BODY, f"Basic {encoded}", SECRET, SignatureScheme.BASIC_AUTH_PASSWORD) is True

    def test_basic_auth_malformed_header(self):
        assert verify(BODY, "Basic !!!not-base64", SECRET, SignatureScheme.BASIC_AUTH_PASSWORD) is False
        assert verify(BODY, f"Bearer {SECRET}", SECRET, SignatureScheme.BASIC_AUTH_PASSWORD) is False
        no_colon = base64.b64encode(SECRET.encode()).decode()
        assert verify(BODY, f"Basic {no_colon}", SECRET, SignatureScheme.BASIC_AUTH_PASSWORD) is False
