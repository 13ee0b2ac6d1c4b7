"""Webhook signature and token verification shared by every provider adapter.

HMAC digests are always computed over the raw request body exactly as it was
received. Re-serializing the parsed JSON would change key order and
whitespace and therefore the digest.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import string
from typing import List, Optional

from app.ci_providers.models import SignatureScheme

logger = logging.getLogger(__name__)

SHA256_PREFIX = "sha256="
CIRCLECI_VERSION_PREFIX = "v1="
_HEX_DIGITS = frozenset(string.hexdigits)
_SHA256_HEX_LENGTH = 64


def _hmac_sha256_hex(raw_body: bytes, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def _is_sha256_hex(value: str) -> bool:
    return len(value) == _SHA256_HEX_LENGTH and all(c in _HEX_DIGITS for c in value)


def compute_signature(raw_body: bytes, secret: str, scheme: SignatureScheme) -> str:
    """Return the header value a well-behaved sender would attach."""
    if scheme == SignatureScheme.HMAC_SHA256_PREFIXED:
        return f"{SHA256_PREFIX}{_hmac_sha256_hex(raw_body, secret)}"
    if scheme == SignatureScheme.HMAC_SHA256_HEX:
        return f"{CIRCLECI_VERSION_PREFIX}{_hmac_sha256_hex(raw_body, secret)}"
    if scheme == SignatureScheme.RAW_TOKEN:
        return secret
    if scheme == SignatureScheme.BASIC_AUTH_PASSWORD:
        encoded = base64.b64encode(f"webhook:{secret}".encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"
    raise ValueError(f"Unsupported signature scheme: {scheme}")


def _verify_prefixed_hmac(raw_body: bytes, header_signature: str, secret: str) -> bool:
    if not header_signature.startswith(SHA256_PREFIX):
        logger.debug("Signature header missing sha256= prefix")
        return False

    provided = header_signature[len(SHA256_PREFIX):].strip().lower()
    if not _is_sha256_hex(provided):
        logger.debug("Signature header is not a sha256 hex digest")
        return False

    expected = _hmac_sha256_hex(raw_body, secret)
    return hmac.compare_digest(expected, provided)


def _split_hex_signatures(header_signature: str) -> List[str]:
    # CircleCI sends "v1=<hex>" and may send several comma-separated versions
    candidates = []
    for part in header_signature.split(","):
        part = part.strip()
        if part.startswith(CIRCLECI_VERSION_PREFIX):
            part = part[len(CIRCLECI_VERSION_PREFIX):]
        elif "=" in part:
            continue
        candidates.append(part.lower())
    return candidates


def _verify_hex_hmac(raw_body: bytes, header_signature: str, secret: str) -> bool:
    candidates = [c for c in _split_hex_signatures(header_signature) if _is_sha256_hex(c)]
    if not candidates:
        logger.debug("No usable hex digest in signature header")
        return False

    expected = _hmac_sha256_hex(raw_body, secret)
    matches = [hmac.compare_digest(expected, candidate) for candidate in candidates]
    return any(matches)


def _verify_raw_token(header_signature: str, secret: str) -> bool:
    return hmac.compare_digest(header_signature.encode("utf-8"), secret.encode("utf-8"))


def _basic_auth_password(header_value: str) -> Optional[str]:
    scheme, _, encoded = header_value.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    _, sep, password = decoded.partition(":")
    return password if sep else None


def _verify_basic_auth(header_signature: str, secret: str) -> bool:
    password = _basic_auth_password(header_signature)
    if password is None:
        logger.debug("Authorization header is not valid HTTP Basic")
        return False
    return hmac.compare_digest(password.encode("utf-8"), secret.encode("utf-8"))


def verify(
    raw_body: bytes,
    header_signature: Optional[str],
    secret: Optional[str],
    scheme: SignatureScheme,
) -> bool:
    """
    Check a webhook delivery against the pipeline's stored secret.

    Args:
        raw_body: Request body bytes exactly as received
        header_signature: Value of the provider's signature/token header
        secret: Webhook secret stored on the pipeline
        scheme: How the provider signs its deliveries

    Returns:
        True if the delivery is authentic. Any malformed input (missing
        header, wrong prefix, non-hex digest, empty secret) yields False.
    """
    if not header_signature or not secret:
        return False

    try:
        if scheme == SignatureScheme.HMAC_SHA256_PREFIXED:
            return _verify_prefixed_hmac(raw_body, header_signature, secret)
        if scheme == SignatureScheme.HMAC_SHA256_HEX:
            return _verify_hex_hmac(raw_body, header_signature, secret)
        if scheme == SignatureScheme.RAW_TOKEN:
            return _verify_raw_token(header_signature, secret)
        if scheme == SignatureScheme.BASIC_AUTH_PASSWORD:
            return _verify_basic_auth(header_signature, secret)
    except (TypeError, ValueError) as e:
        logger.warning(f"Signature verification failed on malformed input: {e}")
        return False

    logger.warning(f"Unsupported signature scheme: {scheme}")
    return False
