"""HMAC-SHA256 webhook signatures, Base64-encoded as Shopify sends them.

The digest must be computed over the request body exactly as it arrived.
Parsing and re-serializing the JSON first changes the bytes and the check
fails.
"""

import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def sign(raw_body: bytes, secret: bytes) -> str:
    digest = hmac.new(secret, raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(raw_body: bytes, signature_header: str | None, secret: bytes) -> bool:
    if not secret:
        logger.warning("Webhook secret not configured, rejecting signature")
        return False
    if not signature_header:
        logger.warning("Webhook received without HMAC header")
        return False
    try:
        received = signature_header.encode("ascii")
    except UnicodeEncodeError:
        logger.warning("Malformed HMAC header")
        return False
    # Compare the encoded text, not decoded bytes: Base64 has spare bits in
    # the last character and several strings decode to the same digest.
    expected = sign(raw_body, secret).encode("ascii")
    if not hmac.compare_digest(expected, received):
        logger.warning("Invalid HMAC signature")
        return False
    return True
