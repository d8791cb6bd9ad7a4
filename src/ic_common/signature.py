"""HMAC-SHA256 helpers shared by the payment and call-provider webhooks."""

import hashlib
import hmac


def sign(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_hmac_signature(secret: str, message: bytes, signature: str | None) -> bool:
    """Constant-time check of a hex signature. An empty secret never verifies."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign(secret, message), signature)
