"""HMAC-SHA256 signature checks for payment callbacks.

Client callback:  hex(HMAC(key_secret, "{order_id}|{payment_id}"))
Webhook:          hex(HMAC(webhook_secret, raw_request_body))
"""

from src.ic_common.signature import verify_hmac_signature


def verify_payment_signature(
    secret: str, order_id: str, payment_id: str, signature: str
) -> bool:
    return verify_hmac_signature(secret, f"{order_id}|{payment_id}".encode(), signature)


def verify_webhook_signature(secret: str, body: bytes, signature: str | None) -> bool:
    return verify_hmac_signature(secret, body, signature)
