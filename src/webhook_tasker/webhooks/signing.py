"""
Подпись исходящих вебхуков.

HMAC-SHA256 от тела запроса секретом подписчика (hex).
Подписчик без секрета получает маркер вместо подписи.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature-256"
VERSION_HEADER = "X-Webhook-Version"
NO_SECRET_SIGNATURE = "no-secret-provided"


def sign_body(body: str, secret: str | None) -> str:
    if not secret:
        return NO_SECRET_SIGNATURE
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(body: str, secret: str, signature: str) -> bool:
    expected = sign_body(body, secret)
    return hmac.compare_digest(expected, signature or "")
