from __future__ import annotations

import hashlib
import hmac
import os

API_KEY_ENV = "WORKER_API_KEY"


def host_api_key() -> str:
    value = os.getenv(API_KEY_ENV)
    if not value:
        raise RuntimeError(f"{API_KEY_ENV} must be set")
    return value


def assert_bearer_token(auth_header: str | None) -> None:
    if not auth_header:
        raise PermissionError("Missing authorization header")

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise PermissionError("Malformed authorization header")

    if not hmac.compare_digest(token.strip(), host_api_key()):
        raise PermissionError("Invalid bearer token")


def sign_payload(secret: str, body: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: str, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)
