import hashlib
import hmac
import secrets


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def hmac_sha256_hex(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signatures_match(expected: str, provided: str | None) -> bool:
    return bool(provided) and hmac.compare_digest(expected, str(provided).strip().lower())


def new_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)
