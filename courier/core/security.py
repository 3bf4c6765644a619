import hashlib
import hmac
import secrets


def hash_token(token: str) -> str:
    """Hash a token for comparison using SHA-256."""
    return hashlib.sha256(token.encode()).hexdigest()


def verify_admin_key(provided: str | None, expected: str) -> bool:
    """Constant-time check of the X-Admin-Key header.

    An empty configured key disables the admin surface entirely.
    """
    if not expected or not provided:
        return False
    return hmac.compare_digest(hash_token(provided), hash_token(expected))


def generate_worker_id() -> str:
    """Generate a worker id unique across processes."""
    return f"worker-{secrets.token_hex(6)}"
