"""
Session Tokens

The token is the only access control: an opaque random identifier embedded
in the URL path. 16 random bytes (128 bits) hex-encoded give 32 characters.
"""

import hmac
import secrets

TOKEN_BYTES = 16


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """
    Generate a new session token.

    Uses the OS cryptographically secure random source.
    """
    if nbytes < TOKEN_BYTES:
        raise ValueError(f"token needs at least {TOKEN_BYTES} bytes of entropy")
    return secrets.token_hex(nbytes)


def tokens_match(expected: str, presented: str) -> bool:
    """Exact comparison of the session token and the one presented in a request."""
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))
