"""Driver token generation."""

import base64
import secrets

DEFAULT_TOKEN_BYTES = 20


def generate_token(nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """
    Generate a new driver token.

    The token is `nbytes` of cryptographically secure randomness encoded as
    unpadded base-32, which is safe to carry in an HTTP header. The default
    of 20 bytes (160 bits) yields a 32 character token.
    """
    raw = secrets.token_bytes(nbytes)
    return base64.b32encode(raw).decode("ascii").rstrip("=")
