"""
Helpers for carrying dataset names and paths through URL path segments.
"""

import base64
import binascii


def encode_name(name: str) -> str:
    """Encode a dataset name or relative path as a URL-safe token."""
    return base64.urlsafe_b64encode(name.encode("utf-8")).decode("ascii")


def decode_name(token: str) -> str:
    """
    Decode a token produced by encode_name().
    
    Missing padding is tolerated. Returns an empty string when the token is
    not valid URL-safe base64 or not UTF-8, so callers must treat "" as
    invalid input rather than as the root path.
    """
    if not token:
        return ""
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError):
        return ""
