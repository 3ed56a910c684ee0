from __future__ import annotations

import hashlib


def hash_token_for_namespace(token: str, prefix_length: int = 12) -> str:
    """Hash a credential (e.g., NVD API key) to create a safe namespace identifier.

    Uses SHA3-256 and returns the first N characters of the hex digest, so raw
    keys never appear in cache keys.

    Example:
        >>> len(hash_token_for_namespace("00000000-1111-2222-3333-444444444444"))
        12
    """
    hash_obj = hashlib.sha3_256(token.encode("utf-8"))
    return hash_obj.hexdigest()[:prefix_length]


def rate_limit_namespace(api_key: str | None) -> str:
    """Namespace of the shared rate-limit window; anonymous clients share one."""
    if not api_key:
        return "nvd_anonymous"
    return f"nvd_{hash_token_for_namespace(api_key)}"
