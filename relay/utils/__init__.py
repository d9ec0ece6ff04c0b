import hashlib
from typing import Optional


def mask_token(text: str, token: str) -> str:
    if not token:
        return text
    masked = "****" if len(token) <= 4 else f"{token[:4]}****"
    return text.replace(token, masked)


def credential_fingerprint(token: Optional[str]) -> str:
    """Identify a credential in logs without revealing any of its characters."""
    if not token:
        return "<empty>"
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]
    return f"len={len(token)} sha256={digest}"
