import hashlib
import re

CONTENT_HASH_PATTERN = re.compile(r'^[0-9a-f]{64}$')


def content_hash(data: bytes) -> str:
    """Return the SHA-256 digest of data as 64 lowercase hex characters."""
    return hashlib.sha256(data).hexdigest()


def is_content_hash(value: str) -> bool:
    """Check whether value looks like an identifier produced by content_hash."""
    return bool(CONTENT_HASH_PATTERN.match(value or ""))
