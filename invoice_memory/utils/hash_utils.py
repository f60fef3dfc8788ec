"""
Hash and identifier utility functions.

Provides content fingerprints for duplicate detection and unique IDs
for stored memories.
"""

import hashlib
import uuid


def compute_md5(data: bytes | str) -> str:
    """
    Compute MD5 hash of data.

    Note: MD5 is not cryptographically secure. Use for fingerprints only.

    Args:
        data: Bytes or string to hash.

    Returns:
        Hexadecimal MD5 hash string.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    return hashlib.md5(data).hexdigest()


def generate_unique_id() -> str:
    """
    Generate a random UUID4 string.

    Returns:
        UUID string in standard format.
    """
    return str(uuid.uuid4())
