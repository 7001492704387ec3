"""Input validation helpers for streamstore.

Bucket names end up both in a stream name (``OBJ_{bucket}``) and as a single
subject token; object keys are used verbatim as the tail of the chunk subject.
These functions reject values that would not survive that mapping.

Each function raises an appropriate ``ObjectStoreError`` subclass on invalid
input.
"""

import re

from streamstore.errors import InvalidArgument, InvalidBucketName, InvalidKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Stream names may not contain whitespace, ".", "*", ">" or path separators.
_BUCKET_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_WHITESPACE_RE = re.compile(r"\s")

_MAX_KEY_BYTES = 1024


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_bucket_name(name: str) -> None:
    """Validate a bucket name.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: If the name is empty, longer than 64 characters, or
            contains anything other than letters, digits, ``_`` and ``-``.
    """
    if not isinstance(name, str) or not _BUCKET_RE.match(name):
        raise InvalidBucketName(name if isinstance(name, str) else "")


def validate_object_key(key: str) -> None:
    """Validate an object key for use in a chunk subject.

    Args:
        key: The object key string.

    Raises:
        InvalidKey: If the key is empty, too long, contains whitespace, has an
            empty subject token, or has a wildcard token.
    """
    if not key:
        raise InvalidKey(message="Object key must not be empty.")

    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise InvalidKey(key, f"Object key exceeds {_MAX_KEY_BYTES} bytes.")

    if _WHITESPACE_RE.search(key):
        raise InvalidKey(key, "Object key must not contain whitespace.")

    for token in key.split("."):
        if token == "":
            raise InvalidKey(key, "Object key must not contain empty subject tokens.")
        if token in ("*", ">"):
            raise InvalidKey(key, "Object key must not contain wildcard tokens.")


def validate_chunk_size(value: int) -> int:
    """Validate a chunk size.

    Args:
        value: Requested chunk size in bytes.

    Returns:
        The chunk size as an int.

    Raises:
        InvalidArgument: If the value is not a positive integer.
    """
    try:
        n = int(value)
    except (ValueError, TypeError):
        raise InvalidArgument("Chunk size must be a positive integer")

    if n <= 0:
        raise InvalidArgument("Chunk size must be a positive integer")

    return n
