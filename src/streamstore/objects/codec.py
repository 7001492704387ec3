"""Subject naming for object buckets.

Wire-level addressing, for bucket ``B`` and key ``K``:

    Stream:          OBJ_{B}
    Chunk data:      $O.{B}.C.{K}              (raw key)
    Metadata:        $O.{B}.M.{sanitize(K)}    (only the latest is kept)

Sanitizing maps several keys onto one metadata subject ("a b", "a.b" and
"a_b" all share ``$O.B.M.a_b``). That collision is accepted: the descriptor
keeps the raw key, and readers follow the descriptor's key to the chunks.
"""

from nats.nuid import NUID

STREAM_PREFIX = "OBJ_"
SUBJECT_PREFIX = "$O"

# Carried on every chunk message to tag the version that published it.
OBJECT_ID_HEADER = "Obj-Id"

_KEY_TRANSLATION = str.maketrans(" .", "__")

_nuid = NUID()


def sanitize_key(key: str) -> str:
    """Replace spaces and dots with underscores."""
    return key.translate(_KEY_TRANSLATION)


def stream_name(bucket: str) -> str:
    return f"{STREAM_PREFIX}{bucket}"


def bucket_from_stream(name: str) -> str:
    """Return the bucket name for an ``OBJ_`` stream name."""
    if name.startswith(STREAM_PREFIX):
        return name[len(STREAM_PREFIX):]
    return name


def chunk_subject(bucket: str, key: str) -> str:
    return f"{SUBJECT_PREFIX}.{bucket}.C.{key}"


def meta_subject(bucket: str, key: str) -> str:
    return f"{SUBJECT_PREFIX}.{bucket}.M.{sanitize_key(key)}"


def stream_subjects(bucket: str) -> list[str]:
    """Subjects captured by a bucket's stream: chunks and metadata."""
    return [f"{SUBJECT_PREFIX}.{bucket}.C.>", f"{SUBJECT_PREFIX}.{bucket}.M.>"]


def new_object_id() -> str:
    """Mint a NUID for a new object version."""
    return _nuid.next().decode()


def deliver_subject(bucket: str, key: str) -> str:
    """Return a delivery subject unique to one read of ``key``."""
    return f"NATS.Objects.{bucket}.data.{sanitize_key(key)}.get.{new_object_id()}"
