"""Chunked object transfer over a message stream."""

from streamstore.objects.client import Bucket, ObjectStoreClient
from streamstore.objects.reader import ObjectStream

__all__ = ["Bucket", "ObjectStoreClient", "ObjectStream"]
