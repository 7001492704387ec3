"""Bucket-level request handlers for the streamstore gateway.

Implements:
    - CreateBucket (PUT /{bucket})
    - GetBucket (GET /{bucket})
    - HeadBucket (HEAD /{bucket})
    - DeleteBucket (DELETE /{bucket})
"""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from streamstore.errors import BucketNotFound, InvalidArgument

logger = logging.getLogger(__name__)

_STORAGE_TYPES = ("file", "memory")


def _query_float(request: Request, name: str) -> float | None:
    value = request.query_params.get(name)
    if value is None or value == "":
        return None
    try:
        result = float(value)
    except ValueError:
        raise InvalidArgument(f"{name} must be a number") from None
    if result <= 0:
        raise InvalidArgument(f"{name} must be positive")
    return result


def _query_int(request: Request, name: str) -> int | None:
    value = request.query_params.get(name)
    if value is None or value == "":
        return None
    try:
        result = int(value)
    except ValueError:
        raise InvalidArgument(f"{name} must be an integer") from None
    if result <= 0:
        raise InvalidArgument(f"{name} must be positive")
    return result


class BucketHandler:
    """Handles bucket operations.

    All handlers reach the object store client through ``app.state``.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def client(self):
        """Shortcut to the ObjectStoreClient on app.state."""
        return self.app.state.client

    async def create_bucket(self, request: Request, bucket: str) -> Response:
        """Create a bucket.

        Implements: PUT /{bucket}

        Query parameters ``description``, ``ttl`` (seconds), ``storage``
        (file or memory) and ``replicas`` configure the backing stream.
        Repeating the call with the same parameters succeeds.

        Returns:
            200 with the bucket summary as JSON.
        """
        storage = request.query_params.get("storage", "file")
        if storage not in _STORAGE_TYPES:
            raise InvalidArgument(f"storage must be one of: {', '.join(_STORAGE_TYPES)}")

        handle = await self.client.create_bucket(
            bucket,
            description=request.query_params.get("description", ""),
            ttl=_query_float(request, "ttl"),
            storage=storage,
            replicas=_query_int(request, "replicas"),
        )
        info = await handle.info()
        return JSONResponse(info.to_dict(), status_code=200)

    async def get_bucket(self, request: Request, bucket: str) -> Response:
        """Return the bucket summary.

        Implements: GET /{bucket}
        """
        info = await self.client.bucket_info(bucket)
        if info is None:
            raise BucketNotFound(bucket)
        return JSONResponse(info.to_dict(), status_code=200)

    async def head_bucket(self, request: Request, bucket: str) -> Response:
        """Check that a bucket exists.

        Implements: HEAD /{bucket}
        """
        info = await self.client.bucket_info(bucket)
        if info is None:
            raise BucketNotFound(bucket)
        return Response(
            status_code=200,
            headers={
                "x-obj-bucket-messages": str(info.messages),
                "x-obj-bucket-bytes": str(info.bytes),
            },
        )

    async def delete_bucket(self, request: Request, bucket: str) -> Response:
        """Delete a bucket and everything stored in it.

        Implements: DELETE /{bucket}

        Returns:
            204 No Content.
        """
        await self.client.delete_bucket(bucket)
        return Response(status_code=204)
