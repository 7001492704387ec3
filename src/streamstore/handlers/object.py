"""Object-level request handlers for the streamstore gateway.

Implements:
    - PutObject (PUT /{bucket}/{key}), request body streamed into chunks
    - GetObject (GET /{bucket}/{key}), chunks streamed into the response
    - HeadObject (HEAD /{bucket}/{key})

User metadata travels in ``x-obj-meta-*`` headers; a header repeated on the
request becomes a multi-valued descriptor header.
"""

import email.utils
import logging
from datetime import timezone
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from streamstore.errors import InvalidArgument, KeyNotFound
from streamstore.models import ObjectInfo
from streamstore.objects.reader import ObjectStream

logger = logging.getLogger(__name__)

META_PREFIX = "x-obj-meta-"
DESCRIPTION_HEADER = "x-obj-description"
CHUNK_SIZE_HEADER = "x-obj-chunk-size"


def _http_date(info: ObjectInfo) -> str:
    """Format the descriptor's mtime as an RFC 1123 HTTP date."""
    return email.utils.format_datetime(info.mtime.astimezone(timezone.utc), usegmt=True)


async def _stream_body(stream: ObjectStream) -> AsyncIterator[bytes]:
    """Yield an object's chunks, closing the stream however iteration ends."""
    try:
        async for chunk in stream:
            yield chunk
    finally:
        await stream.aclose()


class ObjectHandler:
    """Handles object operations.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def client(self):
        """Shortcut to the ObjectStoreClient on app.state."""
        return self.app.state.client

    def _extract_user_metadata(self, request: Request) -> dict[str, list[str]]:
        """Collect x-obj-meta-* headers, prefix stripped, repeated names kept."""
        meta: dict[str, list[str]] = {}
        for name, value in request.headers.items():
            lower_name = name.lower()
            if lower_name.startswith(META_PREFIX):
                meta.setdefault(lower_name[len(META_PREFIX):], []).append(value)
        return meta

    def _chunk_size(self, request: Request) -> int | None:
        value = request.headers.get(CHUNK_SIZE_HEADER)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise InvalidArgument(f"{CHUNK_SIZE_HEADER} must be an integer") from None

    async def put_object(self, request: Request, bucket: str, key: str) -> Response:
        """Store the request body as the current version of a key.

        Implements: PUT /{bucket}/{key}

        The body is consumed incrementally; nothing is buffered beyond one
        chunk. A failed upload leaves the previous version in place.

        Returns:
            200 with the committed descriptor as JSON.
        """
        info = await self.client.put(
            bucket,
            key,
            request.stream(),
            description=request.headers.get(DESCRIPTION_HEADER),
            headers=self._extract_user_metadata(request),
            chunk_size=self._chunk_size(request),
        )
        return JSONResponse(
            info.to_dict(),
            status_code=200,
            headers={"ETag": f'"{info.digest}"'},
        )

    async def get_object(self, request: Request, bucket: str, key: str) -> Response:
        """Stream an object's content.

        Implements: GET /{bucket}/{key}

        Raises:
            BucketNotFound: If the bucket does not exist.
            KeyNotFound: If the key has no current version.
        """
        stream = await self.client.get(bucket, key)
        if stream is None:
            raise KeyNotFound(bucket, key)
        return StreamingResponse(
            content=_stream_body(stream),
            status_code=200,
            headers=self._build_object_headers(stream.info),
            media_type="application/octet-stream",
        )

    async def head_object(self, request: Request, bucket: str, key: str) -> Response:
        """Return an object's headers without the body.

        Implements: HEAD /{bucket}/{key}
        """
        info = await self.client.get_info(bucket, key)
        if info is None:
            raise KeyNotFound(bucket, key)
        headers = self._build_object_headers(info)
        headers["Content-Type"] = "application/octet-stream"
        return Response(status_code=200, headers=headers)

    def _build_object_headers(self, info: ObjectInfo) -> dict[str, str]:
        """Build response headers from a descriptor.

        Args:
            info: The object descriptor.

        Returns:
            A dict of response headers.
        """
        headers: dict[str, str] = {
            "ETag": f'"{info.digest}"',
            "Last-Modified": _http_date(info),
            "Content-Length": str(info.size),
            "x-obj-id": info.id,
            "x-obj-digest": info.digest,
            "x-obj-chunks": str(info.chunks),
        }
        if info.description is not None:
            headers[DESCRIPTION_HEADER] = info.description
        for name, values in info.headers.items():
            headers[f"{META_PREFIX}{name.lower()}"] = ", ".join(values)
        return headers
