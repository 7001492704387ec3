"""Object store error definitions for streamstore."""


class ObjectStoreError(Exception):
    """An object store error with code, message, and HTTP status.

    Attributes:
        code: The error code string (e.g. "KeyNotFound", "TransportError").
        message: Human-readable error description.
        http_status: The HTTP status code the gateway returns for this error.
        extra_fields: Additional key-value pairs to include in the error body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 400).
            extra_fields: Optional extra fields for the error body.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


# -- Lookup errors ------------------------------------------------------------


class KeyNotFound(ObjectStoreError):
    """The requested key has no current descriptor in the bucket."""

    def __init__(self, bucket: str, key: str) -> None:
        super().__init__(
            code="KeyNotFound",
            message=f"Key {key!r} does not exist for object bucket {bucket!r}",
            http_status=404,
            extra_fields={"Bucket": bucket, "Key": key},
        )
        self.bucket = bucket
        self.key = key


class BucketNotFound(ObjectStoreError):
    """The bucket's backing stream does not exist."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="BucketNotFound",
            message="The specified bucket does not exist.",
            http_status=404,
            extra_fields={"Bucket": bucket} if bucket else {},
        )


class BucketAlreadyExists(ObjectStoreError):
    """A bucket with a different configuration already uses this name."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="BucketAlreadyExists",
            message="The requested bucket name is not available.",
            http_status=409,
            extra_fields={"Bucket": bucket} if bucket else {},
        )


# -- Input errors -------------------------------------------------------------


class InvalidBucketName(ObjectStoreError):
    """The bucket name cannot be used as a stream name and subject token."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code="InvalidBucketName",
            message="The specified bucket name is not valid.",
            http_status=400,
            extra_fields={"Bucket": bucket} if bucket else {},
        )


class InvalidKey(ObjectStoreError):
    """The object key cannot be addressed as a literal chunk subject."""

    def __init__(self, key: str = "", message: str = "The specified key is not valid.") -> None:
        super().__init__(
            code="InvalidKey",
            message=message,
            http_status=400,
            extra_fields={"Key": key} if key else {},
        )


class InvalidArgument(ObjectStoreError):
    """An invalid argument was provided."""

    def __init__(self, message: str = "Invalid Argument") -> None:
        super().__init__(code="InvalidArgument", message=message, http_status=400)


# -- Data errors --------------------------------------------------------------


class CorruptMetadata(ObjectStoreError):
    """A metadata message could not be decoded into an ObjectInfo."""

    def __init__(self, message: str = "The object descriptor could not be decoded.") -> None:
        super().__init__(code="CorruptMetadata", message=message, http_status=500)


class IntegrityError(ObjectStoreError):
    """Received object content does not match its descriptor."""

    def __init__(self, message: str = "Object content does not match its descriptor.") -> None:
        super().__init__(code="IntegrityError", message=message, http_status=500)


# -- Transport errors ---------------------------------------------------------


class TransportError(ObjectStoreError):
    """The message-stream service was unreachable or rejected the request."""

    def __init__(self, message: str = "The message stream service rejected the request.") -> None:
        super().__init__(code="TransportError", message=message, http_status=503)


class StreamNotFound(TransportError):
    """The addressed stream does not exist."""

    def __init__(self, stream: str = "") -> None:
        super().__init__(message=f"Stream not found: {stream}" if stream else "Stream not found")
        self.code = "StreamNotFound"
        self.http_status = 404
        self.stream = stream


class StreamAlreadyExists(TransportError):
    """A stream with this name exists with a different configuration."""

    def __init__(self, stream: str = "") -> None:
        super().__init__(
            message=f"Stream name already in use: {stream}" if stream else "Stream name already in use"
        )
        self.code = "StreamAlreadyExists"
        self.http_status = 409
        self.stream = stream
