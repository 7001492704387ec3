"""Tests for bucket name, object key and chunk size validation."""

import pytest

from streamstore.errors import InvalidArgument, InvalidBucketName, InvalidKey
from streamstore.validation import (
    validate_bucket_name,
    validate_chunk_size,
    validate_object_key,
)


class TestValidateBucketName:
    """Tests for validate_bucket_name()."""

    @pytest.mark.parametrize("name", ["photos", "my-bucket", "MY_BUCKET_2", "a", "x" * 64])
    def test_valid(self, name):
        validate_bucket_name(name)

    @pytest.mark.parametrize(
        "name",
        ["", "x" * 65, "has.dot", "has space", "star*", "gt>", "slash/name", "tab\tname"],
    )
    def test_invalid(self, name):
        with pytest.raises(InvalidBucketName):
            validate_bucket_name(name)

    def test_error_carries_bucket(self):
        with pytest.raises(InvalidBucketName) as exc_info:
            validate_bucket_name("bad.name")
        assert exc_info.value.extra_fields == {"Bucket": "bad.name"}
        assert exc_info.value.http_status == 400


class TestValidateObjectKey:
    """Tests for validate_object_key()."""

    @pytest.mark.parametrize(
        "key", ["file", "dir/file.txt", "a.b.c", "report-2024_v2", "ünïcode.bin", "*x", "x>"]
    )
    def test_valid(self, key):
        validate_object_key(key)

    def test_empty(self):
        with pytest.raises(InvalidKey, match="empty"):
            validate_object_key("")

    def test_too_long(self):
        with pytest.raises(InvalidKey, match="1024"):
            validate_object_key("k" * 1025)

    def test_multibyte_length_counted_in_bytes(self):
        with pytest.raises(InvalidKey):
            validate_object_key("é" * 513)

    @pytest.mark.parametrize("key", ["has space", "tab\there", "new\nline"])
    def test_whitespace(self, key):
        with pytest.raises(InvalidKey, match="whitespace"):
            validate_object_key(key)

    @pytest.mark.parametrize("key", [".leading", "trailing.", "double..dot"])
    def test_empty_token(self, key):
        with pytest.raises(InvalidKey, match="empty subject tokens"):
            validate_object_key(key)

    @pytest.mark.parametrize("key", ["*", ">", "a.*.b", "a.>"])
    def test_wildcard_token(self, key):
        with pytest.raises(InvalidKey, match="wildcard"):
            validate_object_key(key)


class TestValidateChunkSize:
    """Tests for validate_chunk_size()."""

    def test_valid(self):
        assert validate_chunk_size(128 * 1024) == 131072

    def test_string_number(self):
        assert validate_chunk_size("512") == 512

    @pytest.mark.parametrize("value", [0, -1, "abc", None])
    def test_invalid(self, value):
        with pytest.raises(InvalidArgument):
            validate_chunk_size(value)
