"""Tests for object bucket subject naming."""

from streamstore.objects.codec import (
    bucket_from_stream,
    chunk_subject,
    deliver_subject,
    meta_subject,
    new_object_id,
    sanitize_key,
    stream_name,
    stream_subjects,
)
from streamstore.transport.memory import subject_matches


class TestSanitizeKey:
    """Tests for sanitize_key()."""

    def test_plain_key_unchanged(self):
        assert sanitize_key("report-2024") == "report-2024"

    def test_dots_and_spaces_replaced(self):
        assert sanitize_key("my file.tar.gz") == "my_file_tar_gz"

    def test_deterministic(self):
        """The same key always maps to the same token."""
        assert sanitize_key("a b.c") == sanitize_key("a b.c")

    def test_collisions_share_a_token(self):
        """Distinct keys may collide after sanitizing."""
        assert sanitize_key("a b") == sanitize_key("a.b") == sanitize_key("a_b") == "a_b"

    def test_slashes_kept(self):
        assert sanitize_key("dir/sub/file") == "dir/sub/file"


class TestSubjects:
    """Tests for stream and subject builders."""

    def test_stream_name(self):
        assert stream_name("photos") == "OBJ_photos"

    def test_bucket_from_stream(self):
        assert bucket_from_stream("OBJ_photos") == "photos"
        assert bucket_from_stream("OTHER") == "OTHER"

    def test_chunk_subject_uses_raw_key(self):
        assert chunk_subject("b", "x.y") == "$O.b.C.x.y"

    def test_meta_subject_uses_sanitized_key(self):
        assert meta_subject("b", "x.y z") == "$O.b.M.x_y_z"

    def test_stream_subjects_capture_chunks_and_metadata(self):
        patterns = stream_subjects("b")
        assert any(subject_matches(p, chunk_subject("b", "x.y")) for p in patterns)
        assert any(subject_matches(p, meta_subject("b", "x.y")) for p in patterns)
        assert not any(subject_matches(p, chunk_subject("other", "x")) for p in patterns)


class TestIdentifiers:
    """Tests for minted identifiers."""

    def test_object_ids_are_unique(self):
        ids = {new_object_id() for _ in range(1000)}
        assert len(ids) == 1000

    def test_object_id_is_str(self):
        assert isinstance(new_object_id(), str)

    def test_deliver_subjects_are_unique(self):
        first = deliver_subject("b", "k")
        second = deliver_subject("b", "k")
        assert first != second
        assert first.startswith("NATS.Objects.b.data.k.get.")
