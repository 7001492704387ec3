"""Tests for Prometheus metrics."""

from prometheus_client import REGISTRY

from streamstore import metrics


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    async def test_metrics_returns_200(self, client):
        """GET /metrics returns 200."""
        resp = await client.get("/metrics")
        assert resp.status_code == 200

    async def test_metrics_content_type(self, client):
        """GET /metrics returns Prometheus text format content type."""
        resp = await client.get("/metrics")
        ct = resp.headers.get("content-type", "")
        assert "text/plain" in ct or "openmetrics" in ct.lower()

    async def test_metrics_contains_streamstore_prefix(self, client):
        """Object protocol collectors are exposed with the streamstore_ prefix."""
        await client.get("/health")
        body = (await client.get("/metrics")).text
        for name in (
            "streamstore_object_operations_total",
            "streamstore_chunks_published_total",
            "streamstore_bytes_written_total",
            "streamstore_bytes_read_total",
            "streamstore_rollbacks_total",
            "streamstore_reclaims_total",
        ):
            assert name in body

    async def test_http_metrics_namespaced(self, client):
        """The instrumentator's HTTP metrics use the streamstore namespace."""
        await client.get("/health")
        body = (await client.get("/metrics")).text
        assert "streamstore_http_requests_total" in body


class TestObjectMetrics:
    """Tests that object transfers update the counters."""

    async def test_transfer_counters(self, client):
        before_chunks = REGISTRY.get_sample_value("streamstore_chunks_published_total") or 0.0
        before_written = REGISTRY.get_sample_value("streamstore_bytes_written_total") or 0.0
        before_read = REGISTRY.get_sample_value("streamstore_bytes_read_total") or 0.0

        await client.put("/metrics-bucket")
        await client.put("/metrics-bucket/obj", content=b"x" * 200)
        await client.get("/metrics-bucket/obj")

        assert REGISTRY.get_sample_value("streamstore_chunks_published_total") == before_chunks + 4
        assert REGISTRY.get_sample_value("streamstore_bytes_written_total") == before_written + 200
        assert REGISTRY.get_sample_value("streamstore_bytes_read_total") == before_read + 200

    async def test_operation_counter_labels(self, client):
        labels = {"operation": "get", "status": "not_found"}
        before = REGISTRY.get_sample_value("streamstore_object_operations_total", labels) or 0.0
        await client.put("/metrics-bucket")
        await client.get("/metrics-bucket/absent")
        assert REGISTRY.get_sample_value("streamstore_object_operations_total", labels) == before + 1


class TestRecordHelpers:
    """Tests for the record_* helpers."""

    def test_init_is_idempotent(self):
        metrics.init_metrics()
        metrics.init_metrics()
        assert metrics.object_operations_total is not None

    def test_zero_bytes_read_not_counted(self):
        metrics.init_metrics()
        before = REGISTRY.get_sample_value("streamstore_bytes_read_total") or 0.0
        metrics.record_bytes_read(0)
        assert REGISTRY.get_sample_value("streamstore_bytes_read_total") == before
