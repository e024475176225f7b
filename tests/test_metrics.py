"""Tests for Prometheus metrics."""

from gesture_trainer.metrics import MetricsCollector


class TestMetricsCollector:
    def test_record_match(self):
        m = MetricsCollector()
        m.record_match(1)
        m.record_match(1)
        m.record_match(4)
        assert m.match_counts == {"1": 2, "4": 1}

    def test_record_frame(self):
        m = MetricsCollector()
        m.record_frame(0.0005)
        m.record_frame(0.001)
        m.record_dropped_frame()
        assert m.frames_total == 2
        assert m.frames_dropped == 1

    def test_requests_and_flushes(self):
        m = MetricsCollector()
        m.record_request("extinit")
        m.record_request("extwritecode")
        m.record_request("extwritecode")
        m.record_flush()
        assert m.request_counts == {"extinit": 1, "extwritecode": 2}
        assert m.flushes_total == 1

    def test_render_prometheus_format(self):
        m = MetricsCollector()
        m.record_match(3)
        m.record_frame(0.0005)
        m.record_write_failure()
        m.set_connections(1)

        output = m.render()
        assert "gesture_trainer_matches_total" in output
        assert 'gesture="3"' in output
        assert "gesture_trainer_frames_total 1" in output
        assert "gesture_trainer_write_failures_total 1" in output
        assert "gesture_trainer_active_connections 1" in output
        assert "# HELP" in output
        assert "# TYPE" in output

    def test_histogram_buckets(self):
        m = MetricsCollector()
        for _ in range(10):
            m.record_frame(0.0003)
        output = m.render()
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="0.0001"} 0' in output
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="0.0005"} 10' in output
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="+Inf"} 10' in output
        assert "gesture_trainer_feed_latency_seconds_count 10" in output

    def test_histogram_edges_and_overflow(self):
        m = MetricsCollector()
        m.record_frame(0.001)
        m.record_frame(0.5)
        output = m.render()
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="0.0005"} 0' in output
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="0.001"} 1' in output
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="0.01"} 1' in output
        assert 'gesture_trainer_feed_latency_seconds_bucket{le="+Inf"} 2' in output
        assert "gesture_trainer_feed_latency_seconds_sum 0.501000" in output
