"""Tests for metrics.py -- per-run metrics collection."""

from metrics import MetricsCollector, RunMetricsData


class TestMetricsCollector:
    def test_records_generations(self, metrics_collector: MetricsCollector) -> None:
        metrics_collector.start("run_1")
        metrics_collector.record_generation("run_1", prompt_chars=10, response_chars=40, latency_ms=5)
        metrics_collector.record_generation("run_1", prompt_chars=20, response_chars=60, latency_ms=7)

        data = metrics_collector.get("run_1")
        assert data is not None
        assert data.generation_calls == 2
        assert data.prompt_chars == 30
        assert data.response_chars == 100
        assert data.generation_ms == 12

    def test_start_twice_keeps_existing_data(self, metrics_collector: MetricsCollector) -> None:
        metrics_collector.start("run_1")
        metrics_collector.record_failure("run_1")
        metrics_collector.start("run_1")
        data = metrics_collector.get("run_1")
        assert data is not None and data.failed_agents == 1

    def test_finish_removes_run(self, metrics_collector: MetricsCollector) -> None:
        metrics_collector.start("run_1")
        final = metrics_collector.finish("run_1")
        assert isinstance(final, RunMetricsData)
        assert final.duration_ms >= 0
        assert metrics_collector.get("run_1") is None
        assert metrics_collector.finish("run_1") is None

    def test_untracked_run_is_ignored(self, metrics_collector: MetricsCollector) -> None:
        metrics_collector.record_generation("nope", prompt_chars=1, response_chars=1, latency_ms=1)
        metrics_collector.record_failure("nope")
        assert metrics_collector.get("nope") is None


class TestRunMetricsData:
    def test_to_dict(self) -> None:
        data = RunMetricsData(generation_calls=3, failed_agents=1, response_chars=9)
        assert data.to_dict() == {
            "generation_calls": 3,
            "failed_agents": 1,
            "prompt_chars": 0,
            "response_chars": 9,
            "generation_ms": 0,
            "duration_ms": 0,
        }
