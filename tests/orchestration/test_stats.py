# tests/orchestration/test_stats.py
import threading

from orchestration.stats import OrchestratorStats


def test_rolling_average_covers_every_run():
    stats = OrchestratorStats(sample_size=5)
    stats.record_run(True, 100.0)
    stats.record_run(False, 300.0)
    stats.record_run(False, 200.0, rejected=True)
    snapshot = stats.snapshot()
    assert snapshot["total_runs"] == 3
    assert snapshot["successful_runs"] == 1
    assert snapshot["failed_runs"] == 2
    assert snapshot["rejected_runs"] == 1
    assert snapshot["avg_latency_ms"] == 200.0


def test_agent_samples_are_bounded():
    stats = OrchestratorStats(sample_size=2)
    for latency in (10.0, 20.0, 30.0):
        stats.record_agent_latency("Proposer", latency)
    assert stats.snapshot()["agent_avg_latency_ms"]["Proposer"] == 25.0


def test_concurrent_updates_are_not_lost():
    stats = OrchestratorStats(sample_size=10)

    def worker():
        for _ in range(500):
            stats.record_run(True, 1.0)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert stats.snapshot()["successful_runs"] == 2000


def test_reset():
    stats = OrchestratorStats()
    stats.record_run(True, 5.0)
    stats.record_agent_latency("Applier", 1.0)
    stats.reset()
    snapshot = stats.snapshot()
    assert snapshot["total_runs"] == 0
    assert snapshot["agent_avg_latency_ms"] == {}
    assert snapshot["success_rate"] == "0%"
