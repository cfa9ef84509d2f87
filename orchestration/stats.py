# orchestration/stats.py
"""Process-wide counters shared by concurrent orchestration runs."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any

from config import settings


class OrchestratorStats:
    """Run counters, rolling average latency and per-agent latency samples."""

    def __init__(self, sample_size: int = settings.STATS_LATENCY_SAMPLE_SIZE) -> None:
        self.sample_size = sample_size
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.total_runs = 0
            self.successful_runs = 0
            self.failed_runs = 0
            self.rejected_runs = 0
            self.avg_latency_ms = 0.0
            self._agent_latencies: dict[str, deque[float]] = {}

    def record_agent_latency(self, agent: str, latency_ms: float) -> None:
        with self._lock:
            samples = self._agent_latencies.setdefault(
                agent, deque(maxlen=self.sample_size)
            )
            samples.append(latency_ms)

    def record_run(self, success: bool, latency_ms: float, rejected: bool = False) -> None:
        """Count a finalized run; rejected runs also count as failed."""
        with self._lock:
            self.total_runs += 1
            if success:
                self.successful_runs += 1
            else:
                self.failed_runs += 1
                if rejected:
                    self.rejected_runs += 1
            self.avg_latency_ms = (
                self.avg_latency_ms * (self.total_runs - 1) + latency_ms
            ) / self.total_runs

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            total = self.total_runs
            return {
                "total_runs": total,
                "successful_runs": self.successful_runs,
                "failed_runs": self.failed_runs,
                "rejected_runs": self.rejected_runs,
                "success_rate": (
                    f"{self.successful_runs / total * 100:.2f}%" if total else "0%"
                ),
                "avg_latency_ms": round(self.avg_latency_ms, 3),
                "agent_avg_latency_ms": {
                    agent: round(sum(samples) / len(samples), 3)
                    for agent, samples in self._agent_latencies.items()
                    if samples
                },
            }
