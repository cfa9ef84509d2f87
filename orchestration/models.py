# orchestration/models.py
"""Dataclasses describing one orchestration run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from models import ApplyResult, Critique


class PipelineState(str, Enum):
    START = "START"
    PROPOSE = "PROPOSE"
    VALIDATE = "VALIDATE"
    CRITIQUE = "CRITIQUE"
    APPLY = "APPLY"
    INDEX_UPDATE = "INDEX_UPDATE"
    FINALIZE = "FINALIZE"
    REJECTED = "REJECTED"
    FAILED = "FAILED"


# Forward-only; REJECTED, FAILED and FINALIZE are terminal.
PIPELINE_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.START: frozenset({PipelineState.PROPOSE}),
    PipelineState.PROPOSE: frozenset({PipelineState.VALIDATE, PipelineState.FAILED}),
    PipelineState.VALIDATE: frozenset(
        {
            PipelineState.CRITIQUE,
            PipelineState.APPLY,
            PipelineState.REJECTED,
            PipelineState.FAILED,
        }
    ),
    PipelineState.CRITIQUE: frozenset({PipelineState.APPLY}),
    PipelineState.APPLY: frozenset({PipelineState.INDEX_UPDATE, PipelineState.FAILED}),
    PipelineState.INDEX_UPDATE: frozenset({PipelineState.FINALIZE}),
    PipelineState.FINALIZE: frozenset(),
    PipelineState.REJECTED: frozenset(),
    PipelineState.FAILED: frozenset(),
}


class StepStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class StepRecord:
    """One stage outcome: name, status, latency and an output summary or error."""

    agent: str
    status: StepStatus
    latency_ms: float
    output: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "agent": self.agent,
            "status": self.status.value,
            "latency_ms": self.latency_ms,
        }
        if self.output is not None:
            data["output"] = self.output
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class PipelineTrace:
    """Ordered step records of a single run."""

    steps: list[StepRecord] = field(default_factory=list)

    def add(self, step: StepRecord) -> None:
        self.steps.append(step)

    @property
    def agents(self) -> list[str]:
        return [step.agent for step in self.steps]

    def step(self, agent: str) -> StepRecord | None:
        return next((s for s in self.steps if s.agent == agent), None)

    def agent_breakdown(self) -> dict[str, float]:
        return {step.agent: step.latency_ms for step in self.steps}

    def to_list(self) -> list[dict[str, Any]]:
        return [step.to_dict() for step in self.steps]


@dataclass
class OrchestrationResult:
    """What ``run_orchestration`` hands back to callers."""

    success: bool
    state: PipelineState
    trace: PipelineTrace
    critique: Critique | None = None
    applied_changes: ApplyResult | None = None
    reason: str | None = None
    error: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "state": self.state.value,
            "trace": self.trace.to_list(),
            "metrics": self.metrics,
        }
        if self.critique is not None:
            data["critique"] = self.critique.model_dump(by_alias=True, exclude_none=True)
        if self.applied_changes is not None:
            data["applied_changes"] = self.applied_changes.summary()
        if self.reason is not None:
            data["reason"] = self.reason
        if self.error is not None:
            data["error"] = self.error
        return data
