# orchestration/orchestrator.py
"""Orchestrator driving an observation through propose, validate, critique and apply."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog

import utils
from agents.applier_agent import ApplierAgent
from agents.critic_agent import CriticAgent, DisabledCriticAgent
from agents.proposer_agent import ProposerAgent
from agents.validator_agent import ValidatorAgent
from config import settings
from core.errors import StageDeadlineExceeded
from data_access import KnowledgeStore, knowledge_store
from models import CandidateSet, Critique

from orchestration.models import (
    PIPELINE_TRANSITIONS,
    OrchestrationResult,
    PipelineState,
    PipelineTrace,
    StepRecord,
    StepStatus,
)
from orchestration.stats import OrchestratorStats

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class _PipelineRun:
    """State and trace for one observation."""

    def __init__(self, deadline_seconds: float | None) -> None:
        self.state = PipelineState.START
        self.trace = PipelineTrace()
        self.start = time.monotonic()
        self.deadline_seconds = deadline_seconds

    def advance(self, new_state: PipelineState) -> None:
        if new_state not in PIPELINE_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal pipeline transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def remaining(self) -> float | None:
        if self.deadline_seconds is None:
            return None
        return self.deadline_seconds - (time.monotonic() - self.start)


class KnowledgeOrchestrator:
    """Runs observations through the agent pipeline and keeps run statistics."""

    def __init__(
        self,
        proposer: ProposerAgent | None = None,
        validator: ValidatorAgent | None = None,
        critic: CriticAgent | None = None,
        applier: ApplierAgent | None = None,
        store: KnowledgeStore | None = None,
        stats: OrchestratorStats | None = None,
        enable_critic: bool | None = None,
        run_deadline_seconds: float | None = settings.RUN_DEADLINE_SECONDS,
    ) -> None:
        logger.info("Initializing KnowledgeOrchestrator...")
        self.store = store or knowledge_store
        self.proposer = proposer or ProposerAgent()
        self.validator = validator or ValidatorAgent(store=self.store)
        if critic is None:
            if enable_critic is None:
                enable_critic = settings.ENABLE_CRITIC
            critic = CriticAgent() if enable_critic else DisabledCriticAgent()
        self.critic = critic
        self.applier = applier or ApplierAgent(store=self.store)
        self.stats = stats or OrchestratorStats()
        self.run_deadline_seconds = run_deadline_seconds
        logger.info(
            "KnowledgeOrchestrator initialized.",
            critic_enabled=self.critic.enabled,
            run_deadline_seconds=run_deadline_seconds,
        )

    async def _await_stage(
        self, run: _PipelineRun, stage: str, awaitable: Awaitable[T]
    ) -> T:
        remaining = run.remaining()
        if remaining is None:
            return await awaitable
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise StageDeadlineExceeded(stage, run.deadline_seconds)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise StageDeadlineExceeded(stage, run.deadline_seconds) from exc

    def _record(
        self,
        run: _PipelineRun,
        agent: str,
        status: StepStatus,
        started: float,
        output: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        latency_ms = utils.elapsed_ms(started)
        run.trace.add(
            StepRecord(
                agent=agent,
                status=status,
                latency_ms=latency_ms,
                output=output,
                error=error,
            )
        )
        self.stats.record_agent_latency(agent, latency_ms)

    def _finalize(
        self,
        run: _PipelineRun,
        success: bool,
        **fields: Any,
    ) -> OrchestrationResult:
        total_latency_ms = utils.elapsed_ms(run.start)
        self.stats.record_run(
            success, total_latency_ms, rejected=run.state is PipelineState.REJECTED
        )
        metrics = {
            "total_latency_ms": total_latency_ms,
            "agent_breakdown": run.trace.agent_breakdown(),
            "throughput_obs_per_sec": (
                round(1000 / total_latency_ms, 3) if total_latency_ms > 0 else None
            ),
            "system": self.stats.snapshot(),
        }
        logger.info(
            "Orchestration finished",
            success=success,
            state=run.state.value,
            total_latency_ms=total_latency_ms,
        )
        return OrchestrationResult(
            success=success, state=run.state, trace=run.trace, metrics=metrics, **fields
        )

    def _fail(
        self, run: _PipelineRun, agent: str, started: float, exc: BaseException
    ) -> OrchestrationResult:
        logger.error(f"{agent} stage failed", error=str(exc))
        self._record(run, agent, StepStatus.FAILED, started, error=str(exc))
        run.advance(PipelineState.FAILED)
        return self._finalize(run, False, error=str(exc))

    async def _critique(self, proposal: CandidateSet) -> Critique:
        try:
            context = await self.store.get_recent_context(settings.CRITIC_CONTEXT_LIMIT)
        except Exception as exc:
            logger.warning("Graph context unavailable for critic", error=str(exc))
            context = []
        return await self.critic.critique(proposal, context)

    async def run_orchestration(self, observation: str) -> OrchestrationResult:
        """Take one observation through every stage and report the outcome.

        Raises:
            ValueError: The observation is empty after sanitizing.
        """
        observation = utils.sanitize_observation(observation or "")
        if not observation:
            raise ValueError("Observation text is empty")

        run = _PipelineRun(self.run_deadline_seconds)
        logger.info("Starting orchestration", observation=observation[:100])

        run.advance(PipelineState.PROPOSE)
        started = time.monotonic()
        try:
            proposal = await self._await_stage(
                run, "Proposer", self.proposer.propose(observation)
            )
        except Exception as exc:
            return self._fail(run, "Proposer", started, exc)
        self._record(run, "Proposer", StepStatus.SUCCESS, started, proposal.summary())

        run.advance(PipelineState.VALIDATE)
        started = time.monotonic()
        try:
            validation = await self._await_stage(
                run, "Validator", self.validator.validate(proposal)
            )
        except Exception as exc:
            return self._fail(run, "Validator", started, exc)
        if not validation.is_valid:
            self._record(
                run, "Validator", StepStatus.REJECTED, started, validation.summary()
            )
            run.advance(PipelineState.REJECTED)
            logger.info("Proposal rejected", reason=validation.reason)
            return self._finalize(run, False, reason=validation.reason)
        self._record(
            run,
            "Validator",
            StepStatus.WARNING if validation.warnings else StepStatus.SUCCESS,
            started,
            validation.summary(),
        )

        if self.critic.enabled:
            run.advance(PipelineState.CRITIQUE)
            started = time.monotonic()
            try:
                critique = await self._await_stage(
                    run, "Critic", self._critique(proposal)
                )
            except StageDeadlineExceeded as exc:
                logger.warning("Critic ran past the deadline", error=str(exc))
                critique = Critique.degraded_default(str(exc))
            self._record(
                run,
                "Critic",
                StepStatus.WARNING if critique.degraded else StepStatus.SUCCESS,
                started,
                {"overall_score": critique.overall_score},
                error=critique.error,
            )
        else:
            critique = await self.critic.critique(proposal)

        run.advance(PipelineState.APPLY)
        started = time.monotonic()
        try:
            applied = await self._await_stage(
                run, "Applier", self.applier.apply(proposal)
            )
        except Exception as exc:
            return self._fail(run, "Applier", started, exc)
        self._record(
            run,
            "Applier",
            StepStatus.WARNING if applied.errors else StepStatus.SUCCESS,
            started,
            applied.summary(),
        )

        run.advance(PipelineState.INDEX_UPDATE)
        started = time.monotonic()
        applied_ids = set(applied.applied_entity_ids)
        try:
            applied.indexed_entities = await self._await_stage(
                run,
                "SemanticIndex",
                self.applier.update_semantic_index(
                    e for e in proposal.entities if e.id in applied_ids
                ),
            )
            self._record(
                run,
                "SemanticIndex",
                StepStatus.SUCCESS,
                started,
                {"indexed": applied.indexed_entities},
            )
        except Exception as exc:
            logger.warning("Semantic index update failed", error=str(exc))
            self._record(
                run, "SemanticIndex", StepStatus.WARNING, started, error=str(exc)
            )

        run.advance(PipelineState.FINALIZE)
        return self._finalize(
            run, True, critique=critique, applied_changes=applied
        )

    def get_system_metrics(self) -> dict[str, Any]:
        return {
            "system": self.stats.snapshot(),
            "agents": {
                "proposer": self.proposer.get_metrics(),
                "validator": self.validator.get_metrics(),
                "critic": self.critic.get_metrics(),
                "applier": self.applier.get_metrics(),
            },
            "critic_enabled": self.critic.enabled,
        }

    def reset_metrics(self) -> None:
        self.stats.reset()
        self.proposer.clear_cache()
        logger.info("Orchestrator metrics reset")
