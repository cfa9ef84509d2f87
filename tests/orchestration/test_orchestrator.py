# tests/orchestration/test_orchestrator.py
import asyncio
from unittest.mock import AsyncMock

import pytest
from agents.applier_agent import ApplierAgent
from agents.critic_agent import CriticAgent, DisabledCriticAgent
from agents.proposer_agent import ProposerAgent
from agents.validator_agent import ValidatorAgent
from conftest import FakeClient, FakeIndex, FakeStore
from core.cache import LRUCache
from core.errors import GenerationError, ValidationSystemError
from neo4j.exceptions import ServiceUnavailable

from orchestration.models import PipelineState, StepStatus
from orchestration.orchestrator import KnowledgeOrchestrator, _PipelineRun
from orchestration.stats import OrchestratorStats

CRITIQUE = {
    "overallScore": 7.5,
    "dimensions": {"completeness": 8, "specificity": 7, "utility": 8, "structure": 7},
}


def build(store, proposer_client, critic_client=None, index=None, enable_critic=True):
    critic = (
        CriticAgent(client=critic_client or FakeClient(CRITIQUE))
        if enable_critic
        else DisabledCriticAgent()
    )
    return KnowledgeOrchestrator(
        proposer=ProposerAgent(client=proposer_client, cache=LRUCache(8)),
        validator=ValidatorAgent(store=store, client=FakeClient()),
        critic=critic,
        applier=ApplierAgent(store=store, index=index or FakeIndex()),
        store=store,
        stats=OrchestratorStats(sample_size=10),
        run_deadline_seconds=None,
    )


@pytest.mark.asyncio
async def test_end_to_end_success(marketing_proposal):
    store = FakeStore(existing={"org_demo"})
    index = FakeIndex()
    orchestrator = build(store, FakeClient(marketing_proposal), index=index)

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert result.success
    assert result.state is PipelineState.FINALIZE
    assert result.trace.agents == [
        "Proposer",
        "Validator",
        "Critic",
        "Applier",
        "SemanticIndex",
    ]
    assert result.applied_changes.entities_applied == 1
    assert result.applied_changes.indexed_entities == 1
    assert result.critique.overall_score == 7.5
    assert "dept_marketing" in store.entities
    assert index.upserts[0][0] == "dept_marketing"
    assert result.metrics["system"]["successful_runs"] == 1
    assert set(result.metrics["agent_breakdown"]) == set(result.trace.agents)


@pytest.mark.asyncio
async def test_duplicate_rejected_without_apply_or_critique(marketing_proposal):
    store = FakeStore(existing={"dept_marketing"})
    critic_client = FakeClient(CRITIQUE)
    orchestrator = build(store, FakeClient(marketing_proposal), critic_client)
    orchestrator.applier.apply = AsyncMock()

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert not result.success
    assert result.state is PipelineState.REJECTED
    assert "already exists" in result.reason
    assert result.error is None
    assert result.trace.agents == ["Proposer", "Validator"]
    assert result.trace.step("Validator").status is StepStatus.REJECTED
    orchestrator.applier.apply.assert_not_awaited()
    assert critic_client.calls == 0
    snapshot = orchestrator.stats.snapshot()
    assert snapshot["failed_runs"] == 1
    assert snapshot["rejected_runs"] == 1


@pytest.mark.asyncio
async def test_validator_system_error_fails_run(marketing_proposal):
    store = FakeStore()
    critic_client = FakeClient(CRITIQUE)
    orchestrator = build(store, FakeClient(marketing_proposal), critic_client)
    orchestrator.validator.validate = AsyncMock(
        side_effect=ValidationSystemError("Schema check crashed: boom")
    )
    orchestrator.applier.apply = AsyncMock()

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert not result.success
    assert result.state is PipelineState.FAILED
    assert result.reason is None
    assert "Schema check crashed" in result.error
    assert result.trace.agents == ["Proposer", "Validator"]
    assert result.trace.step("Validator").status is StepStatus.FAILED
    orchestrator.applier.apply.assert_not_awaited()
    assert critic_client.calls == 0
    snapshot = orchestrator.stats.snapshot()
    assert snapshot["failed_runs"] == 1
    assert snapshot["rejected_runs"] == 0


@pytest.mark.asyncio
async def test_non_finite_semantic_verdict_degrades_and_applies():
    proposal = {
        "entities": [
            {"id": "dept_a", "label": "A", "type": "Department"},
            {"id": "role_b", "label": "B", "type": "Role"},
        ],
    }
    store = FakeStore()
    orchestrator = build(store, FakeClient(proposal), enable_critic=False)
    orchestrator.validator.client = FakeClient(
        {"isValid": True, "reason": "ok", "score": float("nan")}
    )

    result = await orchestrator.run_orchestration("A and B")

    assert result.success
    assert result.state is PipelineState.FINALIZE
    validator_step = result.trace.step("Validator")
    assert validator_step.status is StepStatus.WARNING
    assert validator_step.output["dimensions"]["semantic_consistency"] == 0.7
    assert result.applied_changes.entities_applied == 2


@pytest.mark.asyncio
async def test_proposer_failure_fails_run():
    store = FakeStore()
    orchestrator = build(store, FakeClient(GenerationError("endpoint down")))

    result = await orchestrator.run_orchestration("anything")

    assert not result.success
    assert result.state is PipelineState.FAILED
    assert result.error.startswith("Proposer failed:")
    step = result.trace.step("Proposer")
    assert step.status is StepStatus.FAILED
    assert "endpoint down" in step.error
    assert result.trace.agents == ["Proposer"]


@pytest.mark.asyncio
async def test_critic_failure_is_a_warning(marketing_proposal):
    store = FakeStore()
    orchestrator = build(
        store, FakeClient(marketing_proposal), FakeClient(RuntimeError("critic down"))
    )

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert result.success
    assert result.critique.degraded
    assert result.trace.step("Critic").status is StepStatus.WARNING


@pytest.mark.asyncio
async def test_critic_context_read_failure_falls_back(marketing_proposal):
    store = FakeStore()
    store.context_error = ConnectionError("read failed")
    critic_client = FakeClient(CRITIQUE)
    orchestrator = build(store, FakeClient(marketing_proposal), critic_client)

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert result.success
    assert not result.critique.degraded
    assert critic_client.calls == 1


@pytest.mark.asyncio
async def test_disabled_critic_has_no_trace_step(marketing_proposal):
    store = FakeStore()
    orchestrator = build(store, FakeClient(marketing_proposal), enable_critic=False)

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert result.success
    assert "Critic" not in result.trace.agents
    assert result.critique.overall_score == "N/A"
    assert orchestrator.get_system_metrics()["critic_enabled"] is False


@pytest.mark.asyncio
async def test_partial_apply_still_succeeds():
    proposal = {
        "entities": [
            {"id": "dept_a", "label": "A", "type": "Department"},
            {"id": "dept_b", "label": "B", "type": "Department"},
            {"id": "dept_c", "label": "C", "type": "Department"},
        ],
    }
    store = FakeStore(fail_entities={"dept_b"})
    index = FakeIndex()
    orchestrator = build(
        store, FakeClient(proposal), index=index, enable_critic=False
    )
    # Non-trivial proposals get a semantic check.
    orchestrator.validator.client = FakeClient({"isValid": True, "reason": "ok", "score": 1})

    result = await orchestrator.run_orchestration("Three departments")

    assert result.success
    assert result.applied_changes.entities_applied == 2
    assert [e.item for e in result.applied_changes.errors] == ["dept_b"]
    assert result.trace.step("Applier").status is StepStatus.WARNING
    assert [u[0] for u in index.upserts] == ["dept_a", "dept_c"]
    assert result.state is PipelineState.FINALIZE


@pytest.mark.asyncio
async def test_applier_systemic_failure_fails_run(marketing_proposal):
    store = FakeStore()
    orchestrator = build(store, FakeClient(marketing_proposal), enable_critic=False)
    orchestrator.applier.apply = AsyncMock(side_effect=ServiceUnavailable("gone"))

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert not result.success
    assert result.state is PipelineState.FAILED
    assert result.trace.step("Applier").status is StepStatus.FAILED


@pytest.mark.asyncio
async def test_index_failure_does_not_change_verdict(marketing_proposal):
    store = FakeStore()
    orchestrator = build(
        store,
        FakeClient(marketing_proposal),
        index=FakeIndex(fail_ids={"dept_marketing"}),
        enable_critic=False,
    )

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert result.success
    assert result.applied_changes.indexed_entities == 0


@pytest.mark.asyncio
async def test_empty_observation_raises_and_is_not_counted():
    orchestrator = build(FakeStore(), FakeClient())
    with pytest.raises(ValueError):
        await orchestrator.run_orchestration("  <> ")
    assert orchestrator.stats.snapshot()["total_runs"] == 0


@pytest.mark.asyncio
async def test_deadline_fails_slow_proposer(marketing_proposal):
    class SlowClient(FakeClient):
        async def generate(self, prompt, **kwargs):
            await asyncio.sleep(1)
            return await super().generate(prompt, **kwargs)

    orchestrator = build(FakeStore(), SlowClient(marketing_proposal))
    orchestrator.run_deadline_seconds = 0.05

    result = await orchestrator.run_orchestration("Marketing handles brand campaigns")

    assert not result.success
    assert "deadline" in result.error


@pytest.mark.asyncio
async def test_reset_metrics_clears_stats_and_cache(marketing_proposal):
    proposer_client = FakeClient(marketing_proposal, marketing_proposal)
    orchestrator = build(FakeStore(), proposer_client, enable_critic=False)
    await orchestrator.run_orchestration("Marketing handles brand campaigns")

    orchestrator.reset_metrics()

    assert orchestrator.stats.snapshot()["total_runs"] == 0
    assert len(orchestrator.proposer.cache) == 0
    metrics = orchestrator.get_system_metrics()
    assert set(metrics["agents"]) == {"proposer", "validator", "critic", "applier"}


def test_illegal_transition_raises():
    run = _PipelineRun(None)
    with pytest.raises(RuntimeError):
        run.advance(PipelineState.APPLY)
    run.advance(PipelineState.PROPOSE)
    run.advance(PipelineState.FAILED)
    with pytest.raises(RuntimeError):
        run.advance(PipelineState.VALIDATE)
