# tests/test_proposer_agent.py
import pytest
from agents.proposer_agent import ProposerAgent, parse_proposal
from conftest import FakeClient
from core.cache import LRUCache
from core.errors import (
    EmptyProposalError,
    GenerationError,
    MalformedResponseError,
    ProposerError,
)


@pytest.mark.asyncio
async def test_propose_returns_candidate_set(marketing_proposal):
    client = FakeClient(marketing_proposal)
    agent = ProposerAgent(client=client, cache=LRUCache(8))

    proposal = await agent.propose("Marketing handles brand campaigns")

    assert [e.id for e in proposal.entities] == ["dept_marketing"]
    assert proposal.entities[0].type == "Department"
    assert proposal.metadata.complexity == "simple"
    assert proposal.metadata.extracted_entity_count == 1
    assert proposal.metadata.cache_hit is False
    assert proposal.metadata.cache_key
    assert "Marketing handles brand campaigns" in client.prompts[0]


@pytest.mark.asyncio
async def test_repeated_observation_hits_cache(marketing_proposal):
    client = FakeClient(marketing_proposal)
    agent = ProposerAgent(client=client, cache=LRUCache(8))

    first = await agent.propose("Marketing handles brand campaigns")
    second = await agent.propose("  MARKETING handles   brand campaigns ")

    assert client.calls == 1
    assert second.metadata.cache_hit is True
    assert second.metadata.processing_time_ms < 50
    assert second.entities == first.entities
    metrics = agent.get_metrics()
    assert metrics["cache_hits"] == 1
    assert metrics["api_calls"] == 1
    assert metrics["cache_hit_rate"] == "50.00%"


@pytest.mark.asyncio
async def test_cache_hit_does_not_mutate_stored_entry(marketing_proposal):
    agent = ProposerAgent(client=FakeClient(marketing_proposal), cache=LRUCache(8))
    first = await agent.propose("obs")
    await agent.propose("obs")
    assert first.metadata.cache_hit is False


@pytest.mark.asyncio
async def test_returned_proposals_share_no_state_with_cache(marketing_proposal):
    agent = ProposerAgent(client=FakeClient(marketing_proposal), cache=LRUCache(8))
    first = await agent.propose("obs")
    first.entities.clear()
    second = await agent.propose("obs")
    second.entities[0].properties["description"] = "changed"
    third = await agent.propose("obs")

    assert [e.id for e in third.entities] == ["dept_marketing"]
    assert third.entities[0].properties["description"] == "Handles brand campaigns"
    assert second.entities is not third.entities


@pytest.mark.asyncio
async def test_clear_cache_forces_new_call(marketing_proposal):
    client = FakeClient(marketing_proposal, marketing_proposal)
    agent = ProposerAgent(client=client, cache=LRUCache(8))
    await agent.propose("obs")
    agent.clear_cache()
    await agent.propose("obs")
    assert client.calls == 2


@pytest.mark.asyncio
async def test_empty_entities_wrapped_as_proposer_error():
    agent = ProposerAgent(client=FakeClient({"entities": []}), cache=LRUCache(8))
    with pytest.raises(ProposerError) as excinfo:
        await agent.propose("nothing useful")
    assert str(excinfo.value).startswith("Proposer failed:")
    assert isinstance(excinfo.value.__cause__, EmptyProposalError)
    assert agent.get_metrics()["errors"] == 1
    assert len(agent.cache) == 0


@pytest.mark.asyncio
async def test_generation_failure_wrapped():
    client = FakeClient(GenerationError("Generation call failed: boom"))
    agent = ProposerAgent(client=client, cache=LRUCache(8))
    with pytest.raises(ProposerError) as excinfo:
        await agent.propose("obs")
    assert isinstance(excinfo.value.__cause__, GenerationError)


def test_parse_proposal_rejects_non_object():
    with pytest.raises(MalformedResponseError):
        parse_proposal(["not", "an", "object"])


def test_parse_proposal_rejects_missing_entities():
    with pytest.raises(EmptyProposalError):
        parse_proposal({"relationships": []})


def test_parse_proposal_rejects_non_object_entity():
    with pytest.raises(MalformedResponseError):
        parse_proposal({"entities": ["dept_marketing"]})


def test_parse_proposal_reads_relationship_aliases():
    proposal = parse_proposal(
        {
            "entities": [{"id": "a", "label": "A", "type": "Role"}],
            "relationships": [{"from": "a", "to": "b", "type": "REPORTS_TO"}],
        }
    )
    rel = proposal.relationships[0]
    assert (rel.source, rel.target) == ("a", "b")
    assert proposal.metadata.complexity == "unknown"
