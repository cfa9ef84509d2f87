# tests/test_applier_agent.py
import pytest
from agents.applier_agent import ApplierAgent
from conftest import FakeIndex, FakeStore
from core.errors import ApplierSystemicFailure
from models import CandidateSet, Entity
from neo4j.exceptions import ServiceUnavailable


def three_entities():
    return CandidateSet(
        entities=[
            {"id": "dept_a", "label": "A", "type": "Department"},
            {"id": "dept_b", "label": "B", "type": "Department"},
            {"id": "dept_c", "label": "C", "type": "Department"},
        ],
        relationships=[
            {"from": "dept_a", "to": "dept_c", "type": "COLLABORATES_WITH"},
            {"from": "dept_a", "to": "dept_b", "type": "COLLABORATES_WITH"},
        ],
    )


@pytest.mark.asyncio
async def test_partial_failure_is_recorded_not_raised():
    store = FakeStore(fail_entities={"dept_b"})
    applier = ApplierAgent(store=store, index=FakeIndex())

    result = await applier.apply(three_entities())

    assert result.entities_applied == 2
    assert result.applied_entity_ids == ["dept_a", "dept_c"]
    assert result.relationships_applied == 1
    assert [e.item for e in result.errors] == ["dept_b", "dept_a->dept_b"]
    assert result.errors[0].kind == "entity"
    assert "dept_b" in result.errors[0].error


@pytest.mark.asyncio
async def test_lost_connectivity_is_systemic():
    class FlakyStore(FakeStore):
        async def create_entity(self, entity):
            if entity.id == "dept_b":
                raise ServiceUnavailable("connection lost")
            return await super().create_entity(entity)

    applier = ApplierAgent(store=FlakyStore(), index=FakeIndex())
    with pytest.raises(ApplierSystemicFailure) as excinfo:
        await applier.apply(three_entities())
    assert excinfo.value.items_applied == 1
    assert applier.get_metrics()["systemic_failures"] == 1


@pytest.mark.asyncio
async def test_connectivity_checked_before_batch():
    store = FakeStore()
    store.connectivity_error = ConnectionError("Neo4j driver not initialized")
    applier = ApplierAgent(store=store, index=FakeIndex())
    with pytest.raises(ApplierSystemicFailure):
        await applier.apply(three_entities())
    assert store.entities == {}


@pytest.mark.asyncio
async def test_semantic_index_update_never_raises():
    index = FakeIndex(fail_ids={"dept_b"})
    applier = ApplierAgent(store=FakeStore(), index=index)
    entities = [
        Entity(id="dept_a", label="A", type="Department", properties={"budget": 10}),
        Entity(id="dept_b", label="B", type="Department"),
    ]

    indexed = await applier.update_semantic_index(entities)

    assert indexed == 1
    entity_id, text, metadata = index.upserts[0]
    assert entity_id == "dept_a"
    assert text == 'Department: A. {"budget": 10}'
    assert metadata == {"budget": 10, "id": "dept_a", "type": "Department", "label": "A"}
    assert applier.get_metrics()["index_errors"] == 1
