# tests/conftest.py
import os
import sys

import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Ensure placeholder secrets and quiet logging during tests
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("NEO4J_PASSWORD", "test-password")
os.environ.setdefault("LOG_FILE", "")


class FakeStore:
    """In-memory stand-in for ``KnowledgeStore``."""

    def __init__(self, existing=(), fail_entities=(), exists_error=None):
        self.entities = {eid: {"id": eid} for eid in existing}
        self.relationships = []
        self.fail_entities = set(fail_entities)
        self.exists_error = exists_error
        self.context_error = None
        self.connectivity_error = None
        self.exists_calls = []

    async def verify_connectivity(self):
        if self.connectivity_error is not None:
            raise self.connectivity_error

    async def entity_exists(self, entity_id):
        self.exists_calls.append(entity_id)
        if self.exists_error is not None:
            raise self.exists_error
        return entity_id in self.entities

    async def create_entity(self, entity):
        if entity.id in self.fail_entities:
            raise RuntimeError(f"write refused for {entity.id}")
        self.entities[entity.id] = {
            "id": entity.id,
            "label": entity.label,
            "type": entity.type,
        }
        return {"success": True, "id": entity.id}

    async def create_relationship(self, rel):
        if rel.source not in self.entities or rel.target not in self.entities:
            raise LookupError(f"Endpoint missing for relationship {rel.display_name}")
        self.relationships.append((rel.source, rel.type, rel.target))
        return {"success": True, "type": rel.type}

    async def get_recent_context(self, limit=10):
        if self.context_error is not None:
            raise self.context_error
        return list(self.entities.values())[:limit]


class FakeClient:
    """Stand-in for ``GenerationClient`` returning queued parsed responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts = []

    async def generate(self, prompt, **_kwargs):
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def generate_text(self, prompt, **kwargs):
        return await self.generate(prompt, **kwargs)

    @property
    def calls(self):
        return len(self.prompts)


class FakeIndex:
    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.upserts = []

    async def upsert(self, entity_id, text, metadata):
        if entity_id in self.fail_ids:
            raise ValueError(f"No embedding produced for entity '{entity_id}'")
        self.upserts.append((entity_id, text, metadata))


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def marketing_proposal():
    return {
        "entities": [
            {
                "id": "dept_marketing",
                "label": "Marketing",
                "type": "Department",
                "properties": {"description": "Handles brand campaigns"},
            }
        ],
        "relationships": [],
        "metadata": {"complexity": "simple"},
    }
