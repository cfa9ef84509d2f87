# tests/orchestration/test_query_service.py
import pytest
from conftest import FakeClient
from core.errors import RateLimitExceededError

from orchestration.query_service import (
    FALLBACK_ANSWER,
    QueryService,
    Retrieval,
    extract_keywords,
)

MARKETING_CONTEXT = [
    {
        "name": "Marketing",
        "type": "Department",
        "description": "Handles brand campaigns",
        "relationships": ["OWNS -> Brand Refresh"],
    }
]


class QueryStore:
    def __init__(self, keyword_hits=None, contexts=None, general=None):
        self.keyword_hits = keyword_hits or {}
        self.contexts = contexts or {}
        self.general = general or []
        self.keywords = []
        self.context_requests = []
        self.general_calls = 0

    async def find_entities_by_keyword(self, keyword, limit=5):
        self.keywords.append(keyword)
        return self.keyword_hits.get(keyword.lower(), [])[:limit]

    async def get_enriched_context(self, entity_ids):
        self.context_requests.append(list(entity_ids))
        return [c for eid in entity_ids for c in self.contexts.get(eid, [])]

    async def get_general_context(self, limit=10):
        self.general_calls += 1
        return self.general[:limit]


class QueryIndex:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error

    async def search_similar(self, query_text, limit=5):
        if self.error is not None:
            raise self.error
        return self.results[:limit]


def test_extract_keywords_drops_stop_words_and_short_words():
    assert extract_keywords("Who is responsible for the Q3 brand campaigns?") == [
        "brand",
        "campaigns",
    ]
    assert extract_keywords("Marketing marketing MARKETING") == ["Marketing"]


@pytest.mark.asyncio
async def test_vector_hits_feed_context_and_prompt():
    store = QueryStore(contexts={"dept_marketing": MARKETING_CONTEXT})
    index = QueryIndex(results=[{"id": "dept_marketing", "similarity": 0.9}])
    client = FakeClient("  Marketing handles brand campaigns.\n")
    service = QueryService(store=store, index=index, client=client)

    answer = await service.answer_query("What does Marketing do?")

    assert answer.success
    assert answer.answer == "Marketing handles brand campaigns."
    assert answer.retrieval is Retrieval.VECTOR
    assert answer.similar_entities == ["dept_marketing"]
    assert answer.context == MARKETING_CONTEXT
    assert store.keywords == []
    assert 'USER QUESTION: "What does Marketing do?"' in client.prompts[0]
    assert "Brand Refresh" in client.prompts[0]


@pytest.mark.asyncio
async def test_keyword_fallback_when_vector_search_fails():
    store = QueryStore(
        keyword_hits={"marketing": ["dept_marketing"], "campaigns": ["dept_marketing"]},
        contexts={"dept_marketing": MARKETING_CONTEXT},
    )
    service = QueryService(
        store=store,
        index=QueryIndex(error=ConnectionError("index offline")),
        client=FakeClient("Marketing."),
    )

    answer = await service.answer_query("Who handles marketing campaigns?")

    assert answer.success
    assert answer.retrieval is Retrieval.KEYWORD
    assert store.keywords == ["handles", "marketing", "campaigns"]
    assert answer.similar_entities == ["dept_marketing"]
    assert store.context_requests == [["dept_marketing"]]


@pytest.mark.asyncio
async def test_general_context_when_nothing_matches():
    general = [{"name": "Demo Org", "type": "Organization", "relationships": []}]
    store = QueryStore(general=general)
    client = FakeClient("I don't know based on the current data.")
    service = QueryService(store=store, index=QueryIndex(), client=client)

    answer = await service.answer_query("What about payroll?")

    assert answer.success
    assert answer.retrieval is Retrieval.GENERAL
    assert answer.context == general
    assert store.general_calls == 1
    assert service.get_metrics()["retrieval"]["general"] == 1


@pytest.mark.asyncio
async def test_generation_failure_returns_fallback_answer():
    store = QueryStore(general=[{"name": "Demo Org"}])
    service = QueryService(
        store=store,
        index=QueryIndex(),
        client=FakeClient(RateLimitExceededError(attempts=4)),
    )

    answer = await service.answer_query("What about payroll?")

    assert not answer.success
    assert answer.answer == FALLBACK_ANSWER
    assert answer.error == "Rate limit exceeded after 4 attempts"
    assert answer.to_dict()["error"] == answer.error
    assert service.get_metrics()["failed_queries"] == 1


@pytest.mark.asyncio
async def test_empty_query_raises():
    service = QueryService(store=QueryStore(), index=QueryIndex(), client=FakeClient())
    with pytest.raises(ValueError):
        await service.answer_query("   ")
    assert service.get_metrics()["total_queries"] == 0
