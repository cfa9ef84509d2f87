# orchestration/query_service.py
"""Answers natural-language questions from the knowledge graph."""

from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

import utils
from config import settings
from core.generation_client import GenerationClient, generation_client
from data_access import (
    KnowledgeStore,
    SemanticIndex,
    knowledge_store,
    semantic_index,
)
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

FALLBACK_ANSWER = "I encountered an error processing your request."

QUERY_STOP_WORDS = frozenset(
    {"what", "does", "who", "is", "the", "handle", "responsible", "for", "a", "an"}
)


class Retrieval(str, Enum):
    VECTOR = "vector"
    KEYWORD = "keyword"
    GENERAL = "general"


def extract_keywords(question: str) -> list[str]:
    """Distinct words longer than two characters that are not stop words."""
    keywords: list[str] = []
    for word in re.findall(r"[\w'-]+", question):
        if len(word) <= 2 or word.lower() in QUERY_STOP_WORDS:
            continue
        if word.lower() not in (k.lower() for k in keywords):
            keywords.append(word)
    return keywords


@dataclass
class QueryAnswer:
    success: bool
    answer: str
    retrieval: Retrieval | None = None
    similar_entities: list[str] = field(default_factory=list)
    context: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    latency_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "answer": self.answer,
            "retrieval": self.retrieval.value if self.retrieval else None,
            "similar_entities": list(self.similar_entities),
            "context": list(self.context),
            "latency_ms": self.latency_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class QueryService:
    """Retrieves graph context for a question and has the model answer from it.

    Retrieval order: vector search over indexed entities, then a keyword
    match on entity ids and names, then any connected entities.
    """

    def __init__(
        self,
        store: KnowledgeStore | None = None,
        index: SemanticIndex | None = None,
        client: GenerationClient | None = None,
    ) -> None:
        self.store = store or knowledge_store
        self.index = index or semantic_index
        self.client = client or generation_client
        self._stats_lock = threading.Lock()
        self.stats: dict[str, Any] = {
            "total_queries": 0,
            "failed_queries": 0,
            "retrieval": dict.fromkeys((r.value for r in Retrieval), 0),
        }

    async def _vector_ids(self, question: str) -> list[str]:
        try:
            results = await self.index.search_similar(
                question, limit=settings.QUERY_VECTOR_LIMIT
            )
        except Exception as exc:
            logger.warning("Vector search failed", error=str(exc))
            return []
        return [r["id"] for r in results if r.get("id")]

    async def _keyword_ids(self, question: str) -> list[str]:
        ids: list[str] = []
        for keyword in extract_keywords(question):
            try:
                matches = await self.store.find_entities_by_keyword(
                    keyword, limit=settings.QUERY_KEYWORD_MATCH_LIMIT
                )
            except Exception as exc:
                logger.warning("Keyword search failed", keyword=keyword, error=str(exc))
                continue
            ids.extend(m for m in matches if m not in ids)
        return ids

    async def _context_for(self, entity_ids: list[str]) -> list[dict[str, Any]]:
        try:
            return await self.store.get_enriched_context(entity_ids)
        except Exception as exc:
            logger.warning("Graph context read failed", error=str(exc))
            return []

    async def answer_query(self, question: str) -> QueryAnswer:
        """Answer ``question`` using only what the graph holds.

        Never raises for retrieval or generation failures; those produce an
        unsuccessful ``QueryAnswer`` carrying the error.

        Raises:
            ValueError: The question is empty.
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("Query cannot be empty")

        start = time.monotonic()
        with self._stats_lock:
            self.stats["total_queries"] += 1
        logger.info("Processing natural language query", query=question[:100])

        retrieval = Retrieval.VECTOR
        entity_ids: list[str] = []
        try:
            entity_ids = await self._vector_ids(question)
            if not entity_ids:
                retrieval = Retrieval.KEYWORD
                entity_ids = await self._keyword_ids(question)
            context = await self._context_for(entity_ids)
            if not context:
                retrieval = Retrieval.GENERAL
                context = await self.store.get_general_context(
                    settings.QUERY_GENERAL_CONTEXT_LIMIT
                )
            logger.debug(
                "Query context retrieved",
                retrieval=retrieval.value,
                names=[c.get("name") for c in context],
            )
            prompt = render_prompt(
                "query_service/answer_query.j2",
                {"question": question, "context": context},
            )
            answer = await self.client.generate_text(
                prompt, temperature=settings.TEMPERATURE_QUERY
            )
        except Exception as exc:
            with self._stats_lock:
                self.stats["failed_queries"] += 1
            logger.error("Query failed", error=str(exc))
            return QueryAnswer(
                success=False,
                answer=FALLBACK_ANSWER,
                similar_entities=entity_ids,
                error=str(exc),
                latency_ms=utils.elapsed_ms(start),
            )

        with self._stats_lock:
            self.stats["retrieval"][retrieval.value] += 1
        return QueryAnswer(
            success=True,
            answer=answer.strip(),
            retrieval=retrieval,
            similar_entities=entity_ids,
            context=context,
            latency_ms=utils.elapsed_ms(start),
        )

    def get_metrics(self) -> dict[str, Any]:
        with self._stats_lock:
            return {
                "total_queries": self.stats["total_queries"],
                "failed_queries": self.stats["failed_queries"],
                "retrieval": dict(self.stats["retrieval"]),
            }
