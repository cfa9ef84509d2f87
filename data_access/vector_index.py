# data_access/vector_index.py
"""Entity embeddings stored on Neo4j nodes and searched via the vector index."""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

import numpy as np
import structlog

from config import settings
from core.cache import LRUCache
from core.db_manager import Neo4jManagerSingleton, neo4j_manager
from core.llm_interface import llm_service
from kg_constants import ENTITY_BASE_LABEL

logger = structlog.get_logger(__name__)

Embedder = Callable[[str], Awaitable[np.ndarray | None]]


def _decode_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Stored index metadata is not valid JSON", raw=str(raw)[:100])
        return {}
    return decoded if isinstance(decoded, dict) else {}


class SemanticIndex:
    """Best-effort similarity index over applied entities."""

    def __init__(
        self,
        manager: Neo4jManagerSingleton | None = None,
        embedder: Embedder | None = None,
        search_cache_size: int = settings.SEMANTIC_SEARCH_CACHE_SIZE,
    ) -> None:
        self.manager = manager or neo4j_manager
        self._embed = embedder or llm_service.async_get_embedding
        self._search_cache: LRUCache[list[dict[str, Any]]] = LRUCache(
            search_cache_size
        )
        self.stats = {
            "total_embeddings": 0,
            "total_searches": 0,
            "cache_hits": 0,
            "vector_queries": 0,
            "avg_search_latency_ms": 0.0,
        }

    async def upsert(self, entity_id: str, text: str, metadata: dict[str, Any]) -> None:
        """Embed ``text`` and store it, with ``metadata``, on the entity node.

        Neo4j properties cannot hold maps, so the metadata is kept as a JSON
        string in ``index_metadata`` and decoded again by ``search_similar``.

        Raises:
            ValueError: The embedding model returned nothing usable.
        """
        embedding = await self._embed(text)
        if embedding is None:
            raise ValueError(f"No embedding produced for entity '{entity_id}'")
        query = f"""
        MATCH (e:{ENTITY_BASE_LABEL} {{id: $id}})
        SET e.{settings.NEO4J_VECTOR_PROPERTY_NAME} = $embedding,
            e.index_text = $text,
            e.index_metadata = $metadata
        """
        await self.manager.execute_write_query(
            query,
            {
                "id": entity_id,
                "embedding": np.asarray(embedding, dtype=np.float32).tolist(),
                "text": text,
                "metadata": json.dumps(metadata, default=str, sort_keys=True),
            },
        )
        self.stats["total_embeddings"] += 1
        # New vectors invalidate previously cached neighbours.
        self._search_cache.clear()

    async def search_similar(self, query_text: str, limit: int = 5) -> list[dict[str, Any]]:
        """Return the ``limit`` entities closest to ``query_text``."""
        start = time.monotonic()
        self.stats["total_searches"] += 1
        cache_key = f"{query_text}:{limit}"
        cached = self._search_cache.get(cache_key)
        if cached is not None:
            self.stats["cache_hits"] += 1
            return copy.deepcopy(cached)

        embedding = await self._embed(query_text)
        if embedding is None:
            logger.warning("Semantic search skipped: query could not be embedded.")
            return []
        query = f"""
        CALL db.index.vector.queryNodes($index_name, $limit, $embedding)
        YIELD node, score
        RETURN node.id AS id, node.index_text AS document, node.type AS type,
               node.index_metadata AS metadata, score
        """
        records = await self.manager.execute_read_query(
            query,
            {
                "index_name": settings.NEO4J_VECTOR_INDEX_NAME,
                "limit": int(limit),
                "embedding": np.asarray(embedding, dtype=np.float32).tolist(),
            },
        )
        results = [
            {
                "id": r.get("id"),
                "document": r.get("document"),
                "type": r.get("type"),
                "metadata": _decode_metadata(r.get("metadata")),
                "similarity": round(float(r.get("score") or 0.0), 3),
            }
            for r in records
        ]
        self._search_cache.set(cache_key, copy.deepcopy(results))

        latency_ms = (time.monotonic() - start) * 1000
        self.stats["vector_queries"] += 1
        queries = self.stats["vector_queries"]
        self.stats["avg_search_latency_ms"] = (
            self.stats["avg_search_latency_ms"] * (queries - 1) + latency_ms
        ) / queries
        return results

    def get_metrics(self) -> dict[str, Any]:
        searches = self.stats["total_searches"]
        return {
            **self.stats,
            "cache_hit_rate": (
                f"{self.stats['cache_hits'] / searches * 100:.2f}%" if searches else "0%"
            ),
        }


semantic_index = SemanticIndex()
