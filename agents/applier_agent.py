# agents/applier_agent.py
"""Applier agent: persists approved proposals item by item."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

import structlog
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from core.errors import ApplierSystemicFailure
from data_access import KnowledgeStore, SemanticIndex, knowledge_store, semantic_index
from models import ApplyResult, CandidateSet, Entity

logger = structlog.get_logger(__name__)

CONNECTIVITY_ERRORS = (ServiceUnavailable, SessionExpired, ConnectionError)


class ApplierAgent:
    """Writes entities then relationships, recording per-item failures."""

    def __init__(
        self,
        store: KnowledgeStore | None = None,
        index: SemanticIndex | None = None,
    ) -> None:
        self.name = "Applier"
        self.store = store or knowledge_store
        self.index = index or semantic_index
        self._stats_lock = threading.Lock()
        self.stats = {
            "total_applies": 0,
            "entities_applied": 0,
            "relationships_applied": 0,
            "item_errors": 0,
            "systemic_failures": 0,
            "entities_indexed": 0,
            "index_errors": 0,
        }
        logger.info("ApplierAgent initialized")

    def _systemic(self, exc: BaseException, result: ApplyResult) -> ApplierSystemicFailure:
        with self._stats_lock:
            self.stats["systemic_failures"] += 1
        logger.error(
            "Knowledge store unreachable while applying",
            error=str(exc),
            items_applied=result.items_applied,
        )
        return ApplierSystemicFailure(
            f"Knowledge store unreachable after {result.items_applied} items: {exc}",
            items_applied=result.items_applied,
        )

    async def apply(self, candidate_set: CandidateSet) -> ApplyResult:
        """Persist every entity, then every relationship.

        Item failures are recorded on the result and never stop the batch.

        Raises:
            ApplierSystemicFailure: The store could not be reached.
        """
        result = ApplyResult()
        with self._stats_lock:
            self.stats["total_applies"] += 1

        try:
            await self.store.verify_connectivity()
        except CONNECTIVITY_ERRORS as exc:
            raise self._systemic(exc, result) from exc

        for entity in candidate_set.entities:
            try:
                await self.store.create_entity(entity)
                result.record_entity(entity.id)
            except CONNECTIVITY_ERRORS as exc:
                raise self._systemic(exc, result) from exc
            except Exception as exc:
                logger.warning(
                    "Failed to apply entity", entity_id=entity.id, error=str(exc)
                )
                result.record_error("entity", entity.id, str(exc))

        for rel in candidate_set.relationships:
            try:
                await self.store.create_relationship(rel)
                result.record_relationship()
            except CONNECTIVITY_ERRORS as exc:
                raise self._systemic(exc, result) from exc
            except Exception as exc:
                logger.warning(
                    "Failed to apply relationship",
                    relationship=rel.display_name,
                    error=str(exc),
                )
                result.record_error("relationship", rel.display_name, str(exc))

        with self._stats_lock:
            self.stats["entities_applied"] += result.entities_applied
            self.stats["relationships_applied"] += result.relationships_applied
            self.stats["item_errors"] += len(result.errors)

        logger.info(
            f"Applied {result.entities_applied} entities, {result.relationships_applied} relationships",
            errors=len(result.errors),
        )
        return result

    async def update_semantic_index(self, entities: Iterable[Entity]) -> int:
        """Push entities into the semantic index one at a time.

        Failures are logged and counted; this call never raises. Returns the
        number of entities indexed.
        """
        indexed = 0
        for entity in entities:
            try:
                await self.index.upsert(
                    entity.id, entity.index_text(), entity.index_metadata()
                )
                indexed += 1
            except Exception as exc:
                with self._stats_lock:
                    self.stats["index_errors"] += 1
                logger.warning(
                    "Semantic index update failed", entity_id=entity.id, error=str(exc)
                )
        with self._stats_lock:
            self.stats["entities_indexed"] += indexed
        return indexed

    def get_metrics(self) -> dict[str, Any]:
        with self._stats_lock:
            return {"agent": self.name, **self.stats}
