# agents/proposer_agent.py
"""Proposer agent: turns an observation into candidate entities and relationships."""

from __future__ import annotations

import threading
import time
from typing import Any

import structlog
from pydantic import ValidationError

import utils
from config import settings
from core.cache import LRUCache
from core.errors import EmptyProposalError, MalformedResponseError, ProposerError
from core.generation_client import GenerationClient, generation_client
from kg_constants import ENTITY_TYPES, RELATIONSHIP_DIRECTIONS
from models import CandidateSet, CandidateSetMetadata
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)


def parse_proposal(raw: Any) -> CandidateSet:
    """Coerce a parsed model response into a ``CandidateSet``.

    Raises:
        EmptyProposalError: ``entities`` is missing, not a list, or empty.
        MalformedResponseError: The structure cannot be coerced.
    """
    if not isinstance(raw, dict):
        raise MalformedResponseError(
            f"Invalid proposal structure: expected an object, got {type(raw).__name__}"
        )
    entities = raw.get("entities")
    if not isinstance(entities, list) or not entities:
        raise EmptyProposalError("Invalid proposal structure: missing entities array")
    if not all(isinstance(item, dict) for item in entities):
        raise MalformedResponseError("Invalid proposal structure: non-object entity")
    relationships = raw.get("relationships") or []
    if not isinstance(relationships, list) or not all(
        isinstance(item, dict) for item in relationships
    ):
        raise MalformedResponseError(
            "Invalid proposal structure: relationships must be a list of objects"
        )

    raw_meta = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
    try:
        return CandidateSet(
            entities=entities,
            relationships=relationships,
            metadata=CandidateSetMetadata(
                complexity=str(raw_meta.get("complexity") or "unknown"),
                extracted_entity_count=len(entities),
            ),
        )
    except ValidationError as exc:
        raise MalformedResponseError(f"Invalid proposal structure: {exc}") from exc


class ProposerAgent:
    """Extracts candidate graph changes, caching by observation fingerprint."""

    def __init__(
        self,
        client: GenerationClient | None = None,
        cache: LRUCache[CandidateSet] | None = None,
    ) -> None:
        self.name = "Proposer"
        self.client = client or generation_client
        self.cache: LRUCache[CandidateSet] = cache or LRUCache(
            settings.PROPOSER_CACHE_SIZE, settings.PROPOSER_CACHE_TTL_SECONDS
        )
        self._stats_lock = threading.Lock()
        self.stats = {
            "total_requests": 0,
            "cache_hits": 0,
            "api_calls": 0,
            "avg_latency_ms": 0.0,
            "errors": 0,
        }
        logger.info("ProposerAgent initialized", cache_size=self.cache.maxsize)

    def _record_latency(self, latency_ms: float) -> None:
        with self._stats_lock:
            n = self.stats["total_requests"]
            self.stats["avg_latency_ms"] = (
                self.stats["avg_latency_ms"] * (n - 1) + latency_ms
            ) / n

    async def propose(self, observation: str) -> CandidateSet:
        """Return candidate entities and relationships for ``observation``.

        Raises:
            ProposerError: Wrapping ``EmptyProposalError``,
                ``MalformedResponseError`` or a generation failure.
        """
        start = time.monotonic()
        with self._stats_lock:
            self.stats["total_requests"] += 1
        cache_key = utils.observation_fingerprint(observation)

        cached = self.cache.get(cache_key)
        if cached is not None:
            with self._stats_lock:
                self.stats["cache_hits"] += 1
            latency_ms = utils.elapsed_ms(start)
            self._record_latency(latency_ms)
            logger.info("Cache hit for observation", cache_key=cache_key)
            return cached.model_copy(
                deep=True,
                update={
                    "metadata": cached.metadata.model_copy(
                        update={"cache_hit": True, "processing_time_ms": latency_ms}
                    )
                }
            )

        try:
            with self._stats_lock:
                self.stats["api_calls"] += 1
            prompt = render_prompt(
                "proposer_agent/propose_candidates.j2",
                {
                    "entity_types": ENTITY_TYPES,
                    "relationship_directions": RELATIONSHIP_DIRECTIONS,
                    "observation": observation,
                },
            )
            raw = await self.client.generate(
                prompt, temperature=settings.TEMPERATURE_PROPOSER
            )
            proposal = parse_proposal(raw)
        except Exception as exc:
            with self._stats_lock:
                self.stats["errors"] += 1
            logger.error("Proposer agent error", error=str(exc))
            raise ProposerError(f"Proposer failed: {exc}") from exc

        latency_ms = utils.elapsed_ms(start)
        proposal.metadata.processing_time_ms = latency_ms
        proposal.metadata.cache_key = cache_key
        self.cache.set(cache_key, proposal.model_copy(deep=True))
        self._record_latency(latency_ms)

        logger.info(
            f"Proposed {len(proposal.entities)} entities, {len(proposal.relationships)} relationships",
            latency_ms=latency_ms,
        )
        return proposal

    def get_metrics(self) -> dict[str, Any]:
        with self._stats_lock:
            stats = dict(self.stats)
        total = stats["total_requests"]
        return {
            "agent": self.name,
            **stats,
            "cache_size": len(self.cache),
            "cache_hit_rate": (
                f"{stats['cache_hits'] / total * 100:.2f}%" if total else "0%"
            ),
        }

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Proposer cache cleared.")
