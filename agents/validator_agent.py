# agents/validator_agent.py
"""Validator agent: four ordered checks deciding whether a proposal is committed."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Iterable
from typing import Any

import structlog

import utils
from config import settings
from core.errors import MalformedResponseError, ValidationSystemError
from core.generation_client import GenerationClient, generation_client
from data_access import KnowledgeStore, knowledge_store
from kg_constants import ENTITY_TYPES, ontology_summary
from models import (
    VALIDATION_DIMENSIONS,
    CandidateSet,
    DimensionOutcome,
    DimensionScores,
    DimensionStatus,
    ValidationResult,
)
from prompt_renderer import render_prompt

logger = structlog.get_logger(__name__)

EMPTY_PROPOSAL_REASON = "Proposal is empty or malformed"

REJECTION_LABELS = {
    "schema_compliance": "Schema violation",
    "duplicate_detection": "Duplicate detected",
    "referential_integrity": "Referential error",
    "semantic_consistency": "Semantic issue",
}

DUPLICATE_STORE_FAILURE_SCORE = 0.5
TRIVIAL_SEMANTIC_SCORE = 0.9
SEMANTIC_FAILURE_SCORE = 0.7


def aggregate_dimensions(
    outcomes: Iterable[DimensionOutcome], processing_time_ms: float | None = None
) -> ValidationResult:
    """Fold dimension outcomes into a single verdict.

    The first ``FAIL`` rejects with its reason, prefixed by the dimension's
    rejection label. ``DEGRADED`` outcomes accept and add a warning. Every
    outcome's score is reported.
    """
    outcomes = tuple(outcomes)
    scores = DimensionScores(**{o.dimension: o.score for o in outcomes})
    warnings = tuple(
        f"{o.dimension} degraded: {o.reason}"
        for o in outcomes
        if o.status is DimensionStatus.DEGRADED
    )
    for outcome in outcomes:
        if outcome.status is DimensionStatus.FAIL:
            label = REJECTION_LABELS.get(outcome.dimension, outcome.dimension)
            return ValidationResult(
                is_valid=False,
                reason=f"{label}: {outcome.reason}",
                dimensions=scores,
                outcomes=outcomes,
                warnings=warnings,
                processing_time_ms=processing_time_ms,
            )
    return ValidationResult(
        is_valid=True,
        dimensions=scores,
        outcomes=outcomes,
        warnings=warnings,
        processing_time_ms=processing_time_ms,
    )


def check_schema_compliance(candidate_set: CandidateSet) -> DimensionOutcome:
    """Entity types, required fields and in-set id uniqueness."""
    dimension = "schema_compliance"
    seen: set[str] = set()
    for index, entity in enumerate(candidate_set.entities):
        for field in ("id", "label"):
            if not getattr(entity, field):
                return DimensionOutcome.failed(
                    dimension, f"Entity #{index} is missing required field '{field}'"
                )
        if entity.type not in ENTITY_TYPES:
            return DimensionOutcome.failed(
                dimension,
                f"Invalid entity type '{entity.type}' for entity '{entity.id}'",
            )
        if entity.id in seen:
            return DimensionOutcome.failed(
                dimension, f"Entity ID '{entity.id}' appears more than once"
            )
        seen.add(entity.id)

    for index, rel in enumerate(candidate_set.relationships):
        for field, value in (("from", rel.source), ("to", rel.target), ("type", rel.type)):
            if not value:
                return DimensionOutcome.failed(
                    dimension,
                    f"Relationship #{index} is missing required field '{field}'",
                )
    return DimensionOutcome.passed(dimension)


def check_referential_integrity(candidate_set: CandidateSet) -> DimensionOutcome:
    """Accept internal and external relationship endpoints alike.

    Endpoints outside the proposal are expected to already exist in the
    store. Nothing is rejected here yet; tighter rules belong in this function.
    """
    local_ids = candidate_set.entity_ids()
    external = [
        rel.display_name
        for rel in candidate_set.relationships
        if rel.source not in local_ids or rel.target not in local_ids
    ]
    if external:
        logger.debug(
            "Relationships reference entities outside the proposal",
            relationships=external,
        )
    return DimensionOutcome.passed("referential_integrity")


def _coerce_verdict(raw: Any) -> tuple[bool, str, float]:
    if not isinstance(raw, dict) or not isinstance(raw.get("isValid"), bool):
        raise MalformedResponseError(f"Semantic verdict lacks 'isValid': {raw!r}")
    try:
        score = float(raw.get("score", 1.0))
    except (TypeError, ValueError):
        score = 1.0
    if not math.isfinite(score):
        raise MalformedResponseError(f"Semantic verdict score is not finite: {score}")
    score = min(max(score, 0.0), 1.0)
    return raw["isValid"], str(raw.get("reason") or "No reason given"), score


class ValidatorAgent:
    """Runs schema, duplicate, referential and semantic checks in order."""

    def __init__(
        self,
        store: KnowledgeStore | None = None,
        client: GenerationClient | None = None,
    ) -> None:
        self.name = "Validator"
        self.store = store or knowledge_store
        self.client = client or generation_client
        self._stats_lock = threading.Lock()
        self.stats: dict[str, Any] = {
            "total_validations": 0,
            "approved": 0,
            "rejected": 0,
            "dimension_passes": dict.fromkeys(VALIDATION_DIMENSIONS, 0),
            "dimension_degraded": dict.fromkeys(VALIDATION_DIMENSIONS, 0),
        }
        logger.info("ValidatorAgent initialized")

    async def check_duplicates(self, candidate_set: CandidateSet) -> DimensionOutcome:
        """Reject ids already in the store; degrade if the store cannot answer."""
        dimension = "duplicate_detection"
        try:
            for entity in candidate_set.entities:
                if await self.store.entity_exists(entity.id):
                    return DimensionOutcome.failed(
                        dimension, f"Entity ID '{entity.id}' already exists"
                    )
        except Exception as exc:
            logger.warning(
                "Duplicate check unavailable, allowing with reduced score",
                error=str(exc),
            )
            return DimensionOutcome.degraded(
                dimension,
                DUPLICATE_STORE_FAILURE_SCORE,
                f"Duplicate check unavailable: {exc}",
            )
        return DimensionOutcome.passed(dimension)

    async def check_semantics(self, candidate_set: CandidateSet) -> DimensionOutcome:
        """Ask the model for a verdict unless the proposal is trivial."""
        dimension = "semantic_consistency"
        if candidate_set.is_trivial:
            return DimensionOutcome.passed(dimension, TRIVIAL_SEMANTIC_SCORE)
        try:
            prompt = render_prompt(
                "validator_agent/semantic_consistency.j2",
                {
                    "ontology": ontology_summary(),
                    "proposal": candidate_set.to_prompt_dict(),
                },
            )
            raw = await self.client.generate(
                prompt, temperature=settings.TEMPERATURE_VALIDATOR
            )
            is_valid, reason, score = _coerce_verdict(raw)
            if not is_valid:
                return DimensionOutcome.failed(dimension, reason)
            return DimensionOutcome.passed(dimension, score)
        except Exception as exc:
            logger.warning(
                "Semantic check unavailable, allowing with reduced score",
                error=str(exc),
            )
            return DimensionOutcome.degraded(
                dimension, SEMANTIC_FAILURE_SCORE, f"Semantic check unavailable: {exc}"
            )

    async def _run_dimension(
        self, dimension: str, candidate_set: CandidateSet
    ) -> DimensionOutcome:
        if dimension == "schema_compliance":
            try:
                return check_schema_compliance(candidate_set)
            except Exception as exc:
                raise ValidationSystemError(f"Schema check crashed: {exc}") from exc
        if dimension == "duplicate_detection":
            return await self.check_duplicates(candidate_set)
        if dimension == "referential_integrity":
            try:
                return check_referential_integrity(candidate_set)
            except Exception as exc:
                raise ValidationSystemError(
                    f"Referential check crashed: {exc}"
                ) from exc
        return await self.check_semantics(candidate_set)

    async def validate(self, candidate_set: CandidateSet | None) -> ValidationResult:
        """Return the verdict for ``candidate_set``, stopping at the first failure.

        Raises:
            ValidationSystemError: A local check crashed.
        """
        start = time.monotonic()
        with self._stats_lock:
            self.stats["total_validations"] += 1

        if candidate_set is None or not candidate_set.entities:
            self._record_verdict(False)
            logger.info("Validation rejected", reason=EMPTY_PROPOSAL_REASON)
            return ValidationResult(
                is_valid=False,
                reason=EMPTY_PROPOSAL_REASON,
                processing_time_ms=utils.elapsed_ms(start),
            )

        outcomes: list[DimensionOutcome] = []
        for dimension in VALIDATION_DIMENSIONS:
            outcome = await self._run_dimension(dimension, candidate_set)
            outcomes.append(outcome)
            self._record_outcome(outcome)
            if outcome.status is DimensionStatus.FAIL:
                break

        result = aggregate_dimensions(outcomes, utils.elapsed_ms(start))
        self._record_verdict(result.is_valid)
        if result.is_valid:
            logger.info(
                "Validation approved",
                dimensions=result.dimensions.model_dump(),
                warnings=list(result.warnings),
                latency_ms=result.processing_time_ms,
            )
        else:
            logger.info("Validation rejected", reason=result.reason)
        return result

    def _record_outcome(self, outcome: DimensionOutcome) -> None:
        with self._stats_lock:
            if outcome.status is DimensionStatus.PASS:
                self.stats["dimension_passes"][outcome.dimension] += 1
            elif outcome.status is DimensionStatus.DEGRADED:
                self.stats["dimension_degraded"][outcome.dimension] += 1

    def _record_verdict(self, is_valid: bool) -> None:
        with self._stats_lock:
            self.stats["approved" if is_valid else "rejected"] += 1

    def get_metrics(self) -> dict[str, Any]:
        with self._stats_lock:
            total = self.stats["total_validations"]
            approved = self.stats["approved"]
            return {
                "agent": self.name,
                "total_validations": total,
                "approved": approved,
                "rejected": self.stats["rejected"],
                "dimension_passes": dict(self.stats["dimension_passes"]),
                "dimension_degraded": dict(self.stats["dimension_degraded"]),
                "approval_rate": f"{approved / total * 100:.2f}%" if total else "0%",
            }
