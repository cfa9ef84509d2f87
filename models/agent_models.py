# models/agent_models.py
"""Structures returned by the pipeline agents."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

VALIDATION_DIMENSIONS: tuple[str, ...] = (
    "schema_compliance",
    "duplicate_detection",
    "referential_integrity",
    "semantic_consistency",
)


class DimensionStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    DEGRADED = "degraded"


class DimensionOutcome(BaseModel):
    """Tagged result of one validation dimension.

    ``FAIL`` rejects the proposal. ``DEGRADED`` means the check could not run
    against its backing system and accepts with a lowered score.
    """

    model_config = ConfigDict(frozen=True)

    dimension: str
    status: DimensionStatus
    score: float = Field(ge=0.0, le=1.0)
    reason: str | None = None

    @classmethod
    def passed(cls, dimension: str, score: float = 1.0) -> DimensionOutcome:
        return cls(dimension=dimension, status=DimensionStatus.PASS, score=score)

    @classmethod
    def failed(cls, dimension: str, reason: str) -> DimensionOutcome:
        return cls(
            dimension=dimension, status=DimensionStatus.FAIL, score=0.0, reason=reason
        )

    @classmethod
    def degraded(cls, dimension: str, score: float, reason: str) -> DimensionOutcome:
        return cls(
            dimension=dimension,
            status=DimensionStatus.DEGRADED,
            score=score,
            reason=reason,
        )


class DimensionScores(BaseModel):
    """Per-dimension scores; ``None`` marks a dimension that never ran."""

    model_config = ConfigDict(frozen=True)

    schema_compliance: float | None = None
    duplicate_detection: float | None = None
    referential_integrity: float | None = None
    semantic_consistency: float | None = None


class ValidationResult(BaseModel):
    """Verdict of the validator; ``reason`` is set only when invalid."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    reason: str | None = None
    dimensions: DimensionScores = Field(default_factory=DimensionScores)
    outcomes: tuple[DimensionOutcome, ...] = ()
    warnings: tuple[str, ...] = ()
    processing_time_ms: float | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "reason": self.reason,
            "dimensions": self.dimensions.model_dump(),
            "warnings": list(self.warnings),
        }


class CritiqueDimensions(BaseModel):
    completeness: float = Field(ge=0.0, le=10.0)
    specificity: float = Field(ge=0.0, le=10.0)
    utility: float = Field(ge=0.0, le=10.0)
    structure: float = Field(ge=0.0, le=10.0)


class Critique(BaseModel):
    """Quality assessment of an approved proposal."""

    model_config = ConfigDict(populate_by_name=True)

    overall_score: float | str = Field(alias="overallScore")
    dimensions: CritiqueDimensions | None = None
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    missing_elements: list[str] = Field(default_factory=list, alias="missingElements")
    recommendations: list[str] = Field(default_factory=list)
    risk_assessment: dict[str, Any] = Field(
        default_factory=dict, alias="riskAssessment"
    )
    note: str | None = None
    error: str | None = None
    degraded: bool = False

    @classmethod
    def degraded_default(cls, error: str) -> Critique:
        """Neutral stand-in used when the critic could not produce a score."""
        return cls(
            overall_score=5,
            dimensions=CritiqueDimensions(
                completeness=5, specificity=5, utility=5, structure=5
            ),
            improvements=["Critique unavailable"],
            error=error,
            degraded=True,
        )

    @classmethod
    def disabled(cls) -> Critique:
        return cls(overall_score="N/A", note="Critic disabled")


class ApplyError(BaseModel):
    """A single entity or relationship that could not be written."""

    kind: str
    item: str
    error: str


class ApplyResult(BaseModel):
    """Accumulated outcome of one applier call."""

    entities_applied: int = 0
    relationships_applied: int = 0
    errors: list[ApplyError] = Field(default_factory=list)
    applied_entity_ids: list[str] = Field(default_factory=list)
    indexed_entities: int = 0

    def record_entity(self, entity_id: str) -> None:
        self.entities_applied += 1
        self.applied_entity_ids.append(entity_id)

    def record_relationship(self) -> None:
        self.relationships_applied += 1

    def record_error(self, kind: str, item: str, error: str) -> None:
        self.errors.append(ApplyError(kind=kind, item=item, error=error))

    @property
    def items_applied(self) -> int:
        return self.entities_applied + self.relationships_applied

    def summary(self) -> dict[str, Any]:
        return {
            "entities": self.entities_applied,
            "relationships": self.relationships_applied,
            "errors": [e.model_dump() for e in self.errors],
        }
