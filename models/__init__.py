"""Central package for Ontoloom data models."""

from .agent_models import (
    VALIDATION_DIMENSIONS,
    ApplyError,
    ApplyResult,
    Critique,
    CritiqueDimensions,
    DimensionOutcome,
    DimensionScores,
    DimensionStatus,
    ValidationResult,
)
from .kg_models import CandidateSet, CandidateSetMetadata, Entity, Relationship

__all__ = [
    "VALIDATION_DIMENSIONS",
    "ApplyError",
    "ApplyResult",
    "CandidateSet",
    "CandidateSetMetadata",
    "Critique",
    "CritiqueDimensions",
    "DimensionOutcome",
    "DimensionScores",
    "DimensionStatus",
    "Entity",
    "Relationship",
    "ValidationResult",
]
