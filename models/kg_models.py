"""Core data models for proposed entities and relationships."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return value


class Entity(BaseModel):
    """A node proposed for the knowledge graph."""

    id: str = ""
    label: str = ""
    type: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "label", "type", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _coerce_text(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _none_properties(cls, value: Any) -> Any:
        return {} if value is None else value

    def index_text(self) -> str:
        """Document text pushed into the semantic index."""
        return f"{self.type}: {self.label}. {json.dumps(self.properties, default=str)}"

    def index_metadata(self) -> dict[str, Any]:
        """Flat metadata for the semantic index; only scalar properties survive."""
        metadata: dict[str, Any] = {
            k: v
            for k, v in self.properties.items()
            if isinstance(v, (str, int, float, bool))
        }
        metadata.update({"id": self.id, "type": self.type, "label": self.label})
        return metadata


class Relationship(BaseModel):
    """A directed edge proposed between two entity ids.

    Endpoints may name entities outside the proposal they arrive in.
    """

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field("", alias="from")
    target: str = Field("", alias="to")
    type: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("source", "target", "type", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _coerce_text(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _none_properties(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def display_name(self) -> str:
        return f"{self.source}->{self.target}"


class CandidateSetMetadata(BaseModel):
    """Bookkeeping attached by the proposer for tracing."""

    model_config = ConfigDict(extra="allow")

    complexity: str = "unknown"
    extracted_entity_count: int | None = None
    processing_time_ms: float | None = None
    cache_key: str | None = None
    cache_hit: bool = False


class CandidateSet(BaseModel):
    """Entities and relationships proposed for one observation."""

    entities: list[Entity] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    metadata: CandidateSetMetadata = Field(default_factory=CandidateSetMetadata)

    @field_validator("relationships", "entities", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_trivial(self) -> bool:
        """Exactly one entity and no relationships."""
        return len(self.entities) == 1 and not self.relationships

    def entity_ids(self) -> set[str]:
        return {entity.id for entity in self.entities}

    def to_prompt_dict(self) -> dict[str, Any]:
        """Serialize with the wire names used in prompts (``from``/``to``)."""
        return {
            "entities": [e.model_dump() for e in self.entities],
            "relationships": [r.model_dump(by_alias=True) for r in self.relationships],
        }

    def summary(self) -> dict[str, Any]:
        return {
            "entities": len(self.entities),
            "relationships": len(self.relationships),
            "complexity": self.metadata.complexity,
            "cache_hit": self.metadata.cache_hit,
        }
