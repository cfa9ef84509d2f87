# data_access/__init__.py
# Knowledge store and semantic index used by the pipeline agents.

from .kg_queries import (
    KnowledgeStore,
    knowledge_store,
    normalize_relationship_type,
    sanitize_label,
)
from .vector_index import SemanticIndex, semantic_index

__all__ = [
    "KnowledgeStore",
    "SemanticIndex",
    "knowledge_store",
    "normalize_relationship_type",
    "sanitize_label",
    "semantic_index",
]
