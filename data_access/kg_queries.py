# data_access/kg_queries.py
"""Knowledge store operations the pipeline needs from Neo4j."""

import re
from typing import Any

import structlog

from core.db_manager import Neo4jManagerSingleton, neo4j_manager
from kg_constants import (
    BASE_ONTOLOGY_SEED_ENTITIES,
    BASE_ONTOLOGY_SEED_RELATIONSHIPS,
    ENTITY_BASE_LABEL,
    KG_NODE_LAST_UPDATED,
    KG_REL_CONFIDENCE,
)
from models import Entity, Relationship

logger = structlog.get_logger(__name__)


def sanitize_label(entity_type: str) -> str:
    """Reduce an entity type to characters safe for a Cypher label."""
    cleaned = re.sub(r"[^a-zA-Z0-9]", "", entity_type or "")
    return cleaned or "Unknown"


def normalize_relationship_type(rel_type: str) -> str:
    """Return a canonical representation of a relationship type."""
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "_", rel_type.strip())
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    return cleaned.upper() or "RELATED_TO"


_CONTEXT_RETURN = f"""coalesce(n.name, n.label, n.id) AS name,
               [l IN labels(n) WHERE l <> '{ENTITY_BASE_LABEL}'][0] AS type,
               n.description AS description,
               collect({{rel: type(r), target: coalesce(m.name, m.label, m.id)}}) AS rels"""


def _format_context_record(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": record.get("name"),
        "type": record.get("type") or "Node",
        "description": record.get("description") or "No description",
        "relationships": [
            f"{rel['rel']} -> {rel['target']}"
            for rel in record.get("rels") or []
            if rel.get("rel")
        ],
    }


class KnowledgeStore:
    """Existence checks, idempotent creation and bounded context reads."""

    def __init__(self, manager: Neo4jManagerSingleton | None = None) -> None:
        self.manager = manager or neo4j_manager

    async def verify_connectivity(self) -> None:
        await self.manager.verify_connectivity()

    async def entity_exists(self, entity_id: str) -> bool:
        query = f"MATCH (e:{ENTITY_BASE_LABEL} {{id: $id}}) RETURN count(e) > 0 AS exists"
        records = await self.manager.execute_read_query(query, {"id": entity_id})
        return bool(records and records[0].get("exists"))

    async def create_entity(self, entity: Entity) -> dict[str, Any]:
        label = sanitize_label(entity.type)
        query = f"""
        MERGE (e:{ENTITY_BASE_LABEL} {{id: $id}})
        SET e:{label},
            e.name = $name,
            e.label = $name,
            e.description = $desc,
            e.type = $type,
            e.{KG_NODE_LAST_UPDATED} = datetime()
        RETURN e.id AS id
        """
        await self.manager.execute_write_query(
            query,
            {
                "id": entity.id,
                "name": entity.label,
                "desc": entity.properties.get("description") or "No description",
                "type": entity.type,
            },
        )
        return {"success": True, "id": entity.id}

    async def create_relationship(self, rel: Relationship) -> dict[str, Any]:
        rel_type = normalize_relationship_type(rel.type)
        query = f"""
        MATCH (a:{ENTITY_BASE_LABEL} {{id: $from}})
        MATCH (b:{ENTITY_BASE_LABEL} {{id: $to}})
        MERGE (a)-[r:{rel_type}]->(b)
        SET r.{KG_REL_CONFIDENCE} = $confidence
        RETURN count(r) AS created
        """
        records = await self.manager.execute_write_query(
            query,
            {
                "from": rel.source,
                "to": rel.target,
                "confidence": rel.properties.get("confidence", 1.0),
            },
        )
        if not records or not records[0].get("created"):
            raise LookupError(
                f"Endpoint missing for relationship {rel.display_name} ({rel_type})"
            )
        return {"success": True, "type": rel_type}

    async def get_recent_context(self, limit: int = 10) -> list[dict[str, Any]]:
        """Return up to ``limit`` recently updated entities as id/label/type."""
        query = f"""
        MATCH (n:{ENTITY_BASE_LABEL})
        RETURN n.id AS id, coalesce(n.name, n.label) AS label,
               [l IN labels(n) WHERE l <> '{ENTITY_BASE_LABEL}'][0] AS type
        ORDER BY n.{KG_NODE_LAST_UPDATED} DESC
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(query, {"limit": int(limit)})
        return [
            {"id": r.get("id"), "label": r.get("label"), "type": r.get("type")}
            for r in records
        ]

    async def find_entities_by_keyword(self, keyword: str, limit: int = 5) -> list[str]:
        """Ids of entities whose id, name or label contains ``keyword``."""
        query = f"""
        MATCH (n:{ENTITY_BASE_LABEL})
        WHERE toLower(n.id) CONTAINS toLower($keyword)
           OR toLower(coalesce(n.name, '')) CONTAINS toLower($keyword)
           OR toLower(coalesce(n.label, '')) CONTAINS toLower($keyword)
        RETURN n.id AS id
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(
            query, {"keyword": keyword, "limit": int(limit)}
        )
        return [r["id"] for r in records if r.get("id")]

    async def get_enriched_context(self, entity_ids: list[str]) -> list[dict[str, Any]]:
        """Entities in ``entity_ids`` with their outgoing relationships."""
        if not entity_ids:
            return []
        query = f"""
        MATCH (n:{ENTITY_BASE_LABEL})
        WHERE n.id IN $ids
        OPTIONAL MATCH (n)-[r]->(m:{ENTITY_BASE_LABEL})
        RETURN {_CONTEXT_RETURN}
        """
        records = await self.manager.execute_read_query(query, {"ids": list(entity_ids)})
        return [_format_context_record(r) for r in records]

    async def get_general_context(self, limit: int = 10) -> list[dict[str, Any]]:
        """Any connected entities; used when nothing matched a query."""
        query = f"""
        MATCH (n:{ENTITY_BASE_LABEL})-[r]->(m:{ENTITY_BASE_LABEL})
        RETURN {_CONTEXT_RETURN}
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(query, {"limit": int(limit)})
        return [_format_context_record(r) for r in records]

    async def get_graph_stats(self) -> dict[str, Any]:
        query = f"""
        CALL {{ MATCH (n:{ENTITY_BASE_LABEL}) RETURN count(n) AS totalNodes }}
        CALL {{ OPTIONAL MATCH (:{ENTITY_BASE_LABEL})-[r]->(:{ENTITY_BASE_LABEL}) RETURN count(r) AS totalRels }}
        CALL {{ MATCH (n:{ENTITY_BASE_LABEL}) UNWIND labels(n) AS l WITH l WHERE l <> '{ENTITY_BASE_LABEL}' RETURN collect(DISTINCT l) AS labels }}
        RETURN totalNodes, totalRels, labels
        """
        records = await self.manager.execute_read_query(query)
        if not records:
            return {"total_nodes": 0, "total_relationships": 0, "nodes_by_type": []}
        record = records[0]
        return {
            "total_nodes": record.get("totalNodes") or 0,
            "total_relationships": record.get("totalRels") or 0,
            "nodes_by_type": record.get("labels") or [],
        }

    async def get_visualization_data(self, limit: int = 100) -> dict[str, list]:
        """Nodes and edges for graph display, keyed by entity id."""
        query = f"""
        MATCH (n:{ENTITY_BASE_LABEL})
        OPTIONAL MATCH (n)-[r]->(m:{ENTITY_BASE_LABEL})
        RETURN n.id AS id, coalesce(n.name, n.label, n.id) AS label,
               [l IN labels(n) WHERE l <> '{ENTITY_BASE_LABEL}'][0] AS type,
               collect({{type: type(r), target: m.id}}) AS rels
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(query, {"limit": int(limit)})
        nodes: list[dict[str, Any]] = []
        edges: list[dict[str, Any]] = []
        seen: set[str] = set()
        for record in records:
            node_id = record.get("id")
            if node_id not in seen:
                nodes.append(
                    {
                        "id": node_id,
                        "label": record.get("label"),
                        "type": record.get("type") or "Unknown",
                    }
                )
                seen.add(node_id)
            for rel in record.get("rels") or []:
                if rel.get("type") and rel.get("target"):
                    edges.append(
                        {"from": node_id, "to": rel["target"], "label": rel["type"]}
                    )
        return {"nodes": nodes, "edges": edges}

    async def seed_base_ontology(self) -> int:
        """Write the demo organization graph; safe to run repeatedly."""
        statements: list[tuple[str, dict[str, Any]]] = []
        for seed in BASE_ONTOLOGY_SEED_ENTITIES:
            label = sanitize_label(seed["type"])
            statements.append(
                (
                    f"MERGE (e:{ENTITY_BASE_LABEL} {{id: $id}}) "
                    f"SET e:{label}, e.name = $label, e.label = $label, e.type = $type, "
                    f"e.{KG_NODE_LAST_UPDATED} = datetime()",
                    dict(seed),
                )
            )
        for source, rel_type, target in BASE_ONTOLOGY_SEED_RELATIONSHIPS:
            statements.append(
                (
                    f"MATCH (a:{ENTITY_BASE_LABEL} {{id: $from}}), (b:{ENTITY_BASE_LABEL} {{id: $to}}) "
                    f"MERGE (a)-[:{normalize_relationship_type(rel_type)}]->(b)",
                    {"from": source, "to": target},
                )
            )
        await self.manager.execute_cypher_batch(statements)
        logger.info("Seeded base ontology", statements=len(statements))
        return len(statements)


knowledge_store = KnowledgeStore()
