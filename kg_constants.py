# kg_constants.py
"""Constants used for property names and the canonical business ontology."""

# Base label carried by every node the pipeline writes
ENTITY_BASE_LABEL = "Entity"

# Relationship and node property names
KG_NODE_LAST_UPDATED = "lastUpdated"
KG_REL_CONFIDENCE = "confidence"

# --- Canonical Schema Definition ---

# Fixed enumeration of entity types a proposal may use.
ENTITY_TYPES: tuple[str, ...] = (
    "Organization",
    "Department",
    "Role",
    "Process",
    "Resource",
    "Metric",
    "Product",
    "Service",
    "Location",
    "Event",
)

# Relationship direction vocabulary offered to the proposer.
# (source type, relationship, target type)
RELATIONSHIP_DIRECTIONS: tuple[tuple[str, str, str], ...] = (
    ("Organization", "HAS_DEPARTMENT", "Department"),
    ("Department", "CONTAINS", "Role"),
    ("Role", "WORKS_IN", "Department"),
    ("Role", "RESPONSIBLE_FOR", "Process"),
    ("Process", "REQUIRES", "Resource"),
    ("Department", "LOCATED_IN", "Location"),
)

# Relationship types each source entity type is expected to carry.
VALID_RELATIONSHIPS: dict[str, tuple[str, ...]] = {
    "Organization": ("HAS_DEPARTMENT", "LOCATED_IN", "SERVES", "MEASURES"),
    "Department": ("CONTAINS", "EXECUTES", "LOCATED_IN"),
    "Role": ("WORKS_IN", "RESPONSIBLE_FOR"),
    "Process": ("REQUIRES", "PRODUCES"),
    "Resource": ("USED_BY",),
    "Product": ("SOLD_TO",),
    "Location": ("CONTAINS",),
}

# Short description of each entity type, used in prompts.
ENTITY_TYPE_DESCRIPTIONS: dict[str, str] = {
    "Organization": "Top-level business entity",
    "Department": "Organizational unit within a company",
    "Role": "Job position or function",
    "Process": "Business workflow or procedure",
    "Resource": "Asset used in business operations",
    "Metric": "Key performance indicator",
    "Product": "Goods offered to customers",
    "Service": "Service offered to customers",
    "Location": "Physical or regional place",
    "Event": "Dated business occurrence",
}

# Demo graph written by ``KnowledgeStore.seed_base_ontology``.
BASE_ONTOLOGY_SEED_ENTITIES: tuple[dict[str, str], ...] = (
    {"id": "org_demo", "label": "Demo Corporation", "type": "Organization"},
    {"id": "dept_eng", "label": "Engineering", "type": "Department"},
    {"id": "dept_sales", "label": "Sales", "type": "Department"},
    {"id": "role_dev", "label": "Software Developer", "type": "Role"},
    {"id": "role_manager", "label": "Engineering Manager", "type": "Role"},
    {"id": "proc_dev", "label": "Software Development", "type": "Process"},
    {"id": "proc_sales", "label": "Sales Pipeline", "type": "Process"},
)

BASE_ONTOLOGY_SEED_RELATIONSHIPS: tuple[tuple[str, str, str], ...] = (
    ("org_demo", "HAS_DEPARTMENT", "dept_eng"),
    ("org_demo", "HAS_DEPARTMENT", "dept_sales"),
    ("dept_eng", "CONTAINS", "role_dev"),
    ("dept_eng", "EXECUTES", "proc_dev"),
    ("role_manager", "RESPONSIBLE_FOR", "proc_dev"),
)


def ontology_summary() -> str:
    """Return a plain-text rendering of the ontology for validation prompts."""
    lines = ["Entity types:"]
    for entity_type in ENTITY_TYPES:
        lines.append(f"- {entity_type}: {ENTITY_TYPE_DESCRIPTIONS[entity_type]}")
    lines.append("Allowed relationships by source type:")
    for source_type, rel_types in VALID_RELATIONSHIPS.items():
        lines.append(f"- {source_type}: {', '.join(rel_types)}")
    return "\n".join(lines)
