"""
Data model for the knowledge core: nodes, typed relationships and the
result records returned by search, graph analysis and recommendation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Node / relationship type constants
# ---------------------------------------------------------------------------

class NodeType:
    KNOWLEDGE = "Knowledge"
    CONCEPT = "Concept"
    FACT = "Fact"
    QUESTION = "Question"
    IDEA = "Idea"
    PROJECT = "Project"
    RESOURCE = "Resource"
    NOTE = "Note"
    DOCUMENT = "Document"
    IMAGE = "Image"
    WEB_CLIP = "WebClip"

    ALL = (
        KNOWLEDGE, CONCEPT, FACT, QUESTION, IDEA, PROJECT,
        RESOURCE, NOTE, DOCUMENT, IMAGE, WEB_CLIP,
    )


class RelationshipType:
    # Edge types
    REFERENCES = "REFERENCES"
    EXPANDS_ON = "EXPANDS_ON"
    CONTRADICTS = "CONTRADICTS"
    SUPPORTS = "SUPPORTS"
    IS_A = "IS_A"

    # Legacy lowercase set
    RELATED_TO = "related_to"
    DEPENDS_ON = "depends_on"
    SUPPORTS_LEGACY = "supports"
    CONTRADICTS_LEGACY = "contradicts"
    SIMILAR_TO = "similar_to"
    PART_OF = "part_of"
    EXAMPLE_OF = "example_of"
    CAUSES = "causes"
    RESULT_OF = "result_of"

    ALL = (
        REFERENCES, EXPANDS_ON, CONTRADICTS, SUPPORTS, IS_A,
        RELATED_TO, DEPENDS_ON, SUPPORTS_LEGACY, CONTRADICTS_LEGACY,
        SIMILAR_TO, PART_OF, EXAMPLE_OF, CAUSES, RESULT_OF,
    )

    LABELS = {
        REFERENCES: "references",
        EXPANDS_ON: "expands on",
        CONTRADICTS: "contradicts",
        SUPPORTS: "supports",
        IS_A: "is a",
        RELATED_TO: "is related to",
        DEPENDS_ON: "depends on",
        SUPPORTS_LEGACY: "supports",
        CONTRADICTS_LEGACY: "contradicts",
        SIMILAR_TO: "is similar to",
        PART_OF: "is part of",
        EXAMPLE_OF: "is an example of",
        CAUSES: "causes",
        RESULT_OF: "is a result of",
    }


MIN_EDGE_WEIGHT = 0.1
MAX_EDGE_WEIGHT = 2.0
DEFAULT_EDGE_WEIGHT = 1.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

@dataclass
class Attachment:
    """A file attached to a node by the authoring workflow."""

    name: str
    url: str = ""
    mime_type: str = ""
    size: int = 0


@dataclass
class NodeMetadata:
    """Typed optional node metadata.

    ``extra`` holds genuinely unstructured data; nothing in the graph or
    search logic reads it.
    """

    summary: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "attachments": [vars(a).copy() for a in self.attachments],
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "NodeMetadata":
        data = data or {}
        return cls(
            summary=data.get("summary"),
            attachments=[Attachment(**a) for a in data.get("attachments") or []],
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class KnowledgeNode:
    """A short text knowledge node."""

    title: str
    content: str = ""
    node_type: str = NodeType.KNOWLEDGE
    tags: set[str] = field(default_factory=set)
    embedding: Optional[list[float]] = None
    id: str = field(default_factory=new_id)
    user_id: Optional[str] = None
    is_active: bool = True
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.node_type not in NodeType.ALL:
            raise ValueError(f"Unknown node type: {self.node_type!r}")
        self.tags = set(self.tags or ())

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def embedding_text(self) -> str:
        """Title, content and summary joined for the embedder."""
        parts = [self.title, self.content, self.metadata.summary or ""]
        return "\n\n".join(p for p in parts if p and p.strip())

    def summary(self) -> dict:
        """Return a compact, serialisable summary of the node."""
        return {
            "id": self.id,
            "title": self.title,
            "node_type": self.node_type,
            "tags": sorted(self.tags),
            "has_embedding": self.has_embedding,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class NodeFilter:
    """Equality / containment filters for :meth:`Store.list_nodes`."""

    user_id: Optional[str] = None
    node_types: Optional[list[str]] = None
    tags: Optional[list[str]] = None          # node must contain any of these
    has_embedding: Optional[bool] = None
    active_only: bool = True
    exclude_ids: Optional[list[str]] = None
    limit: Optional[int] = None


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------

@dataclass
class Relationship:
    """A typed, directional edge between two nodes."""

    source_node_id: str
    target_node_id: str
    relationship_type: str = RelationshipType.RELATED_TO
    weight: float = DEFAULT_EDGE_WEIGHT
    confidence: Optional[float] = None
    comment: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        """Check type and numeric ranges; raises ``ValueError``."""
        if self.relationship_type not in RelationshipType.ALL:
            raise ValueError(f"Unknown relationship type: {self.relationship_type!r}")
        if not MIN_EDGE_WEIGHT <= self.weight <= MAX_EDGE_WEIGHT:
            raise ValueError(
                f"Relationship weight {self.weight} outside "
                f"[{MIN_EDGE_WEIGHT}, {MAX_EDGE_WEIGHT}]"
            )
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Relationship confidence {self.confidence} outside [0, 1]")

    def other_end(self, node_id: str) -> str:
        """Return the endpoint that is not *node_id*."""
        return self.target_node_id if self.source_node_id == node_id else self.source_node_id


@dataclass
class NodeEdges:
    """Edges touching one node, split by direction."""

    inbound: list[Relationship] = field(default_factory=list)    # backlinks
    outbound: list[Relationship] = field(default_factory=list)   # outlinks

    def neighbour_ids(self) -> set[str]:
        ids = {e.source_node_id for e in self.inbound}
        ids.update(e.target_node_id for e in self.outbound)
        return ids


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------

MATCH_EMBEDDING = "embedding"
MATCH_LEXICAL = "lexical"


@dataclass
class RankedResult:
    """A node ranked by similarity.

    ``match_type`` is ``"embedding"`` for cosine similarity or ``"lexical"``
    for the keyword-Jaccard fallback, whose scores are not comparable with
    cosine scores.
    """

    node: KnowledgeNode
    similarity: float
    match_type: str = MATCH_EMBEDDING

    @property
    def id(self) -> str:
        return self.node.id

    def to_dict(self) -> dict:
        return {
            **self.node.summary(),
            "similarity": round(self.similarity, 6),
            "match_type": self.match_type,
        }


@dataclass
class NodeInfluence:
    node_id: str
    inbound_count: int
    outbound_count: int
    influence_score: float


@dataclass
class NeighborhoodEntry:
    node: KnowledgeNode
    distance: int


@dataclass
class Cluster:
    cluster_id: int
    members: list[str]

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class Suggestion:
    """A recommended relationship from the source node to a target."""

    source_node_id: str
    target_node_id: str
    target_title: str
    relationship_type: str
    confidence: float
    similarity: float
    explanation: str
    reasoning: str
    match_type: str = MATCH_EMBEDDING

    def to_dict(self) -> dict:
        return dict(vars(self))


@dataclass
class LinkRecommendation:
    """One entry of a fused (similarity / tags / type) recommendation list."""

    node_id: str
    title: str
    score: float
    node_type: str
    tags: list[str]
    created_at: datetime
    reason: str
    recommendation_type: str   # "similarity" | "tags" | "type"

    def to_dict(self) -> dict:
        d = dict(vars(self))
        d["created_at"] = self.created_at.isoformat()
        return d
