"""
SQLite-backed node/edge store, the system of record for the knowledge core.

Nodes, typed relationships and recommendation feedback live in one SQLite
database.  Embeddings are stored as float32 blobs via numpy.  Every other
component reads through this store on each call and keeps no copies.

Storage: ``.kgcore/knowledge.db`` (or ``":memory:"``)
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime
from typing import Iterable, Optional

import numpy as np

from ..errors import (
    DimensionMismatchError,
    DuplicateEdgeError,
    NodeNotFoundError,
    SelfLoopError,
)
from ..models import (
    KnowledgeNode,
    NodeEdges,
    NodeFilter,
    NodeMetadata,
    Relationship,
    utcnow,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_DIMENSION = 1536  # text-embedding-3-small

FEEDBACK_VALUES = ("accepted", "rejected", "ignored")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS nodes (
    id          TEXT PRIMARY KEY,
    user_id     TEXT,
    title       TEXT NOT NULL,
    content     TEXT NOT NULL DEFAULT '',
    node_type   TEXT NOT NULL,
    tags        TEXT NOT NULL DEFAULT '[]',
    embedding   BLOB DEFAULT NULL,
    metadata    TEXT NOT NULL DEFAULT '{}',
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS edges (
    id                TEXT PRIMARY KEY,
    source_node_id    TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    target_node_id    TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
    relationship_type TEXT NOT NULL,
    weight            REAL NOT NULL DEFAULT 1.0,
    confidence        REAL DEFAULT NULL,
    comment           TEXT DEFAULT NULL,
    created_at        TEXT NOT NULL,
    CHECK (source_node_id <> target_node_id),
    UNIQUE (source_node_id, target_node_id, relationship_type)
);

CREATE TABLE IF NOT EXISTS recommendation_feedback (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    source_node_id      TEXT NOT NULL,
    target_node_id      TEXT NOT NULL,
    recommendation_type TEXT NOT NULL,
    feedback            TEXT NOT NULL,
    created_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_node_id);
CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_node_id);
CREATE INDEX IF NOT EXISTS idx_nodes_user   ON nodes(user_id);
"""

_NODE_COLUMNS = (
    "id, user_id, title, content, node_type, tags, embedding, metadata, "
    "is_active, created_at, updated_at"
)
_EDGE_COLUMNS = (
    "id, source_node_id, target_node_id, relationship_type, weight, "
    "confidence, comment, created_at"
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vec_to_bytes(vec: Iterable[float]) -> bytes:
    """Serialise a float list to compact float32 bytes."""
    return np.asarray(list(vec), dtype=np.float32).tobytes()


def _bytes_to_vec(buf: Optional[bytes]) -> Optional[list[float]]:
    """Deserialise bytes back to a float list (None passes through)."""
    if buf is None:
        return None
    return np.frombuffer(buf, dtype=np.float32).astype(float).tolist()


def _ts(value: datetime) -> str:
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _row_to_node(row: sqlite3.Row) -> KnowledgeNode:
    return KnowledgeNode(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        content=row["content"],
        node_type=row["node_type"],
        tags=set(json.loads(row["tags"] or "[]")),
        embedding=_bytes_to_vec(row["embedding"]),
        metadata=NodeMetadata.from_dict(json.loads(row["metadata"] or "{}")),
        is_active=bool(row["is_active"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_edge(row: sqlite3.Row) -> Relationship:
    return Relationship(
        id=row["id"],
        source_node_id=row["source_node_id"],
        target_node_id=row["target_node_id"],
        relationship_type=row["relationship_type"],
        weight=row["weight"],
        confidence=row["confidence"],
        comment=row["comment"],
        created_at=_parse_ts(row["created_at"]),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class Store:
    """Node/edge store backed by SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file, or ``":memory:"``.  Parent
        directories are created as needed.
    dimension:
        Deployment-wide embedding dimension.  Vectors of any other length
        are rejected with :class:`DimensionMismatchError`.
    """

    def __init__(self, db_path: str = ":memory:", dimension: int = DEFAULT_DIMENSION) -> None:
        self._db_path = db_path
        self.dimension = dimension
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        """Create the database and tables if missing."""
        if self._db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self._db_path)), exist_ok=True)
        with self._lock:
            conn = self._get_conn()
            conn.executescript(_SCHEMA)
            conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        """Lazy connection; callers hold ``self._lock``."""
        if self._conn is None:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self._db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except sqlite3.Error:
                    pass
                self._conn = None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_dimension(self, vector: list[float], context: str = "") -> None:
        """Raise :class:`DimensionMismatchError` unless *vector* has ``self.dimension``."""
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), context)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(self, node: KnowledgeNode) -> KnowledgeNode:
        """Insert or replace *node*.

        Replacing keeps existing edges; the node id is the identity.
        """
        if node.embedding is not None:
            self.check_dimension(node.embedding, f"node {node.id}")
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                f"INSERT INTO nodes ({_NODE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "user_id=excluded.user_id, title=excluded.title, "
                "content=excluded.content, node_type=excluded.node_type, "
                "tags=excluded.tags, embedding=excluded.embedding, "
                "metadata=excluded.metadata, is_active=excluded.is_active, "
                "updated_at=excluded.updated_at",
                (
                    node.id,
                    node.user_id,
                    node.title,
                    node.content or "",
                    node.node_type,
                    json.dumps(sorted(node.tags)),
                    _vec_to_bytes(node.embedding) if node.embedding is not None else None,
                    json.dumps(node.metadata.to_dict(), default=str),
                    1 if node.is_active else 0,
                    _ts(node.created_at),
                    _ts(node.updated_at),
                ),
            )
            conn.commit()
        logger.debug("[store] Saved node %s (%s)", node.id, node.title)
        return node

    def get_node(self, node_id: str) -> KnowledgeNode:
        """Return the node with *node_id*.

        Raises
        ------
        NodeNotFoundError
            If the id does not resolve.
        """
        with self._lock:
            row = self._get_conn().execute(
                f"SELECT {_NODE_COLUMNS} FROM nodes WHERE id = ?", (node_id,)
            ).fetchone()
        if row is None:
            raise NodeNotFoundError(node_id)
        return _row_to_node(row)

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT 1 FROM nodes WHERE id = ?", (node_id,)
            ).fetchone()
        return row is not None

    def list_nodes(self, node_filter: Optional[NodeFilter] = None) -> list[KnowledgeNode]:
        """Return nodes matching *node_filter*, ordered by creation time then id."""
        f = node_filter or NodeFilter()
        clauses: list[str] = []
        params: list = []
        if f.active_only:
            clauses.append("is_active = 1")
        if f.user_id is not None:
            clauses.append("user_id = ?")
            params.append(f.user_id)
        if f.node_types:
            clauses.append(f"node_type IN ({','.join('?' for _ in f.node_types)})")
            params.extend(f.node_types)
        if f.has_embedding is True:
            clauses.append("embedding IS NOT NULL")
        elif f.has_embedding is False:
            clauses.append("embedding IS NULL")
        if f.exclude_ids:
            clauses.append(f"id NOT IN ({','.join('?' for _ in f.exclude_ids)})")
            params.extend(f.exclude_ids)

        sql = f"SELECT {_NODE_COLUMNS} FROM nodes"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, id"

        with self._lock:
            rows = self._get_conn().execute(sql, params).fetchall()

        nodes = [_row_to_node(r) for r in rows]
        # Tag containment is filtered in Python (tags are a JSON list).
        if f.tags:
            wanted = set(f.tags)
            nodes = [n for n in nodes if n.tags & wanted]
        if f.limit is not None:
            nodes = nodes[: f.limit]
        return nodes

    def update_node_embedding(self, node_id: str, vector: list[float]) -> None:
        """Attach *vector* to the node and bump ``updated_at``."""
        self.check_dimension(vector, f"node {node_id}")
        with self._lock:
            conn = self._get_conn()
            cur = conn.execute(
                "UPDATE nodes SET embedding = ?, updated_at = ? WHERE id = ?",
                (_vec_to_bytes(vector), _ts(utcnow()), node_id),
            )
            conn.commit()
        if cur.rowcount == 0:
            raise NodeNotFoundError(node_id)

    def delete_node(self, node_id: str) -> None:
        """Delete a node; its edges are removed by the cascade."""
        with self._lock:
            conn = self._get_conn()
            cur = conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
            conn.commit()
        if cur.rowcount == 0:
            raise NodeNotFoundError(node_id)
        logger.debug("[store] Deleted node %s and its edges", node_id)

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def create_edge(self, edge: Relationship) -> str:
        """Persist *edge* and return its id.

        Raises
        ------
        SelfLoopError
            If source and target are the same node.
        NodeNotFoundError
            If either endpoint is missing.
        DuplicateEdgeError
            If an edge with the same source, target and type exists.
        ValueError
            If the type is unknown or weight/confidence are out of range.
        """
        if edge.source_node_id == edge.target_node_id:
            raise SelfLoopError(edge.source_node_id)
        edge.validate()

        with self._lock:
            conn = self._get_conn()
            for endpoint in (edge.source_node_id, edge.target_node_id):
                if conn.execute("SELECT 1 FROM nodes WHERE id = ?", (endpoint,)).fetchone() is None:
                    raise NodeNotFoundError(endpoint)
            try:
                conn.execute(
                    f"INSERT INTO edges ({_EDGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        edge.id,
                        edge.source_node_id,
                        edge.target_node_id,
                        edge.relationship_type,
                        float(edge.weight),
                        edge.confidence,
                        edge.comment,
                        _ts(edge.created_at),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                raise DuplicateEdgeError(
                    edge.source_node_id, edge.target_node_id, edge.relationship_type
                ) from exc

        logger.info(
            "[store] Created edge %s: %s -[%s]-> %s",
            edge.id, edge.source_node_id, edge.relationship_type, edge.target_node_id,
        )
        return edge.id

    def delete_edge(self, edge_id: str) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute("DELETE FROM edges WHERE id = ?", (edge_id,))
            conn.commit()

    def list_edges(self, user_id: Optional[str] = None) -> list[Relationship]:
        """Return all edges, optionally restricted to edges between *user_id*'s nodes."""
        sql = f"SELECT {', '.join('e.' + c.strip() for c in _EDGE_COLUMNS.split(','))} FROM edges e"
        params: list = []
        if user_id is not None:
            sql += (
                " JOIN nodes s ON s.id = e.source_node_id"
                " JOIN nodes t ON t.id = e.target_node_id"
                " WHERE s.user_id = ? AND t.user_id = ?"
            )
            params = [user_id, user_id]
        sql += " ORDER BY e.created_at, e.id"
        with self._lock:
            rows = self._get_conn().execute(sql, params).fetchall()
        return [_row_to_edge(r) for r in rows]

    def list_edges_for_node(self, node_id: str) -> NodeEdges:
        """Return the node's backlinks (inbound) and outlinks (outbound)."""
        if not self.has_node(node_id):
            raise NodeNotFoundError(node_id)
        with self._lock:
            conn = self._get_conn()
            inbound = conn.execute(
                f"SELECT {_EDGE_COLUMNS} FROM edges WHERE target_node_id = ? "
                "ORDER BY created_at, id",
                (node_id,),
            ).fetchall()
            outbound = conn.execute(
                f"SELECT {_EDGE_COLUMNS} FROM edges WHERE source_node_id = ? "
                "ORDER BY created_at, id",
                (node_id,),
            ).fetchall()
        return NodeEdges(
            inbound=[_row_to_edge(r) for r in inbound],
            outbound=[_row_to_edge(r) for r in outbound],
        )

    def has_edge_between(self, node_a: str, node_b: str) -> bool:
        """True if any edge connects the two nodes, in either direction."""
        with self._lock:
            row = self._get_conn().execute(
                "SELECT 1 FROM edges WHERE "
                "(source_node_id = ? AND target_node_id = ?) OR "
                "(source_node_id = ? AND target_node_id = ?) LIMIT 1",
                (node_a, node_b, node_b, node_a),
            ).fetchone()
        return row is not None

    def has_edge(self, source_id: str, target_id: str, relationship_type: str) -> bool:
        """True if the exact (source, target, type) edge exists."""
        with self._lock:
            row = self._get_conn().execute(
                "SELECT 1 FROM edges WHERE source_node_id = ? AND target_node_id = ? "
                "AND relationship_type = ?",
                (source_id, target_id, relationship_type),
            ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Recommendation feedback
    # ------------------------------------------------------------------

    def record_feedback(
        self,
        source_node_id: str,
        target_node_id: str,
        recommendation_type: str,
        feedback: str,
    ) -> None:
        """Log the outcome of a link recommendation for later tuning."""
        if feedback not in FEEDBACK_VALUES:
            raise ValueError(f"feedback must be one of {FEEDBACK_VALUES}, got {feedback!r}")
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO recommendation_feedback "
                "(source_node_id, target_node_id, recommendation_type, feedback, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (source_node_id, target_node_id, recommendation_type, feedback, _ts(utcnow())),
            )
            conn.commit()

    def list_feedback(self) -> list[dict]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT source_node_id, target_node_id, recommendation_type, feedback, created_at "
                "FROM recommendation_feedback ORDER BY id"
            ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def counts(self) -> dict:
        """Return node, embedded-node and edge counts (active nodes only)."""
        with self._lock:
            conn = self._get_conn()
            nodes = conn.execute("SELECT COUNT(*) FROM nodes WHERE is_active = 1").fetchone()[0]
            embedded = conn.execute(
                "SELECT COUNT(*) FROM nodes WHERE is_active = 1 AND embedding IS NOT NULL"
            ).fetchone()[0]
            edges = conn.execute("SELECT COUNT(*) FROM edges").fetchone()[0]
        return {"nodes": nodes, "nodes_with_embedding": embedded, "edges": edges}
