"""
Similarity engine: semantic search and node-to-node similarity.

Cosine similarity is computed with numpy over every active node that has an
embedding (the corpus is read fresh from the store on each call).  Nodes
without an embedding fall back to a lexical Jaccard comparison of their
keywords; those results carry ``match_type="lexical"`` because their scores
are not on the same scale as cosine scores.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

import numpy as np

from ..errors import DimensionMismatchError
from ..models import (
    MATCH_EMBEDDING,
    MATCH_LEXICAL,
    KnowledgeNode,
    NodeFilter,
    RankedResult,
    utcnow,
)

if TYPE_CHECKING:
    from .embedder import CancellationToken, Embedder
    from .store import Store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_SEARCH_THRESHOLD = 0.3
DEFAULT_SIMILAR_THRESHOLD = 0.8
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SIMILAR_LIMIT = 5
DEFAULT_LEXICAL_THRESHOLD = 0.1
LEXICAL_CANDIDATE_LIMIT = 50
MAX_KEYWORDS = 50

RECENCY_WINDOW_DAYS = 30
RECENCY_MAX_BOOST = 0.1

# Any run of non-word characters or underscores; letters of every script survive.
_NON_ALNUM_RE = re.compile(r"[\W_]+")


# ---------------------------------------------------------------------------
# Vector math
# ---------------------------------------------------------------------------

def cosine_similarity(a: Iterable[float], b: Iterable[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero norm and exactly 1.0 for two
    identical non-zero vectors.

    Raises
    ------
    DimensionMismatchError
        If the vectors differ in length.
    """
    va = np.asarray(list(a), dtype=np.float64)
    vb = np.asarray(list(b), dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(len(va), len(vb), "cosine similarity")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    if np.array_equal(va, vb):
        return 1.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def cosine_similarity_matrix(query: Iterable[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against every row of *matrix*.

    Zero-norm rows (and a zero-norm query) score 0.0.
    """
    q = np.asarray(list(query), dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    if m.size == 0:
        return np.zeros(0)
    if m.ndim != 2 or m.shape[1] != q.shape[0]:
        raise DimensionMismatchError(q.shape[0], m.shape[-1], "cosine similarity")
    query_norm = np.linalg.norm(q)
    if query_norm == 0:
        return np.zeros(m.shape[0])
    row_norms = np.linalg.norm(m, axis=1)
    safe_norms = np.where(row_norms == 0, 1.0, row_norms)
    scores = (m @ q) / (safe_norms * query_norm)
    scores[row_norms == 0] = 0.0
    # Identical rows score exactly 1.0
    scores[np.all(m == q, axis=1) & (row_norms != 0)] = 1.0
    return np.clip(scores, -1.0, 1.0)


# ---------------------------------------------------------------------------
# Lexical fallback
# ---------------------------------------------------------------------------

def extract_keywords(text: str, max_keywords: int = MAX_KEYWORDS) -> list[str]:
    """Lowercased Unicode alphanumeric tokens longer than one character."""
    if not text:
        return []
    tokens = _NON_ALNUM_RE.sub(" ", text.lower()).split()
    return [t for t in tokens if len(t) > 1][:max_keywords]


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def _node_keywords(node: KnowledgeNode) -> list[str]:
    return extract_keywords(f"{node.title} {node.content}")


# ---------------------------------------------------------------------------
# Options / stats
# ---------------------------------------------------------------------------

@dataclass
class SearchOptions:
    """Options for :meth:`SimilarityEngine.semantic_search`.

    ``None`` for ``limit`` / ``threshold`` means the engine's configured
    default.
    """

    limit: Optional[int] = None
    threshold: Optional[float] = None
    node_types: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    user_id: Optional[str] = None


@dataclass
class SimilarOptions:
    limit: Optional[int] = None
    threshold: Optional[float] = None
    exclude_self: bool = True


@dataclass
class EmbeddingStats:
    total_nodes: int
    nodes_with_embedding: int
    embedding_coverage: float   # percent, 2 dp

    def to_dict(self) -> dict:
        return dict(vars(self))


def _rank_key(result: RankedResult):
    # similarity desc, updated_at desc, id asc
    return (-result.similarity, -result.node.updated_at.timestamp(), result.node.id)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SimilarityEngine:
    """
    Ranks stored nodes by semantic similarity to a query or another node.

    Parameters
    ----------
    store:
        Node store (read on every call).
    embedder:
        Used only to vectorise free-text queries.
    search_threshold:
        Default minimum similarity for :meth:`semantic_search`.
    similar_threshold:
        Default minimum similarity for :meth:`find_similar`.
    search_limit / similar_limit:
        Default result counts.
    lexical_threshold:
        Minimum Jaccard score for lexical fallback results.
    lexical_candidate_limit:
        Maximum number of nodes compared in the lexical fallback.
    """

    def __init__(
        self,
        store: "Store",
        embedder: Optional["Embedder"] = None,
        search_threshold: float = DEFAULT_SEARCH_THRESHOLD,
        similar_threshold: float = DEFAULT_SIMILAR_THRESHOLD,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        similar_limit: int = DEFAULT_SIMILAR_LIMIT,
        lexical_threshold: float = DEFAULT_LEXICAL_THRESHOLD,
        lexical_candidate_limit: int = LEXICAL_CANDIDATE_LIMIT,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.search_threshold = search_threshold
        self.similar_threshold = similar_threshold
        self.search_limit = search_limit
        self.similar_limit = similar_limit
        self.lexical_threshold = lexical_threshold
        self.lexical_candidate_limit = lexical_candidate_limit

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _score_against(
        self,
        vector: list[float],
        nodes: list[KnowledgeNode],
        threshold: float,
    ) -> list[RankedResult]:
        if not nodes:
            return []
        for node in nodes:
            self._store.check_dimension(node.embedding, f"node {node.id}")
        matrix = np.array([n.embedding for n in nodes], dtype=np.float64)
        scores = cosine_similarity_matrix(vector, matrix)
        results = [
            RankedResult(node=node, similarity=float(score), match_type=MATCH_EMBEDDING)
            for node, score in zip(nodes, scores)
            if score >= threshold
        ]
        results.sort(key=_rank_key)
        return results

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def semantic_search(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        cancel: Optional["CancellationToken"] = None,
    ) -> list[RankedResult]:
        """
        Rank embedded nodes by cosine similarity to *query*.

        Parameters
        ----------
        query:
            Free text; embedded once via the embedder.
        options:
            Limit, threshold and filters (node types, tags, owner).
        cancel:
            Optional cancellation token passed to the embedder.

        Returns
        -------
        list[RankedResult]
            Sorted by similarity desc, ``updated_at`` desc, id asc.  Empty
            when nothing clears the threshold.

        Raises
        ------
        EmbeddingProviderError
            If the query cannot be embedded.
        """
        opts = options or SearchOptions()
        limit = self.search_limit if opts.limit is None else opts.limit
        threshold = self.search_threshold if opts.threshold is None else opts.threshold
        if not query or not query.strip() or limit <= 0:
            return []
        if self._embedder is None:
            raise ValueError("semantic_search requires an embedder")

        t0 = time.perf_counter()
        nodes = self._store.list_nodes(NodeFilter(
            user_id=opts.user_id,
            node_types=opts.node_types,
            tags=opts.tags,
            has_embedding=True,
        ))
        if not nodes:
            logger.debug("[similarity] No embedded nodes to search")
            return []

        query_vector = self._embedder.embed(query, cancel)
        self._store.check_dimension(query_vector, "query")
        results = self._score_against(query_vector, nodes, threshold)[:limit]

        elapsed = (time.perf_counter() - t0) * 1000
        logger.info(
            "[similarity] Search %r returned %d results in %.1fms",
            query[:60], len(results), elapsed,
        )
        return results

    def find_similar(
        self,
        node_id: str,
        options: Optional[SimilarOptions] = None,
    ) -> list[RankedResult]:
        """
        Nodes most similar to an existing node.

        Uses the node's stored embedding when present; otherwise compares
        keywords lexically against up to ``lexical_candidate_limit`` other
        active nodes.

        Raises
        ------
        NodeNotFoundError
            If *node_id* does not exist.
        """
        opts = options or SimilarOptions()
        limit = self.similar_limit if opts.limit is None else opts.limit
        source = self._store.get_node(node_id)
        if limit <= 0:
            return []

        exclude = [source.id] if opts.exclude_self else None

        if source.embedding is None:
            # Jaccard scores run lower than cosine; the caller's threshold does not apply.
            return self._lexical_similar(source, self.lexical_threshold, limit, exclude)

        threshold = self.similar_threshold if opts.threshold is None else opts.threshold
        nodes = self._store.list_nodes(NodeFilter(
            user_id=source.user_id,
            has_embedding=True,
            exclude_ids=exclude,
        ))
        results = self._score_against(source.embedding, nodes, threshold)[:limit]
        logger.debug("[similarity] %d nodes similar to %s", len(results), node_id)
        return results

    def _lexical_similar(
        self,
        source: KnowledgeNode,
        threshold: float,
        limit: int,
        exclude: Optional[list[str]],
    ) -> list[RankedResult]:
        source_keywords = _node_keywords(source)
        if not source_keywords:
            return []
        candidates = self._store.list_nodes(NodeFilter(
            user_id=source.user_id,
            exclude_ids=exclude,
            limit=self.lexical_candidate_limit,
        ))
        results = []
        for node in candidates:
            score = jaccard_similarity(source_keywords, _node_keywords(node))
            if score > threshold:
                results.append(RankedResult(node=node, similarity=score, match_type=MATCH_LEXICAL))
        results.sort(key=_rank_key)
        logger.debug(
            "[similarity] Lexical fallback for %s: %d matches", source.id, len(results)
        )
        return results[:limit]

    def recommend_by_keywords(
        self,
        keywords: list[str],
        limit: int = 8,
        threshold: float = 0.6,
        boost_recent: bool = False,
        now: Optional[datetime] = None,
        user_id: Optional[str] = None,
    ) -> list[RankedResult]:
        """
        Search by a keyword list, optionally favouring recent nodes.

        With *boost_recent*, nodes created within the last 30 days gain up
        to +0.1 (linearly decaying with age); scores are capped at 1.0.
        """
        query = " ".join(k for k in keywords if k and k.strip())
        if not query:
            return []
        results = self.semantic_search(
            query,
            SearchOptions(limit=limit * 2, threshold=threshold, user_id=user_id),
        )
        if boost_recent:
            now = now or utcnow()
            window = timedelta(days=RECENCY_WINDOW_DAYS)
            for r in results:
                age = now - r.node.created_at
                if age < window:
                    boost = RECENCY_MAX_BOOST * (1 - age / window)
                    r.similarity = min(1.0, r.similarity + max(0.0, boost))
            results.sort(key=_rank_key)
        return results[:limit]

    def embedding_stats(self, user_id: Optional[str] = None) -> EmbeddingStats:
        total = len(self._store.list_nodes(NodeFilter(user_id=user_id)))
        embedded = len(self._store.list_nodes(NodeFilter(user_id=user_id, has_embedding=True)))
        coverage = round(embedded / total * 100, 2) if total else 0.0
        return EmbeddingStats(
            total_nodes=total,
            nodes_with_embedding=embedded,
            embedding_coverage=coverage,
        )
