"""
Programmatic API for the knowledge core, for use as a library from Python code.

Example usage::

    from knowledge_core import KnowledgeEngine

    engine = KnowledgeEngine.from_config()
    node = engine.add_node("Paris", "Paris is the capital of France.")
    engine.embed_node(node.id)
    for hit in engine.semantic_search("French capital"):
        print(hit.node.title, hit.similarity)

An empty list always means "no results"; an unavailable embedding service
raises :class:`~knowledge_core.errors.EmbeddingProviderError`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from .config import Config
from .kb.embedder import BulkEmbeddingResult, CancellationToken, Embedder
from .kb.graph import KnowledgeGraph
from .kb.recommender import RelationshipRecommender
from .kb.similarity import EmbeddingStats, SearchOptions, SimilarityEngine, SimilarOptions
from .kb.store import Store
from .models import (
    Cluster,
    KnowledgeNode,
    LinkRecommendation,
    NeighborhoodEntry,
    NodeInfluence,
    NodeMetadata,
    NodeType,
    RankedResult,
    Relationship,
    RelationshipType,
    Suggestion,
)

_logger = logging.getLogger(__name__)


class KnowledgeEngine:
    """Facade wiring store, embedder, similarity, graph analysis and recommender.

    Every call reads the store afresh; the engine keeps no node or edge
    copies between calls.
    """

    def __init__(
        self,
        store: Store,
        embedder: Optional[Embedder] = None,
        config: Optional[Config] = None,
        explainer: Any = None,
    ) -> None:
        self.config = config or Config()
        self.store = store
        self.embedder = embedder or Embedder.from_config(self.config)
        cfg = self.config
        self.similarity = SimilarityEngine(
            store,
            self.embedder,
            search_threshold=cfg.SEARCH_THRESHOLD,
            similar_threshold=cfg.SIMILAR_THRESHOLD,
            search_limit=cfg.SEARCH_LIMIT,
            similar_limit=cfg.SIMILAR_LIMIT,
            lexical_threshold=cfg.LEXICAL_THRESHOLD,
        )
        if explainer is None and cfg.USE_LLM_EXPLANATIONS:
            from .llm import OpenAIChatClient
            explainer = OpenAIChatClient.from_config(cfg)
        self.recommender = RelationshipRecommender(
            store,
            self.similarity,
            candidate_limit=cfg.RECOMMEND_CANDIDATES,
            confidence_factor=cfg.CONFIDENCE_FACTOR,
            confidence_cap=cfg.CONFIDENCE_CAP,
            explainer=explainer,
        )

    @classmethod
    def from_config(
        cls,
        config_path: str | None = None,
        db_path: str | None = None,
        embedding_client: Any = None,
    ) -> "KnowledgeEngine":
        """Build an engine from ``.kgcore.yaml`` + env vars + defaults."""
        cfg = Config.load(config_path)
        store = Store(db_path or cfg.DB_PATH, dimension=cfg.EMBEDDING_DIMENSION)
        embedder = Embedder.from_config(cfg, client=embedding_client)
        _logger.debug("KnowledgeEngine using database %s", db_path or cfg.DB_PATH)
        return cls(store, embedder=embedder, config=cfg)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "KnowledgeEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _graph(self, user_id: Optional[str] = None) -> KnowledgeGraph:
        return KnowledgeGraph.from_store(self.store, user_id=user_id)

    # ── Nodes ──

    def add_node(
        self,
        title: str,
        content: str = "",
        node_type: str = NodeType.KNOWLEDGE,
        tags: Optional[list[str]] = None,
        user_id: Optional[str] = None,
        summary: Optional[str] = None,
        embedding: Optional[list[float]] = None,
    ) -> KnowledgeNode:
        node = KnowledgeNode(
            title=title,
            content=content,
            node_type=node_type,
            tags=set(tags or ()),
            user_id=user_id,
            embedding=embedding,
            metadata=NodeMetadata(summary=summary),
        )
        return self.store.add_node(node)

    def get_node(self, node_id: str) -> KnowledgeNode:
        return self.store.get_node(node_id)

    def get_backlinks(self, node_id: str) -> list[Relationship]:
        return self.store.list_edges_for_node(node_id).inbound

    def get_outlinks(self, node_id: str) -> list[Relationship]:
        return self.store.list_edges_for_node(node_id).outbound

    # ── Embeddings ──

    def embed_node(self, node_id: str, cancel: Optional[CancellationToken] = None) -> list[float]:
        return self.embedder.embed_node(self.store, node_id, cancel)

    def generate_missing_embeddings(
        self,
        limit: Optional[int] = None,
        user_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        progress: bool = True,
    ) -> BulkEmbeddingResult:
        return self.embedder.generate_missing_embeddings(
            self.store,
            limit=self.config.BULK_EMBED_LIMIT if limit is None else limit,
            user_id=user_id,
            cancel=cancel,
            progress=progress,
        )

    def embedding_stats(self, user_id: Optional[str] = None) -> EmbeddingStats:
        return self.similarity.embedding_stats(user_id)

    # ── Similarity ──

    def semantic_search(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        node_types: Optional[list[str]] = None,
        tags: Optional[list[str]] = None,
        user_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> list[RankedResult]:
        return self.similarity.semantic_search(
            query,
            SearchOptions(limit=limit, threshold=threshold, node_types=node_types,
                          tags=tags, user_id=user_id),
            cancel=cancel,
        )

    def find_similar(
        self,
        node_id: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        exclude_self: bool = True,
    ) -> list[RankedResult]:
        return self.similarity.find_similar(
            node_id, SimilarOptions(limit=limit, threshold=threshold, exclude_self=exclude_self)
        )

    # ── Graph analysis ──

    def get_node_influence(self, node_id: str) -> NodeInfluence:
        return self._graph().influence(
            node_id,
            inbound_weight=self.config.INFLUENCE_INBOUND_WEIGHT,
            outbound_weight=self.config.INFLUENCE_OUTBOUND_WEIGHT,
        )

    def get_node_neighborhood(
        self, node_id: str, depth: int = 1, include_origin: bool = False
    ) -> list[NeighborhoodEntry]:
        return self._graph().neighborhood(node_id, depth, include_origin=include_origin)

    def find_clusters(self, min_size: Optional[int] = None, user_id: Optional[str] = None) -> list[Cluster]:
        size = self.config.CLUSTER_MIN_SIZE if min_size is None else min_size
        return self._graph(user_id).clusters(min_size=size)

    def get_bridge_nodes(self, user_id: Optional[str] = None) -> list[KnowledgeNode]:
        return self._graph(user_id).bridge_nodes()

    def find_path(self, source_id: str, target_id: str, max_depth: int = 5) -> list[str]:
        return self._graph().shortest_path(source_id, target_id, max_depth=max_depth)

    def find_all_paths(self, source_id: str, target_id: str) -> list[list[str]]:
        return self._graph().all_shortest_paths(source_id, target_id)

    def graph_stats(self, user_id: Optional[str] = None) -> dict:
        return self._graph(user_id).stats()

    # ── Relationships ──

    def create_relationship(
        self,
        source_id: str,
        target_id: str,
        relationship_type: str = RelationshipType.RELATED_TO,
        comment: Optional[str] = None,
        weight: Optional[float] = None,
    ) -> str:
        edge = Relationship(
            source_node_id=source_id,
            target_node_id=target_id,
            relationship_type=relationship_type,
            comment=comment,
        )
        if weight is not None:
            edge.weight = weight
        return self.store.create_edge(edge)

    def recommend_links(
        self,
        node_id: str,
        max_suggestions: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
    ) -> list[Suggestion]:
        return self.recommender.recommend_links(
            node_id,
            max_suggestions=self.config.RECOMMEND_MAX if max_suggestions is None else max_suggestions,
            similarity_threshold=(
                self.config.RECOMMEND_THRESHOLD if similarity_threshold is None
                else similarity_threshold
            ),
        )

    def accept_suggestion(self, suggestion: Suggestion, weight: Optional[float] = None) -> str:
        return self.recommender.accept_suggestion(suggestion.source_node_id, suggestion, weight)

    def recommend_comprehensive(self, node_id: str, max_recommendations: int = 10) -> list[LinkRecommendation]:
        """Fused similarity, tag and type recommendations for *node_id*."""
        return self.recommender.recommend_comprehensive(node_id, max_recommendations)

    def record_feedback(
        self,
        source_id: str,
        target_id: str,
        recommendation_type: str,
        feedback: str,
    ) -> None:
        self.store.record_feedback(source_id, target_id, recommendation_type, feedback)

    def feedback_stats(self) -> dict:
        return self.recommender.feedback_stats()
