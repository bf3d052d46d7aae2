"""
Relationship recommender.

Suggests typed links from a node to semantically similar nodes it is not
yet connected to.  The relationship type comes from an ordered list of
keyword rules over the candidate's content (first match wins).  A
confidence score is derived from the similarity, and an explanation is
either templated or, when an explainer is configured, requested from the
generative service.

Tag- and type-based recommendations, filtering and diversification of
fused recommendation lists, and the feedback log live here too.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Optional

from ..errors import EmbeddingProviderError, NodeNotFoundError
from ..models import (
    KnowledgeNode,
    LinkRecommendation,
    NodeFilter,
    NodeType,
    Relationship,
    RelationshipType,
    Suggestion,
    utcnow,
)
from .similarity import SimilarOptions

if TYPE_CHECKING:
    from ..llm import GenerativeClient
    from .similarity import SimilarityEngine
    from .store import Store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_SUGGESTIONS = 6
DEFAULT_SIMILARITY_THRESHOLD = 0.6
DEFAULT_CANDIDATE_LIMIT = 10
DEFAULT_CONFIDENCE_FACTOR = 0.9
DEFAULT_CONFIDENCE_CAP = 0.95

REC_SIMILARITY = "similarity"
REC_TAGS = "tags"
REC_TYPE = "type"

# Type-based recommendations score below any useful similarity match.
TYPE_MATCH_SCORE = 0.5

EXPLANATION_SYSTEM_MESSAGE = (
    "You explain in one or two sentences why two knowledge notes are related."
)


# ---------------------------------------------------------------------------
# Relationship type rules
# ---------------------------------------------------------------------------

def _mentions(*words: str) -> Callable[[KnowledgeNode, KnowledgeNode], bool]:
    def predicate(source: KnowledgeNode, candidate: KnowledgeNode) -> bool:
        content = (candidate.content or "").lower()
        return any(w in content for w in words)
    return predicate


def _concept_contains_title(source: KnowledgeNode, candidate: KnowledgeNode) -> bool:
    return (
        candidate.node_type == NodeType.CONCEPT
        and source.title.lower() in candidate.title.lower()
    )


# Evaluated in order; the first matching predicate decides the type.
RELATIONSHIP_RULES: list[tuple[Callable[[KnowledgeNode, KnowledgeNode], bool], str]] = [
    (_mentions("example", "예시"), RelationshipType.EXAMPLE_OF),
    (_mentions("cause", "because", "원인", "때문에"), RelationshipType.CAUSES),
    (_mentions("result", "therefore", "결과", "따라서"), RelationshipType.RESULT_OF),
    (_mentions("contrast", "however", "반대", "하지만"), RelationshipType.CONTRADICTS_LEGACY),
    (_mentions("support", "agree", "지지", "동의"), RelationshipType.SUPPORTS_LEGACY),
    (_concept_contains_title, RelationshipType.PART_OF),
    (_mentions("expand", "develop", "확장", "발전"), RelationshipType.EXPANDS_ON),
]


def infer_relationship_type(source: KnowledgeNode, candidate: KnowledgeNode) -> str:
    """Relationship type suggested for a link from *source* to *candidate*."""
    for predicate, rel_type in RELATIONSHIP_RULES:
        if predicate(source, candidate):
            return rel_type
    return RelationshipType.RELATED_TO


# Node types worth linking from a given type.
TYPE_COMPATIBILITY: dict[str, tuple[str, ...]] = {
    NodeType.KNOWLEDGE: (NodeType.CONCEPT, NodeType.FACT, NodeType.NOTE),
    NodeType.CONCEPT: (NodeType.CONCEPT, NodeType.FACT, NodeType.KNOWLEDGE, NodeType.IDEA),
    NodeType.FACT: (NodeType.CONCEPT, NodeType.KNOWLEDGE, NodeType.RESOURCE),
    NodeType.QUESTION: (NodeType.CONCEPT, NodeType.FACT, NodeType.KNOWLEDGE, NodeType.IDEA),
    NodeType.IDEA: (NodeType.PROJECT, NodeType.CONCEPT, NodeType.QUESTION),
    NodeType.PROJECT: (NodeType.IDEA, NodeType.RESOURCE, NodeType.DOCUMENT),
    NodeType.RESOURCE: (NodeType.DOCUMENT, NodeType.WEB_CLIP, NodeType.PROJECT),
    NodeType.NOTE: (NodeType.KNOWLEDGE, NodeType.IDEA, NodeType.CONCEPT),
    NodeType.DOCUMENT: (NodeType.RESOURCE, NodeType.WEB_CLIP),
    NodeType.IMAGE: (NodeType.RESOURCE, NodeType.DOCUMENT),
    NodeType.WEB_CLIP: (NodeType.RESOURCE, NodeType.DOCUMENT),
}


def heuristic_explanation(source: KnowledgeNode, target: KnowledgeNode, rel_type: str) -> str:
    label = RelationshipType.LABELS.get(rel_type, rel_type)
    return (
        f'"{source.title}" {label} "{target.title}". '
        "Suggested from the similarity of their content and context."
    )


def filter_recommendations(
    recommendations: list[LinkRecommendation],
    min_score: Optional[float] = None,
    preferred_types: Optional[list[str]] = None,
    excluded_tags: Optional[list[str]] = None,
    max_age_days: Optional[int] = None,
    now=None,
) -> list[LinkRecommendation]:
    """Drop recommendations that fail any of the given user preferences."""
    cutoff = None
    if max_age_days:
        cutoff = (now or utcnow()) - timedelta(days=max_age_days)
    excluded = set(excluded_tags or ())
    kept = []
    for rec in recommendations:
        if min_score is not None and rec.score < min_score:
            continue
        if preferred_types and rec.node_type not in preferred_types:
            continue
        if excluded and excluded.intersection(rec.tags):
            continue
        if cutoff is not None and rec.created_at < cutoff:
            continue
        kept.append(rec)
    return kept


def diversify_recommendations(
    recommendations: list[LinkRecommendation], max_per_type: int = 2
) -> list[LinkRecommendation]:
    """Keep at most *max_per_type* entries per node type, preserving order."""
    seen: Counter = Counter()
    diversified = []
    for rec in recommendations:
        if seen[rec.node_type] < max_per_type:
            diversified.append(rec)
            seen[rec.node_type] += 1
    return diversified


# ---------------------------------------------------------------------------
# Recommender
# ---------------------------------------------------------------------------

class RelationshipRecommender:
    """
    Suggests relationships for a node.

    Parameters
    ----------
    store:
        Node/edge store; existing links are read on every call.
    similarity:
        Similarity engine used to find candidates.
    candidate_limit:
        Number of similar nodes fetched before filtering.
    confidence_factor / confidence_cap:
        ``confidence = min(similarity * factor, cap)``.
    explainer:
        Optional generative client for explanations; failures fall back to
        the templated explanation.
    """

    def __init__(
        self,
        store: "Store",
        similarity: "SimilarityEngine",
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
        confidence_factor: float = DEFAULT_CONFIDENCE_FACTOR,
        confidence_cap: float = DEFAULT_CONFIDENCE_CAP,
        explainer: Optional["GenerativeClient"] = None,
    ) -> None:
        self._store = store
        self._similarity = similarity
        self.candidate_limit = candidate_limit
        self.confidence_factor = confidence_factor
        self.confidence_cap = confidence_cap
        self._explainer = explainer

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _linked_ids(self, node_id: str) -> set[str]:
        return self._store.list_edges_for_node(node_id).neighbour_ids()

    def _explain(self, source: KnowledgeNode, target: KnowledgeNode, rel_type: str) -> str:
        if self._explainer is None:
            return heuristic_explanation(source, target, rel_type)
        from ..llm import LLMError

        label = RelationshipType.LABELS.get(rel_type, rel_type)
        prompt = (
            f"Note A: {source.title}\n{source.content[:500]}\n\n"
            f"Note B: {target.title}\n{target.content[:500]}\n\n"
            f"Explain briefly why note A {label} note B."
        )
        try:
            return self._explainer.generate(
                prompt,
                system_message=EXPLANATION_SYSTEM_MESSAGE,
                max_tokens=120,
                temperature=0.3,
            )
        except LLMError as exc:
            logger.warning("[recommender] Explanation service failed: %s", exc)
            return heuristic_explanation(source, target, rel_type)

    # ------------------------------------------------------------------
    # Similarity-based suggestions
    # ------------------------------------------------------------------

    def recommend_links(
        self,
        node_id: str,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> list[Suggestion]:
        """
        Suggest typed links from *node_id* to similar, unlinked nodes.

        Parameters
        ----------
        node_id:
            Source node.
        max_suggestions:
            Maximum number of suggestions returned.
        similarity_threshold:
            Minimum cosine similarity for embedding candidates.

        Returns
        -------
        list[Suggestion]
            Sorted by confidence desc, then target id.  Empty when nothing
            qualifies.

        Raises
        ------
        NodeNotFoundError
            If *node_id* does not exist.
        """
        source = self._store.get_node(node_id)
        if max_suggestions <= 0:
            return []
        candidates = self._similarity.find_similar(
            node_id,
            SimilarOptions(
                limit=self.candidate_limit,
                threshold=similarity_threshold,
                exclude_self=True,
            ),
        )
        linked = self._linked_ids(node_id)

        # (suggestion, target node) pairs; the node is kept for the explanation
        ranked: list[tuple[Suggestion, KnowledgeNode]] = []
        for candidate in candidates:
            target = candidate.node
            if target.id == source.id or target.id in linked:
                continue
            rel_type = infer_relationship_type(source, target)
            confidence = min(candidate.similarity * self.confidence_factor, self.confidence_cap)
            ranked.append((Suggestion(
                source_node_id=source.id,
                target_node_id=target.id,
                target_title=target.title,
                relationship_type=rel_type,
                confidence=confidence,
                similarity=candidate.similarity,
                explanation="",
                reasoning=f"Based on {round(candidate.similarity * 100)}% similarity",
                match_type=candidate.match_type,
            ), target))

        ranked.sort(key=lambda pair: (-pair[0].confidence, pair[0].target_node_id))
        ranked = ranked[:max_suggestions]

        # Explain only what survives truncation
        suggestions: list[Suggestion] = []
        for s, target in ranked:
            s.explanation = self._explain(source, target, s.relationship_type)
            suggestions.append(s)

        logger.info("[recommender] %d suggestions for %s", len(suggestions), node_id)
        return suggestions

    # ------------------------------------------------------------------
    # Tag / type based recommendations
    # ------------------------------------------------------------------

    def _unlinked_candidates(self, source: KnowledgeNode) -> list[KnowledgeNode]:
        linked = self._linked_ids(source.id)
        return [
            n for n in self._store.list_nodes(NodeFilter(
                user_id=source.user_id, exclude_ids=[source.id],
            ))
            if n.id not in linked
        ]

    def recommend_by_similarity(
        self,
        node_id: str,
        max_recommendations: int = 5,
        similarity_threshold: float = 0.7,
    ) -> list[LinkRecommendation]:
        """Similar unlinked nodes as :class:`LinkRecommendation` entries."""
        linked = self._linked_ids(node_id)
        results = self._similarity.find_similar(
            node_id,
            SimilarOptions(
                limit=max_recommendations + len(linked),
                threshold=similarity_threshold,
                exclude_self=True,
            ),
        )
        recs = [
            LinkRecommendation(
                node_id=r.node.id,
                title=r.node.title,
                score=r.similarity,
                node_type=r.node.node_type,
                tags=sorted(r.node.tags),
                created_at=r.node.created_at,
                reason=f"{round(r.similarity * 100)}% content similarity",
                recommendation_type=REC_SIMILARITY,
            )
            for r in results if r.node.id not in linked
        ]
        return recs[:max_recommendations]

    def recommend_by_tags(self, node_id: str, max_recommendations: int = 5) -> list[LinkRecommendation]:
        """Unlinked nodes sharing tags with *node_id*, ranked by tag overlap."""
        source = self._store.get_node(node_id)
        if not source.tags:
            return []
        recs = []
        for node in self._unlinked_candidates(source):
            common = source.tags & node.tags
            if not common:
                continue
            recs.append(LinkRecommendation(
                node_id=node.id,
                title=node.title,
                score=len(common) / len(source.tags | node.tags),
                node_type=node.node_type,
                tags=sorted(node.tags),
                created_at=node.created_at,
                reason=f"{len(common)} shared tag(s): {', '.join(sorted(common))}",
                recommendation_type=REC_TAGS,
            ))
        recs.sort(key=lambda r: (-r.score, r.node_id))
        return recs[:max_recommendations]

    def recommend_by_type(self, node_id: str, max_recommendations: int = 3) -> list[LinkRecommendation]:
        """Unlinked nodes of a compatible type, newest first."""
        source = self._store.get_node(node_id)
        compatible = TYPE_COMPATIBILITY.get(source.node_type, ())
        recs = [
            LinkRecommendation(
                node_id=node.id,
                title=node.title,
                score=TYPE_MATCH_SCORE,
                node_type=node.node_type,
                tags=sorted(node.tags),
                created_at=node.created_at,
                reason=f"{node.node_type} nodes often connect to {source.node_type} nodes",
                recommendation_type=REC_TYPE,
            )
            for node in self._unlinked_candidates(source)
            if node.node_type in compatible
        ]
        recs.sort(key=lambda r: (-r.created_at.timestamp(), r.node_id))
        return recs[:max_recommendations]

    def recommend_comprehensive(self, node_id: str, max_recommendations: int = 10) -> list[LinkRecommendation]:
        """
        Fuse similarity, tag and type recommendations.

        A node reached by several strategies keeps its highest-scoring
        entry.  Ordered by score desc, then node id.
        """
        best: dict[str, LinkRecommendation] = {}
        sources = [
            self.recommend_by_similarity(node_id),
            self.recommend_by_tags(node_id),
            self.recommend_by_type(node_id),
        ]
        for recs in sources:
            for rec in recs:
                current = best.get(rec.node_id)
                if current is None or rec.score > current.score:
                    best[rec.node_id] = rec
        fused = sorted(best.values(), key=lambda r: (-r.score, r.node_id))
        return fused[:max_recommendations]

    def batch_recommendations(
        self, node_ids: list[str], max_per_node: int = 5
    ) -> dict[str, list[LinkRecommendation]]:
        """Comprehensive recommendations per node; a failing node maps to ``[]``."""
        results: dict[str, list[LinkRecommendation]] = {}
        for nid in node_ids:
            try:
                results[nid] = self.recommend_comprehensive(nid, max_per_node)
            except (NodeNotFoundError, EmbeddingProviderError) as exc:
                logger.warning("[recommender] Recommendations for %s failed: %s", nid, exc)
                results[nid] = []
        return results

    # ------------------------------------------------------------------
    # Acting on suggestions
    # ------------------------------------------------------------------

    def accept_suggestion(
        self,
        node_id: str,
        suggestion: Suggestion,
        weight: Optional[float] = None,
    ) -> str:
        """Create the suggested edge and log the acceptance; returns the edge id."""
        edge = Relationship(
            source_node_id=node_id,
            target_node_id=suggestion.target_node_id,
            relationship_type=suggestion.relationship_type,
            comment=suggestion.explanation,
            confidence=suggestion.confidence,
        )
        if weight is not None:
            edge.weight = weight
        edge_id = self._store.create_edge(edge)
        self._store.record_feedback(node_id, suggestion.target_node_id, REC_SIMILARITY, "accepted")
        return edge_id

    def reject_suggestion(self, node_id: str, suggestion: Suggestion) -> None:
        self._store.record_feedback(node_id, suggestion.target_node_id, REC_SIMILARITY, "rejected")

    def ignore_suggestion(self, node_id: str, suggestion: Suggestion) -> None:
        self._store.record_feedback(node_id, suggestion.target_node_id, REC_SIMILARITY, "ignored")

    def feedback_stats(self) -> dict:
        """Acceptance statistics over the recorded feedback."""
        rows = self._store.list_feedback()
        accepted = sum(1 for r in rows if r["feedback"] == "accepted")
        types = Counter(r["recommendation_type"] for r in rows)
        return {
            "total_recommendations": len(rows),
            "accepted_recommendations": accepted,
            "acceptance_rate": round(accepted / len(rows), 4) if rows else 0.0,
            "most_common_type": types.most_common(1)[0][0] if types else None,
        }
