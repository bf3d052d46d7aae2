"""
Unit tests for knowledge_core.kb.recommender
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

SOURCE_VEC = [1.0, 0.0, 0.0]


def _node(title, content="", **kwargs):
    from knowledge_core.models import KnowledgeNode
    return KnowledgeNode(title=title, content=content, **kwargs)


@pytest.fixture
def recommender(store, fake_embeddings, make_embedder):
    from knowledge_core.kb.recommender import RelationshipRecommender
    from knowledge_core.kb.similarity import SimilarityEngine

    similarity = SimilarityEngine(store, make_embedder(fake_embeddings()))
    return RelationshipRecommender(store, similarity)


def _vec(similarity):
    """A 3-d vector whose cosine with SOURCE_VEC is *similarity*."""
    return [similarity, (1 - similarity ** 2) ** 0.5, 0.0]


# ---------------------------------------------------------------------------
# Tests: relationship rules
# ---------------------------------------------------------------------------

class TestInferRelationshipType:
    @pytest.mark.parametrize("content,expected", [
        ("For example, a sparrow.", "example_of"),
        ("This happens because of heat.", "causes"),
        ("Therefore the bridge fell.", "result_of"),
        ("However, others disagree.", "contradicts"),
        ("Studies support this view.", "supports"),
        ("We expand the idea further.", "EXPANDS_ON"),
        ("나무는 예시일 뿐이다", "example_of"),
        ("비가 왔기 때문에 젖었다", "causes"),
        ("따라서 다리가 무너졌다", "result_of"),
        ("하지만 다른 의견도 있다", "contradicts"),
        ("이 견해에 동의한다", "supports"),
        ("아이디어를 확장한다", "EXPANDS_ON"),
        ("Nothing special here.", "related_to"),
    ])
    def test_keyword_rules(self, content, expected):
        from knowledge_core.kb.recommender import infer_relationship_type

        assert infer_relationship_type(_node("Birds"), _node("Other", content)) == expected

    def test_first_match_wins(self):
        from knowledge_core.kb.recommender import infer_relationship_type

        # mentions both "example" and "because"; example rule comes first
        candidate = _node("X", "An example of failure because of rust")
        assert infer_relationship_type(_node("S"), candidate) == "example_of"

    def test_concept_containing_source_title(self):
        from knowledge_core.kb.recommender import infer_relationship_type
        from knowledge_core.models import NodeType

        candidate = _node("Machine Learning Basics", "overview", node_type=NodeType.CONCEPT)
        assert infer_relationship_type(_node("machine learning"), candidate) == "part_of"
        not_concept = _node("Machine Learning Basics", "overview")
        assert infer_relationship_type(_node("machine learning"), not_concept) == "related_to"

    def test_korean_keywords_keep_rule_order(self):
        from knowledge_core.kb.recommender import infer_relationship_type

        # mentions both 예시 and 원인; the example rule comes first
        candidate = _node("X", "원인을 보여주는 예시")
        assert infer_relationship_type(_node("S"), candidate) == "example_of"

    def test_rule_types_are_valid_relationship_types(self):
        from knowledge_core.kb.recommender import RELATIONSHIP_RULES
        from knowledge_core.models import RelationshipType

        assert all(t in RelationshipType.ALL for _, t in RELATIONSHIP_RULES)


# ---------------------------------------------------------------------------
# Tests: recommend_links
# ---------------------------------------------------------------------------

class TestRecommendLinks:
    def test_confidence_and_exclusion_of_linked(self, store, recommender):
        from knowledge_core.models import Relationship

        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        close = store.add_node(_node("Close", "an example case", embedding=_vec(0.99)))
        mid = store.add_node(_node("Mid", embedding=_vec(0.7)))
        linked = store.add_node(_node("Linked", embedding=_vec(0.95)))
        store.add_node(_node("Far", embedding=_vec(0.2)))
        # Backlink counts as an existing link too
        store.create_edge(Relationship(linked.id, src.id))

        suggestions = recommender.recommend_links(src.id)

        assert [s.target_node_id for s in suggestions] == [close.id, mid.id]
        top = suggestions[0]
        assert top.relationship_type == "example_of"
        assert top.confidence == pytest.approx(0.99 * 0.9, abs=1e-4)
        assert suggestions[1].confidence == pytest.approx(0.7 * 0.9, abs=1e-4)
        assert "Close" in top.explanation and "Source" in top.explanation
        assert top.reasoning == "Based on 99% similarity"
        assert top.match_type == "embedding"

    def test_confidence_capped(self, store, fake_embeddings, make_embedder):
        from knowledge_core.kb.recommender import RelationshipRecommender
        from knowledge_core.kb.similarity import SimilarityEngine

        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        store.add_node(_node("Twin", embedding=SOURCE_VEC))
        similarity = SimilarityEngine(store, make_embedder(fake_embeddings()))
        rec = RelationshipRecommender(store, similarity, confidence_factor=1.0)
        assert rec.recommend_links(src.id)[0].confidence == 0.95

    def test_max_suggestions(self, store, recommender):
        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        for i in range(8):
            store.add_node(_node(f"n{i}", embedding=_vec(0.9)))
        assert len(recommender.recommend_links(src.id, max_suggestions=3)) == 3
        assert len(recommender.recommend_links(src.id)) == 6

    def test_nothing_similar(self, store, recommender):
        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        store.add_node(_node("Far", embedding=_vec(0.1)))
        assert recommender.recommend_links(src.id) == []

    def test_unknown_node(self, recommender):
        from knowledge_core.errors import NodeNotFoundError

        with pytest.raises(NodeNotFoundError):
            recommender.recommend_links("missing")

    def test_lexical_candidates_flagged(self, store, recommender):
        src = store.add_node(_node("Graph databases", "storing graph data"))
        other = store.add_node(_node("Graph theory", "graph vertices and edges"))
        suggestions = recommender.recommend_links(src.id)
        assert [s.target_node_id for s in suggestions] == [other.id]
        assert suggestions[0].match_type == "lexical"

    def test_explainer_used_and_falls_back(self, store, fake_embeddings, make_embedder):
        from knowledge_core.kb.recommender import RelationshipRecommender
        from knowledge_core.kb.similarity import SimilarityEngine
        from knowledge_core.llm import LLMError

        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        store.add_node(_node("Target", embedding=_vec(0.9)))
        similarity = SimilarityEngine(store, make_embedder(fake_embeddings()))

        explainer = MagicMock()
        explainer.generate.return_value = "They share a topic."
        rec = RelationshipRecommender(store, similarity, explainer=explainer)
        assert rec.recommend_links(src.id)[0].explanation == "They share a topic."

        explainer.generate.side_effect = LLMError("down")
        fallback = rec.recommend_links(src.id)[0].explanation
        assert "Target" in fallback and "is related to" in fallback

    def test_explanation_uses_loaded_candidates(self, store, recommender):
        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        targets = [store.add_node(_node(f"T{i}", embedding=_vec(0.9))) for i in range(3)]
        with patch.object(store, "get_node", wraps=store.get_node) as get_node:
            suggestions = recommender.recommend_links(src.id)
        assert len(suggestions) == 3
        assert all("T" in s.explanation for s in suggestions)
        looked_up = {c.args[0] for c in get_node.call_args_list}
        assert looked_up == {src.id}
        assert not looked_up & {t.id for t in targets}


# ---------------------------------------------------------------------------
# Tests: acting on suggestions
# ---------------------------------------------------------------------------

class TestAcceptSuggestion:
    def test_accept_creates_edge_and_logs(self, store, recommender):
        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        tgt = store.add_node(_node("Target", "because of this", embedding=_vec(0.9)))
        suggestion = recommender.recommend_links(src.id)[0]

        edge_id = recommender.accept_suggestion(src.id, suggestion)

        edge = store.list_edges_for_node(src.id).outbound[0]
        assert edge.id == edge_id
        assert edge.target_node_id == tgt.id
        assert edge.relationship_type == "causes"
        assert edge.comment == suggestion.explanation
        assert edge.confidence == pytest.approx(suggestion.confidence)
        assert store.list_feedback()[0]["feedback"] == "accepted"
        # Once linked it is no longer suggested
        assert recommender.recommend_links(src.id) == []

    def test_reject_and_ignore_only_log(self, store, recommender):
        src = store.add_node(_node("Source", embedding=SOURCE_VEC))
        store.add_node(_node("Target", embedding=_vec(0.9)))
        suggestion = recommender.recommend_links(src.id)[0]
        recommender.reject_suggestion(src.id, suggestion)
        recommender.ignore_suggestion(src.id, suggestion)
        assert [r["feedback"] for r in store.list_feedback()] == ["rejected", "ignored"]
        assert store.list_edges() == []
        stats = recommender.feedback_stats()
        assert stats["total_recommendations"] == 2
        assert stats["acceptance_rate"] == 0.0


# ---------------------------------------------------------------------------
# Tests: tag / type / fused recommendations
# ---------------------------------------------------------------------------

class TestLinkRecommendations:
    def test_by_tags(self, store, recommender):
        src = store.add_node(_node("S", tags={"a", "b"}))
        both = store.add_node(_node("Both", tags={"a", "b"}))
        one = store.add_node(_node("One", tags={"a", "z"}))
        store.add_node(_node("None", tags={"q"}))
        recs = recommender.recommend_by_tags(src.id)
        assert [r.node_id for r in recs] == [both.id, one.id]
        assert recs[0].score == 1.0
        assert recs[0].recommendation_type == "tags"

    def test_by_type_uses_compatibility(self, store, recommender):
        from knowledge_core.models import NodeType

        src = store.add_node(_node("Idea", node_type=NodeType.IDEA))
        project = store.add_node(_node("Proj", node_type=NodeType.PROJECT))
        store.add_node(_node("Pic", node_type=NodeType.IMAGE))
        recs = recommender.recommend_by_type(src.id)
        assert [r.node_id for r in recs] == [project.id]

    def test_comprehensive_keeps_best_score(self, store, recommender):
        from knowledge_core.models import NodeType

        src = store.add_node(_node("S", node_type=NodeType.IDEA, tags={"a"}, embedding=SOURCE_VEC))
        dup = store.add_node(_node("Dup", node_type=NodeType.PROJECT, tags={"a"}, embedding=_vec(0.9)))
        recs = recommender.recommend_comprehensive(src.id)
        assert [r.node_id for r in recs] == [dup.id]
        assert recs[0].recommendation_type == "tags"   # tag overlap 1.0 beats 0.9 similarity

    def test_batch_isolates_failures(self, store, recommender):
        src = store.add_node(_node("S", tags={"a"}))
        store.add_node(_node("T", tags={"a"}))
        results = recommender.batch_recommendations([src.id, "missing"])
        assert len(results[src.id]) == 1
        assert results["missing"] == []


class TestFilterAndDiversify:
    def _rec(self, node_id, score, node_type="Concept", tags=(), age_days=0):
        from knowledge_core.models import LinkRecommendation, utcnow

        return LinkRecommendation(
            node_id=node_id, title=node_id, score=score, node_type=node_type,
            tags=list(tags), created_at=utcnow() - timedelta(days=age_days),
            reason="", recommendation_type="similarity",
        )

    def test_filter(self):
        from knowledge_core.kb.recommender import filter_recommendations

        recs = [
            self._rec("low", 0.2),
            self._rec("fact", 0.9, node_type="Fact"),
            self._rec("tagged", 0.9, tags=["private"]),
            self._rec("old", 0.9, age_days=400),
            self._rec("keep", 0.9),
        ]
        kept = filter_recommendations(
            recs, min_score=0.5, preferred_types=["Concept"],
            excluded_tags=["private"], max_age_days=365,
        )
        assert [r.node_id for r in kept] == ["keep"]

    def test_diversify(self):
        from knowledge_core.kb.recommender import diversify_recommendations

        recs = [self._rec(f"c{i}", 0.9) for i in range(3)] + [self._rec("f", 0.5, node_type="Fact")]
        assert [r.node_id for r in diversify_recommendations(recs)] == ["c0", "c1", "f"]
