"""
End-to-end tests for knowledge_core.api.KnowledgeEngine

The embedding provider is a keyword-driven fake; everything else (SQLite,
networkx, numpy) runs for real.
"""

from __future__ import annotations

import pytest

VECTORS = {
    "paris": [0.9, 0.1, 0.0],
    "france": [0.8, 0.2, 0.1],
    "banana": [0.0, 0.1, 0.99],
    "french": [0.85, 0.15, 0.05],
}


@pytest.fixture
def engine(store, fake_embeddings, make_embedder):
    from knowledge_core.api import KnowledgeEngine
    from knowledge_core.config import Config

    eng = KnowledgeEngine(store, embedder=make_embedder(fake_embeddings(VECTORS)), config=Config())
    yield eng


@pytest.fixture
def corpus(engine):
    from knowledge_core.models import NodeType

    nodes = {
        "paris": engine.add_node("Paris", "Paris is the capital of France.",
                                 node_type=NodeType.FACT, tags=["geo"]),
        "france": engine.add_node("France", "A country in western Europe.",
                                  node_type=NodeType.CONCEPT, tags=["geo"]),
        "banana": engine.add_node("Banana", "A yellow fruit.", tags=["food"]),
    }
    result = engine.generate_missing_embeddings(progress=False)
    assert (result.success, result.failed) == (3, 0)
    return nodes


class TestSearchFlow:
    def test_semantic_search(self, engine, corpus):
        results = engine.semantic_search("French capital")
        assert [r.node.title for r in results] == ["Paris", "France"]

    def test_find_similar_uses_node_threshold(self, engine, corpus):
        results = engine.find_similar(corpus["paris"].id)
        assert [r.node.title for r in results] == ["France"]

    def test_embedding_stats(self, engine, corpus):
        engine.add_node("Draft")
        stats = engine.embedding_stats()
        assert (stats.total_nodes, stats.nodes_with_embedding) == (4, 3)

    def test_embed_single_node(self, engine):
        node = engine.add_node("Banana bread")
        assert engine.embed_node(node.id) == VECTORS["banana"]
        assert engine.get_node(node.id).has_embedding


class TestGraphFlow:
    def test_links_and_analysis(self, engine, corpus):
        paris, france, banana = corpus["paris"], corpus["france"], corpus["banana"]
        engine.create_relationship(paris.id, france.id, "part_of", comment="capital")
        engine.create_relationship(banana.id, france.id, weight=0.5)

        assert [e.target_node_id for e in engine.get_outlinks(paris.id)] == [france.id]
        assert len(engine.get_backlinks(france.id)) == 2
        assert engine.get_node_influence(france.id).influence_score == 4.0

        neighbours = engine.get_node_neighborhood(paris.id, depth=2)
        assert [(e.node.id, e.distance) for e in neighbours] == [(france.id, 1), (banana.id, 2)]

        clusters = engine.find_clusters()
        assert len(clusters) == 1 and clusters[0].size == 3
        assert [n.id for n in engine.get_bridge_nodes()] == [france.id]
        assert engine.find_path(paris.id, banana.id) == [paris.id, france.id, banana.id]
        assert engine.find_all_paths(paris.id, banana.id) == [[paris.id, france.id, banana.id]]

        stats = engine.graph_stats()
        assert stats["edge_count"] == 2
        assert stats["by_edge_type"] == {"part_of": 1, "related_to": 1}

    def test_self_loop_rejected(self, engine, corpus):
        from knowledge_core.errors import SelfLoopError

        with pytest.raises(SelfLoopError):
            engine.create_relationship(corpus["paris"].id, corpus["paris"].id)


class TestRecommendationFlow:
    def test_recommend_and_accept(self, engine, corpus):
        lyon = engine.add_node("Lyon", "A French city known for its food.")
        engine.embed_node(lyon.id)

        suggestions = engine.recommend_links(lyon.id)
        targets = {s.target_node_id for s in suggestions}
        assert targets == {corpus["paris"].id, corpus["france"].id}
        assert all(s.confidence <= 0.95 for s in suggestions)

        engine.accept_suggestion(suggestions[0])
        remaining = engine.recommend_links(lyon.id)
        assert [s.target_node_id for s in remaining] == [suggestions[1].target_node_id]

        stats = engine.feedback_stats()
        assert stats["accepted_recommendations"] == 1
        assert stats["acceptance_rate"] == 1.0

    def test_comprehensive(self, engine, corpus):
        recs = engine.recommend_comprehensive(corpus["paris"].id)
        assert corpus["france"].id in {r.node_id for r in recs}

    def test_unknown_node(self, engine):
        from knowledge_core.errors import NodeNotFoundError

        with pytest.raises(NodeNotFoundError):
            engine.recommend_links("missing")


class TestFromConfig:
    def test_persists_across_engines(self, tmp_path, fake_embeddings):
        from knowledge_core.api import KnowledgeEngine

        db = str(tmp_path / "kb.db")
        cfg = tmp_path / "cfg.yaml"
        cfg.write_text("embedding:\n  dimension: 3\n", encoding="utf-8")

        with KnowledgeEngine.from_config(str(cfg), db, fake_embeddings(VECTORS)) as engine:
            node = engine.add_node("Paris")
            engine.embed_node(node.id)

        with KnowledgeEngine.from_config(str(cfg), db, fake_embeddings(VECTORS)) as engine:
            assert engine.get_node(node.id).embedding == pytest.approx(VECTORS["paris"])
            assert [r.node.id for r in engine.semantic_search("French")] == [node.id]

    def test_llm_explainer_enabled_by_config(self, store, monkeypatch, fake_embeddings, make_embedder):
        from knowledge_core.api import KnowledgeEngine
        from knowledge_core.config import Config
        from knowledge_core.llm import OpenAIChatClient

        monkeypatch.setenv("KGCORE_USE_LLM_EXPLANATIONS", "true")
        engine = KnowledgeEngine(store, embedder=make_embedder(fake_embeddings()), config=Config())
        assert isinstance(engine.recommender._explainer, OpenAIChatClient)
