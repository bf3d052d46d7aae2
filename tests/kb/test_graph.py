"""
Unit tests for knowledge_core.kb.graph

Tests all public analysis methods with a deterministic in-memory store.
"""

from __future__ import annotations

import pytest


# ---------------------------------------------------------------------------
# Helpers: build a small synthetic graph
# ---------------------------------------------------------------------------

def _make_store(store, edges, names="ABCDE"):
    """
    Add one node per name (ids are the names) and the given edges.

    Edges are ``(source, target)`` or ``(source, target, type)`` tuples.
    """
    from knowledge_core.models import KnowledgeNode, Relationship

    for name in names:
        store.add_node(KnowledgeNode(id=name, title=f"Node {name}"))
    for edge in edges:
        src, dst = edge[0], edge[1]
        rel = Relationship(src, dst)
        if len(edge) > 2:
            rel.relationship_type = edge[2]
        store.create_edge(rel)
    return store


def _graph(store):
    from knowledge_core.kb.graph import KnowledgeGraph
    return KnowledgeGraph.from_store(store)


# ---------------------------------------------------------------------------
# Tests: influence
# ---------------------------------------------------------------------------

class TestInfluence:
    def test_weighted_score(self, store):
        # B has two backlinks and one outlink
        _make_store(store, [("A", "B"), ("C", "B"), ("B", "D")])
        inf = _graph(store).influence("B")
        assert (inf.inbound_count, inf.outbound_count) == (2, 1)
        assert inf.influence_score == 5.0

    def test_custom_weights(self, store):
        _make_store(store, [("A", "B"), ("C", "B"), ("B", "D")])
        inf = _graph(store).influence("B", inbound_weight=1.0, outbound_weight=1.0)
        assert inf.influence_score == 3.0

    def test_parallel_typed_edges_count_separately(self, store):
        _make_store(store, [("A", "B", "supports"), ("A", "B", "REFERENCES")])
        assert _graph(store).influence("B").inbound_count == 2

    def test_isolated_node(self, store):
        _make_store(store, [])
        assert _graph(store).influence("E").influence_score == 0.0

    def test_unknown_node(self, store):
        from knowledge_core.errors import NodeNotFoundError

        _make_store(store, [])
        with pytest.raises(NodeNotFoundError):
            _graph(store).influence("Z")


# ---------------------------------------------------------------------------
# Tests: neighborhood
# ---------------------------------------------------------------------------

class TestNeighborhood:
    def test_depth_zero_is_empty(self, store):
        _make_store(store, [("A", "B")])
        assert _graph(store).neighborhood("A", 0) == []

    def test_depth_zero_with_origin(self, store):
        _make_store(store, [("A", "B")])
        entries = _graph(store).neighborhood("A", 0, include_origin=True)
        assert [(e.node.id, e.distance) for e in entries] == [("A", 0)]

    def test_depth_one_ignores_direction(self, store):
        # A -> B, C -> A, B -> D
        _make_store(store, [("A", "B"), ("C", "A"), ("B", "D")])
        entries = _graph(store).neighborhood("A", 1)
        assert [(e.node.id, e.distance) for e in entries] == [("B", 1), ("C", 1)]

    def test_depth_two_uses_shortest_distance(self, store):
        _make_store(store, [("A", "B"), ("B", "C"), ("A", "C"), ("C", "D")])
        entries = _graph(store).neighborhood("A", 2)
        assert [(e.node.id, e.distance) for e in entries] == [("B", 1), ("C", 1), ("D", 2)]

    def test_cycles_terminate(self, store):
        _make_store(store, [("A", "B"), ("B", "C"), ("C", "A")])
        entries = _graph(store).neighborhood("A", 10)
        assert sorted(e.node.id for e in entries) == ["B", "C"]

    def test_negative_depth(self, store):
        _make_store(store, [])
        with pytest.raises(ValueError):
            _graph(store).neighborhood("A", -1)


# ---------------------------------------------------------------------------
# Tests: clusters
# ---------------------------------------------------------------------------

class TestClusters:
    def test_singletons_included_with_min_size_one(self, store):
        # Five nodes; only 1 and 2 connected
        _make_store(store, [("1", "2")], names="12345")
        clusters = _graph(store).clusters(min_size=1)
        assert [c.members for c in clusters] == [["1", "2"], ["3"], ["4"], ["5"]]
        assert [c.size for c in clusters] == [2, 1, 1, 1]
        assert [c.cluster_id for c in clusters] == [0, 1, 2, 3]

    def test_min_size_two(self, store):
        _make_store(store, [("1", "2")], names="12345")
        clusters = _graph(store).clusters(min_size=2)
        assert len(clusters) == 1
        assert clusters[0].members == ["1", "2"]

    def test_ordered_by_size(self, store):
        _make_store(store, [("A", "B"), ("C", "D"), ("D", "E")])
        clusters = _graph(store).clusters()
        assert [c.members for c in clusters] == [["C", "D", "E"], ["A", "B"]]


# ---------------------------------------------------------------------------
# Tests: bridges / paths / stats
# ---------------------------------------------------------------------------

class TestBridgeNodes:
    def test_articulation_points(self, store):
        # A - B - C - D, plus B - E : removing B or C disconnects the graph
        _make_store(store, [("A", "B"), ("B", "C"), ("C", "D"), ("E", "B")])
        bridges = _graph(store).bridge_nodes()
        assert [n.id for n in bridges] == ["B", "C"]

    def test_cycle_has_no_bridges(self, store):
        _make_store(store, [("A", "B"), ("B", "C"), ("C", "A")])
        assert _graph(store).bridge_nodes() == []


class TestShortestPath:
    def test_path_found_ignoring_direction(self, store):
        _make_store(store, [("A", "B"), ("C", "B"), ("C", "D")])
        assert _graph(store).shortest_path("A", "D") == ["A", "B", "C", "D"]

    def test_max_depth(self, store):
        _make_store(store, [("A", "B"), ("B", "C"), ("C", "D")])
        assert _graph(store).shortest_path("A", "D", max_depth=2) == []

    def test_no_path(self, store):
        _make_store(store, [("A", "B")])
        assert _graph(store).shortest_path("A", "E") == []

    def test_all_shortest_paths(self, store):
        _make_store(store, [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")])
        assert _graph(store).all_shortest_paths("A", "D") == [["A", "B", "D"], ["A", "C", "D"]]


class TestStats:
    def test_counts(self, store):
        _make_store(store, [("A", "B", "supports"), ("B", "C"), ("A", "C")])
        stats = _graph(store).stats()
        assert stats["node_count"] == 5
        assert stats["edge_count"] == 3
        assert stats["by_edge_type"] == {"supports": 1, "related_to": 2}
        assert stats["by_node_type"] == {"Knowledge": 5}
        assert stats["component_count"] == 3
        assert stats["isolated_count"] == 2

    def test_inactive_nodes_excluded(self, store):
        _make_store(store, [("A", "B")])
        node = store.get_node("B")
        node.is_active = False
        store.add_node(node)
        graph = _graph(store)
        assert "B" not in graph
        assert graph.stats()["edge_count"] == 0
