"""
NetworkX-based analysis of the knowledge graph.

A :class:`KnowledgeGraph` is a read-only snapshot of the store: a directed
multi-graph whose nodes are knowledge nodes and whose edges are typed
relationships.  Build a fresh snapshot for each analysis; nothing here
writes back to the store.

Influence counts directed edges.  Neighbourhoods, clusters, bridges and
paths treat the graph as undirected.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

try:
    import networkx as nx  # type: ignore
except ImportError:
    nx = None  # type: ignore

from ..errors import NodeNotFoundError
from ..models import (
    Cluster,
    KnowledgeNode,
    NeighborhoodEntry,
    NodeFilter,
    NodeInfluence,
    Relationship,
)

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)

DEFAULT_INBOUND_WEIGHT = 2.0
DEFAULT_OUTBOUND_WEIGHT = 1.0
DEFAULT_MAX_PATH_DEPTH = 5


class KnowledgeGraph:
    """
    Directed multi-graph of knowledge nodes and relationships.

    Node attribute ``node`` holds the :class:`KnowledgeNode`; edge
    attributes mirror the :class:`Relationship` fields (``type``,
    ``weight``, ``confidence``, ``edge_id``).
    """

    def __init__(self) -> None:
        if nx is None:
            raise RuntimeError(
                "networkx is not installed. Install with: pip install networkx"
            )
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_store(cls, store: "Store", user_id: Optional[str] = None) -> "KnowledgeGraph":
        """Snapshot the active nodes and their edges from *store*."""
        graph = cls()
        nodes = store.list_nodes(NodeFilter(user_id=user_id))
        for node in sorted(nodes, key=lambda n: n.id):
            graph.add_node(node)
        edges = store.list_edges(user_id=user_id)
        for edge in sorted(edges, key=lambda e: (e.source_node_id, e.target_node_id, e.relationship_type)):
            graph.add_edge(edge)
        logger.debug(
            "[graph] Built snapshot: %d nodes, %d edges",
            graph._g.number_of_nodes(), graph._g.number_of_edges(),
        )
        return graph

    def add_node(self, node: KnowledgeNode) -> None:
        self._g.add_node(node.id, node=node)

    def add_edge(self, edge: Relationship) -> None:
        """Add *edge* if both endpoints are in the snapshot (inactive nodes are skipped)."""
        if not self._g.has_node(edge.source_node_id) or not self._g.has_node(edge.target_node_id):
            return
        self._g.add_edge(
            edge.source_node_id,
            edge.target_node_id,
            key=edge.relationship_type,
            type=edge.relationship_type,
            weight=edge.weight,
            confidence=edge.confidence,
            edge_id=edge.id,
        )

    def _require(self, node_id: str) -> None:
        if not self._g.has_node(node_id):
            raise NodeNotFoundError(node_id)

    def _node(self, node_id: str) -> KnowledgeNode:
        return self._g.nodes[node_id]["node"]

    def _undirected_neighbours(self, node_id: str) -> set[str]:
        return set(self._g.predecessors(node_id)) | set(self._g.successors(node_id))

    def _simple_undirected(self) -> "nx.Graph":
        """Undirected graph with parallel edges collapsed."""
        simple = nx.Graph()
        simple.add_nodes_from(self._g.nodes())
        simple.add_edges_from((u, v) for u, v in self._g.edges())
        return simple

    def __contains__(self, node_id: str) -> bool:
        return self._g.has_node(node_id)

    def __len__(self) -> int:
        return self._g.number_of_nodes()

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    def influence(
        self,
        node_id: str,
        inbound_weight: float = DEFAULT_INBOUND_WEIGHT,
        outbound_weight: float = DEFAULT_OUTBOUND_WEIGHT,
    ) -> NodeInfluence:
        """
        Score a node by its backlinks and outlinks.

        Returns
        -------
        NodeInfluence
            ``influence_score = inbound_weight * inbound + outbound_weight * outbound``.

        Raises
        ------
        NodeNotFoundError
            If *node_id* is not in the graph.
        """
        self._require(node_id)
        inbound = self._g.in_degree(node_id)
        outbound = self._g.out_degree(node_id)
        return NodeInfluence(
            node_id=node_id,
            inbound_count=inbound,
            outbound_count=outbound,
            influence_score=inbound_weight * inbound + outbound_weight * outbound,
        )

    def neighborhood(
        self,
        node_id: str,
        depth: int,
        include_origin: bool = False,
    ) -> list[NeighborhoodEntry]:
        """
        Return every node within *depth* hops, ignoring edge direction.

        Parameters
        ----------
        node_id:
            Origin node.
        depth:
            Maximum hop count.  0 yields no neighbours.
        include_origin:
            Include the origin itself at distance 0.

        Returns
        -------
        list[NeighborhoodEntry]
            Sorted by (distance, id); each node appears once, at its
            shortest distance.

        Raises
        ------
        ValueError
            If *depth* is negative.
        NodeNotFoundError
            If *node_id* is not in the graph.
        """
        if depth < 0:
            raise ValueError(f"depth must be >= 0, got {depth}")
        self._require(node_id)

        distances: dict[str, int] = {node_id: 0}
        frontier = [node_id]
        for hop in range(1, depth + 1):
            next_frontier: list[str] = []
            for current in frontier:
                for nbr in sorted(self._undirected_neighbours(current)):
                    if nbr not in distances:
                        distances[nbr] = hop
                        next_frontier.append(nbr)
            if not next_frontier:
                break
            frontier = next_frontier

        entries = [
            NeighborhoodEntry(node=self._node(nid), distance=dist)
            for nid, dist in distances.items()
            if include_origin or nid != node_id
        ]
        entries.sort(key=lambda e: (e.distance, e.node.id))
        return entries

    def clusters(self, min_size: int = 1) -> list[Cluster]:
        """
        Connected components of the undirected graph, isolated nodes included.

        Components smaller than *min_size* are dropped.  Ordered by size
        desc, then smallest member id; members are sorted.
        """
        components = [
            sorted(c) for c in nx.connected_components(self._simple_undirected())
            if len(c) >= min_size
        ]
        components.sort(key=lambda members: (-len(members), members[0]))
        return [Cluster(cluster_id=i, members=members) for i, members in enumerate(components)]

    def bridge_nodes(self) -> list[KnowledgeNode]:
        """Articulation points: nodes whose removal disconnects part of the graph.

        Ordered by degree (distinct neighbours) desc, then id.
        """
        simple = self._simple_undirected()
        points = list(nx.articulation_points(simple))
        points.sort(key=lambda nid: (-simple.degree(nid), nid))
        return [self._node(nid) for nid in points]

    def shortest_path(
        self,
        source_id: str,
        target_id: str,
        max_depth: int = DEFAULT_MAX_PATH_DEPTH,
    ) -> list[str]:
        """
        Node ids on a shortest undirected path from *source_id* to *target_id*.

        Returns ``[]`` when no path of at most *max_depth* hops exists.
        """
        self._require(source_id)
        self._require(target_id)
        if source_id == target_id:
            return [source_id]
        try:
            path = nx.shortest_path(self._simple_undirected(), source_id, target_id)
        except nx.NetworkXNoPath:
            return []
        if len(path) - 1 > max_depth:
            return []
        return list(path)

    def all_shortest_paths(
        self,
        source_id: str,
        target_id: str,
        max_depth: int = DEFAULT_MAX_PATH_DEPTH,
    ) -> list[list[str]]:
        """Every shortest path within *max_depth* hops, sorted lexicographically."""
        self._require(source_id)
        self._require(target_id)
        try:
            paths = [list(p) for p in nx.all_shortest_paths(self._simple_undirected(), source_id, target_id)]
        except nx.NetworkXNoPath:
            return []
        return sorted(p for p in paths if len(p) - 1 <= max_depth)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        """
        Return aggregate statistics about the graph.

        Returns
        -------
        dict
            Keys: node_count, edge_count, by_node_type, by_edge_type,
            component_count, isolated_count.
        """
        by_node: dict[str, int] = {}
        for _, attrs in self._g.nodes(data=True):
            nt = attrs["node"].node_type
            by_node[nt] = by_node.get(nt, 0) + 1

        by_edge: dict[str, int] = {}
        for _, _, attrs in self._g.edges(data=True):
            et = attrs.get("type", "unknown")
            by_edge[et] = by_edge.get(et, 0) + 1

        simple = self._simple_undirected()
        return {
            "node_count": self._g.number_of_nodes(),
            "edge_count": self._g.number_of_edges(),
            "by_node_type": by_node,
            "by_edge_type": by_edge,
            "component_count": nx.number_connected_components(simple) if len(simple) else 0,
            "isolated_count": sum(1 for _ in nx.isolates(simple)),
        }
