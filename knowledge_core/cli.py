"""
`kgcore` command-line interface.

Commands
--------
kgcore add "<title>" [--content ...] [--type Concept] [--tag t ...]
kgcore link <source_id> <target_id> [--type related_to] [--comment ...] [--weight 1.0]
kgcore embed [<node_id>] [--limit 50]      -- one node, or all nodes missing embeddings
kgcore search "<query>" [--limit 10] [--threshold 0.3] [--type T] [--tag t]
kgcore similar <node_id> [--limit 5] [--threshold 0.8]
kgcore influence <node_id>
kgcore neighborhood <node_id> [--depth 1]
kgcore clusters [--min-size 3]
kgcore bridges
kgcore recommend <node_id> [--max 6] [--threshold 0.6] [--accept]
kgcore stats

Global options: --config PATH, --db PATH, --json
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Optional

from .cli_display import (
    print_json,
    print_nodes,
    print_ranked,
    print_suggestions,
    setup_logger,
)
from .errors import KnowledgeCoreError
from .models import NodeType, RelationshipType

logger = logging.getLogger(__name__)


def _engine(args: argparse.Namespace):
    from .api import KnowledgeEngine
    return KnowledgeEngine.from_config(config_path=args.config, db_path=args.db)


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_add(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        node = engine.add_node(
            args.title,
            content=args.content or "",
            node_type=args.type,
            tags=args.tag,
            user_id=args.user,
        )
        if args.json:
            print_json(node.summary())
        else:
            print(f"Added {node.node_type} node {node.id}: {node.title}")


def _cmd_link(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        edge_id = engine.create_relationship(
            args.source, args.target, args.type, comment=args.comment, weight=args.weight,
        )
        if args.json:
            print_json({"id": edge_id})
        else:
            print(f"Created {args.type} relationship {edge_id}")


def _cmd_embed(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        if args.node_id:
            vector = engine.embed_node(args.node_id)
            print(f"Embedded node {args.node_id} ({len(vector)} dimensions)")
            return

        t0 = time.perf_counter()
        result = engine.generate_missing_embeddings(limit=args.limit, progress=not args.json)
        elapsed = time.perf_counter() - t0
        if args.json:
            print_json(result.to_dict())
            return
        print(
            f"\nEmbed complete:\n"
            f"  Embedded : {result.success}\n"
            f"  Failed   : {result.failed}\n"
            f"  Time     : {elapsed:.1f}s"
        )


def _cmd_search(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        results = engine.semantic_search(
            args.query,
            limit=args.limit,
            threshold=args.threshold,
            node_types=args.type,
            tags=args.tag,
        )
        if args.json:
            print_json([r.to_dict() for r in results])
        else:
            print_ranked(results, f"search {args.query!r}")


def _cmd_similar(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        results = engine.find_similar(args.node_id, limit=args.limit, threshold=args.threshold)
        if args.json:
            print_json([r.to_dict() for r in results])
        else:
            print_ranked(results, f"similar to {args.node_id}")


def _cmd_influence(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        inf = engine.get_node_influence(args.node_id)
        if args.json:
            print_json(vars(inf))
            return
        print(
            f"Influence of {inf.node_id}:\n"
            f"  Backlinks : {inf.inbound_count}\n"
            f"  Outlinks  : {inf.outbound_count}\n"
            f"  Score     : {inf.influence_score:.1f}"
        )


def _cmd_neighborhood(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        entries = engine.get_node_neighborhood(args.node_id, depth=args.depth)
        if args.json:
            print_json([{**e.node.summary(), "distance": e.distance} for e in entries])
            return
        if not entries:
            print(f"  (no neighbours within {args.depth} hop(s))")
            return
        for e in entries:
            print(f"  {e.distance}  {e.node.node_type:<10} {e.node.title:<40} {e.node.id}")


def _cmd_clusters(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        clusters = engine.find_clusters(min_size=args.min_size)
        if args.json:
            print_json([{"cluster_id": c.cluster_id, "size": c.size, "members": c.members}
                        for c in clusters])
            return
        if not clusters:
            print("  (no clusters)")
            return
        for c in clusters:
            print(f"  cluster {c.cluster_id}  ({c.size} nodes)")
            for member in c.members:
                print(f"    {member}")


def _cmd_bridges(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        nodes = engine.get_bridge_nodes()
        if args.json:
            print_json([n.summary() for n in nodes])
        else:
            print_nodes(nodes, "bridge nodes")


def _cmd_recommend(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        source = engine.get_node(args.node_id)
        suggestions = engine.recommend_links(
            args.node_id, max_suggestions=args.max, similarity_threshold=args.threshold,
        )
        if args.json:
            print_json([s.to_dict() for s in suggestions])
        else:
            print_suggestions(suggestions, source.title)
        if args.accept:
            for s in suggestions:
                engine.accept_suggestion(s)
            if not args.json:
                print(f"\nAccepted {len(suggestions)} suggestion(s)")


def _cmd_stats(args: argparse.Namespace) -> None:
    with _engine(args) as engine:
        graph = engine.graph_stats()
        emb = engine.embedding_stats()
        if args.json:
            print_json({"graph": graph, "embeddings": emb.to_dict()})
            return
        print(
            f"Nodes       : {graph['node_count']}\n"
            f"Edges       : {graph['edge_count']}\n"
            f"Components  : {graph['component_count']}\n"
            f"Embedded    : {emb.nodes_with_embedding}/{emb.total_nodes} "
            f"({emb.embedding_coverage:.2f}%)"
        )
        for ntype, count in sorted(graph["by_node_type"].items()):
            print(f"  {ntype:<12} {count}")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the `kgcore` argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Path to a .kgcore.yaml file")
    common.add_argument("--db", default=None, help="SQLite database path (overrides config)")
    common.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    parser = argparse.ArgumentParser(
        prog="kgcore",
        description="Semantic knowledge graph: search, analyse and link knowledge nodes",
    )
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- add ---
    add_p = subparsers.add_parser("add", parents=[common], help="Add a knowledge node")
    add_p.add_argument("title")
    add_p.add_argument("--content", default="")
    add_p.add_argument("--type", default=NodeType.KNOWLEDGE, choices=NodeType.ALL)
    add_p.add_argument("--tag", action="append", default=[], help="Tag (repeatable)")
    add_p.add_argument("--user", default=None, help="Owner user id")
    add_p.set_defaults(func=_cmd_add)

    # --- link ---
    link_p = subparsers.add_parser("link", parents=[common], help="Create a relationship")
    link_p.add_argument("source")
    link_p.add_argument("target")
    link_p.add_argument("--type", default=RelationshipType.RELATED_TO, choices=RelationshipType.ALL)
    link_p.add_argument("--comment", default=None)
    link_p.add_argument("--weight", type=float, default=None)
    link_p.set_defaults(func=_cmd_link)

    # --- embed ---
    embed_p = subparsers.add_parser(
        "embed", parents=[common], help="Embed one node, or all nodes missing embeddings"
    )
    embed_p.add_argument("node_id", nargs="?", default=None)
    embed_p.add_argument("--limit", type=int, default=None,
                         help="Maximum nodes per bulk run (default: from config)")
    embed_p.set_defaults(func=_cmd_embed)

    # --- search ---
    search_p = subparsers.add_parser("search", parents=[common], help="Semantic search")
    search_p.add_argument("query", help="Natural-language search query")
    search_p.add_argument("--limit", type=int, default=None)
    search_p.add_argument("--threshold", type=float, default=None)
    search_p.add_argument("--type", action="append", default=None, choices=NodeType.ALL)
    search_p.add_argument("--tag", action="append", default=None)
    search_p.set_defaults(func=_cmd_search)

    # --- similar ---
    similar_p = subparsers.add_parser("similar", parents=[common], help="Nodes similar to a node")
    similar_p.add_argument("node_id")
    similar_p.add_argument("--limit", type=int, default=None)
    similar_p.add_argument("--threshold", type=float, default=None)
    similar_p.set_defaults(func=_cmd_similar)

    # --- influence ---
    influence_p = subparsers.add_parser("influence", parents=[common], help="Node influence score")
    influence_p.add_argument("node_id")
    influence_p.set_defaults(func=_cmd_influence)

    # --- neighborhood ---
    nb_p = subparsers.add_parser("neighborhood", parents=[common], help="Nodes within N hops")
    nb_p.add_argument("node_id")
    nb_p.add_argument("--depth", type=int, default=1)
    nb_p.set_defaults(func=_cmd_neighborhood)

    # --- clusters ---
    clusters_p = subparsers.add_parser("clusters", parents=[common], help="Connected clusters")
    clusters_p.add_argument("--min-size", dest="min_size", type=int, default=None)
    clusters_p.set_defaults(func=_cmd_clusters)

    # --- bridges ---
    bridges_p = subparsers.add_parser("bridges", parents=[common], help="Bridge nodes")
    bridges_p.set_defaults(func=_cmd_bridges)

    # --- recommend ---
    rec_p = subparsers.add_parser("recommend", parents=[common], help="Suggest links for a node")
    rec_p.add_argument("node_id")
    rec_p.add_argument("--max", type=int, default=None)
    rec_p.add_argument("--threshold", type=float, default=None)
    rec_p.add_argument("--accept", action="store_true", help="Create every suggested link")
    rec_p.set_defaults(func=_cmd_recommend)

    # --- stats ---
    stats_p = subparsers.add_parser("stats", parents=[common], help="Graph and embedding statistics")
    stats_p.set_defaults(func=_cmd_stats)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the `kgcore` command.

    Parameters
    ----------
    argv:
        Argument list; defaults to ``sys.argv[1:]``.

    Returns
    -------
    int
        Process exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    from .config import Config
    cfg = Config.load(args.config)
    try:
        setup_logger(cfg.LOG_DIR, cfg.LOG_LEVEL)
    except OSError as exc:
        print(f"Warning: file logging disabled ({exc})", file=sys.stderr)

    try:
        args.func(args)
    except (KnowledgeCoreError, ValueError) as exc:
        logger.error("%s failed: %s", args.cmd, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
