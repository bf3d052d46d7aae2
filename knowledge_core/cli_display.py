import json
import logging
import os
from datetime import datetime

LOGGER_NAME = "knowledge_core"


def setup_logger(log_dir: str = ".kgcore/logs", level: str = "INFO") -> logging.Logger:
    """Creates a file logger. All verbose output goes here."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"kgcore_{timestamp}.log")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for old in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
        logger.removeHandler(old)
        old.close()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    return logger


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def print_ranked(results, title: str) -> None:
    """Pretty-print ranked search / similarity results."""
    if not results:
        print(f"  (no results for: {title})")
        return
    print(f"\n{title}  [{len(results)} result(s)]")
    print("-" * 70)
    for i, r in enumerate(results, 1):
        marker = "" if r.match_type == "embedding" else f"  ({r.match_type})"
        print(f"  [{i}] {r.similarity:.4f}  {r.node.node_type:<10} {r.node.title}{marker}")
        print(f"       id: {r.node.id}")


def print_nodes(nodes, title: str) -> None:
    if not nodes:
        print(f"  (no nodes: {title})")
        return
    print(f"\n{title}  [{len(nodes)} node(s)]")
    print("-" * 70)
    for node in nodes:
        print(f"  {node.node_type:<10} {node.title:<40} {node.id}")


def print_suggestions(suggestions, source_title: str) -> None:
    if not suggestions:
        print(f"  (no link suggestions for: {source_title})")
        return
    print(f"\nLink suggestions for {source_title!r}  [{len(suggestions)}]")
    print("-" * 70)
    for s in suggestions:
        print(f"  {round(s.confidence * 100):>3}%  {s.relationship_type:<12} {s.target_title}")
        print(f"        {s.explanation}")
        print(f"        {s.reasoning}  (target {s.target_node_id})")
