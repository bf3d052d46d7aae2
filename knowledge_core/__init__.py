"""
knowledge_core: semantic knowledge-graph engine.

Public API for library usage::

    from knowledge_core import KnowledgeEngine

    with KnowledgeEngine.from_config() as engine:
        results = engine.semantic_search("capital cities of Europe")
"""

__version__ = "0.1.0"

from .api import KnowledgeEngine

__all__ = ["KnowledgeEngine"]
