"""
Exception taxonomy for the knowledge core.

Validation errors (self-loops, duplicate edges, unknown nodes) are returned
to the caller and never retried.  Provider errors are retried by bulk jobs
and surfaced immediately by interactive calls.
"""


class KnowledgeCoreError(Exception):
    """Base class for all knowledge-core errors."""


class EmbeddingProviderError(KnowledgeCoreError):
    """Raised when the embedding provider fails (network, auth, quota, timeout)."""


# Short alias used by callers of the embedder.
EmbeddingError = EmbeddingProviderError


class DimensionMismatchError(KnowledgeCoreError):
    """Raised when a vector does not have the deployment-wide dimension.

    This indicates a model or deployment change and is never coerced.
    """

    def __init__(self, expected: int, actual: int, context: str = "") -> None:
        self.expected = expected
        self.actual = actual
        msg = f"Embedding dimension mismatch: expected {expected}, got {actual}"
        if context:
            msg += f" ({context})"
        super().__init__(msg)


class NodeNotFoundError(KnowledgeCoreError):
    """Raised when a node id does not resolve in the store."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class SelfLoopError(KnowledgeCoreError):
    """Raised when an edge would connect a node to itself."""

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Relationship source and target are the same node: {node_id}")


class DuplicateEdgeError(KnowledgeCoreError):
    """Raised when an edge with the same source, target and type already exists."""

    def __init__(self, source_id: str, target_id: str, relationship_type: str) -> None:
        self.source_id = source_id
        self.target_id = target_id
        self.relationship_type = relationship_type
        super().__init__(
            f"Relationship {relationship_type} from {source_id} to {target_id} already exists"
        )


class OperationCancelledError(KnowledgeCoreError):
    """Raised when a cancellation token fires or its deadline passes."""
