"""
Vector embedder for the knowledge core.

Turns node text into fixed-dimension vectors via the OpenAI Embeddings API
(text-embedding-3-small, 1536 dimensions by default).  Input is sanitised
and truncated before submission; bulk work is chunked into provider-sized
batches with a short pause between chunks.

Interactive calls (:meth:`Embedder.embed`) surface provider errors
immediately.  Bulk calls (:meth:`Embedder.embed_batch`) retry with
exponential back-off, and :func:`generate_missing_embeddings` isolates
per-item failures so a single bad node never aborts the job.
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from ..errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    NodeNotFoundError,
    OperationCancelledError,
)
from ..models import NodeFilter

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMBED_MODEL = "text-embedding-3-small"
EMBED_DIMENSIONS = 1536
BATCH_SIZE = 100
MAX_CHARS = 6000
TRUNCATION_MARKER = "..."
CHUNK_PAUSE_SECONDS = 0.1
MAX_RETRIES = 3

_HTML_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class CancellationToken:
    """Caller-supplied cancellation signal with an optional deadline.

    Parameters
    ----------
    deadline:
        Seconds from now after which the token counts as cancelled.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self._cancelled = False
        self._expires_at = time.monotonic() + deadline if deadline is not None else None

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError("Operation cancelled")


# ---------------------------------------------------------------------------
# Text preprocessing
# ---------------------------------------------------------------------------

def preprocess_text(text: str, max_chars: int = MAX_CHARS) -> str:
    """
    Sanitise *text* for the embedding provider.

    HTML tags are replaced by spaces, whitespace runs collapse to one
    space, and the result is trimmed.  Text longer than *max_chars* keeps
    its prefix and gets :data:`TRUNCATION_MARKER` appended.

    Parameters
    ----------
    text:
        Raw node text (may contain rich-text HTML).
    max_chars:
        Character budget before truncation.

    Returns
    -------
    str
        Cleaned text.
    """
    if not text:
        return ""
    cleaned = _HTML_TAG_RE.sub(" ", text)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if len(cleaned) > max_chars:
        return cleaned[:max_chars] + TRUNCATION_MARKER
    return cleaned


# ---------------------------------------------------------------------------
# OpenAI client helper
# ---------------------------------------------------------------------------

def _get_openai_client(api_key: str = "", base_url: str = ""):
    """Return an openai.OpenAI client, raising ImportError if not installed."""
    try:
        import openai  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "openai package is required for embedding. "
            "Install it with: pip install 'knowledge-core[semantic]'"
        ) from exc
    api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
    if not api_key:
        raise EnvironmentError(
            "OPENAI_API_KEY environment variable is not set."
        )
    kwargs = {"api_key": api_key}
    if base_url:
        kwargs["base_url"] = base_url
    return openai.OpenAI(**kwargs)


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------

@dataclass
class BulkEmbeddingResult:
    """Outcome of a bulk embedding job."""

    success: int = 0
    failed: int = 0
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {"success": self.success, "failed": self.failed, "cancelled": self.cancelled}


class Embedder:
    """
    Embedding client wrapper.

    Parameters
    ----------
    client:
        Object exposing ``embeddings.create(model=..., input=...)`` in the
        shape of the OpenAI SDK.  Built lazily from the environment when
        omitted.
    model:
        Embedding model name.
    dimension:
        Expected vector length; anything else raises
        :class:`DimensionMismatchError`.
    batch_size:
        Maximum number of texts per provider request.
    max_chars:
        Per-text character budget (see :func:`preprocess_text`).
    chunk_pause:
        Seconds to sleep between consecutive chunks.
    max_retries:
        Attempts per chunk on the bulk path.
    retry_delay:
        Base delay for exponential back-off on the bulk path.
    timeout:
        Request timeout in seconds, shortened to a token's remaining
        deadline when one is given.
    """

    def __init__(
        self,
        client: Any = None,
        model: str = EMBED_MODEL,
        dimension: int = EMBED_DIMENSIONS,
        batch_size: int = BATCH_SIZE,
        max_chars: int = MAX_CHARS,
        chunk_pause: float = CHUNK_PAUSE_SECONDS,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        api_key: str = "",
        base_url: str = "",
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._client = client
        self._api_key = api_key
        self._base_url = base_url
        self.model = model
        self.dimension = dimension
        self.batch_size = batch_size
        self.max_chars = max_chars
        self.chunk_pause = chunk_pause
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg, client: Any = None) -> "Embedder":
        return cls(
            client=client,
            model=cfg.EMBEDDING_MODEL,
            dimension=cfg.EMBEDDING_DIMENSION,
            batch_size=cfg.EMBEDDING_BATCH_SIZE,
            max_chars=cfg.EMBEDDING_MAX_CHARS,
            chunk_pause=cfg.EMBEDDING_CHUNK_PAUSE,
            max_retries=cfg.EMBEDDING_MAX_RETRIES,
            retry_delay=cfg.EMBEDDING_RETRY_DELAY,
            timeout=cfg.EMBEDDING_TIMEOUT,
            api_key=cfg.OPENAI_API_KEY,
            base_url=cfg.OPENAI_BASE_URL,
        )

    @property
    def client(self):
        if self._client is None:
            self._client = _get_openai_client(self._api_key, self._base_url)
        return self._client

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    def _request(self, texts: list[str], cancel: Optional[CancellationToken]) -> list[list[float]]:
        """One provider round-trip; wraps every provider failure."""
        timeout = self.timeout
        if cancel is not None:
            cancel.raise_if_cancelled()
            remaining = cancel.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)
        try:
            response = self.client.embeddings.create(
                model=self.model,
                input=texts,
                timeout=timeout,
            )
        except (ImportError, EnvironmentError) as exc:
            raise EmbeddingProviderError(str(exc)) from exc
        except Exception as exc:
            raise EmbeddingProviderError(f"Embedding API error: {exc}") from exc

        items = sorted(response.data, key=lambda item: getattr(item, "index", 0))
        if len(items) != len(texts):
            raise EmbeddingProviderError(
                f"Embedding API returned {len(items)} vectors for {len(texts)} inputs"
            )
        vectors = [list(item.embedding) for item in items]
        for vec in vectors:
            if len(vec) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(vec), f"model {self.model}")
        return vectors

    def _request_with_retry(
        self, texts: list[str], cancel: Optional[CancellationToken]
    ) -> list[list[float]]:
        """
        Embed a batch of texts, retrying up to ``max_retries`` times with
        exponential back-off.

        Raises
        ------
        EmbeddingProviderError
            If all retries are exhausted.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return self._request(texts, cancel)
            except EmbeddingProviderError as exc:
                if attempt < self.max_retries:
                    wait = self.retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Embedding API error (attempt %d/%d): %s - retrying in %.1fs",
                        attempt, self.max_retries, exc, wait,
                    )
                    if wait > 0:
                        time.sleep(wait)
                else:
                    raise EmbeddingProviderError(
                        f"Embedding API failed after {self.max_retries} attempts: {exc}"
                    ) from exc
        return []  # unreachable

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def embed(self, text: str, cancel: Optional[CancellationToken] = None) -> list[float]:
        """
        Embed one text on the interactive path (no retry).

        Raises
        ------
        EmbeddingProviderError
            On any provider failure.
        ValueError
            If *text* is empty after preprocessing.
        """
        clean = preprocess_text(text, self.max_chars)
        if not clean:
            raise ValueError("Text cannot be empty")
        return self._request([clean], cancel)[0]

    def embed_batch(
        self, texts: list[str], cancel: Optional[CancellationToken] = None
    ) -> list[list[float]]:
        """
        Embed many texts, returning vectors in input order.

        Texts are sent in chunks of ``batch_size`` with ``chunk_pause``
        seconds between chunks; each chunk is retried with back-off.
        """
        results: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            if start > 0 and self.chunk_pause > 0:
                time.sleep(self.chunk_pause)
            chunk = [preprocess_text(t, self.max_chars) for t in texts[start: start + self.batch_size]]
            results.extend(self._request_with_retry(chunk, cancel))
        return results

    def embed_node(
        self, store: "Store", node_id: str, cancel: Optional[CancellationToken] = None
    ) -> list[float]:
        return embed_node(self, store, node_id, cancel)

    def generate_missing_embeddings(
        self,
        store: "Store",
        limit: Optional[int] = 50,
        user_id: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        progress: bool = True,
    ) -> "BulkEmbeddingResult":
        return generate_missing_embeddings(
            self, store, limit=limit, user_id=user_id, cancel=cancel, progress=progress,
        )


# ---------------------------------------------------------------------------
# Store-facing orchestration
# ---------------------------------------------------------------------------

def embed_node(
    embedder: Embedder,
    store: "Store",
    node_id: str,
    cancel: Optional[CancellationToken] = None,
) -> list[float]:
    """
    Embed a single node and attach the vector to it (interactive path).

    Raises
    ------
    NodeNotFoundError
        If the node does not exist.
    EmbeddingProviderError
        If the provider call fails.
    """
    node = store.get_node(node_id)
    vector = embedder.embed(node.embedding_text() or node.title, cancel)
    store.update_node_embedding(node.id, vector)
    logger.info("[embedder] Embedded node %s (%s)", node.id, node.title)
    return vector


def generate_missing_embeddings(
    embedder: Embedder,
    store: "Store",
    limit: Optional[int] = 50,
    user_id: Optional[str] = None,
    cancel: Optional[CancellationToken] = None,
    progress: bool = True,
) -> BulkEmbeddingResult:
    """
    Embed active nodes that have no embedding yet.

    Nodes are processed chunk by chunk.  When a whole chunk fails after
    retries, its items are retried one by one so that only the bad items
    are counted as failed.  Cancellation stops the job between items and
    returns the counts so far.

    Parameters
    ----------
    embedder:
        Configured :class:`Embedder`.
    store:
        Node store to read from and write vectors to.
    limit:
        Maximum number of nodes to process in this run (None for all).
    user_id:
        Restrict the job to one owner's nodes.
    cancel:
        Optional cancellation token / deadline.
    progress:
        Show a tqdm progress bar when tqdm is available.

    Returns
    -------
    BulkEmbeddingResult
        ``success`` / ``failed`` counts; never raises for partial failure.

    Raises
    ------
    DimensionMismatchError
        If the provider returns vectors of the wrong size.  This signals a
        model or deployment change and aborts the whole job.
    """
    try:
        from tqdm import tqdm  # type: ignore
        _tqdm = tqdm if progress else None
    except ImportError:
        _tqdm = None  # type: ignore

    result = BulkEmbeddingResult()
    nodes = store.list_nodes(NodeFilter(user_id=user_id, has_embedding=False, limit=limit))
    if not nodes:
        logger.info("[embedder] No nodes need embeddings")
        return result

    logger.info("[embedder] Generating embeddings for %d nodes", len(nodes))
    batch_size = embedder.batch_size

    iterator = range(0, len(nodes), batch_size)
    if _tqdm:
        iterator = _tqdm(
            iterator,
            desc="Embedding nodes",
            unit="batch",
            total=(len(nodes) + batch_size - 1) // batch_size,
            postfix={"embedded": 0},
        )

    try:
        for batch_start in iterator:
            if cancel is not None and cancel.cancelled:
                result.cancelled = True
                break
            if batch_start > 0 and embedder.chunk_pause > 0:
                time.sleep(embedder.chunk_pause)

            batch = nodes[batch_start: batch_start + batch_size]
            texts = [preprocess_text(n.embedding_text() or n.title, embedder.max_chars) for n in batch]

            try:
                vectors: list[Optional[list[float]]] = list(embedder._request_with_retry(texts, cancel))
            except OperationCancelledError:
                result.cancelled = True
                break
            except EmbeddingProviderError as exc:
                logger.warning(
                    "[embedder] Batch starting at %d failed (%s); retrying items individually",
                    batch_start, exc,
                )
                vectors = []
                for node, text in zip(batch, texts):
                    if cancel is not None and cancel.cancelled:
                        result.cancelled = True
                        break
                    try:
                        vectors.append(embedder._request([text], cancel)[0])
                    except OperationCancelledError:
                        result.cancelled = True
                        break
                    except EmbeddingProviderError as item_exc:
                        logger.warning("[embedder] Node %s failed: %s", node.id, item_exc)
                        vectors.append(None)

            for node, vector in zip(batch, vectors):
                if vector is None:
                    result.failed += 1
                    continue
                try:
                    store.update_node_embedding(node.id, vector)
                    result.success += 1
                except NodeNotFoundError as exc:
                    logger.warning("[embedder] Storing embedding for %s failed: %s", node.id, exc)
                    result.failed += 1

            if _tqdm and hasattr(iterator, "set_postfix"):
                iterator.set_postfix({"embedded": result.success})
            if result.cancelled:
                break
    finally:
        if _tqdm and hasattr(iterator, "close"):
            iterator.close()

    logger.info(
        "[embedder] Embedding run finished: %d succeeded, %d failed%s",
        result.success, result.failed, " (cancelled)" if result.cancelled else "",
    )
    return result
