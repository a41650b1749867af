"""OpenAI embeddings generation with validation and an injectable cache."""

import asyncio
import hashlib
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from openai import OpenAI

from behavior_engine.core.config import get_settings
from behavior_engine.core.logging import get_logger
from behavior_engine.core.schemas_behaviors import ChannelType

logger = get_logger(__name__)

EmbedFn = Callable[[list[str]], Awaitable[list[list[float]]]]


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Generate embeddings for a list of texts using OpenAI.

    Args:
        texts: List of text strings to embed

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        ValueError: If embedding dimension doesn't match expected EMBEDDING_DIM
        Exception: If OpenAI API call fails
    """
    if not texts:
        return []

    settings = get_settings()
    client = _get_client()

    try:
        response = client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=texts,
        )

        embeddings = []
        for i, embedding_obj in enumerate(response.data):
            embedding = embedding_obj.embedding

            # Validate dimension
            if len(embedding) != settings.EMBEDDING_DIM:
                raise ValueError(
                    f"Embedding dimension mismatch for text {i}: "
                    f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
                )

            embeddings.append(embedding)

        logger.debug(
            f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}",
        )

        return embeddings

    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise


async def embed_texts_async(texts: list[str]) -> list[list[float]]:
    """Async wrapper around embed_texts using thread pool."""
    return await asyncio.to_thread(embed_texts, texts)


def normalize_text(text: str) -> str:
    """Collapse whitespace so trivially different inputs share a cache entry."""
    return " ".join(text.split()).strip()


# =============================================================================
# Cache
# =============================================================================


class EmbeddingCache:
    """Bounded LRU cache with a TTL. One instance per generator, never global."""

    def __init__(self, ttl_s: float = 3600.0, max_entries: int = 2048, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, list[float]]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> list[float] | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        stored_at, vector = entry
        if self._clock() - stored_at > self.ttl_s:
            del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return vector

    def set(self, key: str, vector: list[float]) -> None:
        self._entries[key] = (self._clock(), vector)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, float]:
        lookups = self.hits + self.misses
        return {
            "keys": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }


class NoOpEmbeddingCache(EmbeddingCache):
    """Cache that never stores anything."""

    def __init__(self):
        super().__init__(ttl_s=0.0, max_entries=0)

    def get(self, key: str) -> list[float] | None:
        self.misses += 1
        return None

    def set(self, key: str, vector: list[float]) -> None:
        return None


# =============================================================================
# Generator
# =============================================================================


class EmbeddingGenerator:
    """Turns channel text into vectors, memoizing by normalized text."""

    def __init__(
        self,
        embed_fn: EmbedFn | None = None,
        cache: EmbeddingCache | None = None,
        model: str | None = None,
    ):
        settings = None
        if model is None or cache is None:
            settings = get_settings()
        self.model = model or settings.EMBEDDING_MODEL
        self.cache = cache if cache is not None else EmbeddingCache(
            ttl_s=settings.EMBEDDING_CACHE_TTL_S,
            max_entries=settings.EMBEDDING_CACHE_MAX_ENTRIES,
        )
        self._embed_fn = embed_fn or embed_texts_async

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model}:{text}".encode("utf-8")).hexdigest()

    async def embed(self, text: str, channel: ChannelType | None = None) -> list[float]:
        """
        Embed a single text.

        Args:
            text: Source text (must be non-blank)
            channel: Optional channel hint, used for diagnostics only

        Returns:
            Embedding vector

        Raises:
            ValueError: If text is blank
            Exception: If the provider call fails
        """
        normalized = normalize_text(text or "")
        if not normalized:
            raise ValueError("Text input cannot be empty")

        key = self._cache_key(normalized)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        start = time.perf_counter()
        vectors = await self._embed_fn([normalized])
        if not vectors:
            raise ValueError("Embedding provider returned no vectors")
        vector = vectors[0]

        latency_ms = int((time.perf_counter() - start) * 1000)
        if latency_ms > 200:
            logger.debug(
                f"Embedding for {channel.value if channel else 'text'} took {latency_ms}ms (target <200ms)"
            )

        self.cache.set(key, vector)
        return vector

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts, batching only the cache misses."""
        normalized = [normalize_text(t or "") for t in texts]
        if any(not t for t in normalized):
            raise ValueError("Text input cannot be empty")

        results: list[list[float] | None] = [None] * len(normalized)
        missing: list[int] = []
        for i, text in enumerate(normalized):
            cached = self.cache.get(self._cache_key(text))
            if cached is not None:
                results[i] = cached
            else:
                missing.append(i)

        if missing:
            vectors = await self._embed_fn([normalized[i] for i in missing])
            if len(vectors) != len(missing):
                raise ValueError(
                    f"Embedding count mismatch: {len(vectors)} vs {len(missing)}"
                )
            for i, vector in zip(missing, vectors, strict=True):
                results[i] = vector
                self.cache.set(self._cache_key(normalized[i]), vector)

        return [r for r in results if r is not None]
