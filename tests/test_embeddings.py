"""Tests for embeddings generation with mocked OpenAI API."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from behavior_engine.core.embeddings import (
    EmbeddingCache,
    EmbeddingGenerator,
    NoOpEmbeddingCache,
    embed_texts,
)


@pytest.fixture
def mock_openai_response():
    """Create a mock OpenAI embeddings response."""

    def _create_response(num_embeddings: int, dimension: int = 1536):
        mock_response = MagicMock()
        mock_response.data = []

        for _ in range(num_embeddings):
            mock_embedding = MagicMock()
            mock_embedding.embedding = [0.1] * dimension
            mock_response.data.append(mock_embedding)

        return mock_response

    return _create_response


def test_embed_texts_single(mock_openai_response):
    """Test embedding a single text."""
    with patch("behavior_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(1)
        mock_get_client.return_value = mock_client

        embeddings = embed_texts(["I feel anxious"])

        assert len(embeddings) == 1
        assert len(embeddings[0]) == 1536
        mock_client.embeddings.create.assert_called_once()


def test_embed_texts_empty():
    assert embed_texts([]) == []


def test_embed_texts_dimension_mismatch(mock_openai_response):
    with patch("behavior_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(1, dimension=512)
        mock_get_client.return_value = mock_client

        with pytest.raises(ValueError, match="dimension mismatch"):
            embed_texts(["hello"])


# =============================================================================
# Cache
# =============================================================================


class Tick:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def test_cache_expires_after_ttl():
    tick = Tick()
    cache = EmbeddingCache(ttl_s=10, max_entries=4, clock=tick)
    cache.set("k", [1.0])

    tick.t = 5
    assert cache.get("k") == [1.0]
    tick.t = 11
    assert cache.get("k") is None
    assert cache.stats()["keys"] == 0


def test_cache_evicts_least_recently_used():
    cache = EmbeddingCache(ttl_s=100, max_entries=2)
    cache.set("a", [1.0])
    cache.set("b", [2.0])
    cache.get("a")
    cache.set("c", [3.0])

    assert cache.get("b") is None
    assert cache.get("a") == [1.0]
    assert cache.get("c") == [3.0]


@pytest.mark.asyncio
async def test_generator_memoizes_normalized_text():
    embed_fn = AsyncMock(return_value=[[0.5, 0.5]])
    generator = EmbeddingGenerator(embed_fn=embed_fn, cache=EmbeddingCache(), model="test-model")

    first = await generator.embed("I need  a break")
    second = await generator.embed("  I need a break ")

    assert first == second == [0.5, 0.5]
    embed_fn.assert_awaited_once_with(["I need a break"])
    assert generator.cache.stats()["hits"] == 1


@pytest.mark.asyncio
async def test_noop_cache_always_calls_provider():
    embed_fn = AsyncMock(return_value=[[0.1]])
    generator = EmbeddingGenerator(embed_fn=embed_fn, cache=NoOpEmbeddingCache(), model="test-model")

    await generator.embed("hello")
    await generator.embed("hello")
    assert embed_fn.await_count == 2


@pytest.mark.asyncio
async def test_blank_text_rejected():
    generator = EmbeddingGenerator(embed_fn=AsyncMock(), cache=NoOpEmbeddingCache(), model="test-model")
    with pytest.raises(ValueError):
        await generator.embed("   ")


@pytest.mark.asyncio
async def test_embed_many_batches_only_misses():
    embed_fn = AsyncMock(side_effect=[[[1.0]], [[2.0], [3.0]]])
    generator = EmbeddingGenerator(embed_fn=embed_fn, cache=EmbeddingCache(), model="test-model")

    await generator.embed("one")
    vectors = await generator.embed_many(["one", "two", "three"])

    assert vectors == [[1.0], [2.0], [3.0]]
    assert embed_fn.await_args_list[1].args == (["two", "three"],)
