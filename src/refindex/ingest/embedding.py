"""Pooled embedding service backed by LiteLLM.

A fixed set of embedder instances is created up front and handed out
under a counting semaphore: at most ``pool_size`` batches are embedded at
once and further callers block until an instance is returned. A failed
batch raises EmbeddingError for that caller only; the instance goes back
into the pool either way.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from queue import Empty, LifoQueue
from typing import Protocol

import litellm
from loguru import logger

from refindex.config import EmbeddingCfg
from refindex.errors import EmbeddingError

_PROVIDER_KEYS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
}


class Embedder(Protocol):
    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class LiteLLMEmbedder:
    """Embeds text through ``litellm.embedding()``."""

    def __init__(
        self, model: str, dimensions: int | None = None, num_retries: int = 3
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.num_retries = num_retries

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in one request, preserving input order.

        Transient provider errors are retried by LiteLLM with backoff.

        Raises:
            EmbeddingError: The request failed or returned unusable vectors.
        """
        try:
            response = litellm.embedding(
                model=self.model,
                input=texts,
                num_retries=self.num_retries,
            )
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding request to '{self.model}' failed: {exc}",
                {"model": self.model, "batch_size": len(texts)},
            ) from exc

        data = sorted(
            enumerate(response.data), key=lambda pair: pair[1].get("index", pair[0])
        )
        vectors = [list(item["embedding"]) for _, item in data]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"'{self.model}' returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        if self.dimensions is not None:
            for vector in vectors:
                if len(vector) != self.dimensions:
                    raise EmbeddingError(
                        f"'{self.model}' returned {len(vector)}-dimensional vectors, "
                        f"expected {self.dimensions}. Set embedding.dimensions to match."
                    )
        return vectors


def check_api_key(model: str) -> None:
    """Raise EmbeddingError if the provider of *model* has no API key in the environment."""
    provider = model.split("/")[0].lower() if "/" in model else ""
    required_env = _PROVIDER_KEYS.get(provider)
    if required_env and not os.environ.get(required_env):
        raise EmbeddingError(
            f"No API key found for provider '{provider}'. "
            f"Set the {required_env} environment variable."
        )


class EmbeddingService:
    """Thread-safe pool of embedders.

    Args:
        factory: Creates one embedder instance.
        pool_size: Maximum concurrent batches; also the number of pre-created instances.
        max_batch_size: Texts per embedder call; larger inputs are sent in slices.
        acquire_timeout: Seconds to wait for a free instance, None to wait forever.
    """

    def __init__(
        self,
        factory: Callable[[], Embedder],
        pool_size: int | None = None,
        max_batch_size: int = 256,
        acquire_timeout: float | None = None,
    ) -> None:
        self.pool_size = max(1, pool_size or os.cpu_count() or 1)
        self.max_batch_size = max(1, max_batch_size)
        self.acquire_timeout = acquire_timeout
        self._factory = factory
        self._slots = threading.BoundedSemaphore(self.pool_size)
        self._pool: LifoQueue[Embedder] = LifoQueue()
        self._lock = threading.Lock()
        self._in_use = 0
        self._closed = False
        for _ in range(self.pool_size):
            self._pool.put(factory())
        logger.debug("Embedding pool ready with {} instances", self.pool_size)

    @classmethod
    def from_config(cls, cfg: EmbeddingCfg) -> EmbeddingService:
        """Build a LiteLLM-backed pool from the ``embedding:`` config section."""
        return cls(
            lambda: LiteLLMEmbedder(cfg.model, cfg.dimensions, cfg.num_retries),
            pool_size=cfg.pool_size,
            max_batch_size=cfg.max_batch_size,
        )

    @property
    def in_use(self) -> int:
        """Number of embedder instances currently leased."""
        with self._lock:
            return self._in_use

    def embed(self, text: str) -> list[float]:
        """Embed a single text through the batch path."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* with one pooled instance, preserving order.

        Raises:
            EmbeddingError: The batch failed, or the service is closed.
        """
        if not texts:
            return []
        vectors: list[list[float]] = []
        with self._lease() as embedder:
            for i in range(0, len(texts), self.max_batch_size):
                part = texts[i : i + self.max_batch_size]
                try:
                    result = embedder.embed_batch(part)
                except EmbeddingError:
                    raise
                except Exception as exc:
                    raise EmbeddingError(f"Embedding batch of {len(part)} texts failed: {exc}") from exc
                if len(result) != len(part):
                    raise EmbeddingError(
                        f"Embedder returned {len(result)} vectors for {len(part)} texts"
                    )
                vectors.extend(result)
        return vectors

    def close(self) -> None:
        """Release every pooled instance. Further calls raise EmbeddingError."""
        with self._lock:
            self._closed = True
        while True:
            try:
                embedder = self._pool.get_nowait()
            except Empty:
                break
            close = getattr(embedder, "close", None)
            if callable(close):
                close()

    @contextmanager
    def _lease(self) -> Iterator[Embedder]:
        if self._closed:
            raise EmbeddingError("Embedding service is closed")
        if not self._slots.acquire(timeout=self.acquire_timeout):
            raise EmbeddingError(
                f"No embedder available within {self.acquire_timeout}s "
                f"(pool size {self.pool_size})"
            )
        try:
            try:
                embedder = self._pool.get_nowait()
            except Empty:
                # Every slot has an instance unless one was lost; replace it.
                embedder = self._factory()
            with self._lock:
                self._in_use += 1
            try:
                yield embedder
            finally:
                with self._lock:
                    self._in_use -= 1
                self._pool.put(embedder)
        finally:
            self._slots.release()
