from __future__ import annotations

import hashlib
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

import httpx


class EmbeddingError(RuntimeError):
    """Raised when embedding generation fails."""


class Embedder(ABC):
    """Maps text to fixed-length vectors."""

    provider: str
    model_name: str
    dimension: int

    @abstractmethod
    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate one vector per input text."""

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""

        vectors = await self.embed_texts([text])
        if len(vectors) != 1:
            raise EmbeddingError("Embedding provider returned an unexpected number of vectors")
        return vectors[0]


class DeterministicEmbedder(Embedder):
    """Offline hashing embedder.

    Tokens are hashed into signed buckets, so identical text always maps to
    the same unit vector and texts sharing words score higher than unrelated
    ones. Good enough for local play and tests, not a semantic model.
    """

    provider = "deterministic"

    def __init__(self, dimension: int, model_name: str = "deterministic-v1") -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        self.dimension = int(dimension)
        self.model_name = model_name

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]

    def _hash_text(self, text: str) -> list[float]:
        cleaned = text.strip().lower()
        vector = [0.0] * self.dimension
        if not cleaned:
            vector[0] = 1.0
            return vector

        for token in _tokenize(cleaned):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=16).digest()
            bucket = int.from_bytes(digest[:4], byteorder="big") % self.dimension
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            weight = 1.0 + (digest[5] / 255.0)
            vector[bucket] += sign * weight
        return normalize_vector(vector)


class OpenAIEmbedder(Embedder):
    """OpenAI-compatible `/v1/embeddings` client."""

    provider = "openai"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model_name: str,
        dimension: int,
        timeout_sec: float = 20.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        if not api_key.strip():
            raise EmbeddingError("OpenAI embedding API key is empty")
        self.model_name = model_name
        self.dimension = int(dimension)
        self._timeout_sec = timeout_sec
        self._api_key = api_key
        self._client = http_client
        self._endpoint = f"{base_url.rstrip('/')}/v1/embeddings"

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        payload = {
            "model": self.model_name,
            "input": list(texts),
            "dimensions": self.dimension,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            if self._client:
                response = await self._client.post(
                    self._endpoint, json=payload, headers=headers, timeout=self._timeout_sec
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
                    response = await client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingError("OpenAI embedding request failed") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise EmbeddingError("Embedding response is not JSON") from exc
        return [normalize_vector(vector) for vector in self._parse_rows(data, len(texts))]

    def _parse_rows(self, payload: Any, expected_size: int) -> list[list[float]]:
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or len(rows) != expected_size:
            raise EmbeddingError("Embedding response shape is invalid")

        # The API may return rows out of order; `index` is authoritative.
        ordered = sorted(
            rows, key=lambda row: row.get("index", 0) if isinstance(row, dict) else 0
        )
        vectors: list[list[float]] = []
        for row in ordered:
            embedding = row.get("embedding") if isinstance(row, dict) else None
            if not isinstance(embedding, list):
                raise EmbeddingError("Embedding row is missing vector data")
            if len(embedding) != self.dimension:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.dimension}, got {len(embedding)}"
                )
            try:
                vectors.append([float(value) for value in embedding])
            except (TypeError, ValueError) as exc:
                raise EmbeddingError("Embedding contains non-numeric values") from exc
        return vectors


def normalize_vector(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(item * item for item in vector))
    if norm <= 0:
        return vector
    return [item / norm for item in vector]


def _tokenize(text: str) -> list[str]:
    tokens: list[str] = []
    buffer: list[str] = []
    for ch in text:
        if ch.isalnum() or ch in {"_", "-", "'"}:
            buffer.append(ch)
            continue
        if buffer:
            tokens.append("".join(buffer))
            buffer.clear()
        if not ch.isspace():
            tokens.append(ch)
    if buffer:
        tokens.append("".join(buffer))
    return tokens
