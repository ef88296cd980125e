from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol

from openai import OpenAI, OpenAIError

from .config import EMBEDDING_DIMENSIONS, EMBEDDING_MODEL
from .errors import UpstreamError
from .matcher import validate_embedding

logger = logging.getLogger(__name__)


class EmbeddingOracle(Protocol):
    """Maps text to a fixed-length dense vector."""

    def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbeddingOracle:
    """Embed text with the OpenAI embeddings API ('text-embedding-3-small').

    A single attempt per call: any API error or a response that is not a
    1536-length numeric vector raises `UpstreamError`.
    """

    def __init__(
        self,
        model: str = EMBEDDING_MODEL,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key) if self._api_key else OpenAI()
        return self._client

    def embed(self, text: str) -> List[float]:
        try:
            client = self._get_client()
            resp = client.embeddings.create(model=self.model, input=text)
        except OpenAIError as exc:
            logger.error("OpenAI embeddings request failed: %s", exc)
            raise UpstreamError("Failed to generate embedding") from exc

        data = getattr(resp, "data", None) or []
        if not data:
            logger.error("OpenAI embeddings response contained no data")
            raise UpstreamError("Failed to generate embedding")

        embedding = validate_embedding(data[0].embedding, dimensions=self.dimensions)
        if embedding is None:
            logger.error("OpenAI embeddings response was not a %d-length vector", self.dimensions)
            raise UpstreamError("Failed to generate embedding")

        logger.debug("Generated embedding, length: %d", len(embedding))
        return embedding
