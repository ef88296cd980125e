"""Submission pipeline: embed -> persist -> match.

Strictly sequential and single-attempt:

1. Validate the text (nothing is called for invalid input).
2. Embed it and check the vector; on failure abort before anything is written.
3. Persist the post; on failure abort.
4. Find similar posts; on failure return the persisted post with no matches.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import DEFAULT_TOP_K, MAX_POST_LENGTH
from .data_models import SubmitPostResponse
from .embedding import EmbeddingOracle
from .errors import StorageError, UpstreamError, ValidationError
from .matcher import LinearScanMatcher, Matcher, validate_embedding
from .storage import SecretStore

logger = logging.getLogger(__name__)


def validate_post_text(text: Optional[str], max_length: int = MAX_POST_LENGTH) -> str:
    """Return the trimmed text or raise `ValidationError`."""
    if text is None or not isinstance(text, str):
        raise ValidationError("Post text is required")
    text = text.strip()
    if not text:
        raise ValidationError("Post text is required")
    if len(text) > max_length:
        raise ValidationError(f"Post text must be at most {max_length} characters")
    return text


class SubmissionPipeline:
    """Single entry point for one post submission."""

    def __init__(
        self,
        store: SecretStore,
        oracle: EmbeddingOracle,
        matcher: Optional[Matcher] = None,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._store = store
        self._oracle = oracle
        self._matcher = matcher if matcher is not None else LinearScanMatcher(store)
        self.top_k = top_k

    def submit(self, text: Optional[str], owner_id: Optional[str] = None) -> SubmitPostResponse:
        text = validate_post_text(text)
        owner_id = (owner_id or "").strip() or None

        logger.info("Processing post for user: %s", owner_id or "anonymous")
        embedding = validate_embedding(self._oracle.embed(text))
        if embedding is None:
            logger.error("Embedding oracle returned an unusable vector")
            raise UpstreamError("Failed to generate embedding")

        post = self._store.add_post(text, embedding, owner_id=owner_id)
        logger.info("Post saved with ID: %s", post.id)

        try:
            matches = self._matcher.search(
                embedding,
                exclude_id=post.id,
                requester_id=owner_id,
                k=self.top_k,
            )
        except StorageError as exc:
            # the write stands; similar posts are best effort
            logger.error("Error fetching posts for similarity: %s", exc)
            matches = []

        return SubmitPostResponse(post=post.to_view(), matches=matches)
