"""
Similarity matching for newly submitted posts.

Given the embedding of a fresh post, the matcher:

- Loads every stored post as a candidate frame
- Drops the post itself and, for an identified requester, their own posts and
  every anonymous post (anonymous authors cannot be messaged)
- Validates each candidate's stored vector and silently drops bad ones
- Scores the rest by cosine similarity and keeps the best k

This is a full linear scan, O(N * D) per submission. Callers only see the
`Matcher` protocol so an approximate nearest-neighbour index can replace
`LinearScanMatcher` later.
"""
import json
import logging
import math
from numbers import Real
from typing import Any, Iterable, List, Optional, Protocol, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics.pairwise import cosine_similarity  # type: ignore

from .config import DEFAULT_TOP_K, EMBEDDING_DIMENSIONS
from .data_models import PostRecord, ScoredPost

logger = logging.getLogger(__name__)

POST_COLUMNS = ["id", "text", "created_at", "owner_id", "embedding"]


class CandidateSource(Protocol):
    """Anything that can list stored posts in creation order."""

    def fetch_candidates(self) -> List[PostRecord]:
        ...


class Matcher(Protocol):
    """Ranks stored posts against a query vector."""

    def search(
        self,
        query: Sequence[float],
        *,
        exclude_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        k: int = DEFAULT_TOP_K,
    ) -> List[ScoredPost]:
        ...


def validate_embedding(val: Any, dimensions: int = EMBEDDING_DIMENSIONS) -> Optional[List[float]]:
    """Return `val` as a list of floats if it is a usable embedding, else None.

    Accepts a list/tuple/ndarray or a JSON string encoding a list. The vector
    must hold exactly `dimensions` finite real numbers; booleans do not count.
    """
    if val is None:
        return None
    if isinstance(val, str):
        try:
            val = json.loads(val)
        except ValueError:
            return None
    if isinstance(val, np.ndarray):
        val = val.tolist()
    if not isinstance(val, (list, tuple)) or len(val) != dimensions:
        return None
    out: List[float] = []
    for x in val:
        if isinstance(x, bool) or not isinstance(x, Real):
            return None
        f = float(x)
        if not math.isfinite(f):
            return None
        out.append(f)
    return out


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors in float64; zero vectors score 0.0."""
    va = np.asarray(a, dtype=np.float64).reshape(1, -1)
    vb = np.asarray(b, dtype=np.float64).reshape(1, -1)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[1]} != {vb.shape[1]}")
    sim = cosine_similarity(va, vb)[0, 0]
    return float(np.clip(sim, -1.0, 1.0))


def posts_frame(records: Iterable[PostRecord]) -> pd.DataFrame:
    """Build the candidate DataFrame, preserving store order."""
    rows = [r.model_dump() for r in records]
    if not rows:
        return pd.DataFrame(columns=POST_COLUMNS)
    # object dtype keeps datetimes and None owners as plain Python values
    return pd.DataFrame(rows, columns=POST_COLUMNS, dtype=object)


def _get_candidate_pool(
    posts: pd.DataFrame,
    exclude_id: Optional[str] = None,
    requester_id: Optional[str] = None,
) -> pd.DataFrame:
    """
    Apply the exclusion rules to the full post frame.

    1. Exclude the post being matched.
    2. If the requester is identified, exclude their own posts and every
       anonymous post.
    """
    candidates = posts
    if exclude_id is not None:
        candidates = candidates[candidates["id"] != exclude_id]
    if requester_id:
        owners = candidates["owner_id"]
        candidates = candidates[owners.notna() & (owners != requester_id)]
    return candidates


def _score_candidates(query: Sequence[float], candidates: pd.DataFrame) -> pd.DataFrame:
    """
    Validate candidate vectors and attach a 'similarity' column.

    Rows whose stored embedding fails validation are dropped.
    """
    if candidates.empty:
        return candidates.assign(similarity=pd.Series(dtype="float64"))

    vectors = candidates["embedding"].apply(validate_embedding)
    valid = candidates.assign(vector=vectors)
    valid = valid[valid["vector"].notna()]
    dropped = len(candidates) - len(valid)
    if dropped:
        logger.debug("Dropped %d candidates with invalid embeddings", dropped)
    if valid.empty:
        return valid.assign(similarity=pd.Series(dtype="float64"))

    query_embedding = np.asarray(query, dtype=np.float64).reshape(1, -1)
    candidate_embeddings = np.vstack(valid["vector"].tolist()).astype(np.float64)
    scores = cosine_similarity(query_embedding, candidate_embeddings).flatten()
    return valid.assign(similarity=np.clip(scores, -1.0, 1.0))


def rank_candidates(query: Sequence[float], candidates: pd.DataFrame, k: int = DEFAULT_TOP_K) -> List[ScoredPost]:
    """Score `candidates` against `query` and return the top `k`, best first.

    Ties keep the candidates' input order.
    """
    if k <= 0:
        return []
    scored = _score_candidates(query, candidates)
    if scored.empty:
        return []
    # stable sort on the negated score: descending, ties in input order
    order = np.argsort(-scored["similarity"].to_numpy(), kind="stable")[:k]
    top = scored.iloc[order]
    return [
        ScoredPost(
            id=str(row["id"]),
            text=row["text"],
            created_at=row["created_at"],
            owner_id=None if pd.isna(row["owner_id"]) else str(row["owner_id"]),
            similarity=float(row["similarity"]),
        )
        for _, row in top.iterrows()
    ]


class LinearScanMatcher:
    """Brute-force matcher over every stored post."""

    def __init__(self, source: CandidateSource) -> None:
        self._source = source

    def search(
        self,
        query: Sequence[float],
        *,
        exclude_id: Optional[str] = None,
        requester_id: Optional[str] = None,
        k: int = DEFAULT_TOP_K,
    ) -> List[ScoredPost]:
        posts = posts_frame(self._source.fetch_candidates())
        pool = _get_candidate_pool(posts, exclude_id=exclude_id, requester_id=requester_id)
        matches = rank_candidates(query, pool, k=k)
        logger.info(
            "Found %d similar posts for %s (pool=%d)",
            len(matches),
            requester_id or "anonymous",
            len(pool),
        )
        return matches
