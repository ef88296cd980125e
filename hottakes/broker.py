"""
Ownership transitions and connection creation.

A connection can only join two owned posts. Anonymous posts are claimed
explicitly with `claim_post` before a connection is requested, so
`create_connection` itself never changes ownership.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .data_models import ConnectionView, PostRecord, PostView
from .errors import AuthorizationError, NotFoundError, ValidationError
from .storage import SecretStore

logger = logging.getLogger(__name__)

MATCH_CREATED = "Match created successfully"
MATCH_EXISTS = "Match already exists"


@dataclass(frozen=True)
class ConnectionResult:
    connection: ConnectionView
    created: bool

    @property
    def message(self) -> str:
        return MATCH_CREATED if self.created else MATCH_EXISTS


def _require(value: Optional[str], name: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"Missing required parameter: {name}")
    return value


def _require_identity(user_id: Optional[str]) -> str:
    user_id = (user_id or "").strip()
    if not user_id:
        raise AuthorizationError("Unauthorized - user not authenticated")
    return user_id


class MatchBroker:
    """Owner-checked operations on posts and connections."""

    def __init__(self, store: SecretStore) -> None:
        self._store = store

    def _checked_target(self, user_id: str, caller_post_id: str, target_post_id: str) -> PostRecord:
        if caller_post_id == target_post_id:
            raise ValidationError("Cannot connect a post with itself")
        target_post = self._store.get_post(target_post_id)
        if target_post is None:
            raise NotFoundError("Target post not found")
        if target_post.owner_id is None:
            raise ValidationError("Target post has no associated user")
        if target_post.owner_id == user_id:
            raise ValidationError("Cannot connect with your own post")
        return target_post

    def claim_post(self, user_id: Optional[str], post_id: Optional[str]) -> PostView:
        """Attribute an anonymous post to `user_id`.

        Idempotent: claiming a post you already own is a no-op. Claiming a post
        owned by someone else raises `AuthorizationError`.
        """
        user_id = _require_identity(user_id)
        post_id = _require(post_id, "post_id")

        post = self._store.claim_post(post_id, user_id)
        if post is None:
            raise NotFoundError("Post not found")
        if post.owner_id != user_id:
            logger.warning("User %s tried to claim post %s owned by someone else", user_id, post_id)
            raise AuthorizationError("User does not own the specified post")
        return post.to_view()

    def create_connection(
        self,
        user_id: Optional[str],
        caller_post_id: Optional[str],
        target_post_id: Optional[str],
    ) -> ConnectionResult:
        """Create (or reuse) the connection between the caller's post and a target.

        The caller post must already be owned by the caller and the target post
        must be owned by somebody else. Owner references on the connection come
        from the posts as stored.
        """
        user_id = _require_identity(user_id)
        caller_post_id = _require(caller_post_id, "caller_post_id")
        target_post_id = _require(target_post_id, "target_post_id")
        if caller_post_id == target_post_id:
            raise ValidationError("Cannot connect a post with itself")

        caller_post = self._store.get_post(caller_post_id)
        if caller_post is None:
            raise NotFoundError("User post not found")
        if caller_post.owner_id != user_id:
            logger.warning(
                "User %s does not own post %s (owner=%s)", user_id, caller_post_id, caller_post.owner_id
            )
            raise AuthorizationError("User does not own the specified post")

        target_post = self._checked_target(user_id, caller_post_id, target_post_id)

        connection, created = self._store.create_connection(
            post_a_id=caller_post.id,
            post_b_id=target_post.id,
            user_a_id=caller_post.owner_id,
            user_b_id=target_post.owner_id,
        )
        if created:
            logger.info("Connection created: %s", connection.id)
        else:
            logger.info("Connection already exists: %s", connection.id)
        return ConnectionResult(connection=connection, created=created)

    def connect(
        self,
        user_id: Optional[str],
        caller_post_id: Optional[str],
        target_post_id: Optional[str],
    ) -> ConnectionResult:
        """Claim the caller's post if it is anonymous, then create the connection.

        The target is checked before the claim, so a rejected request leaves
        the caller post's ownership unchanged.
        """
        user_id = _require_identity(user_id)
        caller_post_id = _require(caller_post_id, "caller_post_id")
        target_post_id = _require(target_post_id, "target_post_id")
        self._checked_target(user_id, caller_post_id, target_post_id)
        self.claim_post(user_id, caller_post_id)
        return self.create_connection(user_id, caller_post_id, target_post_id)

    def list_posts(self, user_id: Optional[str]) -> List[PostView]:
        user_id = _require_identity(user_id)
        return [post.to_view() for post in self._store.list_posts(user_id)]

    def delete_post(self, user_id: Optional[str], post_id: Optional[str]) -> None:
        """Delete one of the caller's posts; its connections and messages go with it."""
        user_id = _require_identity(user_id)
        post_id = _require(post_id, "post_id")

        post = self._store.get_post(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        if post.owner_id != user_id:
            raise AuthorizationError("User does not own the specified post")
        self._store.delete_post(post_id)
