"""Anonymous message threads between the two owners of a connection."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .config import MAX_MESSAGE_LENGTH
from .data_models import ConnectionSummary, ConnectionView, MessageView
from .errors import AuthorizationError, NotFoundError, ValidationError
from .storage import SecretStore

logger = logging.getLogger(__name__)


def merge_messages(existing: Iterable[MessageView], incoming: Iterable[MessageView]) -> List[MessageView]:
    """Merge live deliveries into a thread, dropping duplicate message ids.

    Delivery is at-least-once, so the same message can arrive twice. The
    result is ordered by creation time; the first copy of an id wins.
    """
    seen: Dict[str, MessageView] = {}
    for message in list(existing) + list(incoming):
        seen.setdefault(message.id, message)
    # sorted() is stable, so equal timestamps keep arrival order
    return sorted(seen.values(), key=lambda m: m.created_at)


class ConversationChannel:
    """Participant-checked access to connection threads."""

    def __init__(self, store: SecretStore, max_length: int = MAX_MESSAGE_LENGTH) -> None:
        self._store = store
        self.max_length = max_length

    def _participant_connection(self, connection_id: Optional[str], user_id: Optional[str]) -> ConnectionView:
        if not user_id:
            raise AuthorizationError("Unauthorized - user not authenticated")
        if not connection_id:
            raise ValidationError("Missing required parameter: connection_id")
        connection = self._store.get_connection(connection_id)
        if connection is None:
            raise NotFoundError("Connection not found")
        if not connection.involves(user_id):
            raise AuthorizationError("User is not part of this connection")
        return connection

    def list_connections(self, user_id: Optional[str]) -> List[ConnectionSummary]:
        """The user's connections, newest first, each with the user's own post text."""
        if not user_id:
            raise AuthorizationError("Unauthorized - user not authenticated")
        connections = self._store.list_connections(user_id)
        own_ids = [c.post_a_id if c.user_a_id == user_id else c.post_b_id for c in connections]
        posts = self._store.get_posts(own_ids)
        summaries = []
        for connection, own_id in zip(connections, own_ids):
            post = posts.get(own_id)
            summaries.append(
                ConnectionSummary(
                    **connection.model_dump(),
                    own_post_id=own_id,
                    own_post_text=post.text if post is not None else None,
                )
            )
        return summaries

    def list_messages(self, connection_id: Optional[str], user_id: Optional[str]) -> List[MessageView]:
        connection = self._participant_connection(connection_id, user_id)
        return self._store.list_messages(connection.id)

    def send_message(
        self, connection_id: Optional[str], sender_id: Optional[str], content: Optional[str]
    ) -> MessageView:
        connection = self._participant_connection(connection_id, sender_id)
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        if len(content) > self.max_length:
            raise ValidationError(f"Message must be at most {self.max_length} characters")
        message = self._store.add_message(connection.id, sender_id, content)
        logger.debug("Message %s sent on connection %s", message.id, connection.id)
        return message
