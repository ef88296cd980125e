# pydantic models for posts, connections and messages
from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class PostView(BaseModel):
    """A post as returned to clients; never carries the embedding.

    Fields:
        id: Opaque post identifier.
        text: The submitted hot take.
        created_at: Creation timestamp.
        owner_id: Owning user identity, or None for anonymous posts.
    """

    id: str
    text: str
    created_at: datetime
    owner_id: Optional[str] = None


class PostRecord(PostView):
    """A stored post including its raw embedding as read from storage.

    The embedding is kept exactly as stored (usually a JSON string) so the
    matcher can validate it on every read.
    """

    embedding: Optional[Any] = None

    def to_view(self) -> PostView:
        return PostView(**self.model_dump(exclude={"embedding"}))


class ScoredPost(PostView):
    """A similar post with its cosine similarity to the query."""

    similarity: float = Field(
        ...,
        ge=-1.0,
        le=1.0,
        description="Cosine similarity between -1.0 and 1.0",
    )


class ConnectionView(BaseModel):
    """A match between two posts and their owners.

    Fields:
        post_a_id / user_a_id: The requesting side.
        post_b_id / user_b_id: The target side.
        status: Always "accepted"; there is no rejection or expiry path.
    """

    id: str
    post_a_id: str
    post_b_id: str
    user_a_id: str
    user_b_id: str
    status: str = "accepted"
    created_at: datetime

    def other_user(self, user_id: str) -> str:
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a_id, self.user_b_id)


class ConnectionSummary(ConnectionView):
    """Connection plus the requesting user's own post, for conversation lists."""

    own_post_id: str
    own_post_text: Optional[str] = None


class MessageView(BaseModel):
    id: str
    connection_id: str
    sender_id: str
    content: str
    created_at: datetime


# Request / response bodies. Inputs stay loose here and are validated by the
# pipeline and broker so every failure reports as {"error": ...}.


class SubmitPostRequest(BaseModel):
    text: Optional[str] = Field(default=None, validation_alias=AliasChoices("text", "secret_text"))
    owner_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("owner_id", "user_id"))


class SubmitPostResponse(BaseModel):
    post: PostView
    matches: List[ScoredPost] = Field(default_factory=list)


class CreateConnectionRequest(BaseModel):
    caller_post_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("caller_post_id", "userSecretId")
    )
    target_post_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("target_post_id", "targetSecretId")
    )


class CreateConnectionResponse(BaseModel):
    success: bool = True
    connection_id: str
    message: str


class ClaimPostRequest(BaseModel):
    post_id: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: Optional[str] = None
