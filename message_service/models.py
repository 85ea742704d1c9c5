"""
Domain records for messages and their identifiers.

Identifiers are distinct nominal types over uuid.UUID so a type checker
rejects passing a ChannelId where a MessageId is expected. At runtime they
are plain UUIDs.

For HTTP request/response schemas, see schemas.py.
"""

import uuid
from datetime import datetime
from typing import NewType, Optional

from pydantic import BaseModel, Field


MessageId = NewType("MessageId", uuid.UUID)
ChannelId = NewType("ChannelId", uuid.UUID)
AuthorId = NewType("AuthorId", uuid.UUID)
AttachmentId = NewType("AttachmentId", uuid.UUID)

# Upper bound on page size regardless of what the caller asks for
MAX_PAGE_SIZE = 50

# Keeps the skip count well inside a BSON int64
MAX_PAGE_NUMBER = 1_000_000

# Characters of content kept in a search hit
SNIPPET_LENGTH = 200


def new_message_id() -> MessageId:
    return MessageId(uuid.uuid4())


def new_attachment_id() -> AttachmentId:
    return AttachmentId(uuid.uuid4())


class Attachment(BaseModel):
    """A file attached to exactly one message. Never updated once stored."""
    id: AttachmentId
    name: str
    url: str


class Message(BaseModel):
    id: MessageId
    channel_id: ChannelId
    author_id: AuthorId
    content: str
    reply_to_message_id: Optional[MessageId] = None
    attachments: list[Attachment] = Field(default_factory=list)
    is_pinned: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None


class InsertMessageInput(BaseModel):
    id: MessageId
    channel_id: ChannelId
    author_id: AuthorId
    content: str
    reply_to_message_id: Optional[MessageId] = None
    attachments: list[Attachment] = Field(default_factory=list)


class UpdateMessageInput(BaseModel):
    """Partial update: a field left as None keeps its stored value."""
    id: MessageId
    content: Optional[str] = None
    is_pinned: Optional[bool] = None


class GetPaginated(BaseModel):
    """
    Page-number pagination.

    The effective limit is capped at MAX_PAGE_SIZE and the number of skipped
    records is derived from that capped value, so page N always starts right
    after page N-1.
    """
    page: int = Field(default=1, ge=1, le=MAX_PAGE_NUMBER)
    limit: int = Field(default=20, ge=1)

    @property
    def effective_limit(self) -> int:
        return min(self.limit, MAX_PAGE_SIZE)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.effective_limit


class SearchHit(BaseModel):
    type: str = "message"
    id: MessageId
    channel_id: ChannelId
    snippet: str
    score: float = 1.0
    message_id: MessageId

    @classmethod
    def from_message(cls, message: Message) -> "SearchHit":
        return cls(
            id=message.id,
            channel_id=message.channel_id,
            snippet=message.content[:SNIPPET_LENGTH],
            message_id=message.id,
        )


# =============================================================================
# Outbox event payloads
# =============================================================================

class MessageCreatedEvent(BaseModel):
    message: Message


class MessageDeletedEvent(BaseModel):
    id: MessageId
    channel_id: ChannelId
