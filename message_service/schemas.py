"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Domain records (Message, Attachment, SearchHit) are returned as-is; see
models.py.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from message_service.models import (
    Attachment,
    AuthorId,
    ChannelId,
    InsertMessageInput,
    MessageId,
    UpdateMessageInput,
    new_message_id,
)

T = TypeVar("T")


# =============================================================================
# Pydantic Request Models
# =============================================================================

class CreateMessageRequest(BaseModel):
    """
    Body of POST /messages.

    Content emptiness is checked by the service, not here, so that the
    rejection is a 400 with the standard error body.
    """
    channel_id: ChannelId = Field(..., description="Channel the message is posted to")
    content: str = Field(..., description="Message text")
    reply_to_message_id: Optional[MessageId] = Field(None, description="Message this one replies to")
    attachments: list[Attachment] = Field(default_factory=list, description="Ordered attachments")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "channel_id": "6f1c2a52-8a0e-4d7e-9d43-2b8f5f0c9a11",
                    "content": "Hello",
                    "reply_to_message_id": None,
                    "attachments": [],
                }
            ]
        }
    }

    def into_input(self, author_id: AuthorId) -> InsertMessageInput:
        return InsertMessageInput(
            id=new_message_id(),
            channel_id=self.channel_id,
            author_id=author_id,
            content=self.content,
            reply_to_message_id=self.reply_to_message_id,
            attachments=self.attachments,
        )


class UpdateMessageRequest(BaseModel):
    """Body of PUT /messages/{id}. Omitted fields keep their value."""
    content: Optional[str] = Field(None, description="New message text")
    is_pinned: Optional[bool] = Field(None, description="New pinned state")

    def into_input(self, message_id: MessageId) -> UpdateMessageInput:
        return UpdateMessageInput(id=message_id, content=self.content, is_pinned=self.is_pinned)


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorBody(BaseModel):
    message: str = Field(..., description="Error description")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
    status: int = Field(..., description="HTTP status code")


class PaginatedResponse(BaseModel, Generic[T]):
    """
    Page of results.

    - data: records on this page
    - total: records matching the query (ignoring pagination); best effort
      under concurrent writes
    - page: the requested page number
    """
    data: list[T] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy or unhealthy")
    database_status: str = Field(..., description="connected or disconnected")
    timestamp: str = Field(..., description="Server time (RFC 3339)")

