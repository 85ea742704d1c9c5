"""
Persistence interfaces the services depend on.

Implementations raise the RepositoryError family from errors.py and never
return driver-specific exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from message_service.models import (
    ChannelId,
    GetPaginated,
    InsertMessageInput,
    Message,
    MessageId,
    UpdateMessageInput,
)


class MessageRepository(ABC):

    @abstractmethod
    def insert(self, input: InsertMessageInput) -> Message:
        """Store a new message; the adapter assigns created_at."""

    @abstractmethod
    def find_by_id(self, message_id: MessageId) -> Optional[Message]:
        ...

    @abstractmethod
    def list(
        self,
        channel_id: ChannelId,
        pagination: GetPaginated,
        pinned: Optional[bool] = None,
    ) -> tuple[list[Message], int]:
        """Page of a channel's messages, newest first, plus the matching total."""

    @abstractmethod
    def update(self, input: UpdateMessageInput) -> Message:
        """Apply the fields present in input, stamp updated_at, return the new state."""

    @abstractmethod
    def pin(self, message_id: MessageId) -> Message:
        ...

    @abstractmethod
    def delete(self, message_id: MessageId) -> None:
        ...

    @abstractmethod
    def search(
        self,
        channel_id: ChannelId,
        query: str,
        pagination: GetPaginated,
    ) -> tuple[list[Message], int]:
        """Case-insensitive substring match on content within one channel."""


class HealthRepository(ABC):

    @abstractmethod
    def ping(self) -> bool:
        ...
