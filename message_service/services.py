"""
Business logic for messages and service health.

MessageService validates input, checks existence, delegates persistence to a
MessageRepository and translates repository errors into domain errors. It is
the only layer that knows both vocabularies.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic import BaseModel

from message_service.errors import (
    CoreError,
    DatabaseError,
    InvalidContent,
    MessageNotFound,
    RecordNotFound,
    RepositoryError,
    RepositoryUnavailable,
    ServiceUnavailable,
    Unhealthy,
)
from message_service.metrics import record_outbox_write
from message_service.models import (
    ChannelId,
    GetPaginated,
    InsertMessageInput,
    Message,
    MessageCreatedEvent,
    MessageDeletedEvent,
    MessageId,
    SearchHit,
    UpdateMessageInput,
)
from message_service.outbox import MessageRoutingInfo, MessageRoutingInfos, OutboxEventRecord, OutboxWriter
from message_service.ports import HealthRepository, MessageRepository

logger = logging.getLogger(__name__)


def _is_blank(content: str) -> bool:
    return not content.strip()


@contextmanager
def _repository_call(message_id: Optional[MessageId] = None) -> Iterator[None]:
    try:
        yield
    except RecordNotFound as e:
        raise MessageNotFound(message_id) from e
    except RepositoryUnavailable as e:
        raise ServiceUnavailable() from e
    except RepositoryError as e:
        raise DatabaseError(f"Database error: {e}") from e


class MessageService:

    def __init__(
        self,
        repository: MessageRepository,
        outbox: Optional[OutboxWriter] = None,
        routing: Optional[MessageRoutingInfos] = None,
    ):
        self.repository = repository
        self.outbox = outbox
        self.routing = routing or MessageRoutingInfos()

    def create_message(self, input: InsertMessageInput) -> Message:
        """
        Validate and store a new message.

        Raises:
            InvalidContent: content is empty after trimming whitespace
        """
        if _is_blank(input.content):
            raise InvalidContent()

        with _repository_call(input.id):
            message = self.repository.insert(input)

        self._publish(self.routing.create_message, MessageCreatedEvent(message=message))
        return message

    def get_message(self, message_id: MessageId) -> Message:
        with _repository_call(message_id):
            message = self.repository.find_by_id(message_id)
        if message is None:
            raise MessageNotFound(message_id)
        return message

    def list_messages(self, channel_id: ChannelId, pagination: GetPaginated) -> tuple[list[Message], int]:
        with _repository_call():
            return self.repository.list(channel_id, pagination)

    def list_pinned_messages(self, channel_id: ChannelId, pagination: GetPaginated) -> tuple[list[Message], int]:
        with _repository_call():
            return self.repository.list(channel_id, pagination, pinned=True)

    def update_message(self, input: UpdateMessageInput) -> Message:
        """
        Apply a partial update.

        Only the fields set on input change. Raises MessageNotFound when the
        message does not exist and InvalidContent when the new content is
        blank; in both cases nothing is written.
        """
        if input.content is not None and _is_blank(input.content):
            raise InvalidContent()

        self.get_message(input.id)

        with _repository_call(input.id):
            return self.repository.update(input)

    def delete_message(self, message_id: MessageId) -> None:
        existing = self.get_message(message_id)

        with _repository_call(message_id):
            self.repository.delete(message_id)

        self._publish(
            self.routing.delete_message,
            MessageDeletedEvent(id=existing.id, channel_id=existing.channel_id),
        )

    def pin_message(self, message_id: MessageId) -> Message:
        with _repository_call(message_id):
            return self.repository.pin(message_id)

    def search(self, channel_id: ChannelId, query: str, pagination: GetPaginated) -> tuple[list[SearchHit], int]:
        with _repository_call():
            messages, total = self.repository.search(channel_id, query, pagination)
        return [SearchHit.from_message(m) for m in messages], total

    def _publish(self, router: MessageRoutingInfo, payload: BaseModel) -> None:
        """
        Append an event to the outbox after the primary write has succeeded.

        The primary write is already durable at this point. A failed outbox
        write is logged and counted but does not fail the request, so event
        delivery is at-most-once.
        """
        if self.outbox is None:
            return
        record = OutboxEventRecord.new(router, payload)
        try:
            self.outbox.write(record)
        except CoreError as e:
            logger.error(
                f"Outbox write failed for event {record.id}: {e}",
                extra={"routing_key": router.routing_key},
            )
            record_outbox_write("failed")
            return
        record_outbox_write("written")


class HealthService:

    def __init__(self, repository: HealthRepository):
        self.repository = repository

    def check_health(self) -> bool:
        """Probe the store on every call. Raises Unhealthy when the probe fails."""
        if not self.repository.ping():
            raise Unhealthy()
        return True
