from __future__ import annotations

import logging
import re
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from bson import Binary
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

from message_service.config import settings
from message_service.errors import RecordNotFound, RepositoryError, RepositoryUnavailable
from message_service.models import (
    Attachment,
    ChannelId,
    GetPaginated,
    InsertMessageInput,
    Message,
    MessageId,
    UpdateMessageInput,
)
from message_service.ports import HealthRepository, MessageRepository

logger = logging.getLogger(__name__)

MESSAGES_COLLECTION = "messages"
OUTBOX_COLLECTION = "outbox_messages"

LIST_SORT = [("created_at", DESCENDING), ("_id", DESCENDING)]

# One pooled client per process; pymongo clients are thread-safe
_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    """Return the process-wide MongoClient, creating it on first use."""
    global _client
    if _client is None:
        logger.debug(f"Creating MongoDB client for database {settings.DATABASE_NAME}")
        _client = MongoClient(
            settings.DATABASE_URI,
            tz_aware=True,
            serverSelectionTimeoutMS=settings.DATABASE_TIMEOUT_MS,
        )
    return _client


def get_database() -> Database:
    """
    Dependency to get the application database handle.
    The handle shares the pooled client; nothing needs closing per request.
    """
    return get_client()[settings.DATABASE_NAME]


def init_db() -> None:
    """
    Verify connectivity and ensure indexes exist.
    Called during application startup; any failure aborts startup.
    """
    logger.debug(f"Initializing database {settings.DATABASE_NAME}")
    try:
        db = get_database()
        db.command("ping")
        db[MESSAGES_COLLECTION].create_index([("channel_id", ASCENDING), ("created_at", DESCENDING)])
        db[OUTBOX_COLLECTION].create_index([("status", ASCENDING), ("created_at", ASCENDING)])
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def close_db() -> None:
    global _client
    if _client is not None:
        logger.info("Closing MongoDB connection")
        _client.close()
        _client = None


# =============================================================================
# Document encoding
# =============================================================================
# Every identifier is stored as BSON binary subtype 4 (standard UUID), both in
# documents and in query filters. encode_uuid/decode_uuid are the only places
# that know this.

def encode_uuid(value: Optional[uuid.UUID]) -> Optional[Binary]:
    if value is None:
        return None
    return Binary.from_uuid(value)


def decode_uuid(value: Optional[Binary]) -> Optional[uuid.UUID]:
    # Clients configured with uuidRepresentation=standard already decode to UUID
    if value is None or isinstance(value, uuid.UUID):
        return value
    return value.as_uuid()


def utc_now() -> datetime:
    """Current UTC time truncated to the store's millisecond resolution."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def message_to_document(message: Message) -> dict:
    return {
        "_id": encode_uuid(message.id),
        "channel_id": encode_uuid(message.channel_id),
        "author_id": encode_uuid(message.author_id),
        "content": message.content,
        "reply_to_message_id": encode_uuid(message.reply_to_message_id),
        "attachments": [
            {"id": encode_uuid(a.id), "name": a.name, "url": a.url}
            for a in message.attachments
        ],
        "is_pinned": message.is_pinned,
        "created_at": message.created_at,
        "updated_at": message.updated_at,
    }


def document_to_message(doc: dict) -> Message:
    return Message(
        id=decode_uuid(doc["_id"]),
        channel_id=decode_uuid(doc["channel_id"]),
        author_id=decode_uuid(doc["author_id"]),
        content=doc["content"],
        reply_to_message_id=decode_uuid(doc.get("reply_to_message_id")),
        attachments=[
            Attachment(id=decode_uuid(a["id"]), name=a["name"], url=a["url"])
            for a in doc.get("attachments", [])
        ],
        is_pinned=doc.get("is_pinned", False),
        created_at=_as_utc(doc["created_at"]),
        updated_at=_as_utc(doc.get("updated_at")),
    )


@contextmanager
def driver_errors(operation: str) -> Iterator[None]:
    """Translate pymongo exceptions into the repository error vocabulary."""
    try:
        yield
    except ConnectionFailure as e:
        logger.error(f"MongoDB unreachable during {operation}: {e}")
        raise RepositoryUnavailable(str(e)) from e
    except PyMongoError as e:
        logger.error(f"MongoDB error during {operation}: {e}")
        raise RepositoryError(str(e)) from e


# =============================================================================
# Message Repository
# =============================================================================

class MongoMessageRepository(MessageRepository):

    def __init__(self, db: Database):
        self.collection = db[MESSAGES_COLLECTION]

    def insert(self, input: InsertMessageInput) -> Message:
        message = Message(
            id=input.id,
            channel_id=input.channel_id,
            author_id=input.author_id,
            content=input.content,
            reply_to_message_id=input.reply_to_message_id,
            attachments=input.attachments,
            is_pinned=False,
            created_at=utc_now(),
            updated_at=None,
        )
        logger.info(f"Inserting message: id={message.id}, channel={message.channel_id}")
        with driver_errors("insert"):
            self.collection.insert_one(message_to_document(message))
        return message

    def find_by_id(self, message_id: MessageId) -> Optional[Message]:
        logger.debug(f"Looking up message by ID: {message_id}")
        with driver_errors("find_by_id"):
            doc = self.collection.find_one({"_id": encode_uuid(message_id)})
        return document_to_message(doc) if doc else None

    def _page(self, filter: dict, pagination: GetPaginated) -> tuple[list[Message], int]:
        with driver_errors("list"):
            total = self.collection.count_documents(filter)
            cursor = (
                self.collection.find(filter)
                .sort(LIST_SORT)
                .skip(pagination.skip)
                .limit(pagination.effective_limit)
            )
            messages = [document_to_message(doc) for doc in cursor]
        logger.debug(f"Retrieved {len(messages)} of {total} matching messages")
        return messages, total

    def list(
        self,
        channel_id: ChannelId,
        pagination: GetPaginated,
        pinned: Optional[bool] = None,
    ) -> tuple[list[Message], int]:
        filter = {"channel_id": encode_uuid(channel_id)}
        if pinned is not None:
            filter["is_pinned"] = pinned
        return self._page(filter, pagination)

    def search(
        self,
        channel_id: ChannelId,
        query: str,
        pagination: GetPaginated,
    ) -> tuple[list[Message], int]:
        filter = {
            "channel_id": encode_uuid(channel_id),
            "content": {"$regex": re.escape(query), "$options": "i"},
        }
        return self._page(filter, pagination)

    def _find_and_set(self, message_id: MessageId, fields: dict) -> Message:
        with driver_errors("update"):
            doc = self.collection.find_one_and_update(
                {"_id": encode_uuid(message_id)},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise RecordNotFound(str(message_id))
        return document_to_message(doc)

    def update(self, input: UpdateMessageInput) -> Message:
        fields = {"updated_at": utc_now()}
        if input.content is not None:
            fields["content"] = input.content
        if input.is_pinned is not None:
            fields["is_pinned"] = input.is_pinned
        logger.info(f"Updating message {input.id}: fields={sorted(fields)}")
        return self._find_and_set(input.id, fields)

    def pin(self, message_id: MessageId) -> Message:
        logger.info(f"Pinning message {message_id}")
        return self._find_and_set(message_id, {"is_pinned": True})

    def delete(self, message_id: MessageId) -> None:
        logger.info(f"Deleting message {message_id}")
        with driver_errors("delete"):
            result = self.collection.delete_one({"_id": encode_uuid(message_id)})
        if result.deleted_count == 0:
            raise RecordNotFound(str(message_id))


# =============================================================================
# Health Repository
# =============================================================================

class MongoHealthRepository(HealthRepository):

    def __init__(self, db: Database):
        self.db = db

    def ping(self) -> bool:
        """Run the `ping` admin command; any failure means unhealthy."""
        try:
            self.db.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"Database health check failed: {e}")
            return False
