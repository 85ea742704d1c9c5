"""
Transactional-outbox write helper.

Events are appended to the `outbox_messages` collection together with the
exchange and routing key they should be published to. Publishing is done by
a separate dispatcher process; this module only writes.
"""

import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_core import PydanticSerializationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from message_service.config import settings
from message_service.errors import DatabaseError, SerializationError
from message_service.storage import OUTBOX_COLLECTION, encode_uuid, utc_now

logger = logging.getLogger(__name__)

STATUS_READY = "READY"


class MessageRoutingInfo(BaseModel):
    """Where a broker-side dispatcher should publish an event."""
    exchange: str = ""
    routing_key: str = ""


class MessageRoutingInfos(BaseModel):
    create_message: MessageRoutingInfo = Field(default_factory=MessageRoutingInfo)
    delete_message: MessageRoutingInfo = Field(default_factory=MessageRoutingInfo)


def load_routing(path: Path) -> MessageRoutingInfos:
    """
    Load the outbound event routing table from a YAML file.

    Expected layout:

        create_message:
          exchange: messages
          routing_key: message.created
        delete_message:
          exchange: messages
          routing_key: message.deleted

    Raises OSError when the file cannot be read, yaml.YAMLError or
    pydantic.ValidationError when its content is malformed.
    """
    with open(path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    return MessageRoutingInfos.model_validate(raw)


@lru_cache()
def get_routing() -> MessageRoutingInfos:
    return load_routing(settings.ROUTING_CONFIG_PATH)


@dataclass(frozen=True)
class OutboxEventRecord:
    id: uuid.UUID
    router: MessageRoutingInfo
    payload: BaseModel

    @classmethod
    def new(cls, router: MessageRoutingInfo, payload: BaseModel) -> "OutboxEventRecord":
        return cls(id=uuid.uuid4(), router=router, payload=payload)


class OutboxWriter:

    def __init__(self, db: Database):
        self.collection = db[OUTBOX_COLLECTION]

    def write(self, event: OutboxEventRecord) -> uuid.UUID:
        """Append an event in READY state and return its id."""
        try:
            payload = event.payload.model_dump(mode="json")
        except PydanticSerializationError as e:
            raise SerializationError(f"Serialization error: {e}") from e

        doc = {
            "_id": encode_uuid(event.id),
            "exchange_name": event.router.exchange,
            "routing_key": event.router.routing_key,
            "payload": payload,
            "status": STATUS_READY,
            "failed_at": None,
            "created_at": utc_now(),
        }
        try:
            self.collection.insert_one(doc)
        except PyMongoError as e:
            raise DatabaseError(f"Database error: {e}") from e

        logger.debug(f"Outbox event written: id={event.id}, routing_key={event.router.routing_key}")
        return event.id
