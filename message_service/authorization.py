"""
Coarse permission checks delegated to an external authorization service.

HttpAuthorization talks to a SpiceDB HTTP gateway. Without a configured
endpoint every check is denied unless AUTHZ_ALLOW_ALL is set, which Settings
refuses in production.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

import httpx

from message_service.api_errors import ServiceUnavailable
from message_service.config import Settings, get_settings

logger = logging.getLogger(__name__)

HAS_PERMISSION = "PERMISSIONSHIP_HAS_PERMISSION"


class Permission(str, Enum):
    VIEW_CHANNELS = "view_channels"
    SEND_MESSAGES = "send_messages"
    MANAGE_MESSAGES = "manage_messages"
    MANAGE_CHANNELS = "manage_channels"


class ResourceType(str, Enum):
    CHANNEL = "channel"
    USER = "user"


@dataclass(frozen=True)
class Resource:
    type: ResourceType
    id: uuid.UUID

    @classmethod
    def channel(cls, channel_id: uuid.UUID) -> "Resource":
        return cls(ResourceType.CHANNEL, channel_id)

    @classmethod
    def user(cls, user_id: uuid.UUID) -> "Resource":
        return cls(ResourceType.USER, user_id)


class AuthorizationUnavailable(ServiceUnavailable):
    message = "Authorization service is unavailable"


class Authorization(ABC):

    @abstractmethod
    def check(self, actor: uuid.UUID, permission: Permission, resource: Resource) -> bool:
        ...


class AllowAllAuthorization(Authorization):
    """Grants everything. Local development and tests only."""

    def check(self, actor: uuid.UUID, permission: Permission, resource: Resource) -> bool:
        return True


class DenyAllAuthorization(Authorization):

    def check(self, actor: uuid.UUID, permission: Permission, resource: Resource) -> bool:
        return False


class HttpAuthorization(Authorization):

    def __init__(self, client: httpx.Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpAuthorization":
        headers = {}
        if settings.AUTHZ_TOKEN:
            headers["Authorization"] = f"Bearer {settings.AUTHZ_TOKEN}"
        client = httpx.Client(
            base_url=settings.AUTHZ_ENDPOINT,
            headers=headers,
            timeout=settings.AUTHZ_TIMEOUT_SECONDS,
        )
        return cls(client)

    def check(self, actor: uuid.UUID, permission: Permission, resource: Resource) -> bool:
        body = {
            "consistency": {"minimizeLatency": True},
            "resource": {"objectType": resource.type.value, "objectId": str(resource.id)},
            "permission": permission.value,
            "subject": {"object": {"objectType": ResourceType.USER.value, "objectId": str(actor)}},
        }
        try:
            response = self.client.post("/v1/permissions/check", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Authorization check failed: {e}")
            raise AuthorizationUnavailable() from e

        try:
            allowed = response.json().get("permissionship") == HAS_PERMISSION
        except (ValueError, AttributeError) as e:
            logger.error(f"Authorization service returned an unreadable response: {e}")
            raise AuthorizationUnavailable() from e

        logger.debug(
            f"Authorization check: actor={actor}, permission={permission.value}, "
            f"resource={resource.type.value}:{resource.id}, allowed={allowed}"
        )
        return allowed


def build_authorization(settings: Settings) -> Authorization:
    if settings.AUTHZ_ENDPOINT:
        logger.info(f"Using external authorization service at {settings.AUTHZ_ENDPOINT}")
        return HttpAuthorization.from_settings(settings)
    if settings.AUTHZ_ALLOW_ALL:
        logger.warning("AUTHZ_ALLOW_ALL is set: every permission check is granted")
        return AllowAllAuthorization()
    logger.warning("No authorization service configured: every permission check is denied")
    return DenyAllAuthorization()


@lru_cache()
def get_authorization() -> Authorization:
    """FastAPI dependency: the process-wide authorization client."""
    return build_authorization(get_settings())
