import asyncio
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, Query, Request, Response, status
from pymongo.database import Database

from message_service.api_errors import Forbidden, register_error_handlers
from message_service.auth import UserIdentity, get_current_user
from message_service.authorization import Authorization, Permission, Resource, get_authorization
from message_service.config import settings
from message_service.errors import Unhealthy
from message_service.logging_utils import RequestLoggingMiddleware, log_message_data, setup_logging
from message_service.metrics import get_metrics, get_metrics_content_type
from message_service.models import (
    MAX_PAGE_NUMBER,
    AuthorId,
    ChannelId,
    GetPaginated,
    Message,
    MessageId,
    SearchHit,
)
from message_service.outbox import OutboxWriter, get_routing
from message_service.schemas import (
    CreateMessageRequest,
    ErrorBody,
    HealthResponse,
    PaginatedResponse,
    UpdateMessageRequest,
)
from message_service.services import HealthService, MessageService
from message_service.storage import (
    MongoHealthRepository,
    MongoMessageRepository,
    close_db,
    get_database,
    init_db,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: load event routing, verify the database and ensure indexes.
      Any failure here aborts the process before traffic is served.
    - Shutdown: close the database client
    """
    get_routing()
    init_db()
    yield
    close_db()


ERROR_RESPONSES = {
    401: {"model": ErrorBody, "description": "Missing, invalid or expired credential"},
    403: {"model": ErrorBody, "description": "Permission denied"},
    404: {"model": ErrorBody, "description": "Message not found"},
}

app = FastAPI(
    title="Message API",
    description="Create, fetch, list, update, delete, pin and search channel messages",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(RequestLoggingMiddleware)
register_error_handlers(app)


# =============================================================================
# Dependencies
# =============================================================================

def get_message_service(db: Database = Depends(get_database)) -> MessageService:
    return MessageService(
        repository=MongoMessageRepository(db),
        outbox=OutboxWriter(db),
        routing=get_routing(),
    )


def get_health_service(db: Database = Depends(get_database)) -> HealthService:
    return HealthService(MongoHealthRepository(db))


def require_permission(
    authz: Authorization,
    user: UserIdentity,
    permission: Permission,
    resource: Resource,
) -> None:
    if not authz.check(user.user_id, permission, resource):
        logger.info(f"Permission {permission.value} denied for user {user.user_id} on {resource.type.value} {resource.id}")
        raise Forbidden()


def require_author(message: Message, user: UserIdentity) -> None:
    if message.author_id != user.user_id:
        logger.info(f"User {user.user_id} is not the author of message {message.id}")
        raise Forbidden("Forbidden - not the message owner")


PageQuery = Annotated[int, Query(ge=1, le=MAX_PAGE_NUMBER, description="Page number, starting at 1")]
LimitQuery = Annotated[int, Query(ge=1, description="Page size; values above 50 are capped at 50")]


# =============================================================================
# Message Routes
# =============================================================================

@app.post(
    "/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorBody, "description": "Empty content"}, **ERROR_RESPONSES},
)
def create_message(
    request: Request,
    body: CreateMessageRequest,
    user: UserIdentity = Depends(get_current_user),
    authz: Authorization = Depends(get_authorization),
    service: MessageService = Depends(get_message_service),
) -> Message:
    """
    Post a message to a channel as the authenticated user.

    Requires SEND_MESSAGES on the channel. The server assigns the id and
    creation timestamp.
    """
    log_message_data(request, "create")
    require_permission(authz, user, Permission.SEND_MESSAGES, Resource.channel(body.channel_id))

    message = service.create_message(body.into_input(AuthorId(user.user_id)))

    log_message_data(request, "create", message_id=message.id)
    logger.info(f"Message created: {message.id} in channel {message.channel_id}")
    return message


@app.get("/messages/{message_id}", response_model=Message, responses=ERROR_RESPONSES)
def get_message(
    request: Request,
    message_id: uuid.UUID,
    user: UserIdentity = Depends(get_current_user),
    authz: Authorization = Depends(get_authorization),
    service: MessageService = Depends(get_message_service),
) -> Message:
    """Fetch one message. Requires VIEW_CHANNELS on the message's channel."""
    log_message_data(request, "get", message_id=message_id)

    message = service.get_message(MessageId(message_id))
    require_permission(authz, user, Permission.VIEW_CHANNELS, Resource.channel(message.channel_id))
    return message


@app.get(
    "/channels/{channel_id}/messages",
    response_model=PaginatedResponse[Message],
    responses=ERROR_RESPONSES,
)
def list_messages(
    request: Request,
    channel_id: uuid.UUID,
    page: PageQuery = 1,
    limit: LimitQuery = 20,
    user: UserIdentity = Depends(get_current_user),
    authz: Authorization = Depends(get_authorization),
    service: MessageService = Depends(get_message_service),
) -> PaginatedResponse[Message]:
    """
    List a channel's messages, newest first.

    Response:
        - data: messages on the requested page
        - total: messages in the channel (ignoring pagination)
        - page: the requested page
    """
    log_message_data(request, "list")
    require_permission(authz, user, Permission.VIEW_CHANNELS, Resource.channel(channel_id))

    pagination = GetPaginated(page=page, limit=limit)
    messages, total = service.list_messages(ChannelId(channel_id), pagination)

    logger.debug(f"Listed {len(messages)} of {total} messages in channel {channel_id} (page={page})")
    return PaginatedResponse[Message](data=messages, total=total, page=page)


@app.get(
    "/channels/{channel_id}/messages/pinned",
    response_model=PaginatedResponse[Message],
    responses=ERROR_RESPONSES,
)
def list_pinned_messages(
    request: Request,
    channel_id: uuid.UUID,
    page: PageQuery = 1,
    limit: LimitQuery = 20,
    user: UserIdentity = Depends(get_current_user),
    authz: Authorization = Depends(get_authorization),
    service: MessageService = Depends(get_message_service),
) -> PaginatedResponse[Message]:
    """List a channel's pinned messages, newest first."""
    log_message_data(request, "list_pinned")
    require_permission(authz, user, Permission.VIEW_CHANNELS, Resource.channel(channel_id))

    messages, total = service.list_pinned_messages(ChannelId(channel_id), GetPaginated(page=page, limit=limit))
    return PaginatedResponse[Message](data=messages, total=total, page=page)


@app.get(
    "/channels/{channel_id}/messages/search",
    response_model=PaginatedResponse[SearchHit],
    responses=ERROR_RESPONSES,
)
def search_messages(
    request: Request,
    channel_id: uuid.UUID,
    q: Annotated[str, Query(min_length=1, description="Case-insensitive substring to look for")],
    page: PageQuery = 1,
    limit: LimitQuery = 20,
    user: UserIdentity = Depends(get_current_user),
    authz: Authorization = Depends(get_authorization),
    service: MessageService = Depends(get_message_service),
) -> PaginatedResponse[SearchHit]:
    """
    Search a channel's messages by content.

    Matching is a case-insensitive substring scan; every hit has the same
    score and hits are ordered newest first.
    """
    log_message_data(request, "search")
    require_permission(authz, user, Permission.VIEW_CHANNELS, Resource.channel(channel_id))

    hits, total = service.search(ChannelId(channel_id), q, GetPaginated(page=page, limit=limit))

    logger.debug(f"Search in channel {channel_id} for {q!r}: {total} hits")
    return PaginatedResponse[SearchHit](data=hits, total=total, page=page)


@app.put(
    "/messages/{message_id}",
    response_model=Message,
    responses={400: {"model": ErrorBody, "description": "Empty content"}, **ERROR_RESPONSES},
)
def update_message(
    request: Request,
    message_id: uuid.UUID,
    body: UpdateMessageRequest,
    user: UserIdentity = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
) -> Message:
    """Partially update a message. Only its author may do so."""
    log_message_data(request, "update", message_id=message_id)

    existing = service.get_message(MessageId(message_id))
    require_author(existing, user)

    return service.update_message(body.into_input(existing.id))


@app.delete(
    "/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
def delete_message(
    request: Request,
    message_id: uuid.UUID,
    user: UserIdentity = Depends(get_current_user),
    service: MessageService = Depends(get_message_service),
) -> Response:
    """Delete a message. Only its author may do so."""
    log_message_data(request, "delete", message_id=message_id)

    existing = service.get_message(MessageId(message_id))
    require_author(existing, user)

    service.delete_message(existing.id)
    logger.info(f"Message deleted: {existing.id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/messages/{message_id}/pin", response_model=Message, responses=ERROR_RESPONSES)
def pin_message(
    request: Request,
    message_id: uuid.UUID,
    user: UserIdentity = Depends(get_current_user),
    authz: Authorization = Depends(get_authorization),
    service: MessageService = Depends(get_message_service),
) -> Message:
    """Pin a message. Idempotent. Requires MANAGE_MESSAGES on its channel."""
    log_message_data(request, "pin", message_id=message_id)

    existing = service.get_message(MessageId(message_id))
    require_permission(authz, user, Permission.MANAGE_MESSAGES, Resource.channel(existing.channel_id))

    return service.pin_message(existing.id)


# =============================================================================
# Health Listener
# =============================================================================

health_app = FastAPI(title="Message API health", version="1.0.0")
health_app.add_middleware(RequestLoggingMiddleware)
register_error_handlers(health_app)


@health_app.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Database unreachable"}},
)
def health_check(
    response: Response,
    service: HealthService = Depends(get_health_service),
) -> HealthResponse:
    """
    Readiness probe - pings the database on every call.
    Returns 200 when the database answers, 503 otherwise.
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        service.check_health()
    except Unhealthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="unhealthy", database_status="disconnected", timestamp=timestamp)
    return HealthResponse(status="healthy", database_status="connected", timestamp=timestamp)


@health_app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# =============================================================================
# Entry point
# =============================================================================

def run() -> None:
    """
    Serve the API and health listeners in one process.

    When either listener stops (shutdown signal, startup failure, bind
    failure) the other is stopped too. Exits non-zero if the API never
    finished starting.
    """
    api_server = uvicorn.Server(uvicorn.Config(
        app, host=settings.API_HOST, port=settings.API_PORT, log_config=None,
    ))
    health_server = uvicorn.Server(uvicorn.Config(
        health_app, host=settings.API_HOST, port=settings.HEALTH_PORT, log_config=None, lifespan="off",
    ))

    async def serve() -> None:
        servers = (api_server, health_server)
        tasks = [asyncio.create_task(server.serve()) for server in servers]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for server in servers:
            server.should_exit = True
        await asyncio.gather(*tasks)

    logger.info(f"Starting listeners: api={settings.API_PORT}, health={settings.HEALTH_PORT}")
    asyncio.run(serve())
    if not api_server.started:
        logger.error("API listener failed to start")
        sys.exit(1)


if __name__ == "__main__":
    run()
