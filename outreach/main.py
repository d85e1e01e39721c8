import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError

from outreach.config import Settings, get_settings
from outreach.errors import NotFoundError, ValidationError
from outreach.logging_utils import RequestLoggingMiddleware, annotate_request, setup_logging
from outreach.metrics import get_metrics, get_metrics_content_type
from outreach.repository import InMemoryRepository
from outreach.schemas import (
    Connection,
    DailyStatsResponse,
    ErrorResponse,
    HealthResponse,
    InboundReply,
    Message,
    MessageCreateRequest,
    MessageUpdateRequest,
    MessagesListResponse,
    RepliesListResponse,
    Stats,
    WebhookRequest,
    WebhookResponse,
)
from outreach.simulator import LinkClient, SimulatedLinkClient
from outreach.stats import DAILY_RANGES
from outreach.storage import SqlRepository
from outreach.store import MessageStore
from outreach.utils import verify_hmac_signature

logger = logging.getLogger(__name__)

router = APIRouter()

OwnerQuery = Annotated[Optional[str], Query(description="Owning account; defaults to DEFAULT_OWNER_ID")]


def build_store(settings: Settings, link_client=None) -> MessageStore:
    """Construct the store and its repository for the configured backend."""
    if settings.STORE_BACKEND == "sql":
        repository = SqlRepository(settings.DATABASE_URL)
        repository.init_db()
    else:
        repository = InMemoryRepository()
    logger.info(f"Message store backend: {settings.STORE_BACKEND}")
    return MessageStore(
        repository,
        link_client=link_client if settings.SIMULATE_REPLIES else None,
        default_owner_id=settings.DEFAULT_OWNER_ID,
        max_content_length=settings.MAX_CONTENT_LENGTH,
        cascade_delete_replies=settings.CASCADE_DELETE_REPLIES,
    )


def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_link_client(request: Request) -> LinkClient:
    return request.app.state.link_client


def get_simulator(link_client: LinkClient = Depends(get_link_client)) -> SimulatedLinkClient:
    """Session inspection and completion exist only on the simulated client."""
    if not isinstance(link_client, SimulatedLinkClient):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="device linking is completed on the phone for this link client",
        )
    return link_client


def register_error_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(detail=str(exc)).model_dump(),
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(detail=str(exc)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(detail="An internal error occurred").model_dump(),
        )


def create_app(settings: Optional[Settings] = None, store: Optional[MessageStore] = None) -> FastAPI:
    """
    Build the application. Each app owns its store and link client, so
    tests can create isolated instances.

    An injected store brings its own link client; replies that client
    delivers are correlated into that store. If it has none, a simulator
    is attached for the /connection routes only.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    link_client: LinkClient
    if store is None:
        link_client = SimulatedLinkClient(
            min_delay=settings.SIMULATED_REPLY_MIN_DELAY,
            max_delay=settings.SIMULATED_REPLY_MAX_DELAY,
        )
        store = build_store(settings, link_client)
    else:
        link_client = store.link_client or SimulatedLinkClient(
            min_delay=settings.SIMULATED_REPLY_MIN_DELAY,
            max_delay=settings.SIMULATED_REPLY_MAX_DELAY,
        )

    def correlate(inbound: InboundReply) -> None:
        store.correlator.record_reply(
            inbound.message_id,
            inbound.sender_id,
            inbound.content,
            timestamp=inbound.timestamp,
            source="simulated",
        )

    link_client.on_message(correlate)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Shutdown: pending simulated replies are best effort only
        link_client.cancel_pending()

    app = FastAPI(
        title="Outreach API",
        description="Outbound messaging campaigns with reply tracking and analytics",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.link_client = link_client

    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)
    app.include_router(router)
    return app


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(request: Request, response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. The store backend is reachable (and schema applied for SQL)
    2. WEBHOOK_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    settings: Settings = request.app.state.settings
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="WEBHOOK_SECRET not configured")

    if not get_store(request).repository.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Message store not reachable")

    return HealthResponse(status="ready")


# =============================================================================
# Message Routes
# =============================================================================

@router.post(
    "/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse, "description": "Validation error"}},
)
async def create_message(
    body: MessageCreateRequest,
    store: MessageStore = Depends(get_store),
) -> Message:
    """
    Send a message now, or schedule it when scheduledTime is given.

    Recipients are normalized to carry a leading '+'.
    """
    return store.create(
        content=body.content,
        recipients=body.recipients,
        scheduled_time=body.scheduled_time,
        owner_id=body.owner_id,
    )


@router.get("/messages", response_model=MessagesListResponse)
async def list_messages(
    owner_id: OwnerQuery = None,
    store: MessageStore = Depends(get_store),
) -> MessagesListResponse:
    """List the owner's messages, newest first, with current reply counts."""
    messages = store.messages(owner_id)
    logger.debug(f"GET /messages: returned {len(messages)} messages")
    return MessagesListResponse(data=messages, total=len(messages))


@router.get(
    "/messages/{message_id}",
    response_model=Message,
    responses={404: {"model": ErrorResponse}},
)
async def get_message(message_id: str, store: MessageStore = Depends(get_store)) -> Message:
    return store.get(message_id)


@router.patch(
    "/messages/{message_id}",
    response_model=Message,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_message(
    message_id: str,
    body: MessageUpdateRequest,
    store: MessageStore = Depends(get_store),
) -> Message:
    """Merge the supplied fields into the message (last write wins)."""
    return store.update(message_id, body.model_dump(exclude_unset=True))


@router.delete(
    "/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_message(message_id: str, store: MessageStore = Depends(get_store)) -> Response:
    store.delete(message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/messages/{message_id}/replies", response_model=RepliesListResponse)
async def list_message_replies(
    message_id: str,
    store: MessageStore = Depends(get_store),
) -> RepliesListResponse:
    """Replies to one message in arrival order. Unknown or deleted ids give an empty list."""
    replies = store.correlator.replies_for(message_id)
    return RepliesListResponse(data=replies, total=len(replies))


@router.get("/replies", response_model=RepliesListResponse)
async def list_replies(
    owner_id: OwnerQuery = None,
    store: MessageStore = Depends(get_store),
) -> RepliesListResponse:
    replies = store.replies(owner_id)
    return RepliesListResponse(data=replies, total=len(replies))


# =============================================================================
# Stats Route
# =============================================================================

@router.get("/stats", response_model=Stats)
async def get_statistics(
    owner_id: OwnerQuery = None,
    store: MessageStore = Depends(get_store),
) -> Stats:
    """
    Message-level analytics, recomputed on every call.

    Response (camelCase):
        - totalMessages, sentMessages, scheduledMessages, failedMessages
        - totalReplies
        - responseRate: replies per sent message in percent, capped at 100
    """
    stats = store.stats(owner_id)
    logger.info(f"GET /stats: {stats.total_messages} messages, {stats.total_replies} replies")
    return stats


@router.get("/stats/daily", response_model=DailyStatsResponse)
async def get_daily_statistics(
    time_range: Annotated[Literal["7d", "30d", "90d"], Query(alias="range")] = "7d",
    owner_id: OwnerQuery = None,
    store: MessageStore = Depends(get_store),
) -> DailyStatsResponse:
    """
    Messages created per UTC day over the range, oldest day first.

    Every day in the range is present; each carries the total and the
    sent/scheduled/failed split.
    """
    days = store.daily_stats(owner_id, DAILY_RANGES[time_range])
    return DailyStatsResponse(range=time_range, data=days)


# =============================================================================
# Webhook Route
# =============================================================================

@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
        503: {"model": ErrorResponse, "description": "Webhook secret not configured"},
    }
)
async def webhook(
    request: Request,
    x_signature: Annotated[Optional[str], Header(alias="X-Signature")] = None,
    store: MessageStore = Depends(get_store),
) -> WebhookResponse:
    """
    Accept an inbound reply from a real link client.

    - Validates HMAC-SHA256 signature using X-Signature header
    - Validates request body against WebhookRequest schema
    - Replies to unknown messages are acknowledged but not stored

    Headers:
        - Content-Type: application/json
        - X-Signature: hex HMAC-SHA256 of raw body using WEBHOOK_SECRET
    """
    settings: Settings = request.app.state.settings
    raw_body = await request.body()

    if not settings.WEBHOOK_SECRET:
        logger.error("Webhook called but WEBHOOK_SECRET is not configured")
        annotate_request(request, result="not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="webhook not configured"
        )

    if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error("Missing or invalid X-Signature header")
        annotate_request(request, result="invalid_signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid signature"
        )

    try:
        body_dict = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        annotate_request(request, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid JSON: {e}"
        )

    try:
        payload = WebhookRequest.model_validate(body_dict)
    except SchemaError as e:
        logger.error(f"Validation error: {e}")
        message_id = body_dict.get("message_id") if isinstance(body_dict, dict) else None
        annotate_request(request, message_id=message_id, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )

    reply = store.correlator.record_reply(
        payload.message_id,
        payload.from_msisdn,
        payload.text,
        timestamp=payload.ts,
        source="webhook",
    )
    result = "recorded" if reply is not None else "ignored"
    annotate_request(request, message_id=payload.message_id, result=result)

    return WebhookResponse(result=result, reply_id=reply.id if reply is not None else None)


# =============================================================================
# Device Link Routes
# =============================================================================

@router.get(
    "/connection",
    response_model=Connection,
    responses={404: {"model": ErrorResponse}, 501: {"model": ErrorResponse}},
)
async def get_connection(
    request: Request,
    owner_id: OwnerQuery = None,
    simulator: SimulatedLinkClient = Depends(get_simulator),
) -> Connection:
    owner = owner_id or request.app.state.settings.DEFAULT_OWNER_ID
    connection = simulator.get_connection(owner)
    if connection is None:
        raise NotFoundError("connection", owner)
    return connection


@router.post("/connection", response_model=Connection)
async def start_connection(
    request: Request,
    owner_id: OwnerQuery = None,
    link_client: LinkClient = Depends(get_link_client),
) -> Connection:
    """Start device linking; the returned qr_code is what the phone scans."""
    return link_client.connect(owner_id or request.app.state.settings.DEFAULT_OWNER_ID)


@router.post(
    "/connection/complete",
    response_model=Connection,
    responses={404: {"model": ErrorResponse}, 501: {"model": ErrorResponse}},
)
async def complete_connection(
    request: Request,
    owner_id: OwnerQuery = None,
    simulator: SimulatedLinkClient = Depends(get_simulator),
) -> Connection:
    return simulator.complete(owner_id or request.app.state.settings.DEFAULT_OWNER_ID)


@router.post(
    "/connection/disconnect",
    response_model=Connection,
    responses={404: {"model": ErrorResponse}, 501: {"model": ErrorResponse}},
)
async def disconnect_connection(
    request: Request,
    owner_id: OwnerQuery = None,
    simulator: SimulatedLinkClient = Depends(get_simulator),
) -> Connection:
    return simulator.disconnect(owner_id or request.app.state.settings.DEFAULT_OWNER_ID)


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


app = create_app()
