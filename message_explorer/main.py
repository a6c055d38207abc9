import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status, Query

from message_explorer.backfill import BackfillController
from message_explorer.config import settings
from message_explorer.storage import init_db, check_db_health, MessageStore
from message_explorer.logging_utils import (
    setup_logging,
    RequestLogMiddleware,
    annotate_page,
    annotate_upstream_failure,
)
from message_explorer.metrics import get_metrics, get_metrics_content_type
from message_explorer.pagination import PaginationService
from message_explorer.upstream import UpstreamError, UpstreamLogSource
from message_explorer.schemas import (
    HealthResponse,
    ErrorResponse,
    MessageResponse,
    MessagesListResponse,
    MessagesPage,
    StatsResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, build the store and the upstream client
    - Shutdown: close the upstream HTTP client
    """
    init_db()
    app.state.store = MessageStore()
    app.state.upstream = UpstreamLogSource(
        rpc_url=settings.RPC_URL,
        contract_address=settings.CONTRACT_ADDRESS,
        event_topic=settings.EVENT_TOPIC,
        timeout_s=settings.RPC_TIMEOUT_SECONDS,
    )
    yield
    await app.state.upstream.aclose()


app = FastAPI(
    title="Message Explorer API",
    description="Newest-first, cursor-paginated view over ledger messages with on-demand backfill",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLogMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_upstream(request: Request) -> UpstreamLogSource:
    return request.app.state.upstream


def get_pagination_service(
    store: MessageStore = Depends(get_store),
    upstream: UpstreamLogSource = Depends(get_upstream),
) -> PaginationService:
    backfill = BackfillController(
        source=upstream,
        store=store,
        page_size=settings.PAGE_SIZE,
        window=settings.BLOCK_WINDOW,
        max_depth=settings.MAX_BACKFILL_DEPTH,
        delay_seconds=settings.BACKFILL_DELAY_SECONDS,
    )
    return PaginationService(
        store=store,
        source=upstream,
        backfill=backfill,
        page_size=settings.PAGE_SIZE,
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the schema
    is applied, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Messages Route
# =============================================================================

@app.get(
    "/messages",
    response_model=MessagesListResponse,
    responses={
        502: {"model": ErrorResponse, "description": "Upstream node unavailable"},
    }
)
async def list_messages(
    request: Request,
    cursor: Annotated[Optional[int], Query(alias="id", description="Cursor returned by the previous page")] = None,
    from_block: Annotated[Optional[int], Query(alias="fromBlock", ge=0, description="Only messages at or above this block")] = None,
    to_block: Annotated[Optional[int], Query(alias="toBlock", ge=0, description="Only messages at or below this block")] = None,
    service: PaginationService = Depends(get_pagination_service),
) -> MessagesListResponse:
    """
    Return one page of messages, newest block first.

    Query Parameters:
        - id: cursor from the previous response; absent or non-positive means the first page
        - fromBlock / toBlock: optional filter over already stored messages (no backfill)

    When the store cannot fill a page, older history is fetched from the
    upstream node first. A page with fewer messages than the page size means
    upstream history is exhausted.
    """
    if from_block is not None and to_block is not None and from_block > to_block:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="fromBlock must not be greater than toBlock"
        )

    logger.info(f"GET /messages: id={cursor}, fromBlock={from_block}, toBlock={to_block}")

    try:
        page = await service.get_page(cursor, from_block=from_block, to_block=to_block)
    except UpstreamError as e:
        logger.error(f"Backfill failed: {e}")
        annotate_upstream_failure(request, cursor, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="upstream unavailable"
        )

    annotate_page(request, cursor, page)

    return MessagesListResponse(
        data=MessagesPage(
            messages=[MessageResponse.model_validate(msg) for msg in page.messages],
            cursor=page.next_cursor,
        )
    )


# =============================================================================
# Stats Route
# =============================================================================

@app.get("/stats", response_model=StatsResponse)
def get_statistics(
    from_block: Annotated[Optional[int], Query(alias="fromBlock", ge=0)] = None,
    to_block: Annotated[Optional[int], Query(alias="toBlock", ge=0)] = None,
    store: MessageStore = Depends(get_store),
) -> StatsResponse:
    """
    Summary of what has been ingested so far, optionally within a block range.

    Response:
        - total_messages: count of stored messages
        - first_block: oldest stored block (null if no messages)
        - last_block: newest stored block (null if no messages)
    """
    stats = store.get_stats(from_block, to_block)
    return StatsResponse(**stats)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
