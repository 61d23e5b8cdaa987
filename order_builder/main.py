"""
FastAPI Application Entry Point

Order Builder - configurable multi-step ordering for online orders.
Remote state uses an in-memory store in development and PostgreSQL + Redis
in staging/production.

Endpoints:
    - GET  /api/products: Configurable products
    - POST /api/configurator/sessions: Open a product customization
    - POST /api/configurator/sessions/{id}/...: Selections and navigation
    - POST /api/configurator/sessions/{id}/add-to-cart: Validate and queue
    - GET|PATCH|DELETE /api/state/{flow}: Live catering order state
    - POST|GET|PATCH|DELETE /api/state/{flow}/draft: Edit drafts
    - POST /api/state/{flow}/draft/apply: Commit a draft section
    - POST /api/identity/sign-in|sign-out: Identity handoff
    - GET  /health: System health check

Callers identify themselves with the X-Client-Id header (required). Each
client gets its own OrderStateService and local cache directory, and only the
client that opened a configurator session can drive it. Clients idle longer
than CLIENT_IDLE_MINUTES are evicted along with their sessions.
"""

import logging
import re
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from order_builder.configurator import PRODUCT_CONFIGS, ProductConfigurator, load_catalog
from order_builder.core.config import get_settings, setup_logging
from order_builder.database import dispose_engine, init_db
from order_builder.exceptions import (
    DraftNotFoundError,
    NoActiveSessionError,
    OrderBuilderError,
    UnknownFlowError,
    UnknownProductError,
)
from order_builder.schemas import (
    AddonQuantityRequest,
    CartResult,
    Catalog,
    DraftResult,
    ErrorResponse,
    HealthResponse,
    IdentityResponse,
    MutationResponse,
    NavigationResponse,
    OpenSessionRequest,
    SelectOptionRequest,
    SelectVariantRequest,
    SessionResponse,
    SignInRequest,
    StateResponse,
    StateUpdateRequest,
    StepRequest,
)
from order_builder.state import Identity, LocalStateCache, OrderStateService
from order_builder.state.remote import get_remote_store
from order_builder.tasks import queue_cart_export

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

# Client ids name directories under the local cache root
CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


@dataclass
class OpenSession:
    """A configurator session and the client that opened it."""
    configurator: ProductConfigurator
    client_id: str
    last_used: float


# Per-client state services and open configurator sessions
_state_services: dict[str, OrderStateService] = {}
_client_last_seen: dict[str, float] = {}
_sessions: dict[str, OpenSession] = {}

_clock = time.monotonic


@lru_cache()
def get_catalog() -> Catalog:
    return load_catalog(settings.catalog_path)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    if settings.use_real_services:
        await init_db()
        logger.info("✅ Database initialized")

    catalog = get_catalog()
    logger.info(f"✅ Catalog: {len(catalog.sauces)} sauces, {len(catalog.dipping_sauces)} dips")
    logger.info(f"✅ Remote Store: {get_remote_store().provider_name}")
    logger.info("✅ Application ready!")

    yield

    logger.info("Shutting down...")
    for service in list(_state_services.values()):
        await service.close()
    _state_services.clear()
    _client_last_seen.clear()
    _sessions.clear()
    await get_remote_store().close()
    if settings.use_real_services:
        await dispose_engine()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Configurable multi-step order builder: product customization flows, "
        "catering order drafts and identity-aware state sync."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_client_id(x_client_id: Optional[str] = Header(None, alias="X-Client-Id")) -> str:
    if not x_client_id:
        raise HTTPException(status_code=400, detail="X-Client-Id header required")
    if not CLIENT_ID_PATTERN.match(x_client_id):
        raise HTTPException(
            status_code=400,
            detail="X-Client-Id may only contain letters, digits, '-' and '_' (max 64)",
        )
    return x_client_id


def _touch(client_id: str) -> float:
    now = _clock()
    _client_last_seen[client_id] = now
    return now


async def _evict_idle_clients() -> None:
    """Drop sessions and state services that have been idle too long."""
    cutoff = _clock() - settings.client_idle_seconds

    for session_id, open_session in list(_sessions.items()):
        if open_session.last_used < cutoff:
            del _sessions[session_id]
            logger.info(f"Evicted idle session {session_id}")

    for client_id, last_seen in list(_client_last_seen.items()):
        if last_seen >= cutoff:
            continue
        del _client_last_seen[client_id]
        service = _state_services.pop(client_id, None)
        if service is not None:
            await service.close()
            logger.info(f"Evicted idle client {client_id}")


async def get_state_service(client_id: str = Depends(get_client_id)) -> OrderStateService:
    """One OrderStateService per client, created on first request."""
    await _evict_idle_clients()
    _touch(client_id)

    service = _state_services.get(client_id)
    if service is None:
        local_cache = LocalStateCache(
            Path(settings.local_cache_directory) / client_id,
            version=settings.state_version,
            ttl_seconds=settings.local_state_ttl_seconds,
            lock_timeout=settings.local_cache_lock_timeout,
        )
        service = OrderStateService(local_cache=local_cache, settings=settings, client_id=client_id)
        _state_services[client_id] = service
        logger.debug(f"Created state service for client {client_id}")
    return service


async def get_session(
    session_id: str,
    client_id: str = Depends(get_client_id),
) -> ProductConfigurator:
    """The open session, visible only to the client that opened it."""
    await _evict_idle_clients()

    open_session = _sessions.get(session_id)
    if (
        open_session is None
        or open_session.client_id != client_id
        or open_session.configurator.session is None
    ):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    open_session.last_used = _touch(client_id)
    return open_session.configurator


def _state_response(service: OrderStateService, flow_type: str, state: dict[str, Any]) -> StateResponse:
    return StateResponse(flow_type=flow_type, state=state, has_draft=service.has_draft(flow_type))


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check() -> HealthResponse:
    """Verify the remote store and Redis are reachable."""
    store = get_remote_store()
    store_status = "healthy" if await store.health_check() else "unhealthy"

    if settings.use_real_services:
        redis_status = "healthy"
        try:
            r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
            r.ping()
            r.close()
        except redis.RedisError as e:
            redis_status = f"unhealthy: {str(e)}"
            logger.error(f"Redis health check failed: {e}")
    else:
        redis_status = "not used (development)"

    healthy = store_status == "healthy" and not redis_status.startswith("unhealthy")
    overall = "operational" if healthy else "degraded"

    return HealthResponse(
        status=overall,
        remote_store=f"{store.provider_name}: {store_status}",
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# PRODUCT ENDPOINTS
# =============================================================================

@app.get("/api/products", tags=["Products"])
async def list_products() -> list[dict[str, Any]]:
    """Products that have a customization flow."""
    return [
        {
            "product_id": product_id,
            "display_name": config.display_name,
            "product_type": config.product_type,
            "category": config.category,
            "steps": [step.id for step in config.customization_flow],
        }
        for product_id, config in PRODUCT_CONFIGS.items()
    ]


# =============================================================================
# CONFIGURATOR ENDPOINTS
# =============================================================================

@app.post(
    "/api/configurator/sessions",
    response_model=SessionResponse,
    status_code=201,
    tags=["Configurator"],
)
async def open_session(
    request: OpenSessionRequest,
    client_id: str = Depends(get_client_id),
    service: OrderStateService = Depends(get_state_service),
) -> SessionResponse:
    configurator = ProductConfigurator(
        catalog=request.catalog or get_catalog(),
        state_service=service,
        cart_sink=queue_cart_export,
        markup=settings.catalog_markup,
    )
    view = configurator.open(request.product_id, request.product_data)

    session_id = uuid.uuid4().hex
    _sessions[session_id] = OpenSession(configurator, client_id, last_used=_touch(client_id))
    logger.info(f"Session {session_id} opened for {request.product_id}")
    return SessionResponse(session_id=session_id, view=view)


@app.get("/api/configurator/sessions/{session_id}", response_model=SessionResponse, tags=["Configurator"])
async def get_session_view(
    session_id: str,
    configurator: ProductConfigurator = Depends(get_session),
) -> SessionResponse:
    return SessionResponse(session_id=session_id, view=configurator.view())


@app.delete("/api/configurator/sessions/{session_id}", tags=["Configurator"])
async def close_session(
    session_id: str,
    configurator: ProductConfigurator = Depends(get_session),
) -> dict[str, Any]:
    configurator.close()
    _sessions.pop(session_id, None)
    return {"success": True, "session_id": session_id}


@app.post(
    "/api/configurator/sessions/{session_id}/select-option",
    response_model=MutationResponse,
    tags=["Configurator"],
)
async def select_option(
    request: SelectOptionRequest,
    configurator: ProductConfigurator = Depends(get_session),
) -> MutationResponse:
    accepted = configurator.select_option(request.step_id, request.option_id)
    return MutationResponse(accepted=accepted, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/select-variant",
    response_model=MutationResponse,
    tags=["Configurator"],
)
async def select_variant(
    request: SelectVariantRequest,
    configurator: ProductConfigurator = Depends(get_session),
) -> MutationResponse:
    accepted = configurator.select_variant(request.variant)
    return MutationResponse(accepted=accepted, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/toggle",
    response_model=MutationResponse,
    tags=["Configurator"],
)
async def toggle_option(
    request: SelectOptionRequest,
    configurator: ProductConfigurator = Depends(get_session),
) -> MutationResponse:
    accepted = configurator.toggle_multi_choice(request.step_id, request.option_id)
    return MutationResponse(accepted=accepted, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/addon-quantity",
    response_model=MutationResponse,
    tags=["Configurator"],
)
async def change_addon_quantity(
    request: AddonQuantityRequest,
    configurator: ProductConfigurator = Depends(get_session),
) -> MutationResponse:
    accepted = configurator.change_addon_quantity(request.step_id, request.item_id, request.delta)
    return MutationResponse(accepted=accepted, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/no-dip",
    response_model=MutationResponse,
    tags=["Configurator"],
)
async def select_no_dip(
    request: StepRequest,
    configurator: ProductConfigurator = Depends(get_session),
) -> MutationResponse:
    accepted = configurator.select_no_dip(request.step_id)
    return MutationResponse(accepted=accepted, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/next",
    response_model=NavigationResponse,
    tags=["Configurator"],
)
async def navigate_next(configurator: ProductConfigurator = Depends(get_session)) -> NavigationResponse:
    result = configurator.next()
    return NavigationResponse(result=result, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/back",
    response_model=NavigationResponse,
    tags=["Configurator"],
)
async def navigate_back(configurator: ProductConfigurator = Depends(get_session)) -> NavigationResponse:
    result = configurator.back()
    return NavigationResponse(result=result, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/jump",
    response_model=MutationResponse,
    tags=["Configurator"],
)
async def jump_to_step(
    request: StepRequest,
    configurator: ProductConfigurator = Depends(get_session),
) -> MutationResponse:
    jumped = configurator.jump_to_step(request.step_id)
    return MutationResponse(accepted=jumped, view=configurator.view())


@app.post(
    "/api/configurator/sessions/{session_id}/add-to-cart",
    response_model=CartResult,
    tags=["Configurator"],
)
async def add_to_cart(
    session_id: str,
    configurator: ProductConfigurator = Depends(get_session),
) -> CartResult:
    result = configurator.add_to_cart()
    if result.added:
        _sessions.pop(session_id, None)
    return result


# =============================================================================
# ORDER STATE ENDPOINTS
# =============================================================================

@app.get("/api/state/{flow_type}", response_model=StateResponse, tags=["Order State"])
async def get_state(
    flow_type: str,
    service: OrderStateService = Depends(get_state_service),
) -> StateResponse:
    return _state_response(service, flow_type, service.get_state(flow_type))


@app.patch("/api/state/{flow_type}", response_model=StateResponse, tags=["Order State"])
async def update_state(
    flow_type: str,
    request: StateUpdateRequest,
    service: OrderStateService = Depends(get_state_service),
) -> StateResponse:
    return _state_response(service, flow_type, service.save_state(flow_type, request.updates))


@app.delete("/api/state/{flow_type}", response_model=StateResponse, tags=["Order State"])
async def clear_state(
    flow_type: str,
    service: OrderStateService = Depends(get_state_service),
) -> StateResponse:
    return _state_response(service, flow_type, await service.clear_state(flow_type))


@app.post("/api/state/{flow_type}/draft", response_model=StateResponse, tags=["Drafts"])
async def create_draft(
    flow_type: str,
    service: OrderStateService = Depends(get_state_service),
) -> StateResponse:
    return _state_response(service, flow_type, service.create_draft(flow_type))


@app.get("/api/state/{flow_type}/draft", response_model=StateResponse, tags=["Drafts"])
async def get_draft(
    flow_type: str,
    service: OrderStateService = Depends(get_state_service),
) -> StateResponse:
    draft = service.get_draft(flow_type)
    if draft is None:
        raise DraftNotFoundError(flow_type)
    return _state_response(service, flow_type, draft)


@app.patch("/api/state/{flow_type}/draft", response_model=StateResponse, tags=["Drafts"])
async def update_draft(
    flow_type: str,
    request: StateUpdateRequest,
    service: OrderStateService = Depends(get_state_service),
) -> StateResponse:
    return _state_response(service, flow_type, service.update_draft(flow_type, request.updates))


@app.delete("/api/state/{flow_type}/draft", tags=["Drafts"])
async def discard_draft(
    flow_type: str,
    service: OrderStateService = Depends(get_state_service),
) -> dict[str, Any]:
    service.discard_draft(flow_type)
    return {"success": True, "flow_type": flow_type}


@app.post("/api/state/{flow_type}/draft/apply", response_model=DraftResult, tags=["Drafts"])
async def apply_draft(
    flow_type: str,
    section: Optional[str] = Query(None, description="Section to validate before committing"),
    service: OrderStateService = Depends(get_state_service),
) -> DraftResult:
    return service.apply_draft(flow_type, section)


# =============================================================================
# IDENTITY ENDPOINTS
# =============================================================================

@app.post("/api/identity/sign-in", response_model=IdentityResponse, tags=["Identity"])
async def sign_in(
    request: SignInRequest,
    service: OrderStateService = Depends(get_state_service),
) -> IdentityResponse:
    await service.sign_in(
        Identity(
            uid=request.uid,
            display_name=request.display_name,
            email=request.email,
            phone_number=request.phone_number,
        )
    )
    return IdentityResponse(success=True, uid=request.uid, message=f"Signed in {request.uid}")


@app.post("/api/identity/sign-out", response_model=IdentityResponse, tags=["Identity"])
async def sign_out(service: OrderStateService = Depends(get_state_service)) -> IdentityResponse:
    uid = service.identity.uid if service.identity else None
    await service.sign_out()
    return IdentityResponse(success=True, uid=uid, message="Signed out")


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderBuilderError)
async def order_builder_exception_handler(request: Request, exc: OrderBuilderError) -> JSONResponse:
    """Map addressing errors to 404 and out-of-order calls to 409."""
    if isinstance(exc, (UnknownFlowError, UnknownProductError)):
        status_code = 404
    elif isinstance(exc, (DraftNotFoundError, NoActiveSessionError)):
        status_code = 409
    else:
        status_code = 400

    logger.warning(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=type(exc).__name__, detail=str(exc)).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "order_builder.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
