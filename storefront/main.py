"""
FastAPI Application Entry Point

Pizza Palace Storefront - server-side front-end over the hosted backend.
Supports in-memory providers (development) and the hosted backend
(staging/production).

Endpoints:
    - /api/auth/*: Sign-up, sign-in, identity-provider redirect, sign-out
    - GET /dashboard: Identity-provider redirect target
    - GET /api/dashboard, /api/profile: Customer dashboard and profile
    - GET /api/menu: Categories and products
    - /api/cart*: Cart of the signed-in account
    - POST /api/checkout: Order placement
    - GET /api/orders, /api/orders/active(/stream), /api/orders/{id}
    - /api/admin/*: Stats, order management, database init, reconciliation
    - GET /admin: Admin dashboard page
    - GET /health: System health check

Author: Khalil_Bannouri
Version: 1.0.0
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from storefront.core.config import BackendProvider, get_settings, setup_logging
from storefront.errors import (
    BackendCallError,
    ErrorKind,
    StorefrontError,
    ValidationFailed,
)
from storefront.models import OrderStatus
from storefront.schemas import (
    CartItemRequest,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    ErrorResponse,
    HealthResponse,
    OrderStatsResponse,
    ProfileUpdateRequest,
    ReconciliationResponse,
    SeedResponse,
    SignInRequest,
    SignUpRequest,
    StatusUpdateRequest,
)
from storefront.services.admin import AdminOrderService, get_admin_policy
from storefront.services.auth import (
    AuthResult,
    GOOGLE_QUERY_PARAMS,
    auth_error_message,
    get_auth_service,
    oauth_error_message,
)
from storefront.services.backend import BaseBackendClient, get_backend_client, get_service_backend_client
from storefront.services.cart import get_cart_store
from storefront.services.categories import CategoryService
from storefront.services.checkout import CheckoutService
from storefront.services.orders import (
    OrderService,
    filter_order_history,
    status_display,
    watch_active_orders,
)
from storefront.services.products import ProductService
from storefront.services.profiles import ProfileService, loyalty_tier
from storefront.services.realtime import get_realtime_service
from storefront.services.reconciliation import purge_orphaned_orders
from storefront.services.seed import initialize_database, seed_admin_account
from storefront.session import (
    SessionContext,
    current_session,
    get_session_registry,
    optional_session,
    require_admin,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

# Template configuration
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# Cookie holding the PKCE verifier between the redirect and its return
CODE_VERIFIER_COOKIE = "sb-code-verifier"
RECENT_ORDERS_ON_DASHBOARD = 5


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Validate production config
    if settings.use_hosted_auth:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    # Log service configuration
    backend = get_backend_client()
    auth = get_auth_service()
    realtime = get_realtime_service()
    policy = get_admin_policy()
    registry = get_session_registry()
    logger.info(f"✅ Backend: {backend.provider_name}")
    logger.info(f"✅ Auth Service: {auth.provider_name}")
    logger.info(f"✅ Realtime Service: {realtime.provider_name}")
    logger.info(f"✅ Admin Policy: {policy.name}")

    # Create tables when talking to Postgres directly
    if settings.effective_backend_provider == BackendProvider.POSTGRES:
        from storefront.database import init_db

        await init_db()

    # Seed the in-memory backend
    if settings.effective_backend_provider == BackendProvider.MEMORY and settings.seed_on_startup:
        seeded = await initialize_database(backend)
        logger.info(f"✅ Menu seeded: {seeded.message}")
        if settings.demo_admin_email and settings.demo_admin_password:
            await seed_admin_account(
                auth,
                ProfileService(backend),
                settings.demo_admin_email,
                settings.demo_admin_password,
            )

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    registry.close()
    await realtime.close()
    await auth.close()
    await backend.close()
    if settings.effective_backend_provider == BackendProvider.POSTGRES:
        from storefront.database import dispose_engine

        await dispose_engine()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Food-ordering storefront: menu, cart, checkout, live order tracking "
        "and admin order management over a hosted backend."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def backend_for(session: Optional[SessionContext]) -> BaseBackendClient:
    """Data client acting with the caller's token."""
    return get_session_registry().backend_for(session)


def order_service(session: Optional[SessionContext]) -> OrderService:
    return OrderService(backend_for(session))


def with_status(order: dict) -> dict:
    """Attach the status icon/label/color to an order."""
    return {**order, "status_display": status_display(order["status"]).to_dict()}


def set_session_cookie(response, access_token: str) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        access_token,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def auth_payload(result: AuthResult, profile: Optional[dict] = None) -> dict[str, Any]:
    session = result.session
    user = result.user
    return {
        "success": True,
        "user": {"id": user.id, "email": user.email} if user else None,
        "access_token": session.access_token if session else None,
        "expires_at": session.expires_at if session else None,
        "confirmation_required": result.confirmation_required,
        "profile": profile,
    }


def raise_auth_failure(result: AuthResult) -> None:
    raise StorefrontError(result.error.kind, message=auth_error_message(result.error))


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "menu": "/api/menu",
        "admin": "/admin",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check() -> HealthResponse:
    """Verify all system components are operational."""
    backend = get_backend_client()
    auth = get_auth_service()
    realtime = get_realtime_service()

    backend_status = "healthy" if await backend.health_check() else "unhealthy"
    auth_status = "healthy" if await auth.health_check() else "unhealthy"
    realtime_status = "healthy" if await realtime.health_check() else "unhealthy"

    # Check Redis (broker of the reconciliation worker)
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if all(
        s == "healthy" for s in [backend_status, auth_status, realtime_status, redis_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        backend=backend_status,
        auth=auth_status,
        realtime=realtime_status,
        redis=redis_status,
        providers={
            "backend": backend.provider_name,
            "auth": auth.provider_name,
            "realtime": realtime.provider_name,
        },
        timestamp=datetime.now(),
    )


# =============================================================================
# AUTH ENDPOINTS
# =============================================================================

@app.post("/api/auth/sign-up", tags=["Auth"], responses={400: {"model": ErrorResponse}})
async def sign_up(body: SignUpRequest) -> JSONResponse:
    """Create an account; the profile is created from the sign-up fields."""
    body.validate_form()

    auth = get_auth_service()
    result = await auth.sign_up(
        body.email.strip(),
        body.password,
        body.profile_metadata(),
        redirect_to=settings.oauth_redirect_url,
    )
    if not result.success:
        raise_auth_failure(result)

    profile = None
    if result.session is not None:
        profiles = ProfileService(get_backend_client().for_session(result.session.access_token))
        profile = await profiles.get_or_create(
            result.user.id,
            result.user.email,
            body.profile_metadata(),
        )

    response = JSONResponse(status_code=201, content=auth_payload(result, profile))
    if result.session is not None:
        set_session_cookie(response, result.session.access_token)
    return response


@app.post("/api/auth/sign-in", tags=["Auth"], responses={401: {"model": ErrorResponse}})
async def sign_in(body: SignInRequest) -> JSONResponse:
    body.validate_form()

    result = await get_auth_service().sign_in_with_password(body.email.strip(), body.password)
    if not result.success:
        raise_auth_failure(result)

    session = await get_session_registry().resolve(result.session.access_token)
    response = JSONResponse(content=auth_payload(result, session.profile))
    set_session_cookie(response, result.session.access_token)
    return response


@app.get("/api/auth/oauth", tags=["Auth"])
async def sign_in_with_oauth(provider: Optional[str] = Query(None)) -> RedirectResponse:
    """Redirect the browser to the identity provider's consent screen."""
    provider = provider or settings.oauth_provider
    result = await get_auth_service().sign_in_with_oauth(
        provider,
        redirect_to=settings.oauth_redirect_url,
        scopes=settings.oauth_scopes,
        query_params=GOOGLE_QUERY_PARAMS if provider == "google" else None,
    )
    if not result.success:
        raise StorefrontError(result.error.kind, message=oauth_error_message(result.error.code))

    response = RedirectResponse(result.redirect_url, status_code=302)
    response.set_cookie(CODE_VERIFIER_COOKIE, result.code_verifier, httponly=True, samesite="lax")
    return response


@app.get("/dashboard", tags=["Auth"])
async def oauth_return(
    request: Request,
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
):
    """Identity-provider redirect target: finish sign-in, then show the dashboard."""
    if error:
        logger.warning(f"OAuth error: {error} ({error_description})")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": error, "message": oauth_error_message(error)},
        )
    if not code:
        return RedirectResponse("/api/dashboard", status_code=302)

    verifier = request.cookies.get(CODE_VERIFIER_COOKIE)
    if not verifier:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "invalid_request",
                     "message": oauth_error_message("invalid_request")},
        )

    result = await get_auth_service().exchange_code_for_session(code, verifier)
    if not result.success:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": result.error.code or "unknown",
                     "message": oauth_error_message(result.error.code)},
        )

    response = RedirectResponse("/api/dashboard", status_code=302)
    set_session_cookie(response, result.session.access_token)
    response.delete_cookie(CODE_VERIFIER_COOKIE)
    return response


@app.post("/api/auth/sign-out", tags=["Auth"])
async def sign_out(session: SessionContext = Depends(current_session)) -> JSONResponse:
    result = await get_auth_service().sign_out(session.access_token)
    get_session_registry().invalidate(access_token=session.access_token)
    if not result.success:
        logger.warning(f"Sign-out failed for {session.email}: {result.error.message}")

    response = JSONResponse(content={"success": True, "message": "Signed out"})
    response.delete_cookie(settings.session_cookie_name)
    return response


@app.get("/api/auth/session", tags=["Auth"])
async def get_current_session(
    session: Optional[SessionContext] = Depends(optional_session),
) -> dict[str, Any]:
    if session is None:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "user_id": session.user_id,
        "email": session.email,
        "is_admin": session.is_admin,
    }


# =============================================================================
# DASHBOARD & PROFILE ENDPOINTS
# =============================================================================

@app.get("/api/dashboard", tags=["Dashboard"])
async def dashboard(session: SessionContext = Depends(current_session)) -> dict[str, Any]:
    """Profile, loyalty tier and most recent orders of the caller."""
    orders = await order_service(session).list_user_orders(session.user_id)
    return {
        "profile": session.profile,
        "loyalty": loyalty_tier(session.profile.get("loyalty_points") or 0).to_dict(),
        "recent_orders": [with_status(o) for o in orders[:RECENT_ORDERS_ON_DASHBOARD]],
        "is_admin": session.is_admin,
    }


@app.get("/api/profile", tags=["Dashboard"])
async def get_profile(session: SessionContext = Depends(current_session)) -> dict[str, Any]:
    return session.profile


@app.patch("/api/profile", tags=["Dashboard"])
async def update_profile(
    body: ProfileUpdateRequest,
    session: SessionContext = Depends(current_session),
) -> dict[str, Any]:
    changes = body.changes()
    if not changes:
        raise ValidationFailed("profile", "Nothing to update")

    profile = await ProfileService(backend_for(session)).update(session.user_id, changes)
    get_session_registry().invalidate(user_id=session.user_id)
    return profile


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get("/api/menu", tags=["Menu"])
async def menu(
    category: Optional[str] = Query(None),
    session: Optional[SessionContext] = Depends(optional_session),
) -> dict[str, Any]:
    """Categories and available products, with the caller's cart quantities."""
    backend = backend_for(session)
    categories = await CategoryService(backend).list_all()
    products = await ProductService(backend).list_available(category)

    cart = get_cart_store().get(session.user_id) if session else None
    return {
        "currency": settings.currency_symbol,
        "categories": categories,
        "products": [
            {**p, "quantity_in_cart": cart.quantity_of(p["id"]) if cart else 0}
            for p in products
        ],
    }


@app.get("/api/menu/{product_id}", tags=["Menu"])
async def get_product(
    product_id: str,
    session: Optional[SessionContext] = Depends(optional_session),
) -> dict[str, Any]:
    return await ProductService(backend_for(session)).get(product_id)


# =============================================================================
# CART ENDPOINTS
# =============================================================================

@app.get("/api/cart", response_model=CartResponse, tags=["Cart"])
async def get_cart(session: SessionContext = Depends(current_session)) -> dict[str, Any]:
    return get_cart_store().get(session.user_id).to_dict()


@app.post("/api/cart/items", response_model=CartResponse, tags=["Cart"])
async def add_to_cart(
    body: CartItemRequest,
    session: SessionContext = Depends(current_session),
) -> dict[str, Any]:
    product = await ProductService(backend_for(session)).get(body.product_id)
    if not product.get("available", True):
        raise ValidationFailed("product_id", f"{product['name']} is currently unavailable")

    cart = get_cart_store().get(session.user_id)
    cart.add(product)
    logger.debug(f"Cart {session.user_id}: +1 {product['name']}")
    return cart.to_dict()


@app.delete("/api/cart/items/{product_id}", response_model=CartResponse, tags=["Cart"])
async def remove_from_cart(
    product_id: str,
    session: SessionContext = Depends(current_session),
) -> dict[str, Any]:
    cart = get_cart_store().get(session.user_id)
    cart.remove(product_id)
    return cart.to_dict()


@app.delete("/api/cart", response_model=CartResponse, tags=["Cart"])
async def clear_cart(session: SessionContext = Depends(current_session)) -> dict[str, Any]:
    cart = get_cart_store().get(session.user_id)
    cart.clear()
    return cart.to_dict()


# =============================================================================
# CHECKOUT ENDPOINT
# =============================================================================

@app.post(
    "/api/checkout",
    response_model=CheckoutResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    tags=["Checkout"],
    summary="Place the cart as an order",
)
async def checkout(
    body: CheckoutRequest,
    session: Optional[SessionContext] = Depends(optional_session),
) -> CheckoutResponse:
    backend = backend_for(session)
    service = CheckoutService(
        OrderService(backend),
        ProfileService(backend),
        get_cart_store(),
    )
    confirmation = await service.checkout(
        session.user_id if session else None,
        session.profile if session else None,
        address=body.address,
        pincode=body.pincode,
    )
    get_session_registry().invalidate(user_id=session.user_id)

    return CheckoutResponse(
        message=(
            f"Your order #{confirmation.order_id[:8]} has been placed. "
            f"You earned {confirmation.points_earned} loyalty points!"
        ),
        **confirmation.to_dict(),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.get("/api/orders", tags=["Orders"])
async def order_history(
    search: str = Query(""),
    status: str = Query("all"),
    sort_by: str = Query("created_at"),
    session: SessionContext = Depends(current_session),
) -> dict[str, Any]:
    """The caller's orders, filtered and sorted."""
    orders = await order_service(session).list_user_orders(session.user_id)
    filtered = filter_order_history(orders, search=search, status=status, sort_by=sort_by)
    return {"total": len(filtered), "orders": [with_status(o) for o in filtered]}


@app.get("/api/orders/active", tags=["Orders"])
async def active_orders(session: SessionContext = Depends(current_session)) -> dict[str, Any]:
    orders = await order_service(session).active_orders(session.user_id)
    return {"orders": [with_status(o) for o in orders]}


@app.get("/api/orders/active/stream", tags=["Orders"])
async def active_orders_stream(
    request: Request,
    session: SessionContext = Depends(current_session),
) -> StreamingResponse:
    """Server-Sent Events: the active orders, re-sent after every order update."""
    feed = watch_active_orders(
        order_service(session),
        get_realtime_service(),
        session.user_id,
        access_token=session.access_token,
    )

    async def event_stream():
        try:
            async for orders in feed:
                if await request.is_disconnected():
                    break
                payload = json.dumps({"orders": [with_status(o) for o in orders]}, default=str)
                yield f"event: orders\ndata: {payload}\n\n"
        finally:
            await feed.aclose()
            logger.debug(f"Order stream closed for {session.user_id}")

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/api/orders/{order_id}", tags=["Orders"])
async def get_order(
    order_id: str,
    session: SessionContext = Depends(current_session),
) -> dict[str, Any]:
    """One order with its items; other accounts' orders are only visible to admins."""
    detail = await order_service(session).get_order_with_items(order_id)
    if detail["order"]["user_id"] != session.user_id and not session.is_admin:
        raise StorefrontError(ErrorKind.NOT_FOUND, message=f"Order {order_id} not found")
    return {"order": with_status(detail["order"]), "items": detail["items"]}


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@app.get("/api/admin/stats", response_model=OrderStatsResponse, tags=["Admin"])
async def admin_stats(session: SessionContext = Depends(require_admin)) -> OrderStatsResponse:
    stats = await AdminOrderService(order_service(session)).stats()
    return OrderStatsResponse(**stats.to_dict())


@app.get("/api/admin/orders", tags=["Admin"])
async def admin_orders(
    status: str = Query("all"),
    search: str = Query(""),
    session: SessionContext = Depends(require_admin),
) -> dict[str, Any]:
    orders = await AdminOrderService(order_service(session)).list_orders(status, search)
    return {"total": len(orders), "orders": [with_status(o) for o in orders]}


@app.patch("/api/admin/orders/{order_id}/status", tags=["Admin"])
async def admin_update_status(
    order_id: str,
    body: StatusUpdateRequest,
    session: SessionContext = Depends(require_admin),
) -> dict[str, Any]:
    order = await AdminOrderService(order_service(session)).update_status(order_id, body.status.value)
    return {
        "success": True,
        "message": f"Order #{order_id[:8]} status changed to {body.status.value}",
        "order": with_status(order),
    }


@app.post("/api/admin/database-init", response_model=SeedResponse, tags=["Admin"])
async def admin_database_init(session: SessionContext = Depends(require_admin)) -> JSONResponse:
    result = await initialize_database(backend_for(session))
    return JSONResponse(status_code=200 if result.success else 502, content=result.to_dict())


@app.post("/api/admin/reconcile", response_model=ReconciliationResponse, tags=["Admin"])
async def admin_reconcile(
    dry_run: bool = Query(False),
    session: SessionContext = Depends(require_admin),
) -> ReconciliationResponse:
    """Delete orders left without items by a failed checkout rollback."""
    report = await purge_orphaned_orders(get_service_backend_client(), dry_run=dry_run)
    logger.info(f"🧹 Reconciliation requested by {session.email}: {len(report.purged)} purged")
    return ReconciliationResponse(**report.to_dict())


@app.get("/admin", response_class=HTMLResponse, tags=["Admin"])
async def admin_page(
    request: Request,
    status: str = Query("all"),
    search: str = Query(""),
    session: SessionContext = Depends(require_admin),
) -> HTMLResponse:
    """Serve the admin dashboard."""
    service = AdminOrderService(order_service(session))
    stats = await service.stats()
    orders = await service.list_orders(status, search)
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "app_name": settings.app_name,
            "currency": settings.currency_symbol,
            "stats": stats,
            "orders": [with_status(o) for o in orders],
            "status": status,
            "search": search,
            "statuses": [s.value for s in OrderStatus],
            "admin_email": session.email,
        },
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Render service-layer errors with their kind."""
    if isinstance(exc, BackendCallError):
        logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": ErrorKind.NOT_FOUND.value,
                "message": f"Route {request.url.path} does not exist",
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": "http_error", "message": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": ErrorKind.UNKNOWN.value,
            "message": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
