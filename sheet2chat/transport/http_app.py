# sheet2chat/transport/http_app.py
"""
HTTP application.

Security layers:
1. Webhooks: shared secret (generic), Bearer token or secret (booking)
2. Cron: Bearer CRON_SECRET
3. Admin UI helpers: Bearer ADMIN_API_TOKEN
4. Monitoring: METRICS_TOKEN or internal network
5. Viewer data: public, the viewer link is the credential

Every decision about an event happens in ``NotificationEngine``; this module
only authenticates, parses JSON and maps errors to status codes.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from sheet2chat.config import settings
from sheet2chat.core.dispatcher import Dispatcher
from sheet2chat.core.error_reporter import ErrorReporter
from sheet2chat.core.errors import DispatchError, ErrorCategory, InvalidPayloadError
from sheet2chat.core.handlers import ConsultationHandler, ReminderHandler, UniversalHandler
from sheet2chat.core.staff_matcher import StaffMatcher
from sheet2chat.core.tenant_resolver import TenantResolver
from sheet2chat.core.use_cases import BOOKING_CASE, NotificationEngine
from sheet2chat.core.viewer import AssignmentViewer, ViewerLookupError
from sheet2chat.infra.chatwork_client import ChatworkAPIError, ChatworkClient
from sheet2chat.infra.config_store import AsyncPostgresConfigStore, ConfigStoreError, InMemoryConfigStore
from sheet2chat.infra.db_async import close_pool, init_pool
from sheet2chat.infra.http_client import close_all_sessions
from sheet2chat.infra.logging_config import get_logger, setup_logging
from sheet2chat.infra.metrics import get_metrics_collector
from sheet2chat.infra.migrations_async import apply_migrations
from sheet2chat.infra.sheet_index import SheetIndex
from sheet2chat.infra.sheets_client import GoogleSheetsClient, ServiceAccountTokenProvider, SheetsAPIError
from sheet2chat.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from sheet2chat.transport.security import (
    SecurityHeaders,
    get_client_ip,
    require_admin_auth,
    require_cron_auth,
    require_metrics_auth,
    sanitize_error_message,
    verify_booking_auth,
    verify_webhook_secret,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# WIRING
# ============================================================================

def build_engine(app_settings, store, chat, sheets, index: SheetIndex | None = None) -> NotificationEngine:
    """Assemble the engine from its collaborators."""
    tz = ZoneInfo(app_settings.local_timezone)
    reporter = ErrorReporter(chat, app_settings, store)
    matcher = StaffMatcher(sheets)
    dispatcher = Dispatcher(chat, reporter, tz)

    return NotificationEngine(
        resolver=TenantResolver(store, app_settings, index),
        reporter=reporter,
        universal=UniversalHandler(dispatcher, reporter),
        consultation=ConsultationHandler(chat, sheets, reporter, app_settings, staff_matcher=matcher),
        reminder=ReminderHandler(chat, sheets, reporter, tz, staff_matcher=matcher),
    )


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_engine(request: Request) -> NotificationEngine:
    """Get engine from app state"""
    return request.app.state.engine


async def _read_json(request: Request) -> dict:
    """Request body as a dict; anything else (empty, invalid, non-object) becomes {}."""
    try:
        body = await request.json()
    except ValueError:
        logger.warning(f"Request body is not valid JSON: {request.url.path}")
        return {}
    return body if isinstance(body, dict) else {}


# ============================================================================
# MIDDLEWARE FOR SECURITY HEADERS
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# APPLICATION LIFECYCLE
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(f"Starting application: env={settings.app_env}")

    if settings.database_enabled:
        await init_pool()
        logger.info("Database pool initialized")
        await apply_migrations()
        store = AsyncPostgresConfigStore(settings)
    else:
        logger.warning("DATABASE_URL not set, using in-memory promotion config store")
        store = InMemoryConfigStore(settings)

    index = SheetIndex(store, ttl_seconds=settings.sheet_index_ttl_seconds)
    store.add_change_listener(index.mark_stale)

    chat = ChatworkClient()
    sheets = GoogleSheetsClient(ServiceAccountTokenProvider(settings.google_service_account_json))

    fastapi_app.state.store = store
    fastapi_app.state.index = index
    fastapi_app.state.chat = chat
    fastapi_app.state.sheets = sheets
    fastapi_app.state.engine = build_engine(settings, store, chat, sheets, index)
    fastapi_app.state.viewer = AssignmentViewer(sheets, settings)

    logger.info(f"Application ready: timezone={settings.local_timezone}")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")
    await close_all_sessions()
    if settings.database_enabled:
        await close_pool()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="sheet2chat",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Content-Type", "Authorization", "X-Webhook-Secret"],
    )
else:
    # More permissive in dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(DispatchError)
async def dispatch_exception_handler(request: Request, exc: DispatchError):
    """Handler-raised errors were already reported to the admin room"""
    status_code = 400 if isinstance(exc, InvalidPayloadError) else 500
    return JSONResponse(status_code=status_code, content={"error": exc.detail})


@app.exception_handler(ConfigStoreError)
async def config_store_exception_handler(request: Request, exc: ConfigStoreError):
    logger.error(f"Config store error: {exc}")
    return JSONResponse(
        status_code=exc.status,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Liveness probe"""
    return {"status": "healthy"}


@app.get("/metrics", dependencies=[Depends(require_metrics_auth)])
def metrics():
    """
    Counters and dispatch timings as JSON.

    Access: internal network OR METRICS_TOKEN. 404 when ENABLE_METRICS is off.
    """
    if not settings.enable_metrics:
        raise HTTPException(status_code=404, detail="Not Found")
    return get_metrics_collector().get_metrics()


# ============================================================================
# WEBHOOKS
# ============================================================================

@app.post("/api/webhook", dependencies=[Depends(verify_webhook_secret)])
async def webhook(
    request: Request,
    promotionId: str | None = None,
    engine: NotificationEngine = Depends(get_engine),
):
    """
    Generic row event: ``{type, data, config?, promotionId?, sheetName?}``.

    ``promotionId`` may also be passed as a query parameter; the body wins.
    """
    body = await _read_json(request)
    return await engine.process(body, promotion_id=promotionId)


@app.post("/api/webhook/booking")
async def booking_webhook(request: Request, engine: NotificationEngine = Depends(get_engine)):
    """Direct booking webhook from an external scheduling system."""
    ok, error = verify_booking_auth(request)
    if not ok:
        logger.warning(f"Booking webhook auth failed: {error}")
        await engine.reporter.report(
            BOOKING_CASE,
            ErrorCategory.SECURITY_ALERT,
            "Unauthorized access attempt to booking webhook endpoint. "
            "Invalid or missing authentication token.",
            payload={
                "ip": get_client_ip(request),
                "userAgent": (request.headers.get("User-Agent") or "unknown")[:50],
            },
        )
        raise HTTPException(status_code=401, detail="Unauthorized")

    body = await _read_json(request)
    return await engine.process_booking(body)


@app.post("/api/cron/reminder", dependencies=[Depends(require_cron_auth)])
async def cron_reminder(
    promotionId: str | None = None,
    engine: NotificationEngine = Depends(get_engine),
):
    """Day-before reminders for one promotion (the legacy one by default)."""
    return await engine.run_reminders(promotion_id=promotionId)


@app.get("/api/config", dependencies=[Depends(verify_webhook_secret)])
async def trigger_config(request: Request):
    """Sheet names that should fire webhooks, for the spreadsheet-side trigger script."""
    return await request.app.state.index.trigger_sheets()


@app.get("/api/viewer/data")
async def viewer_data(
    request: Request,
    id: str | None = None,
    promotionId: str | None = None,
    engine: NotificationEngine = Depends(get_engine),
):
    """
    Assignment status behind a viewer link.

    ``id`` is the participant's email or the digest from their viewer URL.
    Public: the link itself is the credential.
    """
    if not id:
        raise HTTPException(status_code=400, detail="Missing ID")

    resolved = await engine.resolver.resolve(promotion_id=promotionId)
    try:
        return await request.app.state.viewer.lookup(resolved.config, id)
    except ViewerLookupError as exc:
        raise HTTPException(status_code=exc.status, detail=exc.message)
    except SheetsAPIError as exc:
        logger.error(f"Viewer lookup failed: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})


# ============================================================================
# ADMIN UI ENDPOINTS (Require ADMIN_API_TOKEN)
# ============================================================================

@app.get("/api/chatwork/members", dependencies=[Depends(require_admin_auth)])
async def chatwork_members(
    request: Request,
    roomId: str | None = None,
    promotionId: str | None = None,
    engine: NotificationEngine = Depends(get_engine),
):
    """Room members for assignee selection: ``{members: [{id, name, role}]}``."""
    if not roomId:
        raise HTTPException(status_code=400, detail="Missing roomId")

    resolved = await engine.resolver.resolve(promotion_id=promotionId)
    token = resolved.config.chatwork_token
    if not token:
        raise HTTPException(status_code=400, detail="Chatwork token not configured")

    try:
        members = await request.app.state.chat.get_room_members(token, roomId)
    except ChatworkAPIError as exc:
        status_code = exc.status if exc.status >= 400 else 502
        return JSONResponse(
            status_code=status_code,
            content={"error": f"Chatwork API error: {exc.status}", "detail": exc.message},
        )

    return {
        "members": [
            {"id": m.get("account_id"), "name": m.get("name"), "role": m.get("role")}
            for m in members
        ]
    }


@app.get("/api/sheets/headers", dependencies=[Depends(require_admin_auth)])
async def sheet_headers(
    request: Request,
    spreadsheetId: str | None = None,
    sheetName: str | None = None,
):
    """Header row of a sheet, for building rule columns and filters."""
    if not spreadsheetId or not sheetName:
        raise HTTPException(status_code=400, detail="Missing spreadsheetId or sheetName")

    try:
        headers = await request.app.state.sheets.get_headers(spreadsheetId, sheetName)
    except SheetsAPIError as exc:
        logger.error(f"Failed to fetch headers: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return {"headers": headers}


@app.get("/api/promotions", dependencies=[Depends(require_admin_auth)])
async def list_promotions(request: Request):
    tenants = await request.app.state.store.list_tenants()
    return {
        "promotions": [
            {
                "id": t["id"],
                "name": t.get("name") or "",
                "updatedAt": t["updated_at"].isoformat() if t.get("updated_at") else None,
            }
            for t in tenants
        ]
    }


@app.put("/api/promotions/{promotion_id}/config", dependencies=[Depends(require_admin_auth)])
async def save_promotion_config(promotion_id: str, request: Request):
    """Shallow-merge a partial config document into the promotion's config."""
    partial = await _read_json(request)
    if not partial:
        raise HTTPException(status_code=400, detail="Missing config body")

    config = await request.app.state.store.save_config(promotion_id, partial)
    return {
        "success": True,
        "promotionId": config.promotion_id,
        "rules": len(config.notification_rules),
        "updatedAt": config.updated_at.isoformat() if config.updated_at else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sheet2chat.transport.http_app:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Middleware logs requests in prod
        server_header=False,
        date_header=False,
    )
