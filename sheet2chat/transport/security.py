# sheet2chat/transport/security.py
"""
Shared-secret checks for the HTTP surface.

- /api/webhook: X-Webhook-Secret header or ``secret`` query parameter
  (open when WEBHOOK_SECRET is not configured).
- /api/webhook/booking: Bearer BOOKING_WEBHOOK_TOKEN or X-Webhook-Secret
  BOOKING_WEBHOOK_SECRET.
- /api/cron/*: Bearer CRON_SECRET.
- /metrics: Bearer METRICS_TOKEN, or internal network when no token is set.

All secret comparisons are constant-time.
"""
import hmac
import ipaddress
from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from sheet2chat.config import settings
from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(
    scheme_name="Bearer Token",
    description="Enter the token (without 'Bearer ' prefix)",
    auto_error=False,  # We handle errors ourselves for better messages
)

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    description="Enter your metrics token (without 'Bearer ' prefix)",
    auto_error=False,
)


def secrets_match(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison; an unset expected value never matches."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def get_client_ip(request: Request) -> str:
    """
    Caller address. Behind a trusted proxy (TRUST_PROXY_HEADERS) the first
    X-Forwarded-For hop wins, then X-Real-IP.
    """
    if settings.trust_proxy_headers:
        forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
        real_ip = (request.headers.get("X-Real-IP") or "").strip()
        if forwarded or real_ip:
            return forwarded or real_ip
    return request.client.host if request.client else "unknown"


# ============================================================================
# WEBHOOKS
# ============================================================================

def verify_webhook_secret(request: Request) -> None:
    """
    Dependency for the generic webhook.

    Raises:
        HTTPException 401 when WEBHOOK_SECRET is set and neither the header
        nor the ``secret`` query parameter matches it.
    """
    if not settings.webhook_secret:
        return

    provided = request.headers.get("X-Webhook-Secret") or request.query_params.get("secret")
    if secrets_match(provided, settings.webhook_secret):
        return

    logger.warning(
        "Webhook secret mismatch",
        extra={"path": request.url.path, "client_ip": get_client_ip(request)},
    )
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def verify_booking_auth(request: Request) -> tuple[bool, str | None]:
    """
    Check booking webhook credentials.

    Returns:
        (is_valid, error_message); the caller reports failures as a
        security alert before rejecting.
    """
    token = _bearer_token(request)
    if token is not None and secrets_match(token, settings.booking_webhook_token):
        return True, None

    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret is not None and secrets_match(header_secret, settings.booking_webhook_secret):
        return True, None

    if not settings.booking_webhook_token and not settings.booking_webhook_secret:
        return False, "Booking webhook credentials not configured"
    if token is None and header_secret is None:
        return False, "Missing Authorization or X-Webhook-Secret header"
    return False, "Invalid token or secret"


def _unauthorized(detail: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _check_bearer(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
    expected: str,
    purpose: str,
) -> None:
    if credentials is None:
        logger.warning(f"{purpose}: missing bearer token on {request.method} {request.url.path}")
        raise _unauthorized("Authentication required")
    if not secrets_match(credentials.credentials, expected):
        logger.warning(f"{purpose}: bad bearer token from {get_client_ip(request)}")
        raise _unauthorized("Invalid credentials")


def require_cron_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Dependency for cron endpoints: Bearer CRON_SECRET."""
    if not settings.cron_secret:
        logger.critical("CRON_SECRET is not set; rejecting cron call")
        raise _unauthorized()
    _check_bearer(request, credentials, settings.cron_secret, "cron")


def require_admin_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Dependency for admin UI endpoints: Bearer ADMIN_API_TOKEN (503 while unset)."""
    if not settings.admin_api_token:
        logger.critical("ADMIN_API_TOKEN is not set; admin endpoints are disabled")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service unavailable")
    _check_bearer(request, credentials, settings.admin_api_token, "admin")


# ============================================================================
# METRICS
# ============================================================================

@lru_cache(maxsize=4)
def _parse_networks(raw: str) -> tuple:
    parsed = []
    for part in filter(None, (piece.strip() for piece in raw.split(","))):
        try:
            parsed.append(ipaddress.ip_network(part, strict=False))
        except ValueError:
            logger.warning(f"Ignoring malformed INTERNAL_NETWORKS entry: {part}")
    return tuple(parsed)


def is_internal_ip(ip_str: str) -> bool:
    try:
        address = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(address in net for net in _parse_networks(settings.internal_networks))


def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
) -> None:
    """
    Dependency for /metrics: Bearer METRICS_TOKEN when configured,
    otherwise only clients inside INTERNAL_NETWORKS.
    """
    if settings.metrics_token:
        _check_bearer(request, credentials, settings.metrics_token, "metrics")
        return

    client_ip = get_client_ip(request)
    if not is_internal_ip(client_ip):
        logger.warning(f"Metrics denied for external client {client_ip}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


# ============================================================================
# RESPONSES
# ============================================================================

_STATIC_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeaders:
    """Response headers for a JSON-only API."""

    @staticmethod
    def add_security_headers(response):
        response.headers.update(_STATIC_HEADERS)
        response.headers.setdefault("Cache-Control", "no-store")
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        if "Server" in response.headers:
            del response.headers["Server"]
        return response


_PUBLIC_MESSAGES = {
    "ValueError": "Invalid input",
    "KeyError": "Invalid request",
    "ConfigStoreError": "Service temporarily unavailable",
    "ConnectionError": "Service temporarily unavailable",
    "TimeoutError": "Request timeout",
}


def sanitize_error_message(error: Exception, is_production: bool) -> str:
    """Exception text in dev; a fixed per-type phrase in prod."""
    if is_production:
        return _PUBLIC_MESSAGES.get(type(error).__name__, "An error occurred")
    return str(error)
