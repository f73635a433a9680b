"""
Double-submit CSRF protection for the storefront.

The identity provider's ``access_token`` cookie authenticates browser
requests, and it takes precedence over a bearer header (see
``app.api.deps.get_current_user``). Any state-changing request that carries
that cookie must echo the ``csrf_token`` cookie in the ``X-CSRF-Token``
header. Bearer-only clients never send the cookie and are not checked.
"""
import hmac
from secrets import token_urlsafe

import structlog
from fastapi import Request, Response

from app.core.config import settings

logger = structlog.get_logger()

AUTH_COOKIE_NAME = "access_token"
CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24
CSRF_PROTECTED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def issue_csrf_token(response: Response) -> str:
    token = token_urlsafe(32)
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        httponly=False,  # read by the storefront to fill the header
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=CSRF_COOKIE_MAX_AGE,
        path="/",
    )
    return token


def requires_csrf_check(request: Request) -> bool:
    return request.method in CSRF_PROTECTED_METHODS and AUTH_COOKIE_NAME in request.cookies


def verify_csrf_token(request: Request) -> bool:
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    header_token = request.headers.get(CSRF_HEADER_NAME)
    if not cookie_token or not header_token:
        return False
    return hmac.compare_digest(cookie_token, header_token)


def reject_forged_request(request: Request) -> bool:
    """True when a cookie-authenticated write is missing a matching token."""
    if not requires_csrf_check(request) or verify_csrf_token(request):
        return False
    logger.warning(
        "csrf_validation_failed",
        method=request.method,
        path=request.url.path,
        has_cookie=CSRF_COOKIE_NAME in request.cookies,
        has_header=CSRF_HEADER_NAME in request.headers,
    )
    return True
