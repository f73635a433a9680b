import structlog
import ipaddress
from fastapi import Depends, HTTPException, Request, status
from pydantic import ValidationError

from app.core.config import settings
from app.core.security import decode_token
from app.schemas.user import CurrentUser

logger = structlog.get_logger()


def get_real_client_ip(request: Request) -> tuple[str | None, list[str]]:
    """Return client IP and full proxy chain if provided."""
    direct_ip = request.client.host if request.client else None
    trust_proxy_headers = (
        settings.ENVIRONMENT == "production"
        and settings.TRUST_PROXY_HEADERS
        and settings.is_trusted_proxy(direct_ip)
    )

    if not trust_proxy_headers:
        return direct_ip, []

    chain: list[str] = []
    cf_connecting_ip = request.headers.get("CF-Connecting-IP")
    if cf_connecting_ip:
        candidate = cf_connecting_ip.strip()
        try:
            ipaddress.ip_address(candidate)
            return candidate, [candidate]
        except ValueError:
            logger.debug("invalid_cf_connecting_ip", value=candidate)

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        chain = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]

    for candidate in chain:
        try:
            ipaddress.ip_address(candidate)
            return candidate, chain
        except ValueError:
            continue

    return direct_ip, chain


def get_current_user(request: Request) -> CurrentUser:
    """Resolve the caller from the access_token cookie or a bearer token."""
    token = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header.split(" ", 1)[1]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_token(token)
    try:
        user = CurrentUser(
            id=str(payload.get("sub") or ""),
            role=payload.get("role") or "customer",
            email=payload.get("email"),
        )
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    return user


def require_admin(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    client_ip, ip_chain = get_real_client_ip(request)
    action_name = f"{request.method} {request.url.path}"

    if settings.ENVIRONMENT == "production" and client_ip not in settings.admin_allowed_ips:
        logger.warning(
            "admin_access_denied",
            action=action_name,
            admin_user_id=current_user.id,
            client_ip=client_ip,
            ip_chain=ip_chain,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )

    logger.info(
        "admin_action",
        action=action_name,
        admin_user_id=current_user.id,
        client_ip=client_ip,
        ip_chain=ip_chain,
    )
    return current_user
