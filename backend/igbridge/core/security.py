"""Security dependencies: admin basic auth and the license gate"""
import logging
import secrets
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from igbridge.api.dependencies import get_license_service
from igbridge.core.config import settings
from igbridge.core.errors import LicenseError
from igbridge.db.repositories import LicenseRecord
from igbridge.services.license_service import LicenseService

security_logger = logging.getLogger("security")

basic_auth = HTTPBasic(realm="License Management")


def require_admin(request: Request, credentials: HTTPBasicCredentials = Depends(basic_auth)) -> str:
    """Dependency: Require admin basic auth credentials, return the username"""
    if not settings.ADMIN_PASSWORD:
        security_logger.error("ADMIN_PASSWORD is not configured; admin endpoints are disabled")
        raise HTTPException(503, "Admin access is not configured")

    username_ok = secrets.compare_digest(credentials.username.encode(), settings.ADMIN_USERNAME.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), settings.ADMIN_PASSWORD.encode())
    if not (username_ok and password_ok):
        security_logger.warning(
            f"Admin authentication failed - "
            f"IP: {request.client.host if request.client else 'unknown'}, Path: {request.url.path}"
        )
        raise HTTPException(401, "Invalid admin credentials", headers={"WWW-Authenticate": 'Basic realm="License Management"'})

    return credentials.username


def license_headers(
    x_license_key: Optional[str] = Header(None, alias="X-License-Key"),
    x_license_domain: Optional[str] = Header(None, alias="X-License-Domain"),
) -> Tuple[str, str]:
    """Dependency: Require the license headers; no lookup, no binding"""
    if not x_license_key or not x_license_domain:
        raise LicenseError("License key and domain headers are required",
                           code="LICENSE_REQUIRED", status_code=401)
    return x_license_key, x_license_domain


def require_license(
    headers: Tuple[str, str] = Depends(license_headers),
    license_service: LicenseService = Depends(get_license_service),
) -> LicenseRecord:
    """Dependency: Require a valid license (and subscription) for the calling site"""
    return license_service.validate(*headers)
