"""License API routes: public validation plus admin management"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from igbridge.api.dependencies import get_attempt_repository, get_license_service
from igbridge.core.security import require_admin
from igbridge.db.repositories import PublishAttemptRepository
from igbridge.schemas.licenses import (
    GenerateLicenseRequest, LicenseKeyRequest, UpdateLicenseRequest, ValidateLicenseRequest
)
from igbridge.services import attempt_service
from igbridge.services.license_service import LicenseService, license_to_dict
from igbridge.utils.timeutils import isoformat

license_logger = logging.getLogger("license")

router = APIRouter(prefix="/api/license", tags=["licenses"])


@router.post("/validate")
def validate_license(
    body: ValidateLicenseRequest,
    license_service: LicenseService = Depends(get_license_service)
):
    license = license_service.validate(body.license_key, body.domain)
    license_logger.info(f"License validated for domain {body.domain}")
    return {
        "success": True,
        "message": "License is valid",
        "data": {
            "licenseKey": license.license_key,
            "domain": license.domain,
            "activatedAt": isoformat(license.activated_at),
        },
    }


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@router.post("/generate")
def generate_license(
    body: Optional[GenerateLicenseRequest] = None,
    _: str = Depends(require_admin),
    license_service: LicenseService = Depends(get_license_service)
):
    body = body or GenerateLicenseRequest()
    license = license_service.generate(body.user_no, body.user_name)
    return {"success": True, "message": "License issued", "data": license_to_dict(license)}


@router.get("/list")
def list_licenses(
    _: str = Depends(require_admin),
    license_service: LicenseService = Depends(get_license_service)
):
    licenses = license_service.list()
    return {"success": True, "count": len(licenses), "data": licenses}


@router.post("/update")
def update_license(
    body: UpdateLicenseRequest,
    _: str = Depends(require_admin),
    license_service: LicenseService = Depends(get_license_service)
):
    license = license_service.update_user_info(body.license_key, body.user_no, body.user_name)
    return {"success": True, "message": "License updated", "data": license_to_dict(license)}


@router.post("/deactivate")
def deactivate_license(
    body: LicenseKeyRequest,
    _: str = Depends(require_admin),
    license_service: LicenseService = Depends(get_license_service)
):
    license = license_service.deactivate(body.license_key)
    return {"success": True, "message": "License deactivated", "data": license_to_dict(license)}


@router.post("/reset")
def reset_license(
    body: LicenseKeyRequest,
    _: str = Depends(require_admin),
    license_service: LicenseService = Depends(get_license_service)
):
    """Unbind the domain so the key can be used on another site"""
    license = license_service.reset_domain(body.license_key)
    return {"success": True, "message": "License domain reset", "data": license_to_dict(license)}


@router.delete("/delete")
def delete_license(
    body: LicenseKeyRequest,
    _: str = Depends(require_admin),
    license_service: LicenseService = Depends(get_license_service)
):
    license_service.delete_unused(body.license_key)
    return {"success": True, "message": "License deleted"}


@router.get("/attempts/{license_id}")
def license_attempts(
    license_id: int,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: str = Depends(require_admin),
    attempts: PublishAttemptRepository = Depends(get_attempt_repository)
):
    return {"success": True, "data": attempt_service.list_attempts(attempts, license_id, limit, offset)}


@router.get("/attempts-stats/{license_id}")
def license_attempt_stats(
    license_id: int,
    hours: int = Query(24, ge=1, le=24 * 90),
    _: str = Depends(require_admin),
    attempts: PublishAttemptRepository = Depends(get_attempt_repository)
):
    return {"success": True, "data": attempt_service.attempt_stats(attempts, license_id, hours)}


@router.get("/error-trends")
def error_trends(
    hours: int = Query(24, ge=1, le=24 * 90),
    limit: int = Query(20, ge=1, le=100),
    _: str = Depends(require_admin),
    attempts: PublishAttemptRepository = Depends(get_attempt_repository)
):
    return {"success": True, "data": attempt_service.error_trends(attempts, hours, limit)}
