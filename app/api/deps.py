from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import Optional
from app.db.session import get_db
from app.schemas.license import LicenseValidationResult
from app.services.license_validator import LicenseService, PAYMENT_REASONS
import uuid

# Methods allowed while a subscription is in its payment grace period
READ_ONLY_METHODS = {"GET", "HEAD", "OPTIONS"}


def _parse_uuid_header(value: Optional[str], header_name: str) -> uuid.UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header_name} header is required",
        )
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name} header: must be a UUID",
        )


def get_organization_id(x_organization_id: Optional[str] = Header(None)) -> uuid.UUID:
    """
    Organization scope of the request.
    Every subscription lookup is filtered by this id.
    """
    return _parse_uuid_header(x_organization_id, "X-Organization-Id")


def get_cabinet_id(x_cabinet_id: Optional[str] = Header(None)) -> uuid.UUID:
    return _parse_uuid_header(x_cabinet_id, "X-Cabinet-Id")


def require_module_access(module_code: str):
    """
    Dependency factory: gate a route on the cabinet's license for `module_code`.

    - 402 when the trial, grace period or subscription has lapsed
    - 403 when the module is not part of the subscription
    - during a grace period only read methods are allowed

    Usage:
        @router.get("/xrays", dependencies=[Depends(require_module_access("IMAGING"))])
    """
    def module_access_checker(
        request: Request,
        organization_id: uuid.UUID = Depends(get_organization_id),
        cabinet_id: uuid.UUID = Depends(get_cabinet_id),
        db: Session = Depends(get_db),
    ) -> LicenseValidationResult:
        result = LicenseService(db).validate_license(cabinet_id, organization_id, module_code)
        detail = {
            "message": result.message,
            "reason": result.reason.value,
            "module_code": result.module_code,
            "subscription_status": result.subscription_status.value if result.subscription_status else None,
        }

        if not result.has_access:
            code = status.HTTP_402_PAYMENT_REQUIRED if result.reason in PAYMENT_REASONS else status.HTTP_403_FORBIDDEN
            raise HTTPException(status_code=code, detail=detail)

        if result.in_grace_period and request.method.upper() not in READ_ONLY_METHODS:
            detail["message"] = (
                "Your subscription payment has failed. Access is read-only until payment is updated "
                f"({result.days_until_expiry} days left)."
            )
            detail["reason"] = "GRACE_PERIOD_READ_ONLY"
            raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)

        return result

    return module_access_checker
