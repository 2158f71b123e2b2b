"""
Shared FastAPI dependencies for the operator routes.

SECURITY: Operator routes require a bearer token matching ADMIN_API_TOKEN.
When the token is not configured the routes answer 503 rather than run open.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from backoffice.config.settings import SubscriptionSettings, get_settings
from backoffice.database.session import get_db_session
from backoffice.entitlements.errors import EntitlementError
from backoffice.platform.clock import Clock, get_clock
from backoffice.services.plan_catalog import PlanCatalog
from backoffice.services.temporal_overlay import TemporalOverlayManager

logger = logging.getLogger(__name__)


@dataclass
class OperatorContext:
    """Identity of the operator calling an admin route."""
    operator_id: str


def get_subscription_settings() -> SubscriptionSettings:
    return get_settings()


def get_request_clock() -> Clock:
    return get_clock()


def verify_operator(
    authorization: Optional[str] = Header(None),
    x_operator_id: Optional[str] = Header(None),
    settings: SubscriptionSettings = Depends(get_subscription_settings),
) -> OperatorContext:
    """
    Verify the operator bearer token.

    SECURITY: Constant-time comparison; the token value is never logged.
    """
    if not settings.admin_api_token:
        logger.error("Operator route called but ADMIN_API_TOKEN is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operator API not configured"
        )

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.encode(), settings.admin_api_token.encode()
    ):
        logger.warning("Unauthorized operator access attempt", extra={
            "operator_id": x_operator_id,
        })
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid operator credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return OperatorContext(operator_id=x_operator_id or "operator")


def get_plan_catalog(
    db_session: Session = Depends(get_db_session),
    settings: SubscriptionSettings = Depends(get_subscription_settings),
    clock: Clock = Depends(get_request_clock),
) -> PlanCatalog:
    """Get plan catalog instance."""
    return PlanCatalog(db_session, settings=settings, clock=clock)


def get_overlay_manager(
    db_session: Session = Depends(get_db_session),
    settings: SubscriptionSettings = Depends(get_subscription_settings),
    clock: Clock = Depends(get_request_clock),
) -> TemporalOverlayManager:
    """Get temporal overlay manager instance."""
    return TemporalOverlayManager(db_session, clock=clock, settings=settings)


def raise_http_error(error: EntitlementError) -> None:
    """Translate a typed entitlement error into an HTTPException."""
    raise HTTPException(status_code=error.http_status, detail=error.to_dict())
