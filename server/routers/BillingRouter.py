from fastapi import APIRouter, Depends, Request

from server.dependencies.session import get_session
from server.models.requests import CheckoutRequest
from server.models.responses import UrlResponse
from services.billing.BillingService import BillingService
from shared.models.session import AppSession

router = APIRouter(prefix="/billing", tags=["billing"])


def _build_service(request: Request, session: AppSession) -> BillingService:
    return BillingService(request.app.state.helper_config, request.app.state.backend_client, session)


@router.post("/checkout")
async def start_checkout(request: Request, body: CheckoutRequest, session: AppSession = Depends(get_session)) -> UrlResponse:
    """Create a Stripe checkout session and return the URL to redirect to.

    Args:
        request (Request): FastAPI request (provides app.state.backend_client).
        body (CheckoutRequest): Tier, billing period, currency and UI language.
        session (AppSession): The verified caller.

    Returns:
        UrlResponse: The checkout URL.
    """
    url = await _build_service(request, session).do_start_checkout(body.tier, body.period, body.currency, body.lang)
    return UrlResponse(url=url)


@router.post("/portal")
async def open_billing_portal(request: Request, session: AppSession = Depends(get_session)) -> UrlResponse:
    return UrlResponse(url=await _build_service(request, session).do_open_billing_portal())
