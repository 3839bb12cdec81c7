"""Stripe checkout, customer portal, session verification and webhook routes"""
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from reelcast.core.security import require_auth, require_csrf
from reelcast.db.session import get_db
from reelcast.schemas.billing import CheckoutRequest, CustomerPortalRequest
from reelcast.services.stripe_service import (
    create_checkout_session, get_customer_portal_url, process_stripe_webhook, verify_checkout_session
)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])
logger = logging.getLogger(__name__)


@router.post("/checkout")
def checkout(request_data: CheckoutRequest, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    """Start a subscription checkout for a plan"""
    try:
        return create_checkout_session(user_id, request_data.plan_id, request_data.billing_cycle, db)
    except ValueError as e:
        error_msg = str(e)
        if "not found" in error_msg:
            raise HTTPException(404, error_msg)
        raise HTTPException(400, error_msg)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for user {user_id}: {e}", exc_info=True)
        raise HTTPException(502, "Failed to create checkout session")


@router.post("/customer-portal")
def customer_portal(
    request_data: CustomerPortalRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Get Stripe customer portal URL"""
    try:
        return {"url": get_customer_portal_url(user_id, request_data.return_url, db)}
    except ValueError as e:
        raise HTTPException(400, str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe portal failed for user {user_id}: {e}", exc_info=True)
        raise HTTPException(502, "Failed to open customer portal")


@router.get("/verify-session")
def verify_session(
    session_id: str = Query(..., min_length=1),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Confirm a checkout after the success redirect"""
    try:
        return verify_checkout_session(user_id, session_id, db)
    except ValueError as e:
        raise HTTPException(403, str(e))
    except stripe.StripeError as e:
        logger.error(f"Failed to verify checkout session {session_id}: {e}")
        raise HTTPException(400, "Invalid checkout session")


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read raw; signature verification needs the exact bytes.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(400, "Missing stripe-signature header")

    try:
        return process_stripe_webhook(payload, sig_header, db)
    except ValueError as e:
        raise HTTPException(400, str(e))
