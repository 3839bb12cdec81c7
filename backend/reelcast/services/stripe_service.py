"""Stripe billing - checkout, customer portal, webhooks and admin checks"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from reelcast.core.config import settings
from reelcast.core.logging import billing_logger
from reelcast.core.metrics import stripe_webhooks_counter
from reelcast.models.stripe_event import StripeEvent
from reelcast.models.subscription import Subscription
from reelcast.models.subscription_plan import SubscriptionPlan
from reelcast.models.user import User
from reelcast.utils.dates import from_timestamp, utcnow

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

STATUS_ACTIVE = "active"
STATUS_ACTIVE_CANCELING = "active-canceling"
STATUS_CANCELED = "canceled"


# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, key, None)
    return default if value is None else value


def _first_item(subscription: Any) -> Any:
    items = _get_stripe_value(_get_stripe_value(subscription, "items", {}), "data", [])
    return items[0] if items else None


def _period_end(subscription: Any) -> Optional[datetime]:
    """current_period_end moved onto subscription items in newer API versions"""
    value = _get_stripe_value(subscription, "current_period_end")
    if value is None:
        value = _get_stripe_value(_first_item(subscription), "current_period_end")
    return from_timestamp(value)


def _price_id(subscription: Any) -> Optional[str]:
    return _get_stripe_value(_get_stripe_value(_first_item(subscription), "price"), "id")


def _object_id(value: Any) -> Optional[str]:
    """Expanded Stripe objects carry an id; unexpanded ones are the id"""
    if value is None or isinstance(value, str):
        return value
    return _get_stripe_value(value, "id")


# ============================================================================
# CORE STRIPE OPERATIONS
# ============================================================================

def create_checkout_session(user_id: int, plan_id: int, billing_cycle: str, db: Session) -> Dict:
    """Create a subscription checkout for a plan with inline price data

    Raises:
        ValueError: If the user or plan does not exist or Stripe is not configured
    """
    if not settings.STRIPE_SECRET_KEY:
        raise ValueError("Stripe is not configured")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise ValueError("User not found")

    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id, SubscriptionPlan.is_active == True).first()  # noqa: E712
    if not plan:
        raise ValueError("Plan not found")

    yearly = billing_cycle == "yearly"
    price = plan.yearly_price if yearly else plan.monthly_price
    frontend = settings.FRONTEND_URL.rstrip("/")

    checkout_params = {
        "payment_method_types": ["card"],
        "mode": "subscription",
        "line_items": [{
            "price_data": {
                "currency": "usd",
                "product_data": {
                    "name": f"{plan.name} Plan",
                    "description": plan.description or f"{plan.minutes_allowed} minutes of video processing",
                },
                "unit_amount": int(round(price * 100)),
                "recurring": {"interval": "year" if yearly else "month"},
            },
            "quantity": 1,
        }],
        "success_url": f"{frontend}/dashboard/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{frontend}/pricing?canceled=true",
        "metadata": {
            "user_id": str(user.id),
            "plan_id": str(plan.id),
            "plan_name": plan.name,
            "minutes_allowed": str(plan.minutes_allowed),
            "billing_cycle": billing_cycle,
        },
    }

    if user.stripe_customer_id:
        checkout_params["customer"] = user.stripe_customer_id
    else:
        checkout_params["customer_email"] = user.email

    session = stripe.checkout.Session.create(**checkout_params)
    billing_logger.info(f"Created checkout session {session.id} for user {user_id}, plan {plan.name} ({billing_cycle})")
    return {"id": session.id, "url": session.url}


def get_customer_portal_url(user_id: int, return_url: Optional[str], db: Session) -> str:
    """Raises ValueError when the user has no Stripe customer yet"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.stripe_customer_id:
        raise ValueError("No billing account found. Subscribe to a plan first.")

    session = stripe.billing_portal.Session.create(
        customer=user.stripe_customer_id,
        return_url=return_url or f"{settings.FRONTEND_URL.rstrip('/')}/dashboard/billing"
    )
    return session.url


def verify_checkout_session(user_id: int, session_id: str, db: Session) -> Dict:
    """Confirm a checkout after redirect and repair the subscription if the webhook has not landed yet"""
    checkout = stripe.checkout.Session.retrieve(session_id, expand=["subscription"])

    if _get_stripe_value(checkout, "status") != "complete":
        return {"success": False, "status": _get_stripe_value(checkout, "status"), "message": "Checkout session is not complete"}

    subscription = _get_stripe_value(checkout, "subscription")
    if not subscription:
        return {"success": False, "message": "No subscription found in checkout session"}
    if isinstance(subscription, str):
        subscription = stripe.Subscription.retrieve(subscription)

    metadata = _get_stripe_value(checkout, "metadata", {}) or {}
    owner_id = int(_get_stripe_value(metadata, "user_id") or user_id)
    if owner_id != user_id:
        raise ValueError("Checkout session does not belong to this user")

    user = db.query(User).filter(User.id == user_id).first()
    if user and user.stripe_subscription_id == _get_stripe_value(subscription, "id") and user.is_subscribed:
        return {"success": True, "status": "recorded", "message": "Subscription is already properly recorded"}

    _apply_checkout(checkout, subscription, db)
    return {"success": True, "status": "repaired", "message": "Subscription records have been updated"}


def cancel_stripe_subscription(subscription_id: str) -> bool:
    """Cancel a subscription immediately (used when an account is deleted)"""
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("Stripe not configured, skipping subscription cancellation")
        return False
    try:
        stripe.Subscription.cancel(subscription_id)
        billing_logger.info(f"Canceled Stripe subscription {subscription_id}")
        return True
    except stripe.StripeError as e:
        billing_logger.error(f"Failed to cancel Stripe subscription {subscription_id}: {e}")
        return False


# ============================================================================
# WEBHOOK & EVENT LOGGING
# ============================================================================

def log_stripe_event(event_id: str, event_type: str, payload: dict, db: Session) -> StripeEvent:
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if not stripe_event:
        stripe_event = StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed=False
        )
        db.add(stripe_event)
        db.commit()
        db.refresh(stripe_event)
    return stripe_event


def mark_stripe_event_processed(event_id: str, db: Session, error_message: str = None):
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if stripe_event:
        stripe_event.processed = True
        stripe_event.processed_at = datetime.now(timezone.utc)
        stripe_event.error_message = error_message
        db.commit()


# ============================================================================
# SUBSCRIPTION HANDLERS
# ============================================================================

def _find_subscription_record(stripe_subscription_id: str, db: Session) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.stripe_subscription_id == stripe_subscription_id).first()


def _apply_checkout(checkout: Any, subscription: Any, db: Session) -> Optional[Subscription]:
    """Create or update the user's subscription from a completed checkout"""
    metadata = _get_stripe_value(checkout, "metadata", {}) or {}
    user_id = _get_stripe_value(metadata, "user_id")
    if not user_id:
        billing_logger.warning(f"Checkout {_get_stripe_value(checkout, 'id')} has no user_id metadata")
        return None

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        billing_logger.warning(f"Checkout for unknown user {user_id}")
        return None

    plan = None
    if _get_stripe_value(metadata, "plan_id"):
        plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == int(metadata["plan_id"])).first()

    subscription_id = _get_stripe_value(subscription, "id")
    customer_id = _object_id(_get_stripe_value(subscription, "customer")) or _object_id(_get_stripe_value(checkout, "customer"))
    price_id = _price_id(subscription)
    period_end = _period_end(subscription)
    minutes_allowed = int(_get_stripe_value(metadata, "minutes_allowed") or (plan.minutes_allowed if plan else 0))
    plan_slug = plan.slug if plan else (_get_stripe_value(metadata, "plan_name") or "unknown").lower()

    user.stripe_customer_id = customer_id
    user.stripe_subscription_id = subscription_id
    user.stripe_price_id = price_id
    user.stripe_current_period_end = period_end
    user.is_subscribed = True

    record = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if record is None:
        record = Subscription(user_id=user.id, minutes_used=0)
        db.add(record)
    elif record.stripe_subscription_id != subscription_id:
        # New Stripe subscription: start a fresh usage period
        record.minutes_used = 0

    record.plan = plan_slug
    record.plan_id = plan.id if plan else None
    record.status = _get_stripe_value(subscription, "status", STATUS_ACTIVE)
    record.start_date = utcnow()
    record.end_date = period_end
    record.minutes_allowed = minutes_allowed
    record.stripe_subscription_id = subscription_id
    record.stripe_customer_id = customer_id
    record.stripe_price_id = price_id
    record.stripe_current_period_end = period_end

    db.commit()
    billing_logger.info(f"Subscription {subscription_id} recorded for user {user.id} (plan {plan_slug}, {minutes_allowed} minutes)")
    return record


def handle_checkout_completed(session: Any, db: Session):
    subscription_id = _object_id(_get_stripe_value(session, "subscription"))
    if not subscription_id:
        return
    subscription = stripe.Subscription.retrieve(subscription_id)
    _apply_checkout(session, subscription, db)


def handle_invoice_payment_succeeded(invoice: Any, db: Session):
    subscription_id = _object_id(_get_stripe_value(invoice, "subscription"))
    if not subscription_id:
        return

    record = _find_subscription_record(subscription_id, db)
    if not record:
        billing_logger.warning(f"Invoice for unknown subscription {subscription_id}")
        return

    subscription = stripe.Subscription.retrieve(subscription_id)
    period_end = _period_end(subscription)
    price_id = _price_id(subscription)

    record.status = _get_stripe_value(subscription, "status", STATUS_ACTIVE)
    record.end_date = period_end
    record.stripe_current_period_end = period_end
    record.stripe_price_id = price_id
    if _get_stripe_value(invoice, "billing_reason") == "subscription_cycle":
        record.minutes_used = 0
        billing_logger.info(f"Renewal for subscription {subscription_id}: usage reset")

    user = record.user
    user.stripe_current_period_end = period_end
    user.stripe_price_id = price_id
    user.is_subscribed = True
    db.commit()


def handle_subscription_updated(subscription: Any, db: Session):
    subscription_id = _get_stripe_value(subscription, "id")
    record = _find_subscription_record(subscription_id, db)
    if not record:
        billing_logger.warning(f"Update for unknown subscription {subscription_id}")
        return

    user = record.user
    period_end = _period_end(subscription)
    status = _get_stripe_value(subscription, "status")

    if _get_stripe_value(subscription, "cancel_at_period_end", False):
        record.status = STATUS_ACTIVE_CANCELING
    elif status == STATUS_CANCELED:
        record.status = STATUS_CANCELED
        user.is_subscribed = False
    else:
        record.status = status
        user.is_subscribed = status in (STATUS_ACTIVE, "trialing")

    if period_end:
        record.end_date = period_end
        record.stripe_current_period_end = period_end
        user.stripe_current_period_end = period_end
    db.commit()
    billing_logger.info(f"Subscription {subscription_id} updated: {record.status}")


def handle_subscription_deleted(subscription: Any, db: Session):
    subscription_id = _get_stripe_value(subscription, "id")
    if not subscription_id:
        return
    record = _find_subscription_record(subscription_id, db)
    if record:
        record.status = STATUS_CANCELED
        record.user.is_subscribed = False
        db.commit()
        billing_logger.info(f"Subscription {subscription_id} canceled")


WEBHOOK_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


def process_stripe_webhook(payload: bytes, sig_header: Optional[str], db: Session) -> Dict[str, Any]:
    """Process Stripe webhook event

    Returns success even on processing errors to prevent Stripe retries.
    Only raises for configuration and signature failures.

    Raises:
        ValueError: For a missing secret, an invalid payload or an invalid signature
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        raise ValueError("Webhook secret not configured")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header or "", settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError("Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        stripe_webhooks_counter.labels(event_type="unknown", status="invalid_signature").inc()
        raise ValueError("Invalid signature")

    event_id = event["id"]
    event_type = event["type"]

    # Log event for idempotency
    stripe_event = log_stripe_event(event_id, event_type, event.to_dict() if hasattr(event, "to_dict") else dict(event), db)
    if stripe_event.processed:
        logger.info(f"Webhook event {event_id} already processed")
        stripe_webhooks_counter.labels(event_type=event_type, status="duplicate").inc()
        return {"status": "already_processed"}

    handler = WEBHOOK_HANDLERS.get(event_type)
    try:
        if handler:
            handler(event["data"]["object"], db)
        mark_stripe_event_processed(event_id, db)
        stripe_webhooks_counter.labels(event_type=event_type, status="success" if handler else "ignored").inc()
        logger.info(f"Successfully processed webhook event {event_id} of type {event_type}")
        return {"status": "success"}
    except Exception as e:
        logger.error(f"Error processing webhook {event_id}: {e}", exc_info=True)
        db.rollback()
        mark_stripe_event_processed(event_id, db, error_message=str(e))
        stripe_webhooks_counter.labels(event_type=event_type, status="error").inc()
        return {"status": "error_logged", "error": str(e)}


# ============================================================================
# ADMIN
# ============================================================================

def get_stripe_status() -> Dict[str, Any]:
    secret = settings.STRIPE_SECRET_KEY
    return {
        "configured": bool(secret),
        "mode": "live" if secret.startswith("sk_live_") else "test" if secret else None,
        "publishable_key_set": bool(settings.STRIPE_PUBLISHABLE_KEY),
        "webhook_secret_set": bool(settings.STRIPE_WEBHOOK_SECRET),
    }


def check_stripe_connection() -> Dict[str, Any]:
    """Call the balance endpoint to confirm the secret key works"""
    if not settings.STRIPE_SECRET_KEY:
        return {"success": False, "message": "Stripe secret key is not configured"}
    try:
        balance = stripe.Balance.retrieve()
        available = [
            {"amount": _get_stripe_value(b, "amount", 0) / 100.0, "currency": str(_get_stripe_value(b, "currency", "")).upper()}
            for b in (_get_stripe_value(balance, "available", []) or [])
        ]
        return {"success": True, "message": "Connected to Stripe", "livemode": bool(_get_stripe_value(balance, "livemode", False)), "available": available}
    except stripe.StripeError as e:
        billing_logger.error(f"Stripe connection test failed: {e}")
        return {"success": False, "message": str(e)}
