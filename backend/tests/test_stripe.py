"""Stripe checkout, portal, session verification and webhook tests"""
import pytest
import stripe
from fastapi import status

from reelcast.models.stripe_event import StripeEvent
from reelcast.models.subscription import Subscription
from reelcast.services import stripe_service

from conftest import subscribe

WEBHOOK_HEADERS = {"stripe-signature": "t=1700000000,v1=test"}


def _event(event_type, obj, event_id="evt_test123"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def _send(client, mock_stripe, event):
    mock_stripe.Webhook.construct_event.return_value = event
    return client.post("/api/stripe/webhook", content=b"{}", headers=WEBHOOK_HEADERS)


def _checkout_object(user, plan):
    return {
        "id": "cs_test123",
        "subscription": "sub_test123",
        "customer": "cus_test123",
        "metadata": {
            "user_id": str(user.id),
            "plan_id": str(plan.id),
            "plan_name": plan.name,
            "minutes_allowed": str(plan.minutes_allowed),
        },
    }


@pytest.mark.critical
class TestCheckout:
    """Checkout sessions and the customer portal"""

    def test_checkout_uses_plan_price(self, authenticated_client, test_user, basic_plan, auto_mock_stripe):
        """Test a yearly checkout charges the yearly price in cents"""
        response = authenticated_client.post("/api/stripe/checkout", json={"plan_id": basic_plan.id, "billing_cycle": "yearly"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"id": "cs_test123", "url": "https://checkout.stripe.com/test"}

        params = auto_mock_stripe.checkout.Session.create.call_args.kwargs
        price_data = params["line_items"][0]["price_data"]
        assert price_data["unit_amount"] == 18000
        assert price_data["recurring"] == {"interval": "year"}
        assert params["customer_email"] == test_user.email
        assert params["metadata"]["user_id"] == str(test_user.id)
        assert params["metadata"]["minutes_allowed"] == "100"

    def test_checkout_reuses_customer(self, authenticated_client, subscribed_user, basic_plan, auto_mock_stripe):
        """Test existing customers are not asked for their email again"""
        authenticated_client.post("/api/stripe/checkout", json={"plan_id": basic_plan.id})
        params = auto_mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["customer"] == f"cus_{subscribed_user.id}"
        assert "customer_email" not in params
        assert params["line_items"][0]["price_data"]["unit_amount"] == 1900

    def test_checkout_unknown_plan(self, authenticated_client):
        """Test a missing plan returns 404"""
        response = authenticated_client.post("/api/stripe/checkout", json={"plan_id": 999})
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_checkout_inactive_plan(self, authenticated_client, basic_plan, db_session):
        """Test retired plans cannot be bought"""
        basic_plan.is_active = False
        db_session.commit()
        response = authenticated_client.post("/api/stripe/checkout", json={"plan_id": basic_plan.id})
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_checkout_stripe_error(self, authenticated_client, basic_plan, auto_mock_stripe):
        """Test Stripe failures surface as 502"""
        auto_mock_stripe.checkout.Session.create.side_effect = stripe.StripeError("Stripe is down")
        response = authenticated_client.post("/api/stripe/checkout", json={"plan_id": basic_plan.id})
        assert response.status_code == status.HTTP_502_BAD_GATEWAY

    def test_portal_requires_customer(self, authenticated_client):
        """Test users who never paid have no portal"""
        response = authenticated_client.post("/api/stripe/customer-portal", json={})
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_portal_url(self, authenticated_client, subscribed_user, auto_mock_stripe):
        """Test the portal URL for a paying customer"""
        response = authenticated_client.post("/api/stripe/customer-portal", json={"return_url": "http://localhost:3000/x"})
        assert response.json() == {"url": "https://billing.stripe.com/test"}
        auto_mock_stripe.billing_portal.Session.create.assert_called_once_with(
            customer=f"cus_{subscribed_user.id}", return_url="http://localhost:3000/x"
        )


@pytest.mark.critical
class TestWebhook:
    """Webhook verification, idempotency and subscription sync"""

    def test_missing_signature(self, client):
        """Test requests without a signature header are rejected"""
        response = client.post("/api/stripe/webhook", content=b"{}")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_invalid_signature(self, client, auto_mock_stripe, db_session):
        """Test a bad signature is rejected and nothing is logged"""
        auto_mock_stripe.Webhook.construct_event.side_effect = stripe.SignatureVerificationError("bad", "sig")
        response = client.post("/api/stripe/webhook", content=b"{}", headers=WEBHOOK_HEADERS)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Invalid signature"
        assert db_session.query(StripeEvent).count() == 0

    def test_checkout_completed_creates_subscription(self, client, test_user, basic_plan, auto_mock_stripe, db_session):
        """Test a completed checkout subscribes the user"""
        response = _send(client, auto_mock_stripe, _event("checkout.session.completed", _checkout_object(test_user, basic_plan)))
        assert response.json() == {"status": "success"}

        record = db_session.query(Subscription).filter(Subscription.user_id == test_user.id).one()
        assert record.plan == "basic"
        assert record.status == "active"
        assert record.minutes_allowed == 100
        assert record.minutes_used == 0
        assert record.stripe_subscription_id == "sub_test123"
        db_session.refresh(test_user)
        assert test_user.is_subscribed is True
        assert test_user.stripe_price_id == "price_test123"
        assert test_user.stripe_current_period_end.year == 2030

    def test_duplicate_event_is_ignored(self, client, test_user, basic_plan, auto_mock_stripe):
        """Test Stripe retries of the same event are only applied once"""
        event = _event("checkout.session.completed", _checkout_object(test_user, basic_plan))
        _send(client, auto_mock_stripe, event)
        response = _send(client, auto_mock_stripe, event)
        assert response.json() == {"status": "already_processed"}
        assert auto_mock_stripe.Subscription.retrieve.call_count == 1

    def test_renewal_resets_usage(self, client, subscribed_user, auto_mock_stripe, db_session):
        """Test a subscription_cycle invoice starts a fresh usage period"""
        subscribed_user.subscription.minutes_used = 80
        db_session.commit()

        invoice = {"id": "in_1", "subscription": f"sub_{subscribed_user.id}", "billing_reason": "subscription_cycle"}
        _send(client, auto_mock_stripe, _event("invoice.payment_succeeded", invoice))

        db_session.refresh(subscribed_user.subscription)
        assert subscribed_user.subscription.minutes_used == 0

    def test_first_invoice_keeps_usage(self, client, subscribed_user, auto_mock_stripe, db_session):
        """Test only renewals reset the counter"""
        subscribed_user.subscription.minutes_used = 15
        db_session.commit()

        invoice = {"id": "in_2", "subscription": f"sub_{subscribed_user.id}", "billing_reason": "subscription_create"}
        _send(client, auto_mock_stripe, _event("invoice.payment_succeeded", invoice))

        db_session.refresh(subscribed_user.subscription)
        assert subscribed_user.subscription.minutes_used == 15

    def test_cancel_at_period_end(self, client, subscribed_user, auto_mock_stripe, db_session):
        """Test a scheduled cancellation keeps access until the period ends"""
        update = {"id": f"sub_{subscribed_user.id}", "status": "active", "cancel_at_period_end": True,
                  "current_period_end": 1893456000}
        _send(client, auto_mock_stripe, _event("customer.subscription.updated", update))

        db_session.refresh(subscribed_user)
        assert subscribed_user.subscription.status == "active-canceling"
        assert subscribed_user.is_subscribed is True

    def test_subscription_deleted(self, client, subscribed_user, auto_mock_stripe, db_session):
        """Test a deleted subscription ends access"""
        _send(client, auto_mock_stripe, _event("customer.subscription.deleted", {"id": f"sub_{subscribed_user.id}"}))

        db_session.refresh(subscribed_user)
        assert subscribed_user.subscription.status == "canceled"
        assert subscribed_user.is_subscribed is False

    def test_past_due_update(self, client, subscribed_user, auto_mock_stripe, db_session):
        """Test a non-active status removes access"""
        _send(client, auto_mock_stripe, _event("customer.subscription.updated", {"id": f"sub_{subscribed_user.id}", "status": "past_due"}))
        db_session.refresh(subscribed_user)
        assert subscribed_user.subscription.status == "past_due"
        assert subscribed_user.is_subscribed is False

    def test_unhandled_event_type(self, client, auto_mock_stripe, db_session):
        """Test unknown events are acknowledged and logged"""
        response = _send(client, auto_mock_stripe, _event("customer.created", {"id": "cus_1"}))
        assert response.json() == {"status": "success"}
        assert db_session.query(StripeEvent).one().processed is True

    def test_handler_error_is_logged_not_raised(self, client, test_user, basic_plan, auto_mock_stripe, db_session):
        """Test processing errors still answer 200 so Stripe stops retrying"""
        auto_mock_stripe.Subscription.retrieve.side_effect = stripe.StripeError("No such subscription")
        response = _send(client, auto_mock_stripe, _event("checkout.session.completed", _checkout_object(test_user, basic_plan)))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "error_logged"
        event = db_session.query(StripeEvent).one()
        assert event.processed is True
        assert "No such subscription" in event.error_message


@pytest.mark.high
class TestVerifySession:
    """Confirming a checkout after the success redirect"""

    def test_repairs_missing_subscription(self, authenticated_client, test_user, basic_plan, auto_mock_stripe, db_session):
        """Test a completed checkout is recorded when the webhook has not arrived"""
        auto_mock_stripe.checkout.Session.retrieve.return_value = {
            **_checkout_object(test_user, basic_plan), "status": "complete",
        }
        response = authenticated_client.get("/api/stripe/verify-session?session_id=cs_test123")
        assert response.json()["status"] == "repaired"
        assert db_session.query(Subscription).filter(Subscription.user_id == test_user.id).count() == 1

        again = authenticated_client.get("/api/stripe/verify-session?session_id=cs_test123")
        assert again.json()["status"] == "recorded"

    def test_incomplete_session(self, authenticated_client, auto_mock_stripe):
        """Test an open checkout is reported as not complete"""
        auto_mock_stripe.checkout.Session.retrieve.return_value = {"id": "cs_1", "status": "open"}
        data = authenticated_client.get("/api/stripe/verify-session?session_id=cs_1").json()
        assert data["success"] is False
        assert data["status"] == "open"

    def test_other_users_session(self, authenticated_client, other_user, basic_plan, auto_mock_stripe):
        """Test a checkout made by someone else is refused"""
        auto_mock_stripe.checkout.Session.retrieve.return_value = {
            **_checkout_object(other_user, basic_plan), "status": "complete",
        }
        response = authenticated_client.get("/api/stripe/verify-session?session_id=cs_test123")
        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.high
class TestStripeAdminHelpers:
    """Configuration report and connection check"""

    def test_status_reports_test_mode(self):
        """Test the key prefix decides the mode"""
        report = stripe_service.get_stripe_status()
        assert report["configured"] is True
        assert report["mode"] == "test"
        assert report["webhook_secret_set"] is True

    def test_connection_check(self):
        """Test a working key reports the available balance"""
        result = stripe_service.check_stripe_connection()
        assert result["success"] is True
        assert result["available"] == [{"amount": 12.5, "currency": "USD"}]

    def test_connection_check_failure(self, auto_mock_stripe):
        """Test authentication errors are reported, not raised"""
        auto_mock_stripe.Balance.retrieve.side_effect = stripe.StripeError("Invalid API Key")
        result = stripe_service.check_stripe_connection()
        assert result == {"success": False, "message": "Invalid API Key"}
