"""Service layer tests: plans, usage minutes, upload gating and app settings"""
import pytest
from datetime import timedelta

from reelcast.models.subscription import Subscription
from reelcast.models.subscription_plan import SubscriptionPlan
from reelcast.models.video import Video
from reelcast.services import settings_service, subscription_service
from reelcast.services.settings_service import MASKED_SECRET
from reelcast.utils.dates import utcnow

from conftest import subscribe


def _add_videos(user, db, count):
    for i in range(count):
        db.add(Video(
            user_id=user.id, title=f"video {i}", original_url="https://cdn.example.com/v.mp4",
            duration=60, file_size=1024, upload_path=f"uploads/{i}.mp4"
        ))
    db.commit()


@pytest.mark.critical
class TestUsageMinutes:
    """Minute accounting on subscriptions"""

    def test_minutes_round_up(self):
        """Test any started minute is charged"""
        assert subscription_service.minutes_for_duration(1) == 1
        assert subscription_service.minutes_for_duration(60) == 1
        assert subscription_service.minutes_for_duration(61) == 2
        assert subscription_service.minutes_for_duration(0) == 0
        assert subscription_service.minutes_for_duration(-5) == 0

    def test_add_minutes_used(self, subscribed_user, db_session):
        """Test minutes are added to the user's subscription"""
        subscription_service.add_minutes_used(subscribed_user.id, 7, db_session)
        assert subscribed_user.subscription.minutes_used == 7

    def test_refund_never_goes_negative(self, subscribed_user, db_session):
        """Test giving back more minutes than used floors at zero"""
        subscription_service.add_minutes_used(subscribed_user.id, 3, db_session)
        subscription_service.add_minutes_used(subscribed_user.id, -10, db_session)
        assert subscribed_user.subscription.minutes_used == 0

    def test_add_minutes_without_subscription(self, test_user, db_session):
        """Test free users have nothing to charge"""
        assert subscription_service.add_minutes_used(test_user.id, 5, db_session) is None


@pytest.mark.critical
class TestCanUpload:
    """Upload gating for free and paid users"""

    def test_free_user_under_limit(self, test_user, db_session):
        """Test free users can upload until FREE_VIDEO_LIMIT"""
        _add_videos(test_user, db_session, 4)
        result = subscription_service.can_upload(test_user.id, db_session)
        assert result["allowed"] is True
        assert result["remaining_free_videos"] == 1

    def test_free_user_at_limit(self, test_user, db_session):
        """Test the sixth free video is refused"""
        _add_videos(test_user, db_session, 5)
        result = subscription_service.can_upload(test_user.id, db_session)
        assert result["allowed"] is False
        assert result["code"] == "free_limit_reached"
        assert result["free_limit"] == 5

    def test_subscriber_ignores_free_limit(self, subscribed_user, db_session):
        """Test paid users are limited by minutes, not video count"""
        _add_videos(subscribed_user, db_session, 10)
        assert subscription_service.can_upload(subscribed_user.id, db_session)["allowed"] is True

    def test_subscriber_out_of_minutes(self, test_user, basic_plan, db_session):
        """Test a subscriber who used every minute is refused"""
        subscribe(test_user, basic_plan, db_session, minutes_used=100)
        result = subscription_service.can_upload(test_user.id, db_session)
        assert result["allowed"] is False
        assert result["code"] == "usage_limit_reached"
        assert result["used_minutes"] == 100
        assert result["allowed_minutes"] == 100

    def test_subscriber_period_ended(self, test_user, basic_plan, db_session):
        """Test an expired paid period blocks uploads"""
        subscribe(test_user, basic_plan, db_session, period_end=utcnow() - timedelta(days=1))
        result = subscription_service.can_upload(test_user.id, db_session)
        assert result["allowed"] is False
        assert result["code"] == "subscription_expired"

    def test_unknown_user(self, db_session):
        """Test a missing user raises LookupError"""
        with pytest.raises(LookupError):
            subscription_service.can_upload(999, db_session)


@pytest.mark.high
class TestSubscriptionPlans:
    """Plan CRUD and seeding"""

    def test_seed_default_plans_is_idempotent(self, db_session):
        """Test seeding twice creates Basic, Advanced and Expert once"""
        created = subscription_service.seed_default_plans(db_session)
        assert created == ["Basic", "Advanced", "Expert"]
        assert subscription_service.seed_default_plans(db_session) == []
        assert db_session.query(SubscriptionPlan).count() == 3

    def test_seeded_prices(self, db_session):
        """Test yearly prices are twelve discounted months"""
        subscription_service.seed_default_plans(db_session)
        plans = {p["name"]: p for p in subscription_service.list_active_plans(db_session)}
        assert plans["Basic"]["monthly_price"] == 19.0
        assert plans["Basic"]["yearly_price"] == 180.0
        assert plans["Expert"]["minutes_allowed"] == 500

    def test_active_plans_sorted_by_price(self, db_session):
        """Test the public listing is ordered cheapest first"""
        subscription_service.seed_default_plans(db_session)
        prices = [p["monthly_price"] for p in subscription_service.list_active_plans(db_session)]
        assert prices == sorted(prices)

    def test_create_plan_rejects_duplicate_name(self, basic_plan, db_session):
        """Test plan names are unique"""
        with pytest.raises(ValueError, match="already exists"):
            subscription_service.create_plan({
                "name": "Basic", "monthly_price": 1, "yearly_price": 10,
                "minutes_allowed": 10, "max_file_size": 10,
            }, db_session)

    def test_create_plan_rejects_negative_price(self, db_session):
        """Test prices cannot be negative"""
        with pytest.raises(ValueError, match="cannot be negative"):
            subscription_service.create_plan({
                "name": "Broken", "monthly_price": -1, "yearly_price": 10,
                "minutes_allowed": 10, "max_file_size": 10,
            }, db_session)

    def test_update_plan(self, basic_plan, db_session):
        """Test partial updates leave other fields alone"""
        result = subscription_service.update_plan(basic_plan.id, {"monthly_price": 21.0, "name": None}, db_session)
        assert result["monthly_price"] == 21.0
        assert result["name"] == "Basic"

    def test_update_missing_plan(self, db_session):
        """Test updating an unknown plan raises LookupError"""
        with pytest.raises(LookupError):
            subscription_service.update_plan(42, {"monthly_price": 1.0}, db_session)

    def test_delete_unused_plan(self, basic_plan, db_session):
        """Test a plan nobody uses is removed"""
        result = subscription_service.delete_plan(basic_plan.id, db_session)
        assert result["deactivated"] is False
        assert db_session.query(SubscriptionPlan).count() == 0

    def test_delete_plan_in_use_deactivates(self, subscribed_user, basic_plan, db_session):
        """Test a plan with subscribers is only deactivated"""
        result = subscription_service.delete_plan(basic_plan.id, db_session)
        assert result["deactivated"] is True
        db_session.refresh(basic_plan)
        assert basic_plan.is_active is False
        assert db_session.query(Subscription).count() == 1


@pytest.mark.high
class TestAppSettings:
    """System-wide settings and OAuth client credentials"""

    def test_defaults(self, db_session):
        """Test unset keys fall back to their defaults"""
        values = settings_service.get_app_settings(db_session)
        assert values["user_registration"] is True
        assert values["max_upload_size"] == 500

    def test_update_and_read_back(self, db_session):
        """Test updates are persisted as typed values"""
        settings_service.update_app_settings({"maintenance_mode": True, "trial_period": 7}, db_session)
        values = settings_service.get_app_settings(db_session)
        assert values["maintenance_mode"] is True
        assert values["trial_period"] == 7

    def test_update_rejects_unknown_key(self, db_session):
        """Test only known settings can be written"""
        with pytest.raises(ValueError, match="Unknown setting"):
            settings_service.update_app_settings({"launch_missiles": True}, db_session)

    def test_update_rejects_wrong_type(self, db_session):
        """Test values keep the type of their default, and bools are not ints"""
        with pytest.raises(ValueError):
            settings_service.update_app_settings({"trial_period": "seven"}, db_session)
        with pytest.raises(ValueError):
            settings_service.update_app_settings({"trial_period": True}, db_session)

    def test_credentials_saved_encrypted_and_masked(self, db_session):
        """Test client secrets are stored encrypted and never returned"""
        result = settings_service.save_social_credentials("tiktok", "client-key", "super-secret", db_session)
        assert result["tiktok"] == {"client_id": "client-key", "client_secret": MASKED_SECRET}
        assert settings_service.get_platform_credentials("TIKTOK", db_session) == ("client-key", "super-secret")

        stored = settings_service._get_raw("oauth.tiktok.client_secret", db_session)
        assert stored != "super-secret"

    def test_masked_secret_keeps_previous_value(self, db_session):
        """Test re-submitting the masked placeholder does not overwrite the secret"""
        settings_service.save_social_credentials("youtube", "id-1", "secret-1", db_session)
        settings_service.save_social_credentials("youtube", "id-2", MASKED_SECRET, db_session)
        assert settings_service.get_platform_credentials("YOUTUBE", db_session) == ("id-2", "secret-1")

    def test_credentials_fall_back_to_environment(self, db_session, monkeypatch):
        """Test environment credentials are used when nothing was saved"""
        monkeypatch.setattr(settings_service.settings, "FACEBOOK_APP_ID", "env-app")
        monkeypatch.setattr(settings_service.settings, "FACEBOOK_APP_SECRET", "env-secret")
        assert settings_service.get_platform_credentials("FACEBOOK", db_session) == ("env-app", "env-secret")

    def test_unknown_platform(self, db_session):
        """Test credentials for an unsupported platform are rejected"""
        with pytest.raises(ValueError, match="Unsupported platform"):
            settings_service.save_social_credentials("myspace", "id", "secret", db_session)
