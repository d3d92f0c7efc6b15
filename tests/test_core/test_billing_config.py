"""Tests for the billing configuration snapshot."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from resume_billing.core.billing_config import BillingConfig, build_billing_config, load_billing_config
from resume_billing.core.exceptions import BillingValidationError
from resume_billing.models.app_setting import AppSetting


class TestBuildBillingConfig:

    def test_defaults(self):
        config = build_billing_config({})
        assert config.initial_credits == 10
        assert config.cost_for("resume_creation") == 1
        assert config.credits_for_plan("monthly") == 50
        assert config.credits_for_plan("yearly") == 700
        assert config.price_id_for_plan("monthly") == "price_monthly"
        assert config.price_id_for_plan("yearly") == "price_yearly"

    def test_overrides(self):
        config = build_billing_config({
            "initial_credits": "25",
            "credits_per_cover_letter": "4",
            "subscription_yearly_credits": "1000",
            "price_per_credit": "1.25",
        })
        assert config.initial_credits == 25
        assert config.cost_for("job_post_cover_letter") == 4
        assert config.credits_for_plan("yearly") == 1000
        assert config.price_per_credit == Decimal("1.25")

    def test_invalid_value_falls_back_to_default(self):
        config = build_billing_config({"initial_credits": "lots"})
        assert config.initial_credits == 10

    def test_unknown_action(self):
        with pytest.raises(BillingValidationError):
            build_billing_config({}).cost_for("unknown")

    def test_package_and_per_credit_pricing(self):
        config = build_billing_config({})
        assert config.price_for_credits(5) == Decimal("3.99")
        assert config.price_for_credits(7) == Decimal("5.60")

    def test_snapshot_is_immutable(self):
        config = BillingConfig()
        with pytest.raises(ValidationError):
            config.initial_credits = 99


class TestLoadBillingConfig:

    @pytest.mark.asyncio
    async def test_reads_app_settings(self, db):
        db.add(AppSetting(key="credits_per_resume", value="2"))
        await db.commit()

        config = await load_billing_config(db)

        assert config.cost_for("resume_creation") == 2
