"""Stripe checkout/portal redirects and the plan rules derived from billing state."""

import math
from datetime import datetime

import pytz

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.HelperLang import DEFAULT_LANG, normalize_lang
from shared.models.billing import (
    BILLING_PERIODS,
    CURRENCIES,
    INACTIVE_STATUSES,
    PAID_TIERS,
    TIER_LABELS,
    Entitlements,
    OrganizationBilling,
    TrialInfo,
    UsageLimitInfo,
)
from shared.models.errors import BackendError, ValidationError
from shared.models.organization import OrganizationUsage
from shared.models.session import AppSession

CHECKOUT_FUNCTION = "create-checkout-session"
PORTAL_FUNCTION = "create-billing-portal-session"

SECONDS_PER_DAY = 24 * 60 * 60


##########################################
############# PLAN HELPERS ###############
##########################################

def get_trial_info(billing: OrganizationBilling | None, now: datetime | None = None) -> TrialInfo:
    """
    Trial state of a billing record. ``days_left`` is rounded up, so a trial
    ending in three hours still shows one day.
    """
    if billing is None:
        return TrialInfo(is_trial=False)
    now = now or datetime.now(pytz.utc)
    trial_end = billing.trial_end
    if billing.status != "trial" or trial_end is None or trial_end <= now:
        return TrialInfo(is_trial=False, trial_end=trial_end)
    days_left = max(0, math.ceil((trial_end - now).total_seconds() / SECONDS_PER_DAY))
    return TrialInfo(is_trial=True, days_left=days_left, trial_end=trial_end)


def is_inactive_status(status: str | None) -> bool:
    return bool(status) and status.lower() in INACTIVE_STATUSES


def get_usage_limit_info(billing: OrganizationBilling | None, usage: OrganizationUsage | None) -> UsageLimitInfo:
    """A limit of 0 or None means unlimited."""
    jobs_used = usage.jobs_used if usage else 0
    max_jobs = billing.tier.max_jobs_per_period if billing and billing.tier else None
    return UsageLimitInfo(
        jobs_used=jobs_used,
        max_jobs=max_jobs,
        is_over_limit=bool(max_jobs) and max_jobs > 0 and jobs_used >= max_jobs,
    )


def format_tier_label(code: str | None) -> str:
    return TIER_LABELS.get((code or "").upper(), "Starter")


def get_entitlements(billing: OrganizationBilling | None) -> Entitlements:
    """Feature switches of the current tier; everything is off without an active plan."""
    if billing is None or billing.tier is None or is_inactive_status(billing.status):
        return Entitlements()
    tier = billing.tier
    return Entitlements(
        favorite=tier.can_set_favourite,
        status=tier.can_set_status,
        priority=tier.can_set_priority,
        projects=tier.can_use_projects,
        tags=tier.can_use_tags,
        comments=tier.can_comment,
    )


def get_upload_block_reason(billing: OrganizationBilling | None, usage: OrganizationUsage | None) -> str | None:
    """Why uploads are disabled for the organization, or None if they are allowed."""
    if billing is not None and is_inactive_status(billing.status):
        return "Your subscription is inactive."
    limit = get_usage_limit_info(billing, usage)
    if limit.is_over_limit:
        return f"Monthly limit of {limit.max_jobs} processed documents reached."
    return None


class BillingService:
    """Starts Stripe checkout and billing portal sessions for the session's organization."""

    def __init__(self, helper_config: HelperConfig, backend_client: BackendClientInterface, session: AppSession) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session

    async def _do_invoke_for_url(self, function_name: str, body: dict) -> str:
        data = await self._backend.do_invoke_function(function_name, body, access_token=self._session.access_token)
        url = data.get("url")
        if not url:
            self.logging.error("Function %s returned no url for organization %s", function_name, self._session.org_id)
            raise BackendError("Stripe checkout URL was not returned." if function_name == CHECKOUT_FUNCTION else "Something went wrong. Please try again.")
        return url

    async def do_start_checkout(self, tier: str, period: str, currency: str, lang: str | None = None) -> str:
        """
        Create a checkout session for a paid plan.

        Args:
            tier (str): "STARTER" or "PRO".
            period (str): "monthly" or "yearly".
            currency (str): "USD" or "EUR".
            lang (str | None): UI language the checkout page should use.

        Returns:
            str: URL to redirect the user to.

        Raises:
            ValidationError: On an unknown tier, period or currency.
            AuthorizationError: Without an access token.
            BackendError: If the function fails or returns no URL.
        """
        tier = tier.upper()
        if tier not in PAID_TIERS:
            raise ValidationError(f"Unsupported tier '{tier}'")
        if period not in BILLING_PERIODS:
            raise ValidationError(f"Unsupported billing period '{period}'")
        currency = currency.upper()
        if currency not in CURRENCIES:
            raise ValidationError(f"Unsupported currency '{currency}'")
        url = await self._do_invoke_for_url(
            CHECKOUT_FUNCTION,
            {
                "tier": tier,
                "period": period,
                "currency": currency,
                "org_id": self._session.org_id,
                "user_id": self._session.user_id,
                "lang": normalize_lang(lang) or DEFAULT_LANG,
            },
        )
        self.logging.info("Started %s/%s checkout for organization %s", tier, period, self._session.org_id)
        return url

    async def do_open_billing_portal(self) -> str:
        """
        Returns:
            str: URL of the customer portal of the organization.
        """
        return await self._do_invoke_for_url(PORTAL_FUNCTION, {"org_id": self._session.org_id})
