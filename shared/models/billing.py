"""Pydantic models for subscription billing and tier entitlements."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

PAID_TIERS = ("STARTER", "PRO")
TIER_LABELS = {"FREE": "Free", "STARTER": "Starter", "PRO": "Pro", "ENTERPRISE": "Enterprise"}
BILLING_PERIODS = ("monthly", "yearly")
CURRENCIES = ("USD", "EUR")
INACTIVE_STATUSES = ("canceled", "past_due", "unpaid", "inactive")


class Tier(BaseModel):
    """Plan limits and feature flags joined from organization_tiers."""

    model_config = ConfigDict(extra="ignore")

    code: str
    name: str | None = None
    max_jobs_per_period: int | None = None
    max_users: int | None = None
    can_comment: bool = False
    can_set_favourite: bool = False
    can_use_tags: bool = False
    can_set_priority: bool = False
    can_set_status: bool = False
    can_use_projects: bool = False


class OrganizationBilling(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    tier: Tier | None = None


class TrialInfo(BaseModel):
    is_trial: bool
    days_left: int | None = None
    trial_end: datetime | None = None


class UsageLimitInfo(BaseModel):
    jobs_used: int
    max_jobs: int | None = None
    is_over_limit: bool


class Entitlements(BaseModel):
    """Feature switches derived from the billing tier; all off when there is no active plan."""

    favorite: bool = False
    status: bool = False
    priority: bool = False
    projects: bool = False
    tags: bool = False
    comments: bool = False
