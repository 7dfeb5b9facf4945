"""Pydantic models for organization membership, invites, profile and usage."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

ROLES = ("owner", "admin", "member")
ADMIN_ROLES = ("owner", "admin")


class OrganizationMember(BaseModel):
    model_config = ConfigDict(extra="ignore")

    org_id: str
    user_id: str
    role: str
    user_name: str | None = None
    email: str | None = None


class OrganizationInvite(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str
    token: str | None = None
    invited_by_user_id: str | None = None
    invited_email: str | None = None
    role: str = "member"
    expires_at: datetime | None = None
    accepted_at: datetime | None = None
    accepted_by_user_id: str | None = None
    created_at: datetime | None = None


class InviteLink(BaseModel):
    """Result of the create_organization_invite RPC."""

    model_config = ConfigDict(extra="ignore")

    invite_link: str
    token: str | None = None


class InviteAcceptance(BaseModel):
    """Result of the accept_organization_invite RPC."""

    model_config = ConfigDict(extra="ignore")

    success: bool = False
    message: str | None = None
    org_id: str | None = None


class OrganizationProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    org_id: str
    report_lang: str | None = None
    profile_text: str | None = None
    created_at: datetime | None = None
    last_updated: datetime | None = None


class OrganizationUsage(BaseModel):
    """Jobs consumed in one billing period."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    org_id: str
    period_start: datetime
    period_end: datetime
    jobs_used: int = 0
