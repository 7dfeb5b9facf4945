"""Members, invites, report profile, usage and billing state of an organization."""

from datetime import datetime
from urllib.parse import urlparse

import pytz

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.billing import OrganizationBilling
from shared.models.errors import AuthorizationError, BackendError, ValidationError, error_message
from shared.models.organization import (
    ADMIN_ROLES,
    ROLES,
    InviteAcceptance,
    InviteLink,
    OrganizationInvite,
    OrganizationMember,
    OrganizationProfile,
    OrganizationUsage,
)
from shared.models.session import AppSession

MEMBERS_TABLE = "organization_members"
INVITES_TABLE = "organization_invites"
PROFILES_TABLE = "organization_profiles"
USAGE_TABLE = "organization_usage"
BILLING_TABLE = "organization_billing"

INVITE_EXPIRES_DAYS = 7
DEFAULT_REPORT_LANG = "en"

BILLING_SELECT = """
    status, trial_start, trial_end, current_period_start, current_period_end,
    tier:organization_tiers (
        code, name, max_jobs_per_period, max_users,
        can_comment, can_set_favourite, can_use_tags, can_set_priority, can_set_status, can_use_projects
    )
"""


def normalize_report_lang(lang: str | None) -> str:
    """Trimmed, lower-cased report language; "en" when empty."""
    return (lang or DEFAULT_REPORT_LANG).strip().lower() or DEFAULT_REPORT_LANG


def is_profile_complete(profile: OrganizationProfile | None) -> bool:
    """A profile counts as complete once it has a non-blank profile text."""
    return bool(profile and profile.profile_text and profile.profile_text.strip())


def extract_invite_token(value: str) -> str:
    """
    Accept either a bare token or a full invite URL (``.../invite/<token>``).
    """
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        segments = [s for s in parsed.path.split("/") if s]
        if "invite" in segments:
            index = segments.index("invite")
            if index + 1 < len(segments):
                return segments[index + 1]
    return value


class OrganizationService:
    """
    Organization settings of the session's organization.

    Reads report failures through ``error`` and return an empty value, as the
    settings pages expect; writes raise.
    """

    def __init__(self, helper_config: HelperConfig, backend_client: BackendClientInterface, session: AppSession) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session
        self.members: list[OrganizationMember] = []
        self.invites: list[OrganizationInvite] = []
        self.error: str | None = None

    def _require_admin(self) -> None:
        if self._session.role not in ADMIN_ROLES:
            raise AuthorizationError("Forbidden", status_code=403)

    def _members_query(self, select: str = "*") -> TableQuery:
        return TableQuery(table=MEMBERS_TABLE, select=select).eq("org_id", self._session.org_id)

    ##########################################
    ################ MEMBERS #################
    ##########################################

    async def do_fetch_members(self) -> list[OrganizationMember]:
        self.error = None
        try:
            rows = await self._backend.do_select(self._members_query(), access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error loading members of organization %s: %s", self._session.org_id, e.message)
            self.error = error_message(e, "Failed to load members")
            return self.members
        self.members = [OrganizationMember.model_validate(row) for row in rows]
        return self.members

    async def do_count_members(self) -> int:
        try:
            return await self._backend.do_count(self._members_query("user_id"), access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error counting members of organization %s: %s", self._session.org_id, e.message)
            self.error = error_message(e, "Failed to count members")
            return 0

    async def do_change_role(self, user_id: str, role: str) -> None:
        """
        Raises:
            AuthorizationError: If the session's user is not an owner or admin.
            ValidationError: If ``role`` is unknown.
        """
        self._require_admin()
        if role not in ROLES:
            raise ValidationError(f"Invalid role '{role}'")
        await self._backend.do_update(
            self._members_query().eq("user_id", user_id),
            {"role": role},
            access_token=self._session.access_token,
            returning=False,
        )
        self.members = [m.model_copy(update={"role": role}) if m.user_id == user_id else m for m in self.members]
        self.logging.info("Changed role of user %s in organization %s to %s", user_id, self._session.org_id, role)

    async def do_remove_member(self, user_id: str) -> None:
        self._require_admin()
        await self._backend.do_delete(self._members_query().eq("user_id", user_id), access_token=self._session.access_token)
        self.members = [m for m in self.members if m.user_id != user_id]
        self.logging.info("Removed user %s from organization %s", user_id, self._session.org_id)

    async def do_is_org_admin(self, user_id: str | None = None) -> bool:
        """Whether ``user_id`` (default: the session's user) is an owner or admin. Lookup failures count as no."""
        query = self._members_query("role").eq("user_id", user_id or self._session.user_id)
        try:
            row = await self._backend.do_select_single(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.warning("Role lookup failed: %s", e.message)
            return False
        return bool(row) and row.get("role") in ADMIN_ROLES

    ##########################################
    ################ INVITES #################
    ##########################################

    async def do_create_invite(self, role: str = "member", invited_email: str | None = None, base_url: str | None = None) -> InviteLink:
        """
        Create an invite valid for seven days.

        Args:
            role (str): Role granted on acceptance.
            invited_email (str | None): Optional address the invite is meant for.
            base_url (str | None): Public origin of the app; when given, ``invite_link`` is made absolute.

        Raises:
            AuthorizationError: If the session's user cannot manage the organization.
            BackendError: If the backend returned no invite.
        """
        self._require_admin()
        if role not in ROLES:
            raise ValidationError(f"Invalid role '{role}'")
        data = await self._backend.do_rpc(
            "create_organization_invite",
            {
                "p_org_id": self._session.org_id,
                "p_role": role,
                "p_invited_email": invited_email or None,
                "p_expires_days": INVITE_EXPIRES_DAYS,
            },
            access_token=self._session.access_token,
        )
        rows = data if isinstance(data, list) else [data] if data else []
        if not rows:
            raise BackendError("Failed to create invite")
        invite = InviteLink.model_validate(rows[0])
        if base_url:
            invite.invite_link = f"{base_url.rstrip('/')}/{invite.invite_link.lstrip('/')}"
        self.logging.info("Created %s invite for organization %s", role, self._session.org_id)
        return invite

    async def do_fetch_invites(self) -> list[OrganizationInvite]:
        self.error = None
        try:
            data = await self._backend.do_rpc(
                "get_organization_invites",
                {"p_org_id": self._session.org_id},
                access_token=self._session.access_token,
            )
        except BackendError as e:
            self.logging.error("Error loading invites: %s", e.message)
            self.error = error_message(e, "Failed to load invites")
            return self.invites
        self.invites = [OrganizationInvite.model_validate(row) for row in data or []]
        return self.invites

    async def do_revoke_invite(self, invite_id: str) -> None:
        self._require_admin()
        query = TableQuery(table=INVITES_TABLE).eq("id", invite_id).eq("org_id", self._session.org_id)
        await self._backend.do_delete(query, access_token=self._session.access_token)
        self.invites = [i for i in self.invites if i.id != invite_id]

    async def do_accept_invite(self, token_or_link: str) -> InviteAcceptance:
        """
        Join the organization behind an invite as the session's user.

        Raises:
            ValidationError: If no token could be read from the input, or the backend declined the invite.
        """
        token = extract_invite_token(token_or_link)
        if not token:
            raise ValidationError("Missing invite token")
        email = self._session.email or ""
        user_name = self._session.display_name or (email.split("@")[0] if email else "User")
        data = await self._backend.do_rpc(
            "accept_organization_invite",
            {"p_token": token, "p_user_name": user_name},
            access_token=self._session.access_token,
        )
        rows = data if isinstance(data, list) else [data] if data else []
        result = InviteAcceptance.model_validate(rows[0]) if rows else InviteAcceptance()
        if not result.success:
            raise ValidationError(result.message or "Failed to accept invite")
        self.logging.info("User %s joined organization %s", self._session.user_id, result.org_id)
        return result

    ##########################################
    ################ PROFILE #################
    ##########################################

    async def do_fetch_profile(self) -> OrganizationProfile | None:
        query = TableQuery(table=PROFILES_TABLE, select="org_id, report_lang, profile_text, created_at, last_updated").eq("org_id", self._session.org_id)
        try:
            row = await self._backend.do_select_single(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error loading organization profile: %s", e.message)
            self.error = error_message(e, "Failed to load profile")
            return None
        return OrganizationProfile.model_validate(row) if row else None

    async def do_save_profile(self, report_lang: str | None, profile_text: str | None) -> OrganizationProfile:
        """Create or replace the report profile of the organization."""
        self._require_admin()
        payload = {
            "org_id": self._session.org_id,
            "report_lang": normalize_report_lang(report_lang),
            "profile_text": profile_text,
            "last_updated": datetime.now(pytz.utc).isoformat(),
        }
        rows = await self._backend.do_upsert(PROFILES_TABLE, payload, on_conflict="org_id", access_token=self._session.access_token)
        return OrganizationProfile.model_validate(rows[0] if rows else payload)

    ##########################################
    ############ USAGE & BILLING #############
    ##########################################

    async def do_fetch_usage(self) -> OrganizationUsage | None:
        """Usage row of the most recent billing period, if any."""
        query = TableQuery(table=USAGE_TABLE).eq("org_id", self._session.org_id).order_by("period_start", ascending=False).first()
        try:
            rows = await self._backend.do_select(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error loading usage: %s", e.message)
            self.error = error_message(e, "Failed to load usage")
            return None
        return OrganizationUsage.model_validate(rows[0]) if rows else None

    async def do_fetch_billing(self) -> OrganizationBilling | None:
        query = TableQuery(table=BILLING_TABLE, select=BILLING_SELECT).eq("org_id", self._session.org_id)
        try:
            row = await self._backend.do_select_single(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error fetching billing: %s", e.message)
            self.error = error_message(e, "Failed to load billing")
            return None
        return OrganizationBilling.model_validate(row) if row else None
