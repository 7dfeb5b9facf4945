"""
Tests for organization members, invites, profile, usage and billing reads.

Run with: pytest tests/test_organization.py -v
"""
import asyncio

import pytest

from conftest import ORG_ID, OTHER_ORG_ID, USER_ID, FakeBackendClient
from services.organization.OrganizationService import (
    MEMBERS_TABLE,
    PROFILES_TABLE,
    USAGE_TABLE,
    BILLING_TABLE,
    OrganizationService,
    extract_invite_token,
    is_profile_complete,
    normalize_report_lang,
)
from shared.models.errors import AuthorizationError, BackendError, ValidationError
from shared.models.organization import OrganizationProfile
from shared.models.session import AppSession


def _member(user_id: str, role: str = "member", org_id: str = ORG_ID) -> dict:
    return {"org_id": org_id, "user_id": user_id, "role": role}


def _member_session(role: str = "member") -> AppSession:
    return AppSession(user_id=USER_ID, org_id=ORG_ID, access_token="t", role=role, email="bob@example.com")


class TestHelpers:
    """Tests for module helpers."""

    def test_normalize_report_lang(self):
        assert normalize_report_lang("  DE ") == "de"
        assert normalize_report_lang(None) == "en"
        assert normalize_report_lang("   ") == "en"

    def test_is_profile_complete(self):
        assert not is_profile_complete(None)
        assert not is_profile_complete(OrganizationProfile(org_id=ORG_ID, profile_text="   "))
        assert is_profile_complete(OrganizationProfile(org_id=ORG_ID, profile_text="We machine aluminium."))

    def test_extract_invite_token(self):
        assert extract_invite_token("https://app.example.com/cs/invite/abc123?x=1") == "abc123"
        assert extract_invite_token("  abc123  ") == "abc123"
        assert extract_invite_token("https://app.example.com/other/abc123") == "https://app.example.com/other/abc123"


class TestMembers:
    """Tests for member management."""

    def test_fetch_and_count(self, helper_config, session):
        backend = FakeBackendClient({MEMBERS_TABLE: [_member(USER_ID, "owner"), _member("user-2"), _member("user-3", org_id=OTHER_ORG_ID)]})
        service = OrganizationService(helper_config, backend, session)

        assert [m.user_id for m in asyncio.run(service.do_fetch_members())] == [USER_ID, "user-2"]
        assert asyncio.run(service.do_count_members()) == 2

    def test_change_role_requires_admin(self, helper_config):
        backend = FakeBackendClient({MEMBERS_TABLE: [_member("user-2")]})
        service = OrganizationService(helper_config, backend, _member_session())

        with pytest.raises(AuthorizationError) as exc_info:
            asyncio.run(service.do_change_role("user-2", "admin"))
        assert exc_info.value.status_code == 403
        assert backend.calls_of("update") == []

    def test_change_role(self, helper_config, session):
        backend = FakeBackendClient({MEMBERS_TABLE: [_member(USER_ID, "owner"), _member("user-2")]})
        service = OrganizationService(helper_config, backend, session)
        asyncio.run(service.do_fetch_members())

        asyncio.run(service.do_change_role("user-2", "admin"))

        assert backend.rows(MEMBERS_TABLE)[1]["role"] == "admin"
        assert service.members[1].role == "admin"
        with pytest.raises(ValidationError):
            asyncio.run(service.do_change_role("user-2", "superuser"))

    def test_remove_member(self, helper_config, session):
        backend = FakeBackendClient({MEMBERS_TABLE: [_member(USER_ID, "owner"), _member("user-2")]})
        service = OrganizationService(helper_config, backend, session)

        asyncio.run(service.do_remove_member("user-2"))

        assert [r["user_id"] for r in backend.rows(MEMBERS_TABLE)] == [USER_ID]

    def test_is_org_admin(self, helper_config, session):
        backend = FakeBackendClient({MEMBERS_TABLE: [_member(USER_ID, "admin"), _member("user-2")]})
        service = OrganizationService(helper_config, backend, session)

        assert asyncio.run(service.do_is_org_admin()) is True
        assert asyncio.run(service.do_is_org_admin("user-2")) is False
        assert asyncio.run(service.do_is_org_admin("nobody")) is False

        backend.fail_on("select", MEMBERS_TABLE)
        assert asyncio.run(service.do_is_org_admin()) is False


class TestInvites:
    """Tests for invites."""

    def test_create_invite(self, helper_config, backend, session):
        backend.rpc_results["create_organization_invite"] = [{"invite_link": "/invite/tok-1", "token": "tok-1"}]
        service = OrganizationService(helper_config, backend, session)

        invite = asyncio.run(service.do_create_invite("member", "new@example.com", base_url="https://app.example.com/"))

        assert invite.invite_link == "https://app.example.com/invite/tok-1"
        params = backend.calls_of("rpc", "create_organization_invite")[0][2]
        assert params == {"p_org_id": ORG_ID, "p_role": "member", "p_invited_email": "new@example.com", "p_expires_days": 7}

    def test_create_invite_without_result(self, helper_config, backend, session):
        backend.rpc_results["create_organization_invite"] = []

        with pytest.raises(BackendError):
            asyncio.run(OrganizationService(helper_config, backend, session).do_create_invite())

    def test_members_cannot_invite(self, helper_config, backend):
        with pytest.raises(AuthorizationError):
            asyncio.run(OrganizationService(helper_config, backend, _member_session()).do_create_invite())
        assert backend.calls == []

    def test_fetch_and_revoke_invites(self, helper_config, backend, session):
        backend.rpc_results["get_organization_invites"] = [{"id": "inv-1", "org_id": ORG_ID}, {"id": "inv-2", "org_id": ORG_ID}]
        backend.rows("organization_invites").extend([{"id": "inv-1", "org_id": ORG_ID}, {"id": "inv-2", "org_id": ORG_ID}])
        service = OrganizationService(helper_config, backend, session)
        asyncio.run(service.do_fetch_invites())

        asyncio.run(service.do_revoke_invite("inv-1"))

        assert [i.id for i in service.invites] == ["inv-2"]
        assert [r["id"] for r in backend.rows("organization_invites")] == ["inv-2"]

    def test_accept_invite_from_link(self, helper_config, backend):
        """The token is read from the link; the user name falls back to the email local part."""
        backend.rpc_results["accept_organization_invite"] = {"success": True, "org_id": OTHER_ORG_ID}
        service = OrganizationService(helper_config, backend, _member_session())

        result = asyncio.run(service.do_accept_invite("https://app.example.com/en/invite/tok-9"))

        assert result.org_id == OTHER_ORG_ID
        assert backend.calls_of("rpc")[0][2] == {"p_token": "tok-9", "p_user_name": "bob"}

    def test_declined_invite(self, helper_config, backend, session):
        backend.rpc_results["accept_organization_invite"] = [{"success": False, "message": "Invite expired"}]

        with pytest.raises(ValidationError, match="Invite expired"):
            asyncio.run(OrganizationService(helper_config, backend, session).do_accept_invite("tok-1"))

    def test_empty_token(self, helper_config, backend, session):
        with pytest.raises(ValidationError):
            asyncio.run(OrganizationService(helper_config, backend, session).do_accept_invite("   "))


class TestProfileAndUsage:
    """Tests for the report profile, usage and billing reads."""

    def test_save_profile_upserts(self, helper_config, backend, session):
        service = OrganizationService(helper_config, backend, session)

        asyncio.run(service.do_save_profile(" CS ", "Sheet metal shop"))
        profile = asyncio.run(service.do_save_profile("de", "Sheet metal shop"))

        assert profile.report_lang == "de"
        assert len(backend.rows(PROFILES_TABLE)) == 1
        assert asyncio.run(service.do_fetch_profile()).profile_text == "Sheet metal shop"

    def test_members_cannot_save_profile(self, helper_config, backend):
        with pytest.raises(AuthorizationError):
            asyncio.run(OrganizationService(helper_config, backend, _member_session()).do_save_profile("en", "x"))

    def test_missing_profile(self, helper_config, backend, session):
        assert asyncio.run(OrganizationService(helper_config, backend, session).do_fetch_profile()) is None

    def test_latest_usage_period(self, helper_config, session):
        backend = FakeBackendClient({USAGE_TABLE: [
            {"org_id": ORG_ID, "period_start": "2025-01-01T00:00:00+00:00", "period_end": "2025-02-01T00:00:00+00:00", "jobs_used": 40},
            {"org_id": ORG_ID, "period_start": "2025-02-01T00:00:00+00:00", "period_end": "2025-03-01T00:00:00+00:00", "jobs_used": 3},
        ]})

        usage = asyncio.run(OrganizationService(helper_config, backend, session).do_fetch_usage())

        assert usage.jobs_used == 3

    def test_fetch_billing_with_tier(self, helper_config, session):
        backend = FakeBackendClient({BILLING_TABLE: [{"org_id": ORG_ID, "status": "active", "tier": {"code": "PRO", "can_comment": True}}]})

        billing = asyncio.run(OrganizationService(helper_config, backend, session).do_fetch_billing())

        assert billing.tier.code == "PRO" and billing.tier.can_comment

    def test_billing_failure_sets_error(self, helper_config, backend, session):
        backend.fail_on("select", BILLING_TABLE)
        service = OrganizationService(helper_config, backend, session)

        assert asyncio.run(service.do_fetch_billing()) is None
        assert service.error == "select on organization_billing failed"
