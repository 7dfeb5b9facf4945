"""
Tests for part tags and comments.

Run with: pytest tests/test_part_details.py -v
"""
import asyncio

from conftest import ORG_ID, USER_ID, FakeBackendClient
from services.part_details.PartDetailService import COMMENTS_TABLE, TAGS_TABLE, PartDetailService
from shared.models.session import AppSession


def _tag(tag_id: str, label: str, part_id: str = "p1") -> dict:
    return {"id": tag_id, "org_id": ORG_ID, "part_id": part_id, "label": label}


def _comment(comment_id: str, body: str, created_at: str) -> dict:
    return {"id": comment_id, "org_id": ORG_ID, "part_id": "p1", "user_id": USER_ID, "body": body, "created_at": created_at}


class TestTags:
    """Tests for tags."""

    def test_fetch_sorted_by_label(self, helper_config, session):
        backend = FakeBackendClient({TAGS_TABLE: [_tag("t1", "welded"), _tag("t2", "cnc"), _tag("t3", "other", part_id="p2")]})
        service = PartDetailService(helper_config, backend, session, "p1")

        assert [t.label for t in asyncio.run(service.do_fetch_tags())] == ["cnc", "welded"]

    def test_add_trims_and_skips_duplicates(self, helper_config, session):
        """Labels are trimmed; a label differing only in case is not added."""
        backend = FakeBackendClient({TAGS_TABLE: [_tag("t1", "Urgent")]})
        service = PartDetailService(helper_config, backend, session, "p1")
        asyncio.run(service.do_fetch_tags())

        assert asyncio.run(service.do_add_tag("  urgent ")) is None
        assert asyncio.run(service.do_add_tag("   ")) is None
        tag = asyncio.run(service.do_add_tag("  Sheet metal "))

        assert tag.label == "Sheet metal"
        assert len(backend.calls_of("insert", TAGS_TABLE)) == 1
        assert [t.label for t in service.tags] == ["Urgent", "Sheet metal"]

    def test_unique_violation_is_not_an_error(self, helper_config, session):
        """A tag added meanwhile elsewhere is silently skipped."""
        backend = FakeBackendClient({TAGS_TABLE: [_tag("t1", "cnc")]})
        backend.unique_keys[TAGS_TABLE] = ("part_id", "label")
        service = PartDetailService(helper_config, backend, session, "p1")

        assert asyncio.run(service.do_add_tag("cnc")) is None
        assert service.error is None

    def test_remove(self, helper_config, session):
        backend = FakeBackendClient({TAGS_TABLE: [_tag("t1", "cnc"), _tag("t2", "welded")]})
        service = PartDetailService(helper_config, backend, session, "p1")
        asyncio.run(service.do_fetch_tags())

        asyncio.run(service.do_remove_tag("t1"))

        assert [t.id for t in service.tags] == ["t2"]
        assert [r["id"] for r in backend.rows(TAGS_TABLE)] == ["t2"]

    def test_fetch_failure_sets_error(self, helper_config, backend, session):
        backend.fail_on("select", TAGS_TABLE)
        service = PartDetailService(helper_config, backend, session, "p1")

        assert asyncio.run(service.do_fetch_tags()) == []
        assert service.error == "select on part_tags failed"


class TestComments:
    """Tests for comments."""

    def test_fetch_oldest_first(self, helper_config, session):
        backend = FakeBackendClient({COMMENTS_TABLE: [
            _comment("c2", "second", "2025-01-02T00:00:00+00:00"),
            _comment("c1", "first", "2025-01-01T00:00:00+00:00"),
        ]})
        service = PartDetailService(helper_config, backend, session, "p1")

        assert [c.body for c in asyncio.run(service.do_fetch_comments())] == ["first", "second"]

    def test_add_uses_display_name_then_email(self, helper_config, backend, session):
        service = PartDetailService(helper_config, backend, session, "p1")
        asyncio.run(service.do_add_comment("  looks good  "))

        named = AppSession(user_id=USER_ID, org_id=ORG_ID, display_name="Ada Lovelace")
        asyncio.run(PartDetailService(helper_config, backend, named, "p1").do_add_comment("ship it"))
        anonymous = AppSession(user_id=USER_ID, org_id=ORG_ID)
        asyncio.run(PartDetailService(helper_config, backend, anonymous, "p1").do_add_comment("ok"))

        assert [r["author_name"] for r in backend.rows(COMMENTS_TABLE)] == ["ada@example.com", "Ada Lovelace", "User"]
        assert [c.body for c in service.comments] == ["looks good"]

    def test_empty_comment_is_ignored(self, helper_config, backend, session):
        service = PartDetailService(helper_config, backend, session, "p1")
        asyncio.run(service.do_add_comment("   "))
        assert backend.calls == []

    def test_add_failure_keeps_thread(self, helper_config, backend, session):
        backend.fail_on("insert", COMMENTS_TABLE)
        service = PartDetailService(helper_config, backend, session, "p1")

        asyncio.run(service.do_add_comment("hello"))

        assert service.error == "insert on part_comments failed"
        assert service.comments == []
