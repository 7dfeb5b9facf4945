"""
Tests for the per-organization live view registry.

Run with: pytest tests/test_live_view_registry.py -v
"""
import asyncio

import pytest

from conftest import ORG_ID, OTHER_ORG_ID, FakeBackendClient, document_parts_row, document_row, part_row
from server.core.LiveViewRegistry import LiveViewRegistry
from shared.clients.realtime.models.ChangeEvent import ChangeEvent


class _GatedBackend(FakeBackendClient):
    """Holds the parts page of ``gated_org`` until ``release`` is set; can fail it once with ``crash``."""

    def __init__(self, tables, gated_org: str | None = None):
        super().__init__(tables)
        self.gated_org = gated_org
        self.release = asyncio.Event()
        self.crash: Exception | None = None

    async def do_select(self, query, access_token=None):
        if query.table == "document_parts" and query.get_filter_value("org_id") == self.gated_org and query.select != "document_id":
            if self.crash is not None:
                error, self.crash = self.crash, None
                raise error
            await self.release.wait()
        return await super().do_select(query, access_token=access_token)


def _tables() -> dict:
    doc1, doc2 = document_row("doc-1"), document_row("doc-2", org_id=OTHER_ORG_ID)
    p1, p2 = part_row("p1"), part_row("p2", org_id=OTHER_ORG_ID)
    return {
        "documents": [doc1, doc2],
        "parts": [p1, p2],
        "document_parts": [document_parts_row(p1, doc1), document_parts_row(p2, doc2)],
    }


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


class TestLiveViewRegistry:
    """Tests for LiveViewRegistry."""

    def test_slow_open_does_not_block_other_orgs(self, helper_config):
        """While one organization is still loading, another one opens."""
        async def scenario():
            backend = _GatedBackend(_tables(), gated_org=ORG_ID)
            registry = LiveViewRegistry(helper_config, backend)
            slow = asyncio.create_task(registry.do_get_view(ORG_ID))
            await _settle()

            other = await asyncio.wait_for(registry.do_get_view(OTHER_ORG_ID), timeout=1)
            pending = registry.get_open_view(ORG_ID)
            backend.release.set()
            first = await slow
            return other, pending, first, registry

        other, pending, first, registry = asyncio.run(scenario())

        assert [p.id for p in other.get_parts()] == ["p2"]
        assert pending is None
        assert registry.get_open_view(ORG_ID) is first
        assert [p.id for p in first.get_parts()] == ["p1"]

    def test_concurrent_requests_share_one_view(self, helper_config):
        async def scenario():
            backend = _GatedBackend(_tables(), gated_org=ORG_ID)
            registry = LiveViewRegistry(helper_config, backend)
            tasks = [asyncio.create_task(registry.do_get_view(ORG_ID)) for _ in range(3)]
            await _settle()
            backend.release.set()
            return await asyncio.gather(*tasks), backend

        views, backend = asyncio.run(scenario())

        assert views[0] is views[1] is views[2]
        pages = [c for c in backend.calls_of("select", "document_parts") if c[2].select != "document_id"]
        assert len(pages) == 1

    def test_failed_open_is_not_registered(self, helper_config):
        """A view whose open fails is dropped; the next request opens a fresh one."""
        async def scenario():
            backend = _GatedBackend(_tables(), gated_org=ORG_ID)
            backend.release.set()
            backend.crash = RuntimeError("boom")
            registry = LiveViewRegistry(helper_config, backend)
            with pytest.raises(RuntimeError):
                await registry.do_get_view(ORG_ID)
            after_failure = registry.get_open_view(ORG_ID)
            view = await registry.do_get_view(ORG_ID)
            return after_failure, view

        after_failure, view = asyncio.run(scenario())

        assert after_failure is None
        assert [p.id for p in view.get_parts()] == ["p1"]

    def test_webhook_change_reaches_opening_view(self, helper_config):
        """A delete delivered while the first page is loading is not undone by it."""
        async def scenario():
            backend = _GatedBackend(_tables(), gated_org=ORG_ID)
            registry = LiveViewRegistry(helper_config, backend)
            opening = asyncio.create_task(registry.do_get_view(ORG_ID))
            await _settle()
            delivered = await registry.do_dispatch_change(
                ChangeEvent(table="parts", event_type="DELETE", old_record={"id": "p1", "org_id": ORG_ID})
            )
            backend.release.set()
            return delivered, await opening

        delivered, view = asyncio.run(scenario())

        assert delivered is True
        assert view.get_parts() == []
