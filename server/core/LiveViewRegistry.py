import asyncio

from services.parts_live_view.PartsLiveView import PartsLiveView
from services.parts_manager.PartsManager import PartsManager
from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.realtime.RealtimeClientInterface import RealtimeClientInterface
from shared.clients.realtime.models.ChangeEvent import ChangeEvent
from shared.helper.HelperConfig import HelperConfig
from shared.models.session import AppSession

SERVER_USER_ID = "api-server"


class LiveViewRegistry:
    """
    One live parts view per organization, shared by every request of that organization,
    plus the bulk selection of each user.

    Views run with the server's backend key, so every read is scoped by the
    organization id the caller was verified against.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        backend_client: BackendClientInterface,
        realtime_client: RealtimeClientInterface | None = None,
    ) -> None:
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._realtime = realtime_client
        self._views: dict[str, PartsLiveView] = {}
        # views whose do_open is still running; they already take webhook changes
        self._opening: dict[str, PartsLiveView] = {}
        self._selections: dict[tuple[str, str], PartsManager] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def do_get_view(self, org_id: str) -> PartsLiveView:
        """
        Return the open view of ``org_id``, opening it on first use.

        Opening locks only that organization. A view is registered once
        ``do_open`` succeeded; a failed open is closed and re-raised.
        """
        view = self._views.get(org_id)
        if view is not None:
            return view
        async with self._locks.setdefault(org_id, asyncio.Lock()):
            view = self._views.get(org_id)
            if view is not None:
                return view
            view = PartsLiveView(
                helper_config=self.helper_config,
                backend_client=self._backend,
                realtime_client=self._realtime,
                session=AppSession(user_id=SERVER_USER_ID, org_id=org_id),
            )
            self._opening[org_id] = view
            try:
                await view.do_open(org_id)
            except Exception as e:
                self.logging.error("Opening live view for org %s failed: %s", org_id, e)
                await view.do_close()
                raise
            finally:
                self._opening.pop(org_id, None)
            self._views[org_id] = view
            self.logging.info("Live view for org %s opened (%d open)", org_id, len(self._views))
            return view

    def get_open_view(self, org_id: str) -> PartsLiveView | None:
        return self._views.get(org_id)

    def get_selection(self, session: AppSession) -> PartsManager:
        """Selection state of one user in one organization."""
        key = (session.org_id, session.user_id)
        manager = self._selections.get(key)
        if manager is None:
            manager = PartsManager()
            self._selections[key] = manager
        return manager

    async def do_dispatch_change(self, event: ChangeEvent) -> bool:
        """
        Apply a change delivered by a database webhook.

        Returns:
            bool: False when no view is open for the organization of the record.
        """
        org_id = event.org_id
        view = (self._views.get(org_id) or self._opening.get(org_id)) if org_id else None
        if view is None:
            self.logging.debug("No open live view for org %s, dropping %s on %s", org_id, event.event_type, event.table)
            return False
        await view.do_apply_change(event)
        return True

    async def do_close(self) -> None:
        views, self._views = self._views, {}
        for view in views.values():
            await view.do_close()
        self._selections.clear()
