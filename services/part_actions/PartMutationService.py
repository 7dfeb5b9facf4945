"""Workflow status and priority changes on parts, applied optimistically to the live view."""

from services.parts_live_view.PartsLiveView import PARTS_TABLE, PartsLiveView
from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BackendError, ValidationError, error_message
from shared.models.part import PRIORITIES, WORKFLOW_STATUSES
from shared.models.session import AppSession


class PartMutationService:
    """
    Each operation patches the live view first, then persists.

    Single-part updates roll the patched fields back when the write fails;
    changes that reached the part in the meantime are kept. Bulk updates keep the optimistic state; the change feed and
    the next fetch bring the list back in line with the store.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        backend_client: BackendClientInterface,
        live_view: PartsLiveView,
        session: AppSession,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._live_view = live_view
        self._session = session

    ##########################################
    ############### VALIDATION ###############
    ##########################################

    def _validate(self, field: str, value: str) -> None:
        allowed = WORKFLOW_STATUSES if field == "workflow_status" else PRIORITIES
        if value not in allowed:
            raise ValidationError(f"Invalid {field} '{value}'. Allowed: {', '.join(allowed)}")

    ##########################################
    ############### SINGLE PART ##############
    ##########################################

    async def do_update_part(self, part_id: str, patch: dict) -> str | None:
        """
        Apply ``patch`` to one part.

        Returns:
            str | None: Error message when persisting failed (the part was rolled back), else None.
        """
        snapshot = self._live_view.get_part(part_id)
        if snapshot is not None:
            self._live_view.set_parts(lambda parts: [p.merged(patch) if p.id == part_id else p for p in parts])

        query = TableQuery(table=PARTS_TABLE).eq("id", part_id).eq("org_id", self._session.org_id)
        try:
            await self._backend.do_update(query, patch, access_token=self._session.access_token, returning=False)
        except BackendError as e:
            self.logging.error("Updating part %s failed, rolling back: %s", part_id, e.message)
            if snapshot is not None:
                self._live_view.set_parts(lambda parts: [self._reverted(p, snapshot, patch) if p.id == part_id else p for p in parts])
            return error_message(e, "Failed to update part")
        return None

    @staticmethod
    def _reverted(current, snapshot, patch: dict):
        """Undo the patched fields only, and only where no newer change has replaced the optimistic value."""
        restore = {k: getattr(snapshot, k) for k, v in patch.items() if getattr(current, k, None) == v}
        return current.merged(restore) if restore else current

    async def do_update_workflow_status(self, part_id: str, value: str) -> str | None:
        self._validate("workflow_status", value)
        return await self.do_update_part(part_id, {"workflow_status": value})

    async def do_update_priority(self, part_id: str, value: str) -> str | None:
        self._validate("priority", value)
        return await self.do_update_part(part_id, {"priority": value})

    ##########################################
    ################## BULK ##################
    ##########################################

    async def _do_bulk_update(self, part_ids: list[str], patch: dict) -> str | None:
        if not part_ids:
            return None
        wanted = set(part_ids)
        self._live_view.set_parts(lambda parts: [p.merged(patch) if p.id in wanted else p for p in parts])

        query = TableQuery(table=PARTS_TABLE).in_("id", part_ids).eq("org_id", self._session.org_id)
        try:
            await self._backend.do_update(query, patch, access_token=self._session.access_token, returning=False)
        except BackendError as e:
            self.logging.error("Bulk update of %d parts failed: %s", len(part_ids), e.message)
            return error_message(e, "Failed bulk update")
        self.logging.info("Updated %s of %d parts", ", ".join(patch), len(part_ids))
        return None

    async def do_bulk_update_workflow_status(self, part_ids: list[str], value: str) -> str | None:
        self._validate("workflow_status", value)
        return await self._do_bulk_update(part_ids, {"workflow_status": value})

    async def do_bulk_update_priority(self, part_ids: list[str], value: str) -> str | None:
        self._validate("priority", value)
        return await self._do_bulk_update(part_ids, {"priority": value})
