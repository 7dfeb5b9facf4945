"""Per-user favorite marks on parts."""

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BackendError, UniqueViolationError, error_message
from shared.models.session import AppSession

FAVORITES_TABLE = "part_favorites"


class FavoritesService:
    """
    Holds the set of parts the session's user marked as favorite in the session's organization.

    Operations never raise on backend failure; they set ``error`` and leave the
    set unchanged for the failed part.
    """

    def __init__(self, helper_config: HelperConfig, backend_client: BackendClientInterface, session: AppSession) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session
        self.favorite_ids: set[str] = set()
        self.error: str | None = None

    def is_favorite(self, part_id: str) -> bool:
        return part_id in self.favorite_ids

    def _scoped_query(self) -> TableQuery:
        return (
            TableQuery(table=FAVORITES_TABLE)
            .eq("org_id", self._session.org_id)
            .eq("user_id", self._session.user_id)
        )

    def _row(self, part_id: str) -> dict:
        return {"org_id": self._session.org_id, "user_id": self._session.user_id, "part_id": part_id}

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _do_fetch_ids(self) -> set[str]:
        query = self._scoped_query()
        query.select = "part_id"
        rows = await self._backend.do_select(query, access_token=self._session.access_token)
        return {row["part_id"] for row in rows if row.get("part_id")}

    async def do_load(self) -> set[str]:
        """Fetch the favorite part ids of the session's user."""
        self.error = None
        try:
            self.favorite_ids = await self._do_fetch_ids()
        except BackendError as e:
            self.logging.error("Error loading favorites for user %s: %s", self._session.user_id, e.message)
            self.error = error_message(e, "Failed to load favorites")
        return self.favorite_ids

    async def _do_insert_missing(self, part_ids: list[str]) -> int:
        """
        Insert favorite rows for ``part_ids`` in one request.

        When some of them were marked meanwhile elsewhere the whole insert is
        rejected; the set is then reloaded and only the still missing ids are
        inserted again.

        Returns:
            int: Number of rows inserted.
        """
        try:
            await self._backend.do_insert(
                FAVORITES_TABLE,
                [self._row(part_id) for part_id in part_ids],
                access_token=self._session.access_token,
                returning=False,
            )
            return len(part_ids)
        except UniqueViolationError:
            self.logging.info("Some of %d parts were marked as favorite meanwhile, retrying the rest", len(part_ids))

        self.favorite_ids = await self._do_fetch_ids()
        missing = [part_id for part_id in part_ids if part_id not in self.favorite_ids]
        if missing:
            await self._backend.do_insert(
                FAVORITES_TABLE,
                [self._row(part_id) for part_id in missing],
                access_token=self._session.access_token,
                returning=False,
            )
        return len(missing)

    async def do_toggle_favorite(self, part_id: str) -> bool:
        """
        Flip the favorite mark of one part.

        Returns:
            bool: Whether the part is a favorite afterwards.
        """
        self.error = None
        try:
            if part_id in self.favorite_ids:
                await self._backend.do_delete(self._scoped_query().eq("part_id", part_id), access_token=self._session.access_token)
                self.favorite_ids.discard(part_id)
            else:
                try:
                    await self._backend.do_insert(FAVORITES_TABLE, self._row(part_id), access_token=self._session.access_token, returning=False)
                except UniqueViolationError:
                    # marked meanwhile from another tab or device
                    self.logging.debug("Part %s already favorite", part_id)
                self.favorite_ids.add(part_id)
        except BackendError as e:
            self.logging.error("Error toggling favorite of part %s: %s", part_id, e.message)
            self.error = error_message(e, "Failed to update favorite")
        return part_id in self.favorite_ids

    async def do_bulk_set_favorite(self, part_ids: list[str], favorite: bool) -> None:
        """
        Mark or unmark many parts at once.

        Marking inserts rows only for ids that are not favorites yet; unmarking
        deletes all of them with a single ``part_id in (...)`` filter.
        """
        self.error = None
        if not part_ids:
            return
        try:
            if favorite:
                new_ids = [part_id for part_id in dict.fromkeys(part_ids) if part_id not in self.favorite_ids]
                inserted = await self._do_insert_missing(new_ids) if new_ids else 0
                self.favorite_ids.update(part_ids)
                self.logging.info("Marked %d parts as favorite (%d new)", len(part_ids), inserted)
            else:
                await self._backend.do_delete(self._scoped_query().in_("part_id", part_ids), access_token=self._session.access_token)
                self.favorite_ids.difference_update(part_ids)
                self.logging.info("Unmarked %d favorite parts", len(part_ids))
        except BackendError as e:
            self.logging.error("Bulk favorite update failed: %s", e.message)
            self.error = error_message(e, "Failed bulk favorite update")
