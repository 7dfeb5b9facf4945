"""Parts linked to a project."""

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BackendError, UniqueViolationError, error_message
from shared.models.project import ProjectPart
from shared.models.session import AppSession

PROJECT_PARTS_TABLE = "project_parts"
PROJECT_PARTS_SELECT = "*, part:parts(*)"
ALREADY_IN_PROJECT = "Some parts are already in this project."


class ProjectPartsService:
    """Lists, adds and removes the part links of projects in the session's organization."""

    def __init__(self, helper_config: HelperConfig, backend_client: BackendClientInterface, session: AppSession) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session
        self.items: list[ProjectPart] = []
        self.error: str | None = None

    async def do_fetch(self, project_id: str) -> list[ProjectPart]:
        """Load the parts of one project in the order they were added."""
        self.error = None
        query = (
            TableQuery(table=PROJECT_PARTS_TABLE, select=PROJECT_PARTS_SELECT)
            .eq("project_id", project_id)
            .eq("org_id", self._session.org_id)
            .order_by("created_at", ascending=True)
        )
        try:
            rows = await self._backend.do_select(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error loading parts of project %s: %s", project_id, e.message)
            self.error = error_message(e, "Failed to load project parts")
            return self.items
        self.items = [ProjectPart.model_validate(row) for row in rows]
        return self.items

    def _row(self, project_id: str, part_id: str) -> dict:
        return {
            "org_id": self._session.org_id,
            "project_id": project_id,
            "part_id": part_id,
            "added_by_user_id": self._session.user_id,
        }

    async def do_add_part(self, project_id: str, part_id: str) -> ProjectPart | None:
        """
        Link one part to a project.

        Returns:
            ProjectPart | None: The new link, or None when the part was already linked.

        Raises:
            BackendError: If the insert fails for any other reason.
        """
        try:
            rows = await self._backend.do_insert(PROJECT_PARTS_TABLE, self._row(project_id, part_id), access_token=self._session.access_token)
        except UniqueViolationError:
            self.logging.debug("Part %s already in project %s", part_id, project_id)
            return None
        item = ProjectPart.model_validate(rows[0])
        self.items.append(item)
        return item

    async def do_bulk_add(self, project_id: str, part_ids: list[str]) -> int:
        """
        Link many parts to a project, skipping the ones already linked.

        Returns:
            int: Number of links created. ``error`` is set when nothing could be added.
        """
        self.error = None
        part_ids = list(dict.fromkeys(part_ids))
        if not part_ids:
            return 0
        try:
            existing_rows = await self._backend.do_select(
                TableQuery(table=PROJECT_PARTS_TABLE, select="part_id")
                .eq("project_id", project_id)
                .eq("org_id", self._session.org_id)
                .in_("part_id", part_ids),
                access_token=self._session.access_token,
            )
            existing = {row["part_id"] for row in existing_rows}
            new_ids = [part_id for part_id in part_ids if part_id not in existing]
            if new_ids:
                await self._backend.do_insert(
                    PROJECT_PARTS_TABLE,
                    [self._row(project_id, part_id) for part_id in new_ids],
                    access_token=self._session.access_token,
                    returning=False,
                )
        except UniqueViolationError:
            # linked concurrently between the check and the insert
            self.error = ALREADY_IN_PROJECT
            return 0
        except BackendError as e:
            self.logging.error("Adding %d parts to project %s failed: %s", len(part_ids), project_id, e.message)
            self.error = error_message(e, "Failed to add parts to project")
            return 0
        self.logging.info("Added %d of %d parts to project %s", len(new_ids), len(part_ids), project_id)
        return len(new_ids)

    async def do_remove_part(self, project_part_id: str) -> None:
        query = TableQuery(table=PROJECT_PARTS_TABLE).eq("id", project_part_id).eq("org_id", self._session.org_id)
        await self._backend.do_delete(query, access_token=self._session.access_token)
        self.items = [item for item in self.items if item.id != project_part_id]
