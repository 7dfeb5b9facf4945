"""Actions offered on the parts list, with one shared error for the list."""

from services.part_actions.FavoritesService import FavoritesService
from services.part_actions.PartMutationService import PartMutationService
from services.projects.ProjectPartsService import ProjectPartsService
from shared.models.part import PartWithDocument


class PartsListActions:
    """
    Row and bulk actions of the parts list.

    ``error`` holds the message of the last failed action (None once an
    action succeeds), whichever service it came from.
    """

    def __init__(
        self,
        favorites: FavoritesService,
        mutations: PartMutationService,
        project_parts: ProjectPartsService | None = None,
    ) -> None:
        self.favorites = favorites
        self.mutations = mutations
        self.project_parts = project_parts
        self.error: str | None = None

    ################ FAVORITES ##################

    async def do_toggle_favorite(self, part: PartWithDocument) -> bool:
        is_favorite = await self.favorites.do_toggle_favorite(part.id)
        self.error = self.favorites.error
        return is_favorite

    async def do_bulk_toggle_favorite(self, part_ids: list[str], favorite: bool) -> None:
        await self.favorites.do_bulk_set_favorite(part_ids, favorite)
        self.error = self.favorites.error

    ############# STATUS & PRIORITY ##############

    async def do_change_workflow_status(self, part: PartWithDocument, value: str) -> None:
        self.error = await self.mutations.do_update_workflow_status(part.id, value)

    async def do_change_priority(self, part: PartWithDocument, value: str) -> None:
        self.error = await self.mutations.do_update_priority(part.id, value)

    async def do_bulk_set_status(self, part_ids: list[str], value: str) -> None:
        self.error = await self.mutations.do_bulk_update_workflow_status(part_ids, value)

    async def do_bulk_set_priority(self, part_ids: list[str], value: str) -> None:
        self.error = await self.mutations.do_bulk_update_priority(part_ids, value)

    ################ PROJECTS ##################

    async def do_add_to_project(self, project_id: str, part_ids: list[str]) -> int:
        """
        Link parts to a project; already linked parts are skipped.

        Returns:
            int: Number of newly linked parts.
        """
        if self.project_parts is None:
            raise RuntimeError("Project actions are not available for this list.")
        added = await self.project_parts.do_bulk_add(project_id, part_ids)
        self.error = self.project_parts.error
        return added
