"""Tags and comments of a single part."""

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import BackendError, UniqueViolationError, error_message
from shared.models.part import PartComment, PartTag
from shared.models.session import AppSession

TAGS_TABLE = "part_tags"
COMMENTS_TABLE = "part_comments"


class PartDetailService:
    """
    Tag and comment state for one part of the session's organization.

    Failures are reported through ``error``; the held lists stay as they were.
    """

    def __init__(self, helper_config: HelperConfig, backend_client: BackendClientInterface, session: AppSession, part_id: str) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session
        self.part_id = part_id
        self.tags: list[PartTag] = []
        self.comments: list[PartComment] = []
        self.error: str | None = None

    def _scoped(self, table: str) -> TableQuery:
        return TableQuery(table=table).eq("org_id", self._session.org_id).eq("part_id", self.part_id)

    ##########################################
    ################## TAGS ##################
    ##########################################

    async def do_fetch_tags(self) -> list[PartTag]:
        self.error = None
        try:
            rows = await self._backend.do_select(self._scoped(TAGS_TABLE).order_by("label"), access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error fetching tags of part %s: %s", self.part_id, e.message)
            self.error = error_message(e, "Failed to load tags")
            self.tags = []
            return self.tags
        self.tags = [PartTag.model_validate(row) for row in rows]
        return self.tags

    async def do_add_tag(self, label: str) -> PartTag | None:
        """
        Add a tag unless the part already has one with the same label (case-insensitive).

        Returns:
            PartTag | None: The new tag, or None when nothing was added.
        """
        label = label.strip()
        if not label:
            return None
        if any(tag.label.lower() == label.lower() for tag in self.tags):
            return None
        try:
            rows = await self._backend.do_insert(
                TAGS_TABLE,
                {"org_id": self._session.org_id, "part_id": self.part_id, "label": label},
                access_token=self._session.access_token,
            )
        except UniqueViolationError:
            self.logging.debug("Tag '%s' already on part %s", label, self.part_id)
            return None
        except BackendError as e:
            self.logging.error("Error adding tag '%s' to part %s: %s", label, self.part_id, e.message)
            self.error = error_message(e, "Failed to add tag")
            return None
        tag = PartTag.model_validate(rows[0])
        self.tags.append(tag)
        return tag

    async def do_remove_tag(self, tag_id: str) -> None:
        try:
            await self._backend.do_delete(self._scoped(TAGS_TABLE).eq("id", tag_id), access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error removing tag %s: %s", tag_id, e.message)
            self.error = error_message(e, "Failed to remove tag")
            return
        self.tags = [tag for tag in self.tags if tag.id != tag_id]

    ##########################################
    ################ COMMENTS ################
    ##########################################

    async def do_fetch_comments(self) -> list[PartComment]:
        """Load all comments, oldest first. The list is replaced, never appended to."""
        self.error = None
        try:
            rows = await self._backend.do_select(
                self._scoped(COMMENTS_TABLE).order_by("created_at"),
                access_token=self._session.access_token,
            )
        except BackendError as e:
            self.logging.error("Error fetching comments of part %s: %s", self.part_id, e.message)
            self.error = error_message(e, "Failed to load comments")
            self.comments = []
            return self.comments
        self.comments = [PartComment.model_validate(row) for row in rows]
        return self.comments

    async def do_add_comment(self, body: str) -> None:
        """Post a comment as the session's user, then reload the thread."""
        body = body.strip()
        if not body:
            return
        try:
            await self._backend.do_insert(
                COMMENTS_TABLE,
                {
                    "org_id": self._session.org_id,
                    "part_id": self.part_id,
                    "user_id": self._session.user_id,
                    "author_name": self._session.display_name or self._session.email or "User",
                    "body": body,
                },
                access_token=self._session.access_token,
                returning=False,
            )
        except BackendError as e:
            self.logging.error("Error adding comment to part %s: %s", self.part_id, e.message)
            self.error = error_message(e, "Failed to add comment")
            return
        await self.do_fetch_comments()
