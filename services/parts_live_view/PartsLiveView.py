"""Live parts view.

Merges three sources into one ordered list for an organization:

* the paginated ``document_parts`` fetch (real parts with their document),
* documents still queued/processing/errored without any part (placeholders),
* the realtime change feed on ``parts`` and ``documents``.

All state is keyed by identity, so events are idempotent and may arrive
before or after the initial fetch. A generation counter is captured before
every await; writes from a previous organization are dropped.
"""

from collections.abc import Callable
from datetime import datetime

from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.clients.realtime.RealtimeClientInterface import RealtimeClientInterface
from shared.clients.realtime.models.ChangeEvent import ChangeEvent, Subscription
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import PLACEHOLDER_STATUSES, DocumentSummary
from shared.models.errors import BackendError, error_message
from shared.models.part import PartWithDocument, build_placeholder, map_document_parts_row
from shared.models.session import AppSession

PARTS_TABLE = "parts"
DOCUMENTS_TABLE = "documents"
DOCUMENT_PARTS_TABLE = "document_parts"

DOCUMENT_PARTS_SELECT = """
    part_id,
    document_id,
    parts (*),
    documents (id, file_name, last_status, created_at)
"""
DOCUMENT_SUMMARY_SELECT = "id, file_name, last_status, created_at"

PartsListener = Callable[[list[PartWithDocument]], None]
PartsMutator = Callable[[list[PartWithDocument]], list[PartWithDocument]]


def _instant(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


class PartsLiveView:
    """Reconciled, realtime-synced list of parts and processing placeholders for one organization."""

    def __init__(
        self,
        helper_config: HelperConfig,
        backend_client: BackendClientInterface,
        realtime_client: RealtimeClientInterface | None = None,
        session: AppSession | None = None,
        page_size: int | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._realtime = realtime_client
        self._session = session
        self.page_size = int(page_size or helper_config.get_number_val("PARTS_PAGE_SIZE", default=50))

        self.org_id: str | None = None
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._listeners: list[PartsListener] = []
        self._reset()

    def _reset(self) -> None:
        self._parts: dict[str, PartWithDocument] = {}
        self._processing_docs: dict[str, DocumentSummary] = {}
        # remembered per generation so a slower fetch cannot bring rows back
        self._deleted_part_ids: set[str] = set()
        self._deleted_document_ids: set[str] = set()
        self._event_document_status: dict[str, str | None] = {}
        self.loading = False
        self.loading_more = False
        self.has_more = True
        self.error: str | None = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    @property
    def generation(self) -> int:
        return self._generation

    def _get_access_token(self) -> str | None:
        return self._session.access_token if self._session else None

    def get_parts(self) -> list[PartWithDocument]:
        """
        The combined list: placeholders (newest document first), then real parts (last updated first).

        A document that owns at least one held part never yields a placeholder.
        """
        documents_with_parts = {p.document.id for p in self._parts.values() if p.document}
        placeholders = [
            build_placeholder(doc)
            for doc in self._processing_docs.values()
            if doc.id not in documents_with_parts
        ]
        placeholders.sort(key=lambda p: _instant(p.created_at), reverse=True)
        return placeholders + self.get_real_parts()

    def get_real_parts(self) -> list[PartWithDocument]:
        return sorted(self._parts.values(), key=lambda p: _instant(p.last_updated), reverse=True)

    def get_part(self, part_id: str) -> PartWithDocument | None:
        return self._parts.get(part_id)

    def get_processing_documents(self) -> list[DocumentSummary]:
        return list(self._processing_docs.values())

    ##########################################
    ############## LISTENERS #################
    ##########################################

    def add_listener(self, listener: PartsListener) -> None:
        """Register ``listener``; it is called with the combined list after every state change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: PartsListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        if not self._listeners:
            return
        parts = self.get_parts()
        for listener in list(self._listeners):
            listener(parts)

    ##########################################
    ############### MUTATION #################
    ##########################################

    def set_parts(self, mutator: PartsMutator) -> None:
        """
        Replace the real parts with ``mutator(current real parts)``.

        Placeholders in the result are ignored; they are derived from document state.
        """
        updated = mutator(self.get_real_parts())
        self._parts = {p.id: p for p in updated if not p.is_processing_placeholder}
        self._notify()

    def remove_document(self, document_id: str) -> None:
        """Drop the placeholder of ``document_id`` and every part belonging to it in one update."""
        self._deleted_document_ids.add(document_id)
        self._processing_docs.pop(document_id, None)
        self._parts = {
            part_id: part
            for part_id, part in self._parts.items()
            if not (part.document and part.document.id == document_id)
        }
        self._notify()

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def do_open(self, org_id: str | None = None) -> None:
        """
        Start watching ``org_id`` (defaults to the session's organization).

        Subscriptions are opened before the initial fetch so no change between
        the two is lost; merges by identity make the overlap harmless.
        """
        await self.do_close()
        org_id = org_id or (self._session.org_id if self._session else None)
        self._reset()
        self.org_id = org_id
        if not org_id:
            self._notify()
            return

        generation = self._generation
        self.logging.info("Opening live parts view for org %s", org_id)

        if self._realtime is not None:
            try:
                for table in (PARTS_TABLE, DOCUMENTS_TABLE):
                    self._subscriptions.append(
                        await self._realtime.do_subscribe(
                            table=table,
                            org_id=org_id,
                            callback=self._make_handler(generation),
                            access_token=self._get_access_token(),
                        )
                    )
            except BackendError as e:
                self.logging.error("Could not subscribe to changes for org %s: %s", org_id, e.message)
                self.error = error_message(e, "Realtime subscription failed")

        await self.do_fetch_initial()

    async def do_close(self) -> None:
        """Stop applying changes for the current organization and tear down both subscriptions."""
        self._generation += 1
        subscriptions, self._subscriptions = self._subscriptions, []
        if self._realtime is not None:
            for subscription in subscriptions:
                await self._realtime.do_unsubscribe(subscription)
        if self.org_id:
            self.logging.debug("Closed live parts view for org %s", self.org_id)

    async def do_switch_org(self, org_id: str | None) -> None:
        await self.do_close()
        await self.do_open(org_id)

    def _make_handler(self, generation: int):
        async def handler(event: ChangeEvent) -> None:
            await self.do_apply_change(event, generation=generation)
        return handler

    ##########################################
    ################ FETCHING ################
    ##########################################

    def _build_page_query(self, org_id: str, start: int) -> TableQuery:
        return (
            TableQuery(table=DOCUMENT_PARTS_TABLE, select=DOCUMENT_PARTS_SELECT)
            .eq("org_id", org_id)
            .order_by("last_updated", ascending=False, foreign_table=PARTS_TABLE)
            .range(start, start + self.page_size - 1)
        )

    def _accept_part(self, part: PartWithDocument) -> bool:
        if part.id in self._deleted_part_ids:
            return False
        return not (part.document and part.document.id in self._deleted_document_ids)

    async def do_fetch_initial(self) -> None:
        """
        Load the first page of parts and the documents that still need a placeholder.

        Errors leave the affected source empty and set ``error``.
        """
        org_id = self.org_id
        if not org_id:
            return
        generation = self._generation
        token = self._get_access_token()
        self.loading = True

        rows: list[dict] = []
        parts_ok = True
        try:
            rows = await self._backend.do_select(self._build_page_query(org_id, 0), access_token=token)
        except BackendError as e:
            parts_ok = False
            self.logging.error("Error fetching parts for org %s: %s", org_id, e.message)
            self.error = error_message(e, "Failed to load parts")

        docs: list[dict] = []
        try:
            query = (
                TableQuery(table=DOCUMENTS_TABLE, select=DOCUMENT_SUMMARY_SELECT)
                .eq("org_id", org_id)
                .in_("last_status", list(PLACEHOLDER_STATUSES))
                .order_by("created_at", ascending=False)
            )
            docs = await self._backend.do_select(query, access_token=token)
            docs = await self._without_linked_parts(org_id, docs, rows)
        except BackendError as e:
            docs = []
            self.logging.error("Error fetching processing documents for org %s: %s", org_id, e.message)
            self.error = error_message(e, "Failed to load documents")

        if generation != self._generation:
            self.logging.debug("Discarding initial fetch for org %s, view moved on", org_id)
            return

        for part in filter(None, map(map_document_parts_row, rows)):
            if self._accept_part(part):
                # a realtime insert during the fetch already holds this part
                self._parts.setdefault(part.id, part)
        self.has_more = parts_ok and len(rows) == self.page_size

        for doc in map(DocumentSummary.model_validate, docs):
            if doc.id in self._deleted_document_ids or doc.id in self._processing_docs:
                continue
            if doc.id in self._event_document_status and self._event_document_status[doc.id] not in PLACEHOLDER_STATUSES:
                continue
            self._processing_docs[doc.id] = doc

        self.loading = False
        self.logging.info(
            "Loaded %d parts and %d processing documents for org %s",
            len(self._parts),
            len(self._processing_docs),
            org_id,
        )
        self._notify()

    async def _without_linked_parts(self, org_id: str, docs: list[dict], page_rows: list[dict]) -> list[dict]:
        """
        Drop documents that already own a part.

        The first page settles most of them. The rest are checked against
        ``document_parts`` directly so documents outside the first page are not
        shown as placeholders.
        """
        page_document_ids = {row.get("document_id") for row in page_rows}
        candidates = [doc for doc in docs if doc.get("id") not in page_document_ids]
        if not candidates:
            return []
        linked_rows = await self._backend.do_select(
            TableQuery(table=DOCUMENT_PARTS_TABLE, select="document_id")
            .eq("org_id", org_id)
            .in_("document_id", [doc["id"] for doc in candidates]),
            access_token=self._get_access_token(),
        )
        linked = {row.get("document_id") for row in linked_rows}
        return [doc for doc in candidates if doc["id"] not in linked]

    async def do_load_more(self) -> None:
        """
        Append the next page of real parts; placeholders are never paginated.

        No-op without an organization, while a page is loading, or when the last
        page was short. On error ``has_more`` turns False.
        """
        org_id = self.org_id
        if not org_id or self.loading_more or not self.has_more:
            return
        generation = self._generation
        self.loading_more = True
        start = len(self._parts)

        try:
            rows = await self._backend.do_select(self._build_page_query(org_id, start), access_token=self._get_access_token())
        except BackendError as e:
            if generation != self._generation:
                return
            self.logging.error("Error loading more parts for org %s: %s", org_id, e.message)
            self.error = error_message(e, "Failed to load more parts")
            self.loading_more = False
            self.has_more = False
            self._notify()
            return

        if generation != self._generation:
            return

        new_parts = [p for p in map(map_document_parts_row, rows) if p is not None]
        added = 0
        for part in new_parts:
            if part.id not in self._parts and self._accept_part(part):
                self._parts[part.id] = part
                added += 1
        self.has_more = len(new_parts) == self.page_size
        self.loading_more = False
        self.logging.debug("Loaded %d more parts (offset %d) for org %s", added, start, org_id)
        self._notify()

    async def _fetch_document_parts(self, column: str, value: str) -> list[PartWithDocument]:
        query = TableQuery(table=DOCUMENT_PARTS_TABLE, select=DOCUMENT_PARTS_SELECT).eq("org_id", self.org_id).eq(column, value)
        rows = await self._backend.do_select(query, access_token=self._get_access_token())
        return [p for p in map(map_document_parts_row, rows) if p is not None]

    ##########################################
    ############# CHANGE EVENTS ##############
    ##########################################

    async def do_apply_change(self, event: ChangeEvent, generation: int | None = None) -> None:
        """
        Apply one change from the feed (or a database webhook) to the view.

        Args:
            event (ChangeEvent): The row change.
            generation (int | None): Generation the event was subscribed under;
                events of an older generation are dropped. Defaults to the current one.
        """
        if generation is None:
            generation = self._generation
        if generation != self._generation or not self.org_id:
            self.logging.debug("Dropping stale %s event on '%s'", event.event_type, event.table)
            return
        if event.org_id and event.org_id != self.org_id:
            return

        if event.table == PARTS_TABLE:
            await self._apply_part_change(event, generation)
        elif event.table == DOCUMENTS_TABLE:
            await self._apply_document_change(event, generation)

    async def _apply_part_change(self, event: ChangeEvent, generation: int) -> None:
        part_id = event.row_id
        if not part_id:
            return

        if event.event_type == "INSERT":
            if part_id in self._parts:
                return
            try:
                parts = await self._fetch_document_parts("part_id", part_id)
            except BackendError as e:
                self.logging.error("Error fetching inserted part %s: %s", part_id, e.message)
                return
            if generation != self._generation or not parts:
                return
            part = parts[0]
            if part.id in self._parts or not self._accept_part(part):
                return
            self._parts[part.id] = part
            if part.document:
                self._processing_docs.pop(part.document.id, None)
            self._notify()

        elif event.event_type == "UPDATE":
            existing = self._parts.get(part_id)
            if existing is None:
                return
            self._parts[part_id] = existing.merged(event.record)
            self._notify()

        elif event.event_type == "DELETE":
            self._deleted_part_ids.add(part_id)
            if self._parts.pop(part_id, None) is not None:
                self._notify()

    async def _apply_document_change(self, event: ChangeEvent, generation: int) -> None:
        document_id = event.row_id
        if not document_id:
            return

        if event.event_type == "INSERT":
            document = DocumentSummary.model_validate(event.record)
            self._event_document_status[document.id] = document.last_status
            if document.last_status in PLACEHOLDER_STATUSES and document.id not in self._processing_docs:
                self._processing_docs[document.id] = document
                self._notify()

        elif event.event_type == "UPDATE":
            document = DocumentSummary.model_validate(event.record)
            self._event_document_status[document.id] = document.last_status
            if document.last_status in PLACEHOLDER_STATUSES:
                self._processing_docs[document.id] = document
            else:
                self._processing_docs.pop(document.id, None)

            for part_id, part in list(self._parts.items()):
                if part.document and part.document.id == document.id:
                    self._parts[part_id] = part.model_copy(
                        update={"document": part.document.model_copy(update={"last_status": document.last_status})}
                    )
            self._notify()

            if document.last_status == "success":
                await self._load_parts_of_document(document.id, generation)

        elif event.event_type == "DELETE":
            self.remove_document(document_id)

    async def _load_parts_of_document(self, document_id: str, generation: int) -> None:
        """Pull the parts of a document that just finished processing; the change event does not carry them."""
        try:
            parts = await self._fetch_document_parts("document_id", document_id)
        except BackendError as e:
            self.logging.error("Error fetching parts of document %s: %s", document_id, e.message)
            return
        if generation != self._generation:
            return
        parts = [p for p in parts if self._accept_part(p)]
        if not parts:
            return
        for part in parts:
            self._parts[part.id] = part
        self._processing_docs.pop(document_id, None)
        self.logging.info("Document %s finished with %d parts", document_id, len(parts), color="green")
        self._notify()
