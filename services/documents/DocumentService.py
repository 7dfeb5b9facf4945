"""Document upload, detail, deletion, re-run and signed download links."""

import re
import uuid
from collections.abc import Callable

from services.parts_live_view.PartsLiveView import DOCUMENT_PARTS_TABLE, DOCUMENTS_TABLE, PartsLiveView
from shared.clients.backend.BackendClientInterface import BackendClientInterface
from shared.clients.backend.models.Query import TableQuery
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import (
    BUCKET_DOCUMENT_THUMBNAILS,
    BUCKET_DOCUMENTS_RAW,
    BUCKET_PART_RENDERS,
    Document,
    DocumentUpload,
)
from shared.models.document_detail import DocumentDetail
from shared.models.errors import BackendError, ValidationError, error_message
from shared.models.part import Part
from shared.models.session import AppSession

MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
ALLOWED_EXTENSIONS = ("pdf", "dwg", "dxf")

RAW_URL_EXPIRES_IN = 60
PREVIEW_URL_EXPIRES_IN = 300
RENDER_URL_EXPIRES_IN = 3600

DOCUMENT_DETAIL_PARTS_SELECT = "part_id, parts (*)"

ProgressCallback = Callable[[int], None]


def validate_file(file_name: str, size: int, max_size_bytes: int = MAX_FILE_SIZE_BYTES, allowed_extensions: tuple[str, ...] = ALLOWED_EXTENSIONS) -> None:
    """
    Reject files that are too large or of an unsupported type.

    Raises:
        ValidationError: With the message shown to the user.
    """
    if size > max_size_bytes:
        raise ValidationError(f"File size exceeds {round(max_size_bytes / (1024 * 1024))}MB limit")
    _, dot, extension = file_name.rpartition(".")
    extension = extension.lower() if dot else ""
    if extension not in allowed_extensions:
        raise ValidationError(f"File type .{extension} not supported. Allowed: {', '.join(allowed_extensions)}")


def sanitize_filename(name: str) -> str:
    """Whitespace to underscores, then drop everything but letters, digits, ``_``, ``-`` and ``.``."""
    name = re.sub(r"\s+", "_", name.strip())
    return re.sub(r"[^a-zA-Z0-9_\-.]", "", name)


class DocumentService:
    """Document actions for the session's organization."""

    def __init__(
        self,
        helper_config: HelperConfig,
        backend_client: BackendClientInterface,
        session: AppSession,
        live_view: PartsLiveView | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._backend = backend_client
        self._session = session
        self._live_view = live_view

        self.uploading = False
        self.upload_progress = 0
        self.upload_error: str | None = None

    def _scoped(self, document_id: str) -> TableQuery:
        return TableQuery(table=DOCUMENTS_TABLE).eq("id", document_id).eq("org_id", self._session.org_id)

    ##########################################
    ################# UPLOAD #################
    ##########################################

    def _set_progress(self, value: int, on_progress: ProgressCallback | None) -> None:
        self.upload_progress = value
        if on_progress:
            on_progress(value)

    async def do_upload(self, files: list[DocumentUpload], on_progress: ProgressCallback | None = None) -> list[str]:
        """
        Upload files and queue them for processing.

        A file whose name already exists in the organization replaces the stored
        object of that document and resets it to "queued". A failing file does
        not stop the others; the last failure ends up in ``upload_error``.

        Args:
            files (list[DocumentUpload]): Files to upload.
            on_progress (ProgressCallback | None): Called with 0-100 as files complete.

        Returns:
            list[str]: Ids of the documents that were queued.
        """
        if not files:
            return []
        self.upload_error = None
        self.uploading = True
        self._set_progress(0, on_progress)
        token = self._session.access_token
        queued: list[str] = []
        last_error: str | None = None

        try:
            for index, file in enumerate(files):
                try:
                    validate_file(file.file_name, file.size)
                except ValidationError as e:
                    self.logging.warning("Rejected upload '%s': %s", file.file_name, e)
                    last_error = str(e)
                    continue

                base_progress = round(index / len(files) * 100)
                self._set_progress(base_progress, on_progress)

                try:
                    existing = await self._backend.do_select_single(
                        TableQuery(table=DOCUMENTS_TABLE, select="id")
                        .eq("org_id", self._session.org_id)
                        .eq("file_name", file.file_name),
                        access_token=token,
                    )
                    document_id = existing["id"] if existing else str(uuid.uuid4())
                    key = await self._backend.do_upload_object(
                        BUCKET_DOCUMENTS_RAW,
                        f"{self._session.org_id}/{document_id}/{sanitize_filename(file.file_name)}",
                        file.content,
                        content_type=file.content_type,
                        upsert=existing is not None,
                        access_token=token,
                    )
                    self._set_progress(base_progress + round(30 / len(files)), on_progress)

                    if existing:
                        await self._backend.do_update(
                            self._scoped(document_id),
                            {
                                "user_id": self._session.user_id,
                                "raw_bucket": BUCKET_DOCUMENTS_RAW,
                                "raw_storage_key": key,
                                "last_status": "queued",
                            },
                            access_token=token,
                            returning=False,
                        )
                        self.logging.info("Re-uploaded '%s' as document %s", file.file_name, document_id)
                    else:
                        await self._backend.do_insert(
                            DOCUMENTS_TABLE,
                            {
                                "id": document_id,
                                "org_id": self._session.org_id,
                                "user_id": self._session.user_id,
                                "file_name": file.file_name,
                                "raw_bucket": BUCKET_DOCUMENTS_RAW,
                                "raw_storage_key": key,
                                "thumbnail_bucket": BUCKET_DOCUMENT_THUMBNAILS,
                                "last_status": "queued",
                            },
                            access_token=token,
                            returning=False,
                        )
                        self.logging.info("Uploaded '%s' as document %s", file.file_name, document_id)
                except BackendError as e:
                    self.logging.error("Upload of '%s' failed: %s", file.file_name, e.message)
                    last_error = error_message(e, "Upload failed")
                    continue

                queued.append(document_id)
                self._set_progress(round((index + 1) / len(files) * 100), on_progress)
        finally:
            self.uploading = False
            if last_error:
                self.upload_error = last_error
        return queued

    ##########################################
    ################ ACTIONS #################
    ##########################################

    async def do_fetch(self, document_id: str) -> Document:
        """
        Raises:
            BackendError: With status 404 when the document is not in the organization.
        """
        row = await self._backend.do_select_single(self._scoped(document_id), access_token=self._session.access_token)
        if row is None:
            raise BackendError(f"Document {document_id} not found", status_code=404)
        return Document.model_validate(row)

    async def do_fetch_with_parts(self, document_id: str, part_id: str | None = None) -> DocumentDetail:
        """
        Load a document of the organization together with its parts.

        A failing parts query leaves the detail without parts and sets
        ``parts_error``; the document itself is still returned.

        Args:
            document_id (str): Id of the document.
            part_id (str | None): Part to preselect, e.g. from the URL. Ignored
                when it does not belong to the document.

        Raises:
            BackendError: With status 404 when the document is not in the organization.
        """
        detail = DocumentDetail(document=await self.do_fetch(document_id))
        query = (
            TableQuery(table=DOCUMENT_PARTS_TABLE, select=DOCUMENT_DETAIL_PARTS_SELECT)
            .eq("org_id", self._session.org_id)
            .eq("document_id", document_id)
        )
        try:
            rows = await self._backend.do_select(query, access_token=self._session.access_token)
        except BackendError as e:
            self.logging.error("Error fetching parts of document %s: %s", document_id, e.message)
            detail.parts_error = error_message(e, "Failed to load parts")
            return detail

        for row in rows:
            part = row.get("parts")
            if isinstance(part, list):
                part = part[0] if part else None
            if part:
                detail.parts.append(Part.model_validate(part))

        part_ids = [p.id for p in detail.parts]
        if part_id in part_ids:
            detail.selected_part_id = part_id
        elif part_ids:
            detail.selected_part_id = part_ids[0]
        return detail

    async def do_delete(self, document_id: str) -> None:
        """
        Delete a document; its parts leave the live view in the same update.

        Raises:
            BackendError: If the delete is rejected.
        """
        await self._backend.do_delete(self._scoped(document_id), access_token=self._session.access_token)
        if self._live_view is not None:
            self._live_view.remove_document(document_id)
        self.logging.info("Deleted document %s", document_id)

    async def do_rerun(self, document_id: str) -> None:
        """Queue a document for processing again and clear its last error."""
        await self._backend.do_update(
            self._scoped(document_id),
            {"last_status": "queued", "last_error": None},
            access_token=self._session.access_token,
            returning=False,
        )
        self.logging.info("Queued document %s for re-processing", document_id)

    ##########################################
    ############## SIGNED URLS ###############
    ##########################################

    async def do_get_download_url(self, document: Document) -> str:
        """
        Signed URL for the original file, valid for 60 seconds.

        Raises:
            ValidationError: If the document has no stored file.
        """
        if not document.raw_storage_key:
            raise ValidationError("Document has no stored file")
        return await self._backend.do_create_signed_url(
            document.raw_bucket or BUCKET_DOCUMENTS_RAW,
            document.raw_storage_key,
            expires_in=RAW_URL_EXPIRES_IN,
            access_token=self._session.access_token,
        )

    async def do_get_thumbnail_url(self, document: Document) -> str | None:
        if not document.thumbnail_storage_key:
            return None
        return await self._backend.do_create_signed_url(
            document.thumbnail_bucket or BUCKET_DOCUMENT_THUMBNAILS,
            document.thumbnail_storage_key,
            expires_in=PREVIEW_URL_EXPIRES_IN,
            access_token=self._session.access_token,
        )

    async def do_get_part_render_url(self, part: Part | None) -> str | None:
        """Signed URL of the part's rendered image, valid for one hour; None when the part has no render."""
        if part is None or not part.render_storage_key:
            return None
        return await self._backend.do_create_signed_url(
            part.render_bucket or BUCKET_PART_RENDERS,
            part.render_storage_key,
            expires_in=RENDER_URL_EXPIRES_IN,
            access_token=self._session.access_token,
        )
