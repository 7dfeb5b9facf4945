"""Pydantic models for uploaded documents.

Hierarchy:
  DocumentSummary  - the joined subset carried on every part row.
  Document         - full ``documents`` row.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

DOCUMENT_STATUSES = ("queued", "processing", "success", "error")
# documents in these states have no parts yet and are shown as placeholders
PLACEHOLDER_STATUSES = ("queued", "processing", "error")

BUCKET_DOCUMENTS_RAW = "documents-raw"
BUCKET_DOCUMENT_THUMBNAILS = "document-thumbnails"
BUCKET_PART_RENDERS = "part-renders"


class DocumentSummary(BaseModel):
    """Parent document fields joined onto a part."""

    model_config = ConfigDict(extra="ignore")

    id: str
    file_name: str | None = None
    last_status: str | None = None
    created_at: datetime | None = None


class Document(DocumentSummary):
    """A single uploaded file tracked through the ingestion lifecycle."""

    org_id: str | None = None
    user_id: str | None = None
    raw_bucket: str | None = None
    raw_storage_key: str | None = None
    thumbnail_bucket: str | None = None
    thumbnail_storage_key: str | None = None
    page_count: int | None = None
    last_error: str | None = None
    last_processed_at: datetime | None = None
    last_job_id: str | None = None
    detected_parts_count: int | None = None

    def to_summary(self) -> DocumentSummary:
        return DocumentSummary(
            id=self.id,
            file_name=self.file_name,
            last_status=self.last_status,
            created_at=self.created_at,
        )


class DocumentUpload(BaseModel):
    """A file handed to the upload flow."""

    file_name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)
