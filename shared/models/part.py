"""Pydantic models for extracted parts and their reconciled list entries."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from shared.models.document import DocumentSummary

WORKFLOW_STATUSES = ("new", "in_progress", "done", "ignored")
PRIORITIES = ("low", "normal", "high", "hot")
COMPLEXITIES = ("LOW", "MEDIUM", "HIGH", "EXTREME")
FIT_LEVELS = ("GOOD", "PARTIAL", "COOPERATION", "LOW", "UNKNOWN")

PLACEHOLDER_ID_PREFIX = "processing-"


class Part(BaseModel):
    """A part row as stored in the ``parts`` table."""

    model_config = ConfigDict(extra="ignore")

    id: str
    page: int | None = None
    drawing_title: str | None = None
    part_number: str | None = None
    drawing_number: str | None = None
    company_name: str | None = None
    material: str | None = None
    primary_class: str | None = None
    secondary_class: str | None = None
    envelope_text: str | None = None
    overall_complexity: str | None = None
    fit_level: str | None = None
    workflow_status: str | None = None
    priority: str | None = None
    revision_changed: bool | None = None
    render_bucket: str | None = None
    render_storage_key: str | None = None
    created_at: datetime | None = None
    last_updated: datetime | None = None


class PartWithDocument(Part):
    """One entry of the reconciled parts list: a real part or a processing placeholder."""

    document: DocumentSummary | None = None
    is_processing_placeholder: bool = False

    def merged(self, patch: dict) -> "PartWithDocument":
        """Return a copy with ``patch`` fields applied and re-validated.

        Unknown keys (org_id, report_json, ...) are dropped. The joined document
        is only replaced when the patch carries one explicitly.
        """
        data = self.model_dump()
        for key, value in patch.items():
            if key in ("id", "is_processing_placeholder"):
                continue
            if key in type(self).model_fields:
                data[key] = value
        return type(self).model_validate(data)


def placeholder_id(document_id: str) -> str:
    return f"{PLACEHOLDER_ID_PREFIX}{document_id}"


def build_placeholder(document: DocumentSummary) -> PartWithDocument:
    """Synthesize the list entry shown for a document that has no parts yet."""
    return PartWithDocument(
        id=placeholder_id(document.id),
        created_at=document.created_at,
        last_updated=document.created_at,
        document=document,
        is_processing_placeholder=True,
    )


def map_document_parts_row(row: dict | None) -> PartWithDocument | None:
    """Turn one ``document_parts`` row with embedded ``parts`` and ``documents`` into a list entry.

    PostgREST embeds to-one relations as objects but some joins come back as
    single-element lists, both shapes are accepted. Returns None when the row
    carries no part (e.g. filtered out by the embedded org filter).
    """
    if not row:
        return None
    part_data = row.get("parts")
    doc_data = row.get("documents")
    if isinstance(part_data, list):
        part_data = part_data[0] if part_data else None
    if isinstance(doc_data, list):
        doc_data = doc_data[0] if doc_data else None
    if not part_data:
        return None
    return PartWithDocument.model_validate({
        **part_data,
        "document": DocumentSummary.model_validate(doc_data) if doc_data else None,
    })


class PartTag(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str | None = None
    part_id: str
    label: str
    created_at: datetime | None = None


class PartComment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str | None = None
    part_id: str
    user_id: str | None = None
    author_name: str | None = None
    body: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
