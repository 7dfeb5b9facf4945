from pydantic import BaseModel

from shared.models.document import Document
from shared.models.part import Part


class DocumentDetail(BaseModel):
    """
    One document with the parts extracted from it.

    Attributes:
        document (Document): The full document row.
        parts (list[Part]): Its parts, in link order.
        selected_part_id (str | None): The requested part when it belongs to the document, else the first part.
        parts_error (str | None): Set when the parts could not be loaded; ``parts`` is then empty.
    """
    document: Document
    parts: list[Part] = []
    selected_part_id: str | None = None
    parts_error: str | None = None

    def get_selected_part(self) -> Part | None:
        return next((p for p in self.parts if p.id == self.selected_part_id), None)
