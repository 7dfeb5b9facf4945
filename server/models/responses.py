from pydantic import BaseModel

from shared.models.document import Document
from shared.models.part import Part, PartWithDocument


class PartsListResponse(BaseModel):
    parts: list[PartWithDocument]
    total: int
    query_string: str
    companies: list[str]
    favorite_ids: list[str]
    selected_ids: list[str]
    loading: bool
    has_more: bool
    error: str | None = None


class ActionResponse(BaseModel):
    status: str = "ok"
    error: str | None = None


class FavoriteResponse(BaseModel):
    part_id: str
    favorite: bool


class SelectionResponse(BaseModel):
    selected_ids: list[str]


class AddToProjectResponse(BaseModel):
    added: int
    error: str | None = None


class UrlResponse(BaseModel):
    url: str


class DocumentDetailResponse(BaseModel):
    document: Document
    parts: list[Part]
    selected_part_id: str | None = None
    render_url: str | None = None
    error: str | None = None


class LangResponse(BaseModel):
    lang: str
    redirect: str | None = None
