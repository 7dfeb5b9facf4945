from typing import Literal

from pydantic import BaseModel, Field


class PartUpdateRequest(BaseModel):
    workflow_status: str | None = None
    priority: str | None = None


class BulkPartUpdateRequest(BaseModel):
    part_ids: list[str] = Field(min_length=1)
    workflow_status: str | None = None
    priority: str | None = None


class BulkFavoriteRequest(BaseModel):
    part_ids: list[str] = Field(min_length=1)
    favorite: bool


class SelectionRequest(BaseModel):
    part_ids: list[str]


class AddToProjectRequest(BaseModel):
    project_id: str
    part_ids: list[str] = Field(min_length=1)


class CheckoutRequest(BaseModel):
    tier: str
    period: Literal["monthly", "yearly"] = "monthly"
    currency: str = "EUR"
    lang: str | None = None


class ChangeWebhookRequest(BaseModel):
    """Payload of a database webhook on ``parts`` or ``documents``."""

    type: Literal["INSERT", "UPDATE", "DELETE"]
    table: str
    record: dict | None = None
    old_record: dict | None = None
