"""Pydantic models for projects and their part links."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from shared.models.part import Part

PROJECT_STATUSES = ("open", "in_progress", "closed", "archived")
PROJECT_PRIORITIES = ("low", "normal", "high", "hot")


class Project(BaseModel):
    """A user-defined grouping of parts."""

    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str | None = None
    created_by_user_id: str | None = None
    name: str
    description: str | None = None
    customer_name: str | None = None
    external_ref: str | None = None
    status: str = "open"
    priority: str = "normal"
    due_date: datetime | None = None
    meta: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProjectInput(BaseModel):
    """Fields accepted when creating or updating a project."""

    name: str | None = None
    description: str | None = None
    customer_name: str | None = None
    external_ref: str | None = None
    status: str | None = None
    priority: str | None = None
    due_date: datetime | None = None


class ProjectPart(BaseModel):
    """A project_parts row, joined with the part it links."""

    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str | None = None
    project_id: str
    part_id: str
    added_by_user_id: str | None = None
    created_at: datetime | None = None
    part: Part | None = None
