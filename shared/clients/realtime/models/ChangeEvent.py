from datetime import datetime
from typing import Awaitable, Callable, Literal

from pydantic import BaseModel

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    """
    One row change delivered by the realtime feed or a database webhook.

    Attributes:
        table (str): Table the change happened on ("parts", "documents", ...).
        event_type (ChangeType): INSERT, UPDATE or DELETE.
        record (dict): New row; empty for DELETE.
        old_record (dict): Previous row (at least the primary key) for UPDATE/DELETE.
        commit_timestamp (datetime | None): Commit time reported by the feed.
    """
    table: str
    event_type: ChangeType
    record: dict = {}
    old_record: dict = {}
    commit_timestamp: datetime | None = None

    @property
    def row_id(self) -> str | None:
        """Primary key of the affected row, taken from whichever side carries it."""
        return self.record.get("id") or self.old_record.get("id")

    @property
    def org_id(self) -> str | None:
        return self.record.get("org_id") or self.old_record.get("org_id")


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


class Subscription(BaseModel):
    """
    An active channel on the realtime feed: one table, filtered to one organization.
    """
    topic: str
    table: str
    org_id: str
    access_token: str | None = None
    join_ref: str | None = None
    joined: bool = False
