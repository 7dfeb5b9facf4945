"""Filter, sort and selection state over the reconciled parts list.

The state round-trips through a query string (``?time=30d&cx=HIGH&sort=priority&dir=asc``)
so a filtered view can be bookmarked or shared.
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Literal
from urllib.parse import urlencode

from pydantic import BaseModel

from shared.models.part import PartWithDocument

ALL = "all"
TIME_WINDOWS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_SORT_FIELD = "last_updated"
DOCUMENT_SORT_FIELDS = ("file_name", "last_status")
SORT_FIELDS = (
    "file_name",
    "primary_class",
    "drawing_number",
    "material",
    "overall_complexity",
    "fit_level",
    "workflow_status",
    "priority",
    "last_updated",
    "last_status",
)

# query-string key -> PartsFilter attribute
FILTER_PARAMS = {
    "time": "time",
    "cx": "complexity",
    "wf": "workflow_status",
    "prio": "priority",
    "co": "company",
}

PartPredicate = Callable[[PartWithDocument], bool]


class PartsFilter(BaseModel):
    """Active filters; "all" disables a filter."""
    time: str = ALL
    complexity: str = ALL
    workflow_status: str = ALL
    priority: str = ALL
    company: str = ALL
    favorites_only: bool = False


class PartsSort(BaseModel):
    field: str = DEFAULT_SORT_FIELD
    direction: Literal["asc", "desc"] = "desc"


def _instant(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


def _is_dropped(value: str | None) -> bool:
    return not value or value in (ALL, "0")


class PartsManager:
    """
    Derives the filtered, sorted view of a parts list and keeps a bulk selection.

    Selection is independent of the filters: hiding a part never unselects it.
    """

    def __init__(self, filters: PartsFilter | None = None, sort: PartsSort | None = None) -> None:
        self.filters = filters or PartsFilter()
        self.sort = sort or PartsSort()
        self.selected_ids: set[str] = set()

    ##########################################
    ############## QUERY STRING ##############
    ##########################################

    @classmethod
    def from_query_params(cls, params: Mapping[str, str]) -> "PartsManager":
        """
        Build the state from query parameters; unknown or malformed values fall back to defaults.
        """
        filters = PartsFilter()
        for key, attribute in FILTER_PARAMS.items():
            value = params.get(key)
            if not _is_dropped(value):
                setattr(filters, attribute, value)
        if filters.time not in TIME_WINDOWS:
            filters.time = ALL
        filters.favorites_only = params.get("fav") == "1"

        sort = PartsSort()
        field = params.get("sort")
        if field and (field in SORT_FIELDS or field in PartWithDocument.model_fields):
            sort.field = field
        if params.get("dir") in ("asc", "desc"):
            sort.direction = params["dir"]
        return cls(filters=filters, sort=sort)

    def to_query_params(self) -> dict[str, str]:
        """Query parameters for the current state; "all", "0" and empty values are left out."""
        raw = {key: getattr(self.filters, attribute) for key, attribute in FILTER_PARAMS.items()}
        raw["fav"] = "1" if self.filters.favorites_only else "0"
        raw["sort"] = self.sort.field
        raw["dir"] = self.sort.direction
        return {key: value for key, value in raw.items() if not _is_dropped(value)}

    def to_query_string(self) -> str:
        return urlencode(self.to_query_params())

    ##########################################
    ################ FILTERS #################
    ##########################################

    def set_filters(self, **changes) -> None:
        """Update individual filters, e.g. ``set_filters(priority="hot", favorites_only=True)``."""
        self.filters = self.filters.model_copy(update=changes)

    def reset_filters(self) -> None:
        """Clear every filter. Sort and selection are kept."""
        self.filters = PartsFilter()

    def get_predicates(self, favorite_ids: Iterable[str] = (), now: datetime | None = None) -> list[PartPredicate]:
        """
        One independent predicate per active filter; a part is shown when all hold.
        """
        f = self.filters
        predicates: list[PartPredicate] = []

        if f.complexity != ALL:
            wanted = f.complexity.upper()
            predicates.append(lambda p: (p.overall_complexity or "").upper() == wanted)
        if f.workflow_status != ALL:
            predicates.append(lambda p: p.workflow_status == f.workflow_status)
        if f.priority != ALL:
            predicates.append(lambda p: p.priority == f.priority)
        if f.company != ALL:
            predicates.append(lambda p: p.company_name == f.company)
        if f.favorites_only:
            favorites = set(favorite_ids)
            predicates.append(lambda p: p.id in favorites)
        if f.time in TIME_WINDOWS:
            cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=TIME_WINDOWS[f.time])
            predicates.append(lambda p: _instant(p.last_updated) >= cutoff.timestamp())
        return predicates

    def filter_parts(self, parts: Iterable[PartWithDocument], favorite_ids: Iterable[str] = (), now: datetime | None = None) -> list[PartWithDocument]:
        predicates = self.get_predicates(favorite_ids, now)
        return [p for p in parts if all(predicate(p) for predicate in predicates)]

    ################ SORTING ##################

    def toggle_sort(self, field: str) -> None:
        """Same field flips the direction; a new field starts ascending."""
        if field == self.sort.field:
            self.sort = PartsSort(field=field, direction="desc" if self.sort.direction == "asc" else "asc")
        else:
            self.sort = PartsSort(field=field, direction="asc")

    def _sort_key(self, part: PartWithDocument):
        field = self.sort.field
        if field in DOCUMENT_SORT_FIELDS:
            return (getattr(part.document, field, None) or "") if part.document else ""
        if field == "last_updated":
            return _instant(part.last_updated)
        value = getattr(part, field, None)
        # (rank, number, text): missing and empty values first, numbers compared as numbers
        if value is None or value == "":
            return (0, 0.0, "")
        if isinstance(value, datetime):
            return (1, value.timestamp(), "")
        if isinstance(value, (int, float)):
            return (1, float(value), "")
        return (1, 0.0, str(value))

    def sort_parts(self, parts: Iterable[PartWithDocument]) -> list[PartWithDocument]:
        """Stable sort on the chosen field; equal keys keep their incoming order in both directions."""
        return sorted(parts, key=self._sort_key, reverse=self.sort.direction == "desc")

    def apply(self, parts: Iterable[PartWithDocument], favorite_ids: Iterable[str] = (), now: datetime | None = None) -> list[PartWithDocument]:
        return self.sort_parts(self.filter_parts(parts, favorite_ids, now))

    ##########################################
    ############### SELECTION ################
    ##########################################

    def toggle_select(self, part_id: str) -> None:
        if part_id in self.selected_ids:
            self.selected_ids.discard(part_id)
        else:
            self.selected_ids.add(part_id)

    def toggle_select_all(self, part_ids: Iterable[str]) -> None:
        """Unselect ``part_ids`` when all of them are selected, otherwise select them all."""
        ids = set(part_ids)
        if ids and ids <= self.selected_ids:
            self.selected_ids -= ids
        else:
            self.selected_ids |= ids

    def clear_selection(self) -> None:
        self.selected_ids.clear()

    ##########################################
    ################ HELPERS #################
    ##########################################

    @staticmethod
    def unique_companies(parts: Iterable[PartWithDocument]) -> list[str]:
        return sorted({p.company_name for p in parts if p.company_name})
