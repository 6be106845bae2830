"""
Filter and search composition for catalog and admin listings.

Each entity has a table of FieldRules mapping a criterion name to the item
field it constrains and how. `build_predicate` ANDs together every criterion
that is present; a criterion set to None (or an empty string) is no
constraint.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from pagination import DEFAULT_PAGE_SIZE, Page, PaginationState
from schemas import UNISEX, SubmissionStats
from sorting import SortConfig, SortOption, SortOrder, SortState, resolve, to_epoch_millis

FilterKind = Literal["exact", "iexact", "contains", "range", "flag", "gender", "present", "date_range"]
Criteria = Union[BaseModel, Dict[str, Any], None]
Predicate = Callable[[Any], bool]


def _casefold(value: Any) -> str:
    return str(value).casefold()


@dataclass(frozen=True)
class FieldRule:
    criterion: str
    kind: FilterKind
    path: Optional[str] = None

    @property
    def target(self) -> str:
        return self.path or self.criterion

    def matches(self, item: Any, wanted: Any) -> bool:
        value = resolve(item, self.target)
        kind = self.kind
        if kind == "exact":
            return value == wanted
        if kind == "flag":
            return value is not None and bool(value) == wanted
        if kind == "present":
            return bool(value) == bool(wanted)
        if kind == "gender":
            return value == wanted or value == UNISEX
        if value is None:
            return False
        if kind == "iexact":
            return _casefold(value) == _casefold(wanted)
        if kind == "contains":
            return _casefold(wanted) in _casefold(value)
        if kind == "range":
            low, high = resolve(wanted, "min"), resolve(wanted, "max")
            return low <= value <= high
        if kind == "date_range":
            at = to_epoch_millis(value)
            start = to_epoch_millis(resolve(wanted, "start"))
            end = to_epoch_millis(resolve(wanted, "end"))
            if at is None or start is None or end is None:
                return False
            return start <= at <= end
        raise ValueError(f"Unknown filter kind: {kind}")


FRAME_RULES: Tuple[FieldRule, ...] = (
    FieldRule("brand", "iexact"),
    FieldRule("category", "exact"),
    FieldRule("material", "exact"),
    FieldRule("shape", "exact"),
    FieldRule("color", "contains"),
    FieldRule("gender", "gender"),
    FieldRule("price_range", "range", "price"),
    FieldRule("in_stock", "flag"),
)

SUNGLASSES_RULES: Tuple[FieldRule, ...] = FRAME_RULES + (
    FieldRule("polarized", "flag", "lens_features.polarized"),
    FieldRule("uv_protection", "present", "lens_features.uv_protection"),
)

INQUIRY_RULES: Tuple[FieldRule, ...] = (
    FieldRule("status", "exact"),
    FieldRule("priority", "exact"),
    FieldRule("product_type", "exact", "product.type"),
    FieldRule("assigned_to", "exact"),
    FieldRule("date_range", "date_range", "created_at"),
)

CONTACT_RULES: Tuple[FieldRule, ...] = (
    FieldRule("status", "exact"),
    FieldRule("priority", "exact"),
    FieldRule("service_interest", "exact"),
    FieldRule("assigned_to", "exact"),
    FieldRule("source", "exact"),
    FieldRule("date_range", "date_range", "created_at"),
)

CATALOG_SEARCH_FIELDS = ("name", "brand", "description", "color", "features")
INQUIRY_SEARCH_FIELDS = (
    "customer_info.name", "customer_info.email", "product.name", "product.brand", "message",
)
CONTACT_SEARCH_FIELDS = (
    "customer_info.name", "customer_info.email", "customer_info.phone", "service_interest", "message",
)


def _is_unconstrained(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def active_criteria(criteria: Criteria, rules: Iterable[FieldRule]) -> List[Tuple[FieldRule, Any]]:
    if criteria is None:
        return []
    active = []
    for rule in rules:
        wanted = resolve(criteria, rule.criterion)
        if not _is_unconstrained(wanted):
            active.append((rule, wanted))
    return active


def build_predicate(criteria: Criteria, rules: Iterable[FieldRule]) -> Predicate:
    active = active_criteria(criteria, rules)

    def predicate(item: Any) -> bool:
        return all(rule.matches(item, wanted) for rule, wanted in active)

    return predicate


def search_predicate(query: Optional[str], fields: Sequence[str] = CATALOG_SEARCH_FIELDS) -> Predicate:
    term = (query or "").strip().casefold()
    if not term:
        return lambda item: True

    def predicate(item: Any) -> bool:
        for path in fields:
            value = resolve(item, path)
            if value is None:
                continue
            values = value if isinstance(value, (list, tuple)) else (value,)
            if any(term in _casefold(v) for v in values if v is not None):
                return True
        return False

    return predicate


def apply_filters(items: Iterable[Any], criteria: Criteria, rules: Iterable[FieldRule]) -> List[Any]:
    predicate = build_predicate(criteria, rules)
    return [item for item in items if predicate(item)]


def search_items(items: Iterable[Any], query: Optional[str],
                 fields: Sequence[str] = CATALOG_SEARCH_FIELDS) -> List[Any]:
    predicate = search_predicate(query, fields)
    return [item for item in items if predicate(item)]


def distinct_values(items: Iterable[Any], path: str) -> List[Any]:
    """Sorted unique values at path, for populating filter dropdowns."""
    seen = {resolve(item, path) for item in items}
    seen.discard(None)
    seen.discard("")
    return sorted(seen)


class Listing:
    """
    The search -> filter -> sort -> paginate pipeline behind every list page.

    Changing the search text or any filter sends the listing back to page 1.
    """

    def __init__(self, rules: Sequence[FieldRule] = FRAME_RULES,
                 search_fields: Sequence[str] = CATALOG_SEARCH_FIELDS,
                 sort_options: Sequence[SortOption] = (),
                 initial_sort_key: Optional[str] = None,
                 initial_direction: SortOrder = "asc",
                 page_size: int = DEFAULT_PAGE_SIZE,
                 criteria: Criteria = None):
        self.rules = tuple(rules)
        self.search_fields = tuple(search_fields)
        self.query = ""
        self.criteria: Criteria = criteria
        self.sorting = SortState(sort_options, initial_sort_key, initial_direction)
        self.pagination = PaginationState(page_size=page_size)

    def set_search(self, query: str) -> None:
        self.query = query or ""
        self.pagination.reset()

    def set_filters(self, criteria: Criteria) -> None:
        self.criteria = criteria
        self.pagination.reset()

    def update_filter(self, name: str, value: Any) -> None:
        if isinstance(self.criteria, BaseModel):
            self.criteria = self.criteria.model_copy(update={name: value})
        else:
            self.criteria = {**(self.criteria or {}), name: value}
        self.pagination.reset()

    def clear_filters(self) -> None:
        if isinstance(self.criteria, BaseModel):
            self.criteria = type(self.criteria)()
        else:
            self.criteria = None
        self.pagination.reset()

    def sort_by(self, key: str) -> SortConfig:
        return self.sorting.sort_by(key)

    def set_page(self, page: int) -> int:
        return self.pagination.set_page(page)

    def set_page_size(self, page_size: int) -> int:
        return self.pagination.set_page_size(page_size)

    def visible(self, items: Iterable[Any]) -> List[Any]:
        """Every item that passes search and filters, in sort order."""
        matches_search = search_predicate(self.query, self.search_fields)
        matches_filters = build_predicate(self.criteria, self.rules)
        kept = [item for item in items if matches_search(item) and matches_filters(item)]
        return self.sorting.apply(kept)

    def current(self, items: Iterable[Any]) -> Page:
        return self.pagination.apply(self.visible(items))


def submission_stats(records: Iterable[Any], now: Optional[datetime] = None) -> SubmissionStats:
    """
    Dashboard counters for inquiries or contacts.

    Weeks start on Sunday; both this_month and this_week count from midnight UTC.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = to_epoch_millis(midnight.replace(day=1))
    week_start = to_epoch_millis(midnight - timedelta(days=(midnight.weekday() + 1) % 7))

    stats = SubmissionStats()
    for record in records:
        stats.total += 1
        status = resolve(record, "status")
        if status == "new":
            stats.new += 1
        elif status == "in-progress":
            stats.in_progress += 1
        elif status == "completed":
            stats.completed += 1
        created = to_epoch_millis(resolve(record, "created_at"))
        if created is None:
            continue
        if created >= month_start:
            stats.this_month += 1
        if created >= week_start:
            stats.this_week += 1
    return stats
