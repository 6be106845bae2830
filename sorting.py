"""
Sorting for catalog and admin listings.

Items may be pydantic models or plain dicts; keys are attribute names, and
dotted paths reach into nested records ("customer_info.name").
"""
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import cmp_to_key
from typing import Any, Callable, Iterable, List, Literal, Optional, Sequence

from pydantic.alias_generators import to_camel

SortOrder = Literal["asc", "desc"]
SortType = Literal["string", "number", "date", "boolean"]

_MISSING = object()


def resolve(item: Any, path: str) -> Any:
    """Value at a dotted path, or None when any step is missing."""
    value = item
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            found = value.get(part, _MISSING)
            if found is _MISSING:
                found = value.get(to_camel(part))
            value = found
        else:
            value = getattr(value, part, None)
    return value


def to_epoch_millis(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp() * 1000
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp() * 1000
    return None


def collation_key(value: Any) -> tuple:
    """
    Key that orders text the way a reader expects: accents and case only break
    ties, so "éclair" sorts between "apple" and "fig".
    """
    text = unicodedata.normalize("NFKD", str(value))
    base = "".join(ch for ch in text if not unicodedata.combining(ch))
    return base.casefold(), text.casefold()


def compare_values(a: Any, b: Any, kind: SortType = "string") -> int:
    """Ascending comparison of two present values."""
    if kind == "number":
        diff = float(a) - float(b)
        return (diff > 0) - (diff < 0)
    if kind == "date":
        return compare_values(to_epoch_millis(a), to_epoch_millis(b), "number")
    if kind == "boolean":
        return bool(a) - bool(b)
    ka, kb = collation_key(a), collation_key(b)
    return (ka > kb) - (ka < kb)


@dataclass(frozen=True)
class SortOption:
    key: str
    label: str = ""
    type: SortType = "string"
    get_value: Optional[Callable[[Any], Any]] = None

    def value_of(self, item: Any) -> Any:
        value = self.get_value(item) if self.get_value else resolve(item, self.key)
        if value is None:
            return None
        if self.type == "date" and to_epoch_millis(value) is None:
            return None
        if self.type == "number":
            try:
                return float(value)
            except (TypeError, ValueError):
                return None
        return value


@dataclass(frozen=True)
class SortConfig:
    key: Optional[str]
    direction: SortOrder = "asc"


def find_option(options: Iterable[SortOption], key: str) -> SortOption:
    for option in options:
        if option.key == key:
            return option
    return SortOption(key=key)


def sort_items(items: Sequence[Any], key: Optional[str], direction: SortOrder = "asc",
               options: Iterable[SortOption] = ()) -> List[Any]:
    """
    Return a new list ordered by one key.

    Items without a value go last in both directions. The sort is stable, so
    items with equal values keep their input order whichever way we sort.
    """
    if not key:
        return list(items)
    option = find_option(options, key)
    sign = -1 if direction == "desc" else 1

    def compare(x, y):
        a, b = x[0], y[0]
        if a is None and b is None:
            return 0
        if a is None:
            return 1
        if b is None:
            return -1
        return sign * compare_values(a, b, option.type)

    keyed = [(option.value_of(item), item) for item in items]
    return [item for _, item in sorted(keyed, key=cmp_to_key(compare))]


class SortState:
    """The active sort of one listing."""

    def __init__(self, options: Sequence[SortOption] = (), initial_key: Optional[str] = None,
                 initial_direction: SortOrder = "asc"):
        self.options = list(options)
        if initial_key is None and self.options:
            initial_key = self.options[0].key
        self.config = SortConfig(initial_key, initial_direction)

    @property
    def key(self) -> Optional[str]:
        return self.config.key

    @property
    def direction(self) -> SortOrder:
        return self.config.direction

    def sort_by(self, key: str) -> SortConfig:
        if key == self.config.key:
            direction = "desc" if self.config.direction == "asc" else "asc"
        else:
            direction = "asc"
        self.config = SortConfig(key, direction)
        return self.config

    def set_direction(self, direction: SortOrder) -> None:
        self.config = SortConfig(self.config.key, direction)

    def toggle_direction(self) -> None:
        self.set_direction("desc" if self.config.direction == "asc" else "asc")

    def apply(self, items: Sequence[Any]) -> List[Any]:
        return sort_items(items, self.config.key, self.config.direction, self.options)
