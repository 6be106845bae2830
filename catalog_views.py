"""
Observable catalog state for the storefront and the admin panel.

A CatalogBus holds the latest snapshot of each collection. Admin views
publish to it after every successful change; public views read the snapshot
on load and resync whenever something is published.
"""
import logging
import threading
from collections import defaultdict
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar, Union

from bson import ObjectId
from pydantic import BaseModel

from dataservice import (
    CancelToken,
    CollectionRepository,
    CompanyRepository,
    DataServiceError,
    MutationResult,
    OperationCancelled,
    SaveOutcome,
    to_wire_fields,
)
from filters import FRAME_RULES, SUNGLASSES_RULES, FieldRule, apply_filters, distinct_values, search_items
from schemas import CatalogItem, CompanyData, ServiceInfo, Testimonial

logger = logging.getLogger(__name__)

FRAMES_TOPIC = "frames"
SUNGLASSES_TOPIC = "sunglasses"
COMPANY_TOPIC = "company"

ItemT = TypeVar("ItemT", bound=CatalogItem)
Listener = Callable[[Any], None]


class CatalogBus:
    def __init__(self):
        self._snapshots: Dict[str, Any] = {}
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def snapshot(self, topic: str) -> Any:
        with self._lock:
            return self._snapshots.get(topic)

    def store(self, topic: str, value: Any) -> None:
        """Replace the snapshot without telling anyone."""
        with self._lock:
            self._snapshots[topic] = value

    def publish(self, topic: str, value: Any) -> None:
        with self._lock:
            self._snapshots[topic] = value
            listeners = list(self._listeners[topic])
        for listener in listeners:
            listener(value)

    def subscribe(self, topic: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners[topic].append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners[topic]:
                    self._listeners[topic].remove(listener)

        return unsubscribe


class ViewState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class CatalogQueries(Generic[ItemT]):
    """Read helpers over the currently loaded items."""

    items: List[ItemT]
    rules: Sequence[FieldRule] = FRAME_RULES

    def filter(self, criteria: Union[BaseModel, Dict[str, Any], None]) -> List[ItemT]:
        return apply_filters(self.items, criteria, self.rules)

    def search(self, query: str) -> List[ItemT]:
        return search_items(self.items, query)

    def get_by_id(self, item_id: str) -> Optional[ItemT]:
        return next((item for item in self.items if item.id == item_id), None)

    def brands(self) -> List[str]:
        return distinct_values(self.items, "brand")

    def categories(self) -> List[str]:
        return distinct_values(self.items, "category")

    def materials(self) -> List[str]:
        return distinct_values(self.items, "material")

    def shapes(self) -> List[str]:
        return distinct_values(self.items, "shape")

    def colors(self) -> List[str]:
        return distinct_values(self.items, "color")


class _View:
    def __init__(self, bus: CatalogBus, topic: str):
        self.bus = bus
        self.topic = topic
        self.state = ViewState.IDLE
        self.error: Optional[str] = None
        self._token = CancelToken()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def loading(self) -> bool:
        return self.state is ViewState.LOADING

    @property
    def closed(self) -> bool:
        return self._token.cancelled

    def _fail(self, error: Exception) -> None:
        logger.error("Failed to load %s: %s", self.topic, error)
        self.error = str(error) or f"Failed to load {self.topic}"
        self.state = ViewState.ERROR

    def _refuse_if_closed(self, action: str) -> bool:
        if self.closed:
            logger.warning("Ignoring %s on closed %s view", action, self.topic)
        return self.closed

    def close(self) -> None:
        """Stop listening; anything still in flight is discarded when it lands."""
        self._token.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class CatalogView(_View, CatalogQueries[ItemT]):
    """Storefront view of one collection."""

    def __init__(self, repository: CollectionRepository[ItemT], bus: CatalogBus, topic: str,
                 rules: Sequence[FieldRule] = FRAME_RULES):
        super().__init__(bus, topic)
        self.repository = repository
        self.rules = rules
        self.items: List[ItemT] = []
        self._unsubscribe = bus.subscribe(topic, self._on_publish)

    def _on_publish(self, items: Any) -> None:
        if self.closed:
            return
        self.items = list(items)
        self.error = None
        self.state = ViewState.READY

    def load(self) -> List[ItemT]:
        self.state = ViewState.LOADING
        self.error = None
        snapshot = self.bus.snapshot(self.topic)
        if snapshot is not None:
            self.items = list(snapshot)
            self.state = ViewState.READY
            return self.items
        return self._fetch(publish=False)

    def refresh(self) -> List[ItemT]:
        """Skip every cache and go back to the repository."""
        self.state = ViewState.LOADING
        self.error = None
        self.repository.invalidate()
        return self._fetch(publish=True)

    def _fetch(self, publish: bool) -> List[ItemT]:
        try:
            items = self.repository.get(self._token)
        except OperationCancelled:
            return self.items
        except DataServiceError as e:
            self.items = []
            self._fail(e)
            return self.items
        if publish:
            self.bus.publish(self.topic, items)
        else:
            self.bus.store(self.topic, items)
        self.items = list(items)
        self.state = ViewState.READY
        return self.items


class CatalogAdmin(_View, CatalogQueries[ItemT]):
    """
    Admin view of one collection. Every successful change re-reads the
    collection and publishes it, so storefront views pick it up.
    """

    def __init__(self, repository: CollectionRepository[ItemT], bus: CatalogBus, topic: str,
                 rules: Sequence[FieldRule] = FRAME_RULES):
        super().__init__(bus, topic)
        self.repository = repository
        self.rules = rules
        self.items: List[ItemT] = []

    def load(self) -> List[ItemT]:
        self.state = ViewState.LOADING
        self.error = None
        try:
            items = self.repository.get(self._token)
        except OperationCancelled:
            return self.items
        except DataServiceError as e:
            self.items = []
            self._fail(e)
            return self.items
        self.items = items
        self.bus.store(self.topic, items)
        self.state = ViewState.READY
        return self.items

    def refresh(self) -> List[ItemT]:
        self.repository.invalidate()
        return self.load()

    def _resync(self) -> None:
        try:
            self.items = self.repository.get(self._token)
        except OperationCancelled:
            return
        self.bus.publish(self.topic, self.items)

    def create(self, data: Union[BaseModel, Mapping[str, Any]]) -> Optional[ItemT]:
        if self._refuse_if_closed("create"):
            return None
        try:
            item = self.repository.create(data, self._token)
        except OperationCancelled:
            return None
        if item is not None:
            self._resync()
        return item

    def update(self, item_id: str, changes: Union[BaseModel, Mapping[str, Any]]) -> MutationResult:
        if self._refuse_if_closed("update"):
            return MutationResult(primary_ok=False)
        try:
            result = self.repository.update(item_id, changes, self._token)
        except OperationCancelled:
            return MutationResult(primary_ok=False)
        if result.primary_ok:
            self._resync()
        return result

    def delete(self, item_id: str) -> MutationResult:
        if self._refuse_if_closed("delete"):
            return MutationResult(primary_ok=False)
        try:
            result = self.repository.delete(item_id, self._token)
        except OperationCancelled:
            return MutationResult(primary_ok=False)
        if result.primary_ok:
            self._resync()
        return result


def frames_view(repository, bus: CatalogBus) -> CatalogView:
    return CatalogView(repository, bus, FRAMES_TOPIC, FRAME_RULES)


def sunglasses_view(repository, bus: CatalogBus) -> CatalogView:
    return CatalogView(repository, bus, SUNGLASSES_TOPIC, SUNGLASSES_RULES)


def frames_admin(repository, bus: CatalogBus) -> CatalogAdmin:
    return CatalogAdmin(repository, bus, FRAMES_TOPIC, FRAME_RULES)


def sunglasses_admin(repository, bus: CatalogBus) -> CatalogAdmin:
    return CatalogAdmin(repository, bus, SUNGLASSES_TOPIC, SUNGLASSES_RULES)


class CompanyProfileView(_View):
    """Company profile editor. Section updaters save the whole document."""

    def __init__(self, repository: CompanyRepository, bus: CatalogBus, topic: str = COMPANY_TOPIC):
        super().__init__(bus, topic)
        self.repository = repository
        self.company: Optional[CompanyData] = None

    def load(self) -> Optional[CompanyData]:
        self.state = ViewState.LOADING
        self.error = None
        try:
            company = self.repository.get(self._token)
        except OperationCancelled:
            return self.company
        except DataServiceError as e:
            self._fail(e)
            return None
        if company is None:
            self.company = None
            self.error = "Failed to load company data"
            self.state = ViewState.ERROR
            return None
        self.company = company
        self.bus.store(self.topic, company)
        self.state = ViewState.READY
        return company

    def refresh(self) -> Optional[CompanyData]:
        self.repository.invalidate()
        return self.load()

    def _update(self, section: str, value: Any) -> SaveOutcome:
        if self._refuse_if_closed(f"{section} update"):
            return SaveOutcome.FAILED
        try:
            outcome = self.repository.update_section(section, value, self._token)
            if outcome.ok:
                self.company = self.repository.get(self._token)
        except OperationCancelled:
            return SaveOutcome.FAILED
        if outcome.ok:
            self.bus.publish(self.topic, self.company)
        return outcome

    def update_company_info(self, info: Any) -> SaveOutcome:
        return self._update("company_info", info)

    def update_contact_info(self, contact: Any) -> SaveOutcome:
        return self._update("contact", contact)

    def update_business_hours(self, hours: Any) -> SaveOutcome:
        return self._update("business_hours", hours)

    def update_services(self, services: List[Any]) -> SaveOutcome:
        return self._update("services", services)

    def update_features(self, features: List[Any]) -> SaveOutcome:
        return self._update("features", features)

    def update_about_page(self, about: Any) -> SaveOutcome:
        return self._update("about_page", about)

    def update_footer(self, footer: Any) -> SaveOutcome:
        return self._update("footer", footer)

    def update_home_page(self, home: Any) -> SaveOutcome:
        return self._update("home_page", home)

    def update_contact_page(self, contact_page: Any) -> SaveOutcome:
        return self._update("contact_page", contact_page)

    def update_site_content(self, site_content: Any) -> SaveOutcome:
        return self._update("site_content", site_content)

    def _services(self) -> List[ServiceInfo]:
        return list(self.company.services) if self.company is not None else []

    def add_service(self, data: Union[BaseModel, Mapping[str, Any]]) -> Optional[ServiceInfo]:
        if self.company is None:
            return None
        record = to_wire_fields(ServiceInfo, data)
        record["id"] = f"service-{ObjectId()}"
        service = ServiceInfo.model_validate(record)
        outcome = self._update("services", [*self._services(), service])
        return service if outcome.ok else None

    def update_service(self, service_id: str, changes: Union[BaseModel, Mapping[str, Any]]) -> SaveOutcome:
        if self.company is None:
            return SaveOutcome.FAILED
        patch = to_wire_fields(ServiceInfo, changes)
        services = [
            ServiceInfo.model_validate({**s.to_wire(), **patch, "id": s.id}) if s.id == service_id else s
            for s in self._services()
        ]
        return self._update("services", services)

    def delete_service(self, service_id: str) -> SaveOutcome:
        if self.company is None:
            return SaveOutcome.FAILED
        return self._update("services", [s for s in self._services() if s.id != service_id])

    def add_testimonial(self, data: Union[BaseModel, Mapping[str, Any]]) -> Optional[Testimonial]:
        if self.company is None:
            return None
        record = to_wire_fields(Testimonial, data)
        record["id"] = f"testimonial-{ObjectId()}"
        record.setdefault("date", date.today().isoformat())
        testimonial = Testimonial.model_validate(record)
        outcome = self._update("testimonials", [*self.company.testimonials, testimonial])
        return testimonial if outcome.ok else None

    def delete_testimonial(self, testimonial_id: str) -> SaveOutcome:
        if self.company is None:
            return SaveOutcome.FAILED
        remaining = [t for t in self.company.testimonials if t.id != testimonial_id]
        return self._update("testimonials", remaining)
