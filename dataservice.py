"""
Client-side data access for the Optical Store backend.

Collections (frames, sunglasses) and the company singleton are always read
and written whole. Each has a Repository with its own cache slot; a
successful save empties that slot so the next read goes back to the server.

When the backend cannot be reached, reads fall back to the last snapshot kept
in FallbackStorage, and writes are kept there plus a JSON file the operator
can download and copy into the server's data directory by hand.
"""
import base64
import json
import logging
import os
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Type, TypeVar, Union

import httpx
from bson import ObjectId
from pydantic import BaseModel, TypeAdapter
from pydantic.alias_generators import to_camel

from filters import CONTACT_RULES, INQUIRY_RULES, apply_filters, submission_stats
from schemas import (
    CatalogItem,
    CompanyData,
    Contact,
    ContactCreate,
    ContactFilters,
    ContactUpdate,
    Frame,
    Inquiry,
    InquiryCreate,
    InquiryFilters,
    InquiryUpdate,
    SubmissionStats,
    Sunglasses,
)

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3001/api")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))
FALLBACK_DIR = Path(os.getenv("FALLBACK_DIR", Path.home() / ".optical-store"))

PENDING_DOWNLOAD_TTL = 5 * 60
GALLERY_MAX_BYTES = 10 * 1024 * 1024
SINGLE_IMAGE_MAX_BYTES = 5 * 1024 * 1024
SINGLE_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")
MAX_GALLERY_IMAGES = 5

ItemT = TypeVar("ItemT", bound=CatalogItem)


class DataServiceError(Exception):
    pass


class ImageValidationError(DataServiceError, ValueError):
    """The file was rejected before any upload was attempted."""


class OperationCancelled(DataServiceError):
    """A response arrived after its caller cancelled; it was not applied."""


class CancelToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self.cancelled:
            raise OperationCancelled()


def _check(token: Optional[CancelToken]) -> None:
    if token is not None:
        token.check()


class SaveOutcome(Enum):
    PERSISTED = "persisted"
    FALLBACK = "fallback"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not SaveOutcome.FAILED


@dataclass
class MutationResult:
    """
    Result of an update or delete.

    primary_ok tells whether the record change itself was stored (on the server
    or in the local fallback, see outcome). side_effect_errors collects image
    releases that failed; they never make the mutation fail.
    """
    primary_ok: bool
    outcome: Optional[SaveOutcome] = None
    item: Any = None
    side_effect_errors: List[Exception] = field(default_factory=list)
    not_found: bool = False

    def __bool__(self) -> bool:
        return self.primary_ok


@dataclass(frozen=True)
class PendingDownload:
    filename: str
    path: Path
    content: str
    timestamp: float


class FallbackStorage:
    """
    String-keyed local slots, plus snapshot files waiting for a manual download.

    A pending download expires `ttl` seconds after it was prepared: its file is
    deleted and its record cleared the next time downloads are listed.
    """

    DOWNLOAD_PREFIX = "download_"

    def __init__(self, directory: Union[str, Path, None] = None, ttl: float = PENDING_DOWNLOAD_TTL,
                 clock: Callable[[], float] = time.time):
        self.directory = Path(directory) if directory is not None else FALLBACK_DIR
        self.ttl = ttl
        self.clock = clock

    @property
    def _slots(self) -> Path:
        return self.directory / "storage"

    @property
    def _downloads(self) -> Path:
        return self.directory / "downloads"

    def get_item(self, key: str) -> Optional[str]:
        try:
            return (self._slots / key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        self._slots.mkdir(parents=True, exist_ok=True)
        (self._slots / key).write_text(value, encoding="utf-8")

    def remove_item(self, key: str) -> None:
        (self._slots / key).unlink(missing_ok=True)

    def keys(self) -> List[str]:
        if not self._slots.is_dir():
            return []
        return sorted(p.name for p in self._slots.iterdir() if p.is_file())

    def prepare_download(self, filename: str, content: str) -> PendingDownload:
        self._downloads.mkdir(parents=True, exist_ok=True)
        path = self._downloads / filename
        path.write_text(content, encoding="utf-8")
        pending = PendingDownload(filename=filename, path=path, content=content, timestamp=self.clock())
        record = {"url": path.as_uri(), "filename": filename, "content": content, "timestamp": pending.timestamp}
        self.set_item(self.DOWNLOAD_PREFIX + filename, json.dumps(record))
        logger.warning("%s is waiting for a manual update: copy %s into the server data directory",
                       filename, path)
        return pending

    def get_download(self, filename: str) -> Optional[PendingDownload]:
        raw = self.get_item(self.DOWNLOAD_PREFIX + filename)
        if raw is None:
            return None
        try:
            record = json.loads(raw)
            pending = PendingDownload(
                filename=record["filename"],
                path=self._downloads / record["filename"],
                content=record["content"],
                timestamp=float(record["timestamp"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Discarding unreadable download record for %s: %s", filename, e)
            self.dismiss(filename)
            return None
        if self.clock() - pending.timestamp >= self.ttl:
            self.dismiss(filename)
            return None
        return pending

    def pending_downloads(self) -> List[PendingDownload]:
        found = []
        for key in self.keys():
            if key.startswith(self.DOWNLOAD_PREFIX):
                pending = self.get_download(key[len(self.DOWNLOAD_PREFIX):])
                if pending is not None:
                    found.append(pending)
        return found

    def dismiss(self, filename: str) -> None:
        (self._downloads / filename).unlink(missing_ok=True)
        self.remove_item(self.DOWNLOAD_PREFIX + filename)

    def clear(self) -> None:
        for key in self.keys():
            if key.startswith(self.DOWNLOAD_PREFIX):
                self.dismiss(key[len(self.DOWNLOAD_PREFIX):])
            else:
                self.remove_item(key)


def _wire_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [_wire_value(v) for v in value]
    return value


def to_wire_fields(model: Type[BaseModel], data: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    """Partial record keyed by wire (camelCase) names."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_unset=True)
    out = {}
    generator = model.model_config.get("alias_generator")
    for key, value in data.items():
        info = model.model_fields.get(key)
        if info is None:
            name = key
        else:
            name = info.alias or (generator(key) if generator else key)
        out[name] = _wire_value(value)
    return out


class Repository:
    """
    One cached, whole-document resource on the backend.

    get() serves the cache when it holds something, save() writes through and
    calls invalidate() once the server accepted the write.
    """

    def __init__(self, client: httpx.Client, storage: FallbackStorage, endpoint: str,
                 storage_key: str, download_name: str):
        self.client = client
        self.storage = storage
        self.endpoint = endpoint
        self.storage_key = storage_key
        self.download_name = download_name
        self.last_outcome: Optional[SaveOutcome] = None
        self._cache: Any = None

    def _parse(self, payload: Any) -> Any:
        raise NotImplementedError

    def _serialize(self, value: Any) -> Any:
        raise NotImplementedError

    def _empty(self) -> Any:
        return None

    @property
    def cached(self) -> Any:
        return self._cache

    def invalidate(self) -> None:
        self._cache = None

    def get(self, token: Optional[CancelToken] = None) -> Any:
        if self._cache is not None:
            return self._cache
        try:
            response = self.client.get(self.endpoint)
            response.raise_for_status()
            value = self._parse(response.json())
        except (httpx.HTTPError, ValueError) as e:
            _check(token)
            logger.error("Error loading %s from backend API: %s", self.endpoint, e)
            return self._load_fallback()
        _check(token)
        self._cache = value
        logger.debug("Loaded %s from backend API", self.endpoint)
        return value

    def _load_fallback(self) -> Any:
        try:
            raw = self.storage.get_item(self.storage_key)
        except OSError as e:
            logger.error("Local fallback storage is unreadable: %s", e)
            raw = None
        if raw is not None:
            try:
                self._cache = self._parse(json.loads(raw))
                logger.info("Loaded %s from local fallback storage", self.storage_key)
                return self._cache
            except ValueError as e:
                logger.error("Failed to parse %s from local fallback storage: %s", self.storage_key, e)
        logger.warning("No data available for %s", self.endpoint)
        return self._empty()

    def save(self, value: Any, token: Optional[CancelToken] = None) -> SaveOutcome:
        self._cache = value
        payload = self._serialize(value)
        try:
            response = self.client.post(self.endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            if token is not None and token.cancelled:
                self.invalidate()
                raise OperationCancelled() from e
            logger.error("Backend API error saving %s: %s", self.endpoint, e)
            self.last_outcome = self._save_fallback(payload)
            return self.last_outcome
        if token is not None and token.cancelled:
            self.invalidate()
            raise OperationCancelled()
        logger.info("Saved %s to backend API", self.endpoint)
        self.invalidate()
        self.last_outcome = SaveOutcome.PERSISTED
        return self.last_outcome

    def _save_fallback(self, payload: Any) -> SaveOutcome:
        try:
            content = json.dumps(payload, indent=2, ensure_ascii=False)
            self.storage.set_item(self.storage_key, content)
            self.storage.prepare_download(self.download_name, content)
        except OSError:
            logger.exception("Fallback save of %s failed", self.storage_key)
            return SaveOutcome.FAILED
        logger.warning("Backend unavailable; %s kept in local fallback storage", self.storage_key)
        return SaveOutcome.FALLBACK


class CollectionRepository(Repository, Generic[ItemT]):
    """A whole-list collection of catalog items (frames or sunglasses)."""

    def __init__(self, client: httpx.Client, storage: FallbackStorage, images: "ImageStore",
                 model: Type[ItemT], endpoint: str, storage_key: str, download_name: str, id_prefix: str):
        super().__init__(client, storage, endpoint, storage_key, download_name)
        self.images = images
        self.model = model
        self.id_prefix = id_prefix
        self._adapter = TypeAdapter(List[model])

    def _parse(self, payload: Any) -> List[ItemT]:
        if not isinstance(payload, list):
            raise ValueError(f"Expected a list from {self.endpoint}")
        return self._adapter.validate_python(payload)

    def _serialize(self, items: List[ItemT]) -> List[Dict[str, Any]]:
        return [item.to_wire() for item in items]

    def _empty(self) -> List[ItemT]:
        return []

    def get(self, token: Optional[CancelToken] = None) -> List[ItemT]:
        return list(super().get(token))

    def get_by_id(self, item_id: str, token: Optional[CancelToken] = None) -> Optional[ItemT]:
        for item in self.get(token):
            if item.id == item_id:
                return item
        return None

    def new_id(self) -> str:
        return f"{self.id_prefix}{ObjectId()}"

    def create(self, data: Union[BaseModel, Mapping[str, Any]],
               token: Optional[CancelToken] = None) -> Optional[ItemT]:
        """Append a new item with a fresh id; None if it could not be stored anywhere."""
        items = self.get(token)
        record = to_wire_fields(self.model, data)
        record["id"] = self.new_id()
        item = self.model.model_validate(record)
        outcome = self.save([*items, item], token)
        if not outcome.ok:
            return None
        logger.info("Created %s", item.id)
        return item

    def update(self, item_id: str, changes: Union[BaseModel, Mapping[str, Any]],
               token: Optional[CancelToken] = None) -> MutationResult:
        """
        Merge changes onto the item. When the changes replace the `images`
        list, images dropped from it are released, best-effort, before the
        collection is saved. Setting only `image_url` moves that image to the
        front of the gallery and releases nothing.
        """
        items = self.get(token)
        original = next((item for item in items if item.id == item_id), None)
        if original is None:
            return MutationResult(primary_ok=False, not_found=True)

        patch = to_wire_fields(self.model, changes)
        patch.pop("id", None)
        replaces_images = "images" in patch
        if replaces_images:
            images = patch["images"] or []
            patch["images"] = images
            patch["imageUrl"] = images[0] if images else None
        elif "imageUrl" in patch:
            main_image = patch["imageUrl"]
            rest = [path for path in original.images if path != main_image]
            patch["images"] = [main_image, *rest] if main_image else rest
            patch["imageUrl"] = patch["images"][0] if patch["images"] else None
        updated = self.model.model_validate({**original.to_wire(), **patch, "id": item_id})

        errors = []
        if replaces_images:
            for path in original.images:
                if path not in updated.images:
                    error = self.images.release_image(path)
                    if error is not None:
                        errors.append(error)

        outcome = self.save([updated if item.id == item_id else item for item in items], token)
        return MutationResult(primary_ok=outcome.ok, outcome=outcome, item=updated, side_effect_errors=errors)

    def delete(self, item_id: str, token: Optional[CancelToken] = None) -> MutationResult:
        """Remove the item and release every image it owned (best-effort)."""
        items = self.get(token)
        doomed = next((item for item in items if item.id == item_id), None)
        if doomed is None:
            return MutationResult(primary_ok=False, not_found=True)

        errors = []
        for path in doomed.owned_images():
            error = self.images.release_image(path)
            if error is not None:
                errors.append(error)

        outcome = self.save([item for item in items if item.id != item_id], token)
        return MutationResult(primary_ok=outcome.ok, outcome=outcome, item=doomed, side_effect_errors=errors)


class CompanyRepository(Repository):
    """The company profile singleton."""

    def _parse(self, payload: Any) -> CompanyData:
        if not isinstance(payload, dict):
            raise ValueError(f"Expected an object from {self.endpoint}")
        return CompanyData.model_validate(payload)

    def _serialize(self, company: CompanyData) -> Dict[str, Any]:
        return company.to_wire()

    def get(self, token: Optional[CancelToken] = None) -> Optional[CompanyData]:
        return super().get(token)

    def update_section(self, name: str, value: Any, token: Optional[CancelToken] = None) -> SaveOutcome:
        """
        Replace one section of the profile and save the whole document.

        A dict value is merged key by key onto the current section; anything
        else (a model, a list) replaces it.
        """
        current = self.get(token)
        if current is None:
            self.last_outcome = SaveOutcome.FAILED
            return self.last_outcome
        info = CompanyData.model_fields.get(name)
        alias = info.alias if info is not None and info.alias else to_camel(name)
        document = current.to_wire()
        if isinstance(value, Mapping) and isinstance(document.get(alias), dict):
            document[alias] = {**document[alias], **{to_camel(k): _wire_value(v) for k, v in value.items()}}
        else:
            document[alias] = _wire_value(value)
        return self.save(CompanyData.model_validate(document), token)


@dataclass(frozen=True)
class ImageFile:
    filename: str
    content: bytes
    content_type: str


@dataclass
class BatchUploadResult:
    paths: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _is_unowned(path: str) -> bool:
    return path.startswith(("http://", "https://", "data:"))


class ImageStore:
    def __init__(self, client: httpx.Client, clock: Callable[[], float] = time.time):
        self.client = client
        self.clock = clock

    @staticmethod
    def validate(image: ImageFile, max_bytes: int = GALLERY_MAX_BYTES,
                 allowed_types: Optional[Iterable[str]] = None) -> None:
        if allowed_types is not None:
            if image.content_type not in tuple(allowed_types):
                raise ImageValidationError("File type must be JPEG, PNG, WebP, or GIF")
        elif not image.content_type.startswith("image/"):
            raise ImageValidationError("Invalid file type. Please select an image file.")
        if len(image.content) > max_bytes:
            limit = max_bytes // (1024 * 1024)
            raise ImageValidationError(f"File size too large. Please select a file smaller than {limit}MB.")

    def stored_name(self, filename: str) -> str:
        sanitized = re.sub(r"[^a-zA-Z0-9.-]", "_", filename).lower()
        return f"{int(self.clock() * 1000)}_{sanitized}"

    def upload_image(self, image: ImageFile, folder: str = "frames", max_bytes: int = GALLERY_MAX_BYTES,
                     allowed_types: Optional[Iterable[str]] = None,
                     token: Optional[CancelToken] = None) -> str:
        """
        Store an image and return the path to reference it by.

        If the image endpoint fails the image is embedded as a data URI instead,
        which works but makes the collection JSON much larger.
        """
        self.validate(image, max_bytes, allowed_types)
        name = self.stored_name(image.filename)
        try:
            response = self.client.post(
                "/upload-image",
                files={"image": (name, image.content, image.content_type)},
                data={"folder": folder, "filename": name},
            )
            response.raise_for_status()
            path = response.json()["path"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            _check(token)
            logger.warning("Image upload failed, embedding %s as a data URI: %s", image.filename, e)
            encoded = base64.b64encode(image.content).decode("ascii")
            return f"data:{image.content_type};base64,{encoded}"
        _check(token)
        logger.info("Image saved via backend API: %s", path)
        return path

    def upload_single(self, image: ImageFile, folder: str = "frames",
                      token: Optional[CancelToken] = None) -> str:
        return self.upload_image(image, folder, SINGLE_IMAGE_MAX_BYTES, SINGLE_IMAGE_TYPES, token)

    def upload_images(self, images: Iterable[ImageFile], folder: str = "frames", existing: int = 0,
                      max_images: int = MAX_GALLERY_IMAGES,
                      token: Optional[CancelToken] = None) -> BatchUploadResult:
        """Upload a gallery batch; files that fail are reported, the rest are kept."""
        images = list(images)
        if existing + len(images) > max_images:
            raise ImageValidationError(f"Maximum {max_images} images allowed")
        result = BatchUploadResult()
        for image in images:
            try:
                result.paths.append(self.upload_image(image, folder, token=token))
            except ImageValidationError as e:
                result.errors.append(f"{image.filename}: {e}")
        return result

    def release_image(self, path: str) -> Optional[Exception]:
        """Ask the backend to delete an image file. Returns the error instead of raising it."""
        if _is_unowned(path):
            return None
        try:
            response = self.client.request("DELETE", "/delete-image", json={"imagePath": path})
        except httpx.HTTPError as e:
            logger.warning("Failed to delete image %s via backend API: %s", path, e)
            return e
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                detail = body.get("error") or body.get("detail") or response.text
            else:
                detail = response.text
            logger.warning("Backend deletion of %s failed: %s", path, detail)
            return DataServiceError(f"Could not delete {path}: {detail}")
        logger.info("Deleted image %s", path)
        return None

    def delete_image(self, path: str) -> bool:
        self.release_image(path)
        return True


class SubmissionsClient:
    """Admin access to inquiries or contacts. Reads fall back to the last list seen."""

    KINDS = {
        "inquiries": (Inquiry, InquiryCreate, InquiryUpdate, InquiryFilters, INQUIRY_RULES),
        "contacts": (Contact, ContactCreate, ContactUpdate, ContactFilters, CONTACT_RULES),
    }

    def __init__(self, client: httpx.Client, kind: str):
        if kind not in self.KINDS:
            raise ValueError(f"Unknown submission kind: {kind}")
        self.client = client
        self.kind = kind
        self.model, self.create_model, self.update_model, self.filters_model, self.rules = self.KINDS[kind]
        self._adapter = TypeAdapter(List[self.model])
        self._last: List[Any] = []

    @property
    def endpoint(self) -> str:
        return f"/{self.kind}"

    def list(self, filters: Optional[BaseModel] = None, token: Optional[CancelToken] = None) -> List[Any]:
        params = {}
        if filters is not None:
            params = {k: v for k, v in filters.to_wire().items() if not isinstance(v, dict)}
        try:
            response = self.client.get(self.endpoint, params=params)
            response.raise_for_status()
            records = self._adapter.validate_python(response.json())
        except (httpx.HTTPError, ValueError) as e:
            _check(token)
            logger.error("Failed to load %s from API, using last known list: %s", self.kind, e)
            return apply_filters(self._last, filters, self.rules)
        _check(token)
        if filters is None:
            self._last = records
        # date ranges are not a server-side filter
        return apply_filters(records, filters, self.rules) if filters is not None else records

    def create(self, data: Union[BaseModel, Mapping[str, Any]]) -> Any:
        payload = self.create_model.model_validate(data).to_wire()
        try:
            response = self.client.post(self.endpoint, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DataServiceError(f"Could not submit to {self.kind}: {e}") from e
        body = response.json()
        return self.model.model_validate(body.get("inquiry") or body.get("contact"))

    def update(self, record_id: str, changes: Union[BaseModel, Mapping[str, Any]]) -> Optional[Any]:
        payload = self.update_model.model_validate(changes).model_dump(mode="json", by_alias=True,
                                                                       exclude_unset=True)
        try:
            response = self.client.put(f"{self.endpoint}/{record_id}", json=payload)
        except httpx.HTTPError as e:
            raise DataServiceError(f"Could not update {record_id}: {e}") from e
        if response.status_code == 404:
            return None
        if response.is_error:
            raise DataServiceError(f"Could not update {record_id}: HTTP {response.status_code}")
        body = response.json()
        return self.model.model_validate(body.get("inquiry") or body.get("contact"))

    def delete(self, record_id: str) -> bool:
        try:
            response = self.client.delete(f"{self.endpoint}/{record_id}")
        except httpx.HTTPError as e:
            raise DataServiceError(f"Could not delete {record_id}: {e}") from e
        if response.status_code == 404:
            return False
        if response.is_error:
            raise DataServiceError(f"Could not delete {record_id}: HTTP {response.status_code}")
        self._last = [r for r in self._last if r.id != record_id]
        return True

    def stats(self) -> SubmissionStats:
        try:
            response = self.client.get(f"{self.endpoint}/stats")
            response.raise_for_status()
            return SubmissionStats.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to load %s stats from API, calculating locally: %s", self.kind, e)
            return submission_stats(self._last)


class DataService:
    """Entry point bundling the repositories, image store and fallback storage."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None,
                 storage: Optional[FallbackStorage] = None, timeout: Optional[float] = None):
        self._owns_client = client is None
        self.client = client or httpx.Client(base_url=base_url or API_BASE_URL,
                                             timeout=timeout if timeout is not None else API_TIMEOUT)
        self.storage = storage or FallbackStorage()
        self.images = ImageStore(self.client)
        self.frames: CollectionRepository[Frame] = CollectionRepository(
            self.client, self.storage, self.images, Frame, "/frames", "frames_data", "frames.json", "frame-")
        self.sunglasses: CollectionRepository[Sunglasses] = CollectionRepository(
            self.client, self.storage, self.images, Sunglasses, "/sunglasses", "sunglasses_data",
            "sunglasses.json", "sg-")
        self.company = CompanyRepository(self.client, self.storage, "/company", "company_data", "company.json")
        self.inquiries = SubmissionsClient(self.client, "inquiries")
        self.contacts = SubmissionsClient(self.client, "contacts")

    def clear_cache(self) -> None:
        self.frames.invalidate()
        self.sunglasses.invalidate()
        self.company.invalidate()

    def refresh_all(self, token: Optional[CancelToken] = None) -> None:
        self.clear_cache()
        self.frames.get(token)
        self.sunglasses.get(token)
        self.company.get(token)

    def pending_downloads(self) -> List[PendingDownload]:
        return self.storage.pending_downloads()

    def download_json(self, filename: str) -> Optional[PendingDownload]:
        pending = self.storage.get_download(filename)
        if pending is None:
            logger.info("No updated %s available for download", filename)
        return pending

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
