"""
JSON file storage for the Optical Store backend.

Every collection lives in one JSON file under DATA_DIR and is always read and
written whole. There is no locking: concurrent writers race and the last one
wins.
"""
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent / "data"))
IMAGES_DIR = Path(os.getenv("IMAGES_DIR", Path(__file__).parent / "images"))

COLLECTION_FILES = {
    "frames": "frames.json",
    "sunglasses": "sunglasses.json",
    "company": "company.json",
    "inquiries": "inquiries.json",
    "contacts": "contacts.json",
}

IMAGE_FOLDERS = ("frames", "sunglasses", "company", "team")

ID_PREFIXES = {
    "frames": "frame-",
    "sunglasses": "sg-",
    "inquiries": "INQ-",
    "contacts": "contact_",
}


def collection_path(collection: str) -> Path:
    try:
        return DATA_DIR / COLLECTION_FILES[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def ensure_directories() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    for folder in IMAGE_FOLDERS:
        (IMAGES_DIR / folder).mkdir(parents=True, exist_ok=True)


def new_id(collection: str) -> str:
    return f"{ID_PREFIXES.get(collection, '')}{ObjectId()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def read_collection(collection: str) -> Optional[Any]:
    """Parsed file content, or None when the file is missing or unreadable."""
    path = collection_path(collection)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning("%s does not exist", path)
    except (OSError, ValueError) as e:
        logger.error("Error reading %s: %s", path, e)
    return None


def write_collection(collection: str, data: Any) -> bool:
    path = collection_path(collection)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except OSError as e:
        logger.error("Error writing %s: %s", path, e)
        return False
    logger.info("Updated %s", path.name)
    return True


def _as_document(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(data)


def _lookup(doc: Dict[str, Any], dotted: str) -> Any:
    value: Any = doc
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def get_documents(collection: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Documents whose (dotted) keys equal every value in filter_dict."""
    docs = read_collection(collection) or []
    if filter_dict:
        docs = [d for d in docs if all(_lookup(d, k) == v for k, v in filter_dict.items())]
    if limit is not None:
        docs = docs[:limit]
    return docs


def create_document(collection: str, data: Union[BaseModel, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Prepend a document (newest first) and return it, or None if the write failed."""
    doc = _as_document(data)
    doc.setdefault("id", new_id(collection))
    now = utcnow().isoformat()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    docs = read_collection(collection) or []
    docs.insert(0, doc)
    if not write_collection(collection, docs):
        return None
    return doc


def update_document(collection: str, doc_id: str,
                    changes: Union[BaseModel, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Merge changes onto the document with doc_id. Raises KeyError if absent."""
    docs = read_collection(collection) or []
    for index, doc in enumerate(docs):
        if doc.get("id") == doc_id:
            break
    else:
        raise KeyError(doc_id)
    merged = {**docs[index], **_as_document(changes), "id": doc_id, "updatedAt": utcnow().isoformat()}
    docs[index] = merged
    if not write_collection(collection, docs):
        return None
    return merged


def delete_document(collection: str, doc_id: str) -> bool:
    """Remove the document with doc_id. Raises KeyError if absent."""
    docs = read_collection(collection) or []
    remaining = [d for d in docs if d.get("id") != doc_id]
    if len(remaining) == len(docs):
        raise KeyError(doc_id)
    return write_collection(collection, remaining)
