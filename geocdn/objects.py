"""
Object store holding each region's content namespace (``<region>/<path>``).
"""
import hashlib
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List

from geocdn.config import settings
from geocdn.errors import StoreError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class StoredObject:
    """Object body plus the HTTP and custom metadata kept alongside it"""
    key: str
    content: bytes
    content_type: str = DEFAULT_CONTENT_TYPE
    custom_metadata: Dict[str, str] = field(default_factory=dict)
    etag: str = ""

    def __post_init__(self):
        if not self.etag:
            self.etag = calculate_etag(self.content)


def calculate_etag(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest()}"'


class ObjectStore(ABC):

    @abstractmethod
    def get(self, key: str) -> Optional[StoredObject]:
        ...

    @abstractmethod
    def put(self, key: str, content: bytes, content_type: str = DEFAULT_CONTENT_TYPE,
            custom_metadata: Optional[Dict[str, str]] = None) -> StoredObject:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        ...


class MemoryObjectStore(ObjectStore):
    """Dict-backed store; safe for concurrent writes to disjoint keys"""

    def __init__(self):
        self._objects: Dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[StoredObject]:
        with self._lock:
            return self._objects.get(key)

    def put(self, key: str, content: bytes, content_type: str = DEFAULT_CONTENT_TYPE,
            custom_metadata: Optional[Dict[str, str]] = None) -> StoredObject:
        obj = StoredObject(
            key=key,
            content=bytes(content),
            content_type=content_type,
            custom_metadata=dict(custom_metadata or {}),
        )
        with self._lock:
            self._objects[key] = obj
        return obj

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def list(self, prefix: str = "") -> List[str]:
        with self._lock:
            return sorted(key for key in self._objects if key.startswith(prefix))


class FileObjectStore(ObjectStore):
    """Local filesystem store

    Object bodies live under ``<root>/data/<key>`` and their metadata as JSON
    under ``<root>/meta/<key>.json``.
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.data_root = self.root / "data"
        self.meta_root = self.root / "meta"
        try:
            self.data_root.mkdir(parents=True, exist_ok=True)
            self.meta_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to create object store at {self.root}: {e}") from e
        logger.info(f"Initialized file object store at {self.root}")

    def _data_path(self, key: str) -> Path:
        return self._resolve(self.data_root, key)

    def _meta_path(self, key: str) -> Path:
        return self._resolve(self.meta_root, key + ".json")

    @staticmethod
    def _resolve(base: Path, key: str) -> Path:
        path = (base / key).resolve()
        if base.resolve() not in path.parents:
            raise StoreError(f"Invalid object key: {key}")
        return path

    def get(self, key: str) -> Optional[StoredObject]:
        data_path = self._data_path(key)
        if not data_path.is_file():
            return None
        try:
            content = data_path.read_bytes()
            meta_path = self._meta_path(key)
            meta = json.loads(meta_path.read_text()) if meta_path.is_file() else {}
        except (OSError, ValueError) as e:
            raise StoreError(f"get {key} failed: {e}") from e
        return StoredObject(
            key=key,
            content=content,
            content_type=meta.get("content_type", DEFAULT_CONTENT_TYPE),
            custom_metadata=meta.get("custom_metadata", {}),
            etag=meta.get("etag", ""),
        )

    def put(self, key: str, content: bytes, content_type: str = DEFAULT_CONTENT_TYPE,
            custom_metadata: Optional[Dict[str, str]] = None) -> StoredObject:
        obj = StoredObject(
            key=key,
            content=bytes(content),
            content_type=content_type,
            custom_metadata=dict(custom_metadata or {}),
        )
        data_path = self._data_path(key)
        meta_path = self._meta_path(key)
        meta = {
            "content_type": obj.content_type,
            "custom_metadata": obj.custom_metadata,
            "etag": obj.etag,
        }
        try:
            data_path.parent.mkdir(parents=True, exist_ok=True)
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = data_path.with_name(data_path.name + ".tmp")
            tmp_path.write_bytes(obj.content)
            os.replace(tmp_path, data_path)
            meta_path.write_text(json.dumps(meta))
        except OSError as e:
            raise StoreError(f"put {key} failed: {e}") from e
        return obj

    def delete(self, key: str) -> None:
        try:
            self._data_path(key).unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"delete {key} failed: {e}") from e

    def list(self, prefix: str = "") -> List[str]:
        keys = []
        for path in self.data_root.rglob("*"):
            if path.is_file() and not path.name.endswith(".tmp"):
                key = path.relative_to(self.data_root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)


def create_object_store() -> ObjectStore:
    """Build the store selected by settings.object_backend"""
    if settings.object_backend == "memory":
        return MemoryObjectStore()
    if settings.object_backend == "file":
        return FileObjectStore(settings.object_store_path)
    raise ValueError(f"Unknown object backend: {settings.object_backend}")
