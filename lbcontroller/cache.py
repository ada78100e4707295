"""Thread-safe in-memory stores for the cluster resources the controller reads."""

import threading
from typing import Any, Dict, List, Optional, Tuple

from .logging_config import get_logger

logger = get_logger(__name__)


def object_key(obj: Any) -> str:
    """Return the ``namespace/name`` key of an object, or ``name`` if cluster scoped."""
    namespace = obj.metadata.namespace
    if namespace:
        return f"{namespace}/{obj.metadata.name}"
    return obj.metadata.name


def labels_match(selector: Dict[str, str], labels: Optional[Dict[str, str]]) -> bool:
    """Whether every selector label is present with the same value.

    An empty selector selects nothing.
    """
    if not selector:
        return False
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())


class Store:
    """A keyed store for one resource kind.

    Writers are the informers; the reconcile path only reads. Reads return
    the stored objects themselves, callers must copy before mutating.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._items: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def add(self, obj: Any) -> Optional[Any]:
        """Insert or replace an object, returning the previous version."""
        key = object_key(obj)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = obj
        return old

    update = add

    def delete(self, obj: Any) -> Optional[Any]:
        """Remove an object, returning what was stored under its key."""
        with self._lock:
            return self._items.pop(object_key(obj), None)

    def replace(self, objs: List[Any]) -> None:
        """Replace the whole content, as after a relist."""
        items = {object_key(obj): obj for obj in objs}
        with self._lock:
            self._items = items
        logger.debug("Store replaced", kind=self.kind, count=len(items))

    def get(self, namespace: str, name: str) -> Optional[Any]:
        """Get an object by namespace and name; namespace is empty for cluster scoped kinds."""
        key = f"{namespace}/{name}" if namespace else name
        return self.get_by_key(key)

    def get_by_key(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._items.get(key)

    def list(self) -> List[Any]:
        """List all objects ordered by key."""
        with self._lock:
            return [self._items[k] for k in sorted(self._items)]

    def list_selected(self, namespace: str, selector: Dict[str, str]) -> List[Any]:
        """List objects in a namespace whose labels match the selector."""
        return [
            obj for obj in self.list()
            if obj.metadata.namespace == namespace and labels_match(selector, obj.metadata.labels)
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ResourceCache:
    """The per-kind stores the controller resolves configuration from."""

    KINDS: Tuple[str, ...] = ("ingresses", "services", "endpoints", "secrets", "config_maps", "pods", "nodes")

    def __init__(self):
        self.ingresses = Store("ingresses")
        self.services = Store("services")
        self.endpoints = Store("endpoints")
        self.secrets = Store("secrets")
        self.config_maps = Store("config_maps")
        self.pods = Store("pods")
        self.nodes = Store("nodes")

    def store(self, kind: str) -> Store:
        if kind not in self.KINDS:
            raise KeyError(f"unknown resource kind {kind!r}")
        return getattr(self, kind)
