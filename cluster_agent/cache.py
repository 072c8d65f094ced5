"""Process-wide caches of observed downstream state, keyed by cluster name.

Two independent stores exist: the agent images actually running in each
downstream cluster, and the control-plane taints last observed for it.
Entries have no TTL. They are cleared when a redeploy decision proves them
stale, so the next pass re-reads ground truth.
"""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Generic, NamedTuple, Protocol, TypeVar

from cluster_agent.logging_config import get_logger
from cluster_agent.models.node import NodeTaint

logger = get_logger(__name__)

V = TypeVar("V")


class AgentImages(NamedTuple):
    """Agent images observed in a downstream cluster ("" when not deployed)."""

    node_agent: str
    cluster_agent: str


class KeyedCache(Protocol[V]):
    """Minimal cache interface the reconciler depends on."""

    def get(self, key: str) -> V | None: ...

    def set(self, key: str, value: V) -> None: ...

    def clear(self, key: str) -> None: ...


class ReadWriteLock:
    """Lock allowing many concurrent readers or a single writer.

    Writers are preferred: once a writer is waiting, new readers block, so
    a steady stream of reads cannot starve invalidation.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class LockedCache(Generic[V]):
    """In-memory keyed store guarded by one reader/writer lock over the map.

    ``get`` returns None for a missing key, which is distinct from a cached
    empty value.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = ReadWriteLock()
        self._entries: dict[str, V] = {}

    def get(self, key: str) -> V | None:
        with self._lock.read():
            return self._entries.get(key)

    def contains(self, key: str) -> bool:
        with self._lock.read():
            return key in self._entries

    def set(self, key: str, value: V) -> None:
        with self._lock.write():
            self._entries[key] = value

    def clear(self, key: str) -> None:
        logger.debug(f"Clearing {self.name} cache entry for [{key}]")
        with self._lock.write():
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)


class ImageCache(LockedCache[AgentImages]):
    """Observed node-agent and cluster-agent images per cluster."""

    def __init__(self) -> None:
        super().__init__("agent images")


class TaintCache(LockedCache[tuple[NodeTaint, ...]]):
    """Observed control-plane taints per cluster."""

    def __init__(self) -> None:
        super().__init__("control-plane taints")

    def set(self, key: str, value: Iterable[NodeTaint]) -> None:
        # Stored as a tuple so callers cannot mutate a shared entry
        super().set(key, tuple(value))


agent_images = ImageCache()
control_plane_taints = TaintCache()
