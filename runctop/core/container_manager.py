"""runctop - container cache and background refresher

The cache maps ``str(pid)`` to the most recently assembled ``Container``
and remembers when the last full refresh happened. Two freshness
thresholds coexist on purpose:

* ``list_ttl`` (short) gates bulk listing
* ``get_ttl`` (long) gates single-container lookups

and two update strategies:

* ``refresh()`` replaces the whole map (foreground path)
* ``merge()`` overwrites entries by key and never removes any (background
  refresher), so an exited container can linger until the next foreground
  refresh.

Locking rule: external tools and psutil are never called while a lock is
held. Readers hold the shared lock only for the snapshot copy, writers hold
the exclusive lock only for the map swap.
"""

from __future__ import annotations

import sys
import time
from contextlib import contextmanager
from threading import Condition, Event, Lock, Thread
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from .config import DEFAULT_GET_TTL, DEFAULT_LIST_TTL, DEFAULT_REFRESH_INTERVAL
from .discovery import RuncDiscovery
from .errors import AssemblyError, ContainerNotFoundError, DiscoveryError, InvalidKeyError, RuncTopError
from .types import Container


class ReadWriteLock:
    """Many readers or one writer. Waiting writers hold off new readers."""

    def __init__(self):
        self._cond = Condition(Lock())
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
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ContainerCache:
    """TTL gated container store shared by the UI and the refresher."""

    def __init__(self, discovery: RuncDiscovery,
                 list_ttl: float = DEFAULT_LIST_TTL,
                 get_ttl: float = DEFAULT_GET_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.discovery = discovery
        self.list_ttl = list_ttl
        self.get_ttl = get_ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._containers: Dict[str, Container] = {}
        self._last_refreshed: Optional[float] = None

    # ---------------- Freshness ---------------- #
    @property
    def last_refreshed(self) -> Optional[float]:
        with self._lock.read():
            return self._last_refreshed

    def _age(self) -> Optional[float]:
        # caller holds the read lock
        if self._last_refreshed is None:
            return None
        return self._clock() - self._last_refreshed

    # ---------------- Read API ---------------- #
    def list_containers(self) -> List[Container]:
        """All cached containers, refreshing first when older than ``list_ttl``."""
        with self._lock.read():
            age = self._age()
            if age is not None and age < self.list_ttl:
                return list(self._containers.values())
        return self.refresh()

    def get_container(self, key: str) -> Container:
        """One container by PID string, served from cache within ``get_ttl``.

        A miss or stale entry runs discovery without bulk population and
        populates only the requested container. The result is written back
        under its key but does not count as a full refresh.
        """
        with self._lock.read():
            container = self._containers.get(key)
            age = self._age()
            if container is not None and age is not None and age < self.get_ttl:
                return container

        try:
            pid = int(key)
        except (TypeError, ValueError) as e:
            raise InvalidKeyError(f"invalid PID format: {key!r}") from e

        for candidate in self.discovery.discover(populate=False):
            if candidate.pid != pid:
                continue
            try:
                self.discovery.assembler.populate(candidate)
            except AssemblyError as e:
                raise DiscoveryError(f"failed to populate container {pid}: {e}") from e
            with self._lock.write():
                self._containers[candidate.cache_key] = candidate
            return candidate

        raise ContainerNotFoundError(str(key))

    def peek(self, key: str) -> Optional[Container]:
        """Cached entry or None; never triggers discovery."""
        with self._lock.read():
            return self._containers.get(key)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._containers)

    # ---------------- Write API ---------------- #
    def refresh(self) -> List[Container]:
        """Full discovery + population, then replace the map wholesale.

        On error the previous contents and timestamp are kept.
        """
        containers = self.discovery.discover(populate=True)
        fresh = {c.cache_key: c for c in containers}
        with self._lock.write():
            self._containers = fresh
            self._last_refreshed = self._clock()
        return containers

    def force_refresh(self) -> List[Container]:
        """Manual refresh entry point; ignores freshness."""
        return self.refresh()

    def merge(self, containers: Iterable[Container]) -> None:
        """Overwrite entries by key without dropping keys that are absent."""
        updates = {c.cache_key: c for c in containers}
        with self._lock.write():
            self._containers.update(updates)
            self._last_refreshed = self._clock()


class PeriodicRefresher:
    """Background thread that re-discovers containers every ``interval`` seconds.

    Ticks run one after another on a single thread, so at most one refresh
    is in flight. A failed tick is reported and skipped; the next tick
    simply tries again.
    """

    def __init__(self, cache: ContainerCache, interval: float = DEFAULT_REFRESH_INTERVAL,
                 verbose: bool = False):
        self.cache = cache
        self.interval = interval
        self.verbose = verbose
        self._shutdown = Event()
        self._thread: Optional[Thread] = None
        self._thread_started = False
        self._start_lock = Lock()
        self.ticks = 0
        self.failures = 0

    # ---------------- Thread management ---------------- #
    def start(self) -> None:
        with self._start_lock:
            if self._thread_started:
                return
            self._thread = Thread(target=self._run, name="PeriodicRefresher", daemon=True)
            self._thread.start()
            self._thread_started = True

    def stop(self, timeout: float = 1.0) -> None:
        self._shutdown.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "PeriodicRefresher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ---------------- Refresh ---------------- #
    def _run(self) -> None:
        while not self._shutdown.wait(self.interval):
            try:
                self.tick()
            except Exception as exc:  # retried next interval
                self.failures += 1
                print(f"[Refresher] tick failed: {exc!r}", file=sys.stderr)

    def tick(self) -> bool:
        """Run one discovery pass and merge it into the cache."""
        self.ticks += 1
        try:
            containers = self.cache.discovery.discover(populate=True)
        except RuncTopError as e:
            self.failures += 1
            print(f"[Refresher] tick skipped: {e}", file=sys.stderr)
            return False
        self.cache.merge(containers)
        if self.verbose:
            print(f"[Refresher] merged {len(containers)} containers", file=sys.stderr)
        return True
