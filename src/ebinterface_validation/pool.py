"""Per-call execution contexts for engines that must not be shared.

lxml ``XMLSchema`` and ``XSLT`` objects keep their error log on the instance,
so two threads must never drive the same object at once. A
:class:`ContextPool` builds such objects from an immutable definition and lends
exactly one to each caller.

Example::

    pool = ContextPool(lambda: etree.XSLT(stylesheet_doc), name="report")
    with pool.checkout() as transform:
        result = transform(document)
"""

from __future__ import annotations

import threading
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Dict, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class ContextPool(Generic[T]):
    """Lazily growing pool of engine instances.

    Checkout never blocks: an empty pool builds a fresh instance. At most
    ``max_idle`` returned instances are kept for reuse.
    """

    def __init__(
        self,
        factory: Callable[[], T],
        max_idle: int = 8,
        name: str = "",
        initial: Optional[T] = None,
    ) -> None:
        self.name = name
        self.max_idle = max_idle
        self._factory = factory
        self._idle: Deque[T] = deque()
        self._lock = threading.Lock()
        self._create_lock = threading.Lock()
        self.created = 0
        self.in_use = 0
        if initial is not None:
            self._idle.append(initial)
            self.created = 1

    def acquire(self) -> T:
        with self._lock:
            self.in_use += 1
            if self._idle:
                return self._idle.pop()
        try:
            # factories read a shared definition document; build one at a time
            with self._create_lock:
                instance = self._factory()
        except BaseException:
            with self._lock:
                self.in_use -= 1
            raise
        with self._lock:
            self.created += 1
        return instance

    def release(self, instance: T) -> None:
        with self._lock:
            self.in_use -= 1
            if len(self._idle) < self.max_idle:
                self._idle.append(instance)

    @contextmanager
    def checkout(self) -> Iterator[T]:
        instance = self.acquire()
        try:
            yield instance
        finally:
            self.release(instance)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "created": self.created,
                "idle": len(self._idle),
                "in_use": self.in_use,
            }
