from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._errors import AggregateDisposalError, ScopeDisposedError, describe


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Hashable


class Disposable(ABC):
    """Capability of instances that release resources when their scope ends.

    Subclass it, or declare a third-party class with ``Disposable.register(cls)``.
    """

    @abstractmethod
    def dispose(self) -> None: ...


class AsyncDisposable(ABC):
    @abstractmethod
    async def dispose_async(self) -> None: ...


def is_disposable(value: object) -> bool:
    return isinstance(value, (Disposable, AsyncDisposable))


class Initializable(ABC):
    """Capability of eager singletons that need a start-up step after construction.

    ``Container.initialize`` calls ``initialize`` once all eager singletons exist.
    """

    @abstractmethod
    def initialize(self) -> None: ...


class AsyncInitializable(ABC):
    @abstractmethod
    async def initialize_async(self) -> None: ...


class ScopeState(Enum):
    ACTIVE = "active"
    DISPOSING = "disposing"
    DISPOSED = "disposed"


@dataclass(eq=False)
class ScopeContext:
    name: str
    parent: ScopeContext | None = None
    state: ScopeState = ScopeState.ACTIVE
    # token -> ServiceInstance, or an in-flight marker (future) while being built
    cache: dict[Any, Any] = field(default_factory=dict, repr=False)
    disposables: list[ServiceInstance] = field(default_factory=list, repr=False)
    children: list[ScopeContext] = field(default_factory=list, repr=False)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def active(self) -> bool:
        return self.state is ScopeState.ACTIVE


@dataclass(eq=False)
class ServiceInstance:
    token: Hashable
    value: object
    scope: ScopeContext
    order: int
    disposable: bool


class LifecycleStore:
    """Per-scope instance caches and disposal bookkeeping.

    Every check-then-act sequence on the caches runs under ``lock``.
    """

    def __init__(self, root_name: str = "root") -> None:
        self.lock = threading.RLock()
        self.root = ScopeContext(name=root_name)
        self._order = itertools.count()
        self._scope_ids = itertools.count(1)

    def create_scope(self, name: str | None = None) -> ScopeContext:
        with self.lock:
            self.ensure_active(self.root)
            scope = ScopeContext(name=name or f"scope-{next(self._scope_ids)}", parent=self.root)
            self.root.children.append(scope)
        logger.debug("Created scope %s", scope.name)
        return scope

    def ensure_active(self, scope: ScopeContext) -> None:
        if not scope.active:
            raise ScopeDisposedError(scope.name)

    def get_or_null(self, token: Hashable, scope: ScopeContext) -> ServiceInstance | None:
        with self.lock:
            entry = scope.cache.get(token)
        return entry if isinstance(entry, ServiceInstance) else None

    def reserve(self, token: Hashable, scope: ScopeContext, marker: Any) -> Any:
        """Lookup-or-claim the cache slot for ``token``.

        Returns the cached ``ServiceInstance``, or the marker a concurrent
        caller installed, or ``None`` after installing ``marker`` (the caller
        now owns construction and must ``put`` or ``release``).
        """
        with self.lock:
            self.ensure_active(scope)
            entry = scope.cache.get(token)
            if entry is not None:
                return entry
            scope.cache[token] = marker
            return None

    def release(self, token: Hashable, scope: ScopeContext, marker: Any) -> None:
        with self.lock:
            if scope.cache.get(token) is marker:
                del scope.cache[token]

    def put(self, token: Hashable, value: object, scope: ScopeContext, *, cache: bool) -> ServiceInstance | None:
        """Record a freshly built value; ``None`` means the scope went away meanwhile."""
        with self.lock:
            if not scope.active:
                return None
            instance = ServiceInstance(
                token=token,
                value=value,
                scope=scope,
                order=next(self._order),
                disposable=is_disposable(value),
            )
            if cache:
                scope.cache[token] = instance
            if instance.disposable:
                self.record_for_disposal(instance, scope)
        logger.debug("Constructed %s in scope %s (#%d)", describe(token), scope.name, instance.order)
        return instance

    def adopt(self, token: Hashable, value: object, scope: ScopeContext) -> ServiceInstance:
        """Cache a value built outside the container, replacing whatever ``scope`` holds for ``token``."""
        with self.lock:
            self.ensure_active(scope)
            return self.put(token, value, scope, cache=True)  # type: ignore[return-value]

    def record_for_disposal(self, instance: ServiceInstance, scope: ScopeContext) -> None:
        with self.lock:
            scope.disposables.append(instance)

    def dispose_scope(self, scope: ScopeContext) -> None:
        """Dispose child scopes, then recorded instances, last constructed first."""
        records, children = self._begin_disposal(scope)
        if records is None:
            return

        errors: list[BaseException] = []
        for child in reversed(children):
            try:
                self.dispose_scope(child)
            except AggregateDisposalError as exc:
                errors.extend(exc.errors)

        for record in reversed(records):
            try:
                dispose_value(record.value)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Disposing %s in scope %s failed: %r", describe(record.token), scope.name, exc)
                errors.append(exc)

        self._finish_disposal(scope, errors)

    async def dispose_scope_async(self, scope: ScopeContext) -> None:
        records, children = self._begin_disposal(scope)
        if records is None:
            return

        errors: list[BaseException] = []
        for child in reversed(children):
            try:
                await self.dispose_scope_async(child)
            except AggregateDisposalError as exc:
                errors.extend(exc.errors)

        for record in reversed(records):
            try:
                await dispose_value_async(record.value)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Disposing %s in scope %s failed: %r", describe(record.token), scope.name, exc)
                errors.append(exc)

        self._finish_disposal(scope, errors)

    def _begin_disposal(self, scope: ScopeContext) -> tuple[list[ServiceInstance] | None, list[ScopeContext]]:
        with self.lock:
            if scope.state is not ScopeState.ACTIVE:
                return None, []
            scope.state = ScopeState.DISPOSING
            children = list(scope.children)
            records = sorted(scope.disposables, key=lambda r: r.order)
            scope.disposables.clear()
            # drops in-flight markers too; their builders will find the scope inactive
            scope.cache.clear()
        logger.debug("Disposing scope %s (%d instance(s), %d child scope(s))", scope.name, len(records), len(children))
        return records, children

    def _finish_disposal(self, scope: ScopeContext, errors: list[BaseException]) -> None:
        with self.lock:
            scope.state = ScopeState.DISPOSED
            if scope.parent is not None and scope in scope.parent.children:
                scope.parent.children.remove(scope)
        if errors:
            raise AggregateDisposalError(scope.name, errors)


def dispose_value(value: object) -> None:
    if isinstance(value, Disposable):
        value.dispose()
    elif isinstance(value, AsyncDisposable):
        msg = f"{type(value).__name__} only supports asynchronous disposal; use dispose_async()"
        raise TypeError(msg)


async def dispose_value_async(value: object) -> None:
    if isinstance(value, AsyncDisposable):
        await value.dispose_async()
    elif isinstance(value, Disposable):
        value.dispose()


def initialize_value(value: object) -> None:
    if isinstance(value, Initializable):
        value.initialize()
    elif isinstance(value, AsyncInitializable):
        msg = f"{type(value).__name__} only supports asynchronous initialization; use initialize_async()"
        raise TypeError(msg)


async def initialize_value_async(value: object) -> None:
    if isinstance(value, AsyncInitializable):
        await value.initialize_async()
    elif isinstance(value, Initializable):
        value.initialize()
