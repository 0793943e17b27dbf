from __future__ import annotations

import asyncio
import concurrent.futures
import contextvars
import logging
from typing import TYPE_CHECKING, Any

from ._errors import (
    AsyncFactoryError,
    CircularDependencyError,
    ContainerError,
    FactoryError,
    ScopeDisposedError,
    UnregisteredServiceError,
)
from ._lifecycle import ServiceInstance, dispose_value, dispose_value_async
from ._registry import Lifetime


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable

    from ._lifecycle import LifecycleStore, ScopeContext
    from ._registry import Registry, ServiceDefinition

    Chain = tuple[Hashable, ...]


# Tokens under construction on the current call stack. Set while a factory
# runs so that a factory resolving from the container continues the chain.
_active_chain: contextvars.ContextVar[tuple[Any, ...]] = contextvars.ContextVar("scopebind_active_chain", default=())


class Resolver:
    """Builds object graphs from declared dependencies.

    - singletons are owned by the root scope, and so are their dependencies
    - scoped and transient instances belong to the scope they are resolved from
    - at most one construction per (token, scope), also across threads and tasks
    """

    def __init__(self, registry: Registry, store: LifecycleStore) -> None:
        self._registry = registry
        self._store = store
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Graph checks
    # ------------------------------------------------------------------
    def check_graph(self, token: Hashable, scope: ScopeContext) -> None:
        """Walk declared dependencies of ``token`` before any factory runs.

        Gray nodes are the tokens on ``path``; black nodes are finished or
        already cached for their owning scope.
        """
        path = list(_active_chain.get())
        black: set[Any] = set()

        def visit(tok: Hashable, requester: ScopeContext) -> None:
            definition = self._registry.find(tok)
            if definition is None:
                raise UnregisteredServiceError(tok, path)
            if tok in path:
                raise CircularDependencyError([*path, tok])
            if tok in black:
                return
            owner = self._owner(definition, requester)
            if self._store.get_or_null(tok, owner) is None:
                path.append(tok)
                for dep in definition.dependencies:
                    visit(dep, owner)
                path.pop()
            black.add(tok)

        visit(token, scope)

    def construction_order(self, tokens: Iterable[Hashable] | None = None) -> list[Hashable]:
        """Topological order of the registry (dependencies first)."""
        roots = [d.token for d in self._registry.definitions()] if tokens is None else list(tokens)
        order: list[Hashable] = []
        done: set[Any] = set()
        path: list[Hashable] = []

        def visit(tok: Hashable) -> None:
            definition = self._registry.find(tok)
            if definition is None:
                raise UnregisteredServiceError(tok, path)
            if tok in path:
                raise CircularDependencyError([*path, tok])
            if tok in done:
                return
            path.append(tok)
            for dep in definition.dependencies:
                visit(dep)
            path.pop()
            done.add(tok)
            order.append(tok)

        for root in roots:
            visit(root)
        return order

    # ------------------------------------------------------------------
    # Synchronous resolution
    # ------------------------------------------------------------------
    def resolve(self, token: Hashable, scope: ScopeContext) -> Any:
        self._store.ensure_active(scope)
        self.check_graph(token, scope)
        return self._resolve(token, scope, _active_chain.get())

    def _resolve(self, token: Hashable, scope: ScopeContext, chain: Chain) -> Any:
        definition = self._registry.get(token)
        owner = self._owner(definition, scope)

        if token in chain:
            raise CircularDependencyError([*chain, token])

        if definition.lifetime is Lifetime.TRANSIENT:
            self._store.ensure_active(owner)
            return self._create(definition, owner, (*chain, token))

        marker: concurrent.futures.Future[Any] = concurrent.futures.Future()
        existing = self._store.reserve(token, owner, marker)
        if isinstance(existing, ServiceInstance):
            return existing.value
        if isinstance(existing, concurrent.futures.Future):
            # another thread is building it
            return existing.result()
        if existing is not None:
            raise AsyncFactoryError(token, "it is being constructed asynchronously")

        try:
            value = self._create(definition, owner, (*chain, token))
        except BaseException as exc:
            self._store.release(token, owner, marker)
            marker.set_exception(exc)
            raise
        marker.set_result(value)
        return value

    def _create(self, definition: ServiceDefinition, owner: ScopeContext, chain: Chain) -> Any:
        if definition.is_async:
            raise AsyncFactoryError(definition.token, "its factory is asynchronous")

        args = [self._resolve(dep, owner, chain) for dep in definition.dependencies]

        reset = _active_chain.set(chain)
        try:
            value = definition.factory(*args)  # type: ignore[misc]
        except ContainerError:
            raise
        except Exception as exc:
            raise FactoryError(definition.token, exc) from exc
        finally:
            _active_chain.reset(reset)

        if self._store.put(definition.token, value, owner, cache=_caches(definition)) is None:
            try:
                dispose_value(value)
            except Exception as exc:
                raise ScopeDisposedError(owner.name) from exc
            raise ScopeDisposedError(owner.name)
        return value

    # ------------------------------------------------------------------
    # Asynchronous resolution
    # ------------------------------------------------------------------
    async def resolve_async(self, token: Hashable, scope: ScopeContext) -> Any:
        self._store.ensure_active(scope)
        self.check_graph(token, scope)
        return await self._resolve_async(token, scope, _active_chain.get())

    async def _resolve_async(self, token: Hashable, scope: ScopeContext, chain: Chain) -> Any:
        definition = self._registry.get(token)
        owner = self._owner(definition, scope)

        if token in chain:
            raise CircularDependencyError([*chain, token])

        if definition.lifetime is Lifetime.TRANSIENT:
            self._store.ensure_active(owner)
            return await self._create_async(definition, owner, (*chain, token))

        loop = asyncio.get_running_loop()
        marker: asyncio.Future[Any] = loop.create_future()
        existing = self._store.reserve(token, owner, marker)
        if isinstance(existing, ServiceInstance):
            return existing.value
        if isinstance(existing, concurrent.futures.Future):
            return await asyncio.shield(asyncio.wrap_future(existing))
        if existing is None:
            # the construction outlives any single (possibly cancelled) caller
            task = loop.create_task(self._build(definition, owner, (*chain, token), marker))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            # every caller may have been cancelled before the failure lands
            marker.add_done_callback(_retrieve_exception)
            existing = marker
        return await asyncio.shield(existing)

    async def _build(
        self, definition: ServiceDefinition, owner: ScopeContext, chain: Chain, marker: asyncio.Future[Any]
    ) -> None:
        try:
            value = await self._create_async(definition, owner, chain)
        except asyncio.CancelledError:
            self._store.release(definition.token, owner, marker)
            marker.cancel()
            raise
        except Exception as exc:
            self._store.release(definition.token, owner, marker)
            marker.set_exception(exc)
            return
        marker.set_result(value)

    async def _create_async(self, definition: ServiceDefinition, owner: ScopeContext, chain: Chain) -> Any:
        args = []
        for dep in definition.dependencies:
            args.append(await self._resolve_async(dep, owner, chain))

        reset = _active_chain.set(chain)
        try:
            value = definition.factory(*args)  # type: ignore[misc]
            if definition.is_async:
                value = await value
        except ContainerError:
            raise
        except Exception as exc:
            raise FactoryError(definition.token, exc) from exc
        finally:
            _active_chain.reset(reset)

        if self._store.put(definition.token, value, owner, cache=_caches(definition)) is None:
            try:
                await dispose_value_async(value)
            except Exception as exc:
                raise ScopeDisposedError(owner.name) from exc
            raise ScopeDisposedError(owner.name)
        return value

    def _owner(self, definition: ServiceDefinition, scope: ScopeContext) -> ScopeContext:
        if definition.lifetime is Lifetime.SINGLETON:
            return self._store.root
        return scope


def _caches(definition: ServiceDefinition) -> bool:
    return definition.lifetime is not Lifetime.TRANSIENT


def _retrieve_exception(marker: asyncio.Future[Any]) -> None:
    if not marker.cancelled():
        marker.exception()
