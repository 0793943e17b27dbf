from __future__ import annotations

import logging
from typing import (
    TYPE_CHECKING,
    Any,
    TypeVar,
    overload,
)

from ._errors import describe
from ._lifecycle import LifecycleStore, ScopeState, initialize_value, initialize_value_async
from ._registry import Lifetime, Registry, ServiceDefinition
from ._resolver import Resolver


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Iterable
    from types import TracebackType

    from ._lifecycle import ScopeContext

    T = TypeVar("T")

    Token = type[T] | Hashable


class _Resolving:
    """Resolution and disposal surface shared by the container and its scopes."""

    _registry: Registry
    _store: LifecycleStore
    _resolver: Resolver
    _context: ScopeContext

    @property
    def name(self) -> str:
        return self._context.name

    @property
    def state(self) -> ScopeState:
        return self._context.state

    @property
    def disposed(self) -> bool:
        return self._context.state is not ScopeState.ACTIVE

    def has(self, token: Hashable) -> bool:
        return self._registry.has(token)

    @overload
    def resolve(self, token: type[T]) -> T: ...

    @overload
    def resolve(self, token: Hashable) -> Any: ...

    def resolve(self, token: Token[T]) -> Any:
        """Resolve ``token`` to an instance, building its dependencies first.

        Raises ``AsyncFactoryError`` if something on the way needs awaiting.
        """
        return self._resolver.resolve(token, self._context)

    @overload
    async def resolve_async(self, token: type[T]) -> T: ...

    @overload
    async def resolve_async(self, token: Hashable) -> Any: ...

    async def resolve_async(self, token: Token[T]) -> Any:
        """Resolve ``token``, awaiting asynchronous factories.

        Concurrent calls for the same singleton (or scoped token within one
        scope) share a single construction. Cancelling a caller does not
        cancel that construction.
        """
        return await self._resolver.resolve_async(token, self._context)

    def try_resolve(self, token: Hashable) -> Any | None:
        """Like ``resolve`` but returns ``None`` when ``token`` itself is not registered."""
        if not self._registry.has(token):
            self._store.ensure_active(self._context)
            return None
        return self.resolve(token)

    async def try_resolve_async(self, token: Hashable) -> Any | None:
        if not self._registry.has(token):
            self._store.ensure_active(self._context)
            return None
        return await self.resolve_async(token)

    def resolve_all(self, tag: str) -> list[Any]:
        """Resolve every service tagged with ``tag``, in registration order."""
        return [self.resolve(d.token) for d in self._registry.definitions() if tag in d.tags]

    async def resolve_all_async(self, tag: str) -> list[Any]:
        return [await self.resolve_async(d.token) for d in self._registry.definitions() if tag in d.tags]

    def dispose(self) -> None:
        self._store.dispose_scope(self._context)

    async def dispose_async(self) -> None:
        await self._store.dispose_scope_async(self._context)


class Container(_Resolving):
    """Service container.

    - register factories with explicit dependencies
    - lifetimes: singleton / transient / scoped
    - child scopes for per-session lifetimes
    - deterministic disposal, last constructed first.
    """

    def __init__(self, *, name: str = "root") -> None:
        self._registry = Registry()
        self._store = LifecycleStore(root_name=name)
        self._resolver = Resolver(self._registry, self._store)
        self._context = self._store.root
        # token -> the instance whose initialize hook has run
        self._initialized: dict[Any, object] = {}

    @overload
    def register(self, definition: ServiceDefinition, /) -> None: ...

    @overload
    def register(
        self,
        token: Hashable,
        factory: Callable[..., Any],
        *,
        lifetime: Lifetime | str = Lifetime.SINGLETON,
        dependencies: Iterable[Hashable] = (),
        tags: Iterable[str] = (),
        eager: bool = False,
        init_priority: int = 0,
        is_async: bool | None = None,
    ) -> None: ...

    def register(
        self,
        token: Hashable | ServiceDefinition,
        factory: Callable[..., Any] | None = None,
        *,
        lifetime: Lifetime | str = Lifetime.SINGLETON,
        dependencies: Iterable[Hashable] = (),
        tags: Iterable[str] = (),
        eager: bool = False,
        init_priority: int = 0,
        is_async: bool | None = None,
    ) -> None:
        """Register a service definition, replacing any previous one for its token.

        Example:
          container.register("db", create_db)
          container.register("repo", Repo, lifetime=Lifetime.SCOPED, dependencies=["db"])
          container.register(ServiceDefinition("clock", Clock, Lifetime.TRANSIENT))
          container.register("cache", lambda: connect(url), is_async=True)

        A coroutine-function factory is detected automatically; pass
        ``is_async=True`` for any other factory whose result must be awaited.
        Instances already built from a replaced definition are kept.
        """
        if isinstance(token, ServiceDefinition) and factory is None:
            definition = token
        else:
            # the registry normalizes (and validates) dependencies and tags
            definition = ServiceDefinition(
                token=token,
                factory=factory,
                lifetime=lifetime,
                dependencies=dependencies,  # type: ignore[arg-type]
                tags=tags,  # type: ignore[arg-type]
                eager=eager,
                init_priority=init_priority,
                is_async=is_async,
            )

        self._store.ensure_active(self._context)
        self._registry.register(definition)

    def register_all(self, definitions: Iterable[ServiceDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def register_singleton(self, token: Hashable, factory: Callable[..., Any], **options: Any) -> None:
        self.register(token, factory, lifetime=Lifetime.SINGLETON, **options)

    def register_transient(self, token: Hashable, factory: Callable[..., Any], **options: Any) -> None:
        """Register a service built anew on every resolution.

        Disposable transients are owned by the scope they were resolved from
        and stay referenced until it is disposed. Resolved from the container
        itself, they accumulate until the container is disposed; resolve
        short-lived disposables from a child scope.
        """
        self.register(token, factory, lifetime=Lifetime.TRANSIENT, **options)

    def register_scoped(self, token: Hashable, factory: Callable[..., Any], **options: Any) -> None:
        self.register(token, factory, lifetime=Lifetime.SCOPED, **options)

    def register_instance(
        self,
        token: Hashable,
        instance: object,
        *,
        replace: bool = False,
    ) -> None:
        """Register a pre-built instance (always singleton, disposed with the container).

        The instance is cached as it is and never called or awaited.
        """
        with self._store.lock:
            if not replace and self._registry.has(token):
                msg = f"Token {token!r} is already registered. Pass replace=True to overwrite."
                raise KeyError(msg)
            self.register(token, lambda: instance, lifetime=Lifetime.SINGLETON, is_async=False)
            self._store.adopt(token, instance, self._context)

    def get_definition(self, token: Hashable) -> ServiceDefinition:
        return self._registry.get(token)

    def definitions(self) -> list[ServiceDefinition]:
        return self._registry.definitions()

    def validate(self) -> list[Hashable]:
        """Check the whole registry and return a construction order (dependencies first).

        Raises ``CircularDependencyError`` or ``UnregisteredServiceError``.
        """
        return self._resolver.construction_order()

    def initialize(self) -> None:
        """Build every eager singleton, then run their ``initialize`` hooks.

        Hooks run by descending ``init_priority``; equal priorities keep
        construction order (dependencies first). Each instance is
        initialized at most once.
        """
        instances = [(token, self.resolve(token)) for token in self._eager_tokens()]
        for token, value in instances:
            if self._claim_initialization(token, value):
                try:
                    initialize_value(value)
                except BaseException:
                    self._initialized.pop(token, None)
                    raise

    async def initialize_async(self) -> None:
        instances = [(token, await self.resolve_async(token)) for token in self._eager_tokens()]
        for token, value in instances:
            if self._claim_initialization(token, value):
                try:
                    await initialize_value_async(value)
                except BaseException:
                    self._initialized.pop(token, None)
                    raise

    def _eager_tokens(self) -> list[Hashable]:
        self._store.ensure_active(self._context)
        eager = {d.token: d for d in self._registry.definitions() if d.eager}
        ordered = [t for t in self._resolver.construction_order(eager) if t in eager]
        return sorted(ordered, key=lambda t: -eager[t].init_priority)

    def _claim_initialization(self, token: Hashable, value: object) -> bool:
        with self._store.lock:
            if self._initialized.get(token) is value:
                return False
            self._initialized[token] = value
        logger.debug("Initializing %s", describe(token))
        return True

    def create_scope(self, name: str | None = None) -> Scope:
        """Create a child scope; scoped services get one instance per scope."""
        return Scope(self, self._store.create_scope(name), _from_parent=True)

    def dispose(self) -> None:
        """Dispose open child scopes, then the container's own instances."""
        try:
            super().dispose()
        finally:
            self._teardown()

    async def dispose_async(self) -> None:
        try:
            await super().dispose_async()
        finally:
            self._teardown()

    def _teardown(self) -> None:
        # definitions live exactly as long as the container
        if self._context.state is ScopeState.DISPOSED and len(self._registry):
            self._registry.clear()
            self._initialized.clear()
            logger.debug("Container %s disposed", self.name)

    def __enter__(self) -> Container:
        return self

    def __exit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.dispose()

    async def __aenter__(self) -> Container:
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        await self.dispose_async()


class Scope(_Resolving):
    """A child lifetime of a container.

    Shares the container's registrations and singletons; owns its scoped and
    transient instances, which are disposed with it.
    """

    def __init__(self, container: Container, context: ScopeContext, *, _from_parent: bool = False) -> None:
        if not _from_parent:
            msg = "Scope instances must be created via Container.create_scope()"
            raise RuntimeError(msg)
        self._container = container
        self._registry = container._registry  # noqa: SLF001
        self._store = container._store  # noqa: SLF001
        self._resolver = container._resolver  # noqa: SLF001
        self._context = context

    @property
    def container(self) -> Container:
        return self._container

    def __repr__(self) -> str:
        return f"Scope(name={self.name!r}, state={self.state.value!r})"

    def __enter__(self) -> Scope:
        return self

    def __exit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self.dispose()

    async def __aenter__(self) -> Scope:
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        await self.dispose_async()
