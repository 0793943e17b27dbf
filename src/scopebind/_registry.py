from __future__ import annotations

import dataclasses
import inspect
import logging
import threading
from collections.abc import Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ._errors import InvalidDefinitionError, UnregisteredServiceError, describe


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


@dataclass(frozen=True)
class ServiceDefinition:
    """How to build the service behind ``token``.

    ``factory`` is called with the resolved ``dependencies`` as positional
    arguments, in declared order. An asynchronous factory (``is_async``) is
    awaited, and its token can only be built through ``resolve_async``.
    ``is_async`` defaults to whether ``factory`` is a coroutine function; set
    it explicitly for plain callables that return an awaitable. The value a
    synchronous factory returns is never awaited.

    ``eager`` singletons are built by ``Container.initialize``, higher
    ``init_priority`` first.
    """

    token: Hashable
    factory: Callable[..., Any] | None
    lifetime: Lifetime | str = Lifetime.SINGLETON
    dependencies: tuple[Hashable, ...] = ()
    tags: frozenset[str] = field(default_factory=frozenset)
    eager: bool = False
    init_priority: int = 0
    is_async: bool | None = None


class Registry:
    """Service definitions keyed by token. Holds no resolution logic."""

    def __init__(self) -> None:
        self._definitions: dict[Any, ServiceDefinition] = {}
        self._lock = threading.RLock()

    def register(self, definition: ServiceDefinition) -> ServiceDefinition | None:
        """Store ``definition``, replacing (and returning) any previous one for its token."""
        definition = self._validate(definition)

        with self._lock:
            previous = self._definitions.get(definition.token)
            self._definitions[definition.token] = definition

        if previous is not None:
            logger.debug("Replaced registration for %s", describe(definition.token))
        else:
            logger.debug("Registered %s (%s)", describe(definition.token), definition.lifetime.value)
        return previous

    def get(self, token: Hashable) -> ServiceDefinition:
        definition = self.find(token)
        if definition is None:
            raise UnregisteredServiceError(token)
        return definition

    def find(self, token: Hashable) -> ServiceDefinition | None:
        try:
            with self._lock:
                return self._definitions.get(token)
        except TypeError:
            # unhashable tokens can never have been registered
            return None

    def has(self, token: Hashable) -> bool:
        return self.find(token) is not None

    def definitions(self) -> list[ServiceDefinition]:
        with self._lock:
            return list(self._definitions.values())

    def clear(self) -> None:
        with self._lock:
            self._definitions.clear()

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, token: object) -> bool:
        return self.has(token)  # type: ignore[arg-type]

    @staticmethod
    def _validate(definition: ServiceDefinition) -> ServiceDefinition:  # noqa: C901
        if not isinstance(definition, ServiceDefinition):
            msg = f"Expected a ServiceDefinition, got {type(definition).__name__}"
            raise InvalidDefinitionError(msg)

        token = definition.token
        if not isinstance(token, Hashable):
            msg = f"Token {token!r} is not hashable"
            raise InvalidDefinitionError(msg)

        if definition.factory is None:
            msg = f"A factory must be provided for {describe(token)}"
            raise InvalidDefinitionError(msg)
        if not callable(definition.factory):
            msg = f"Factory for {describe(token)} is not callable: {definition.factory!r}"
            raise InvalidDefinitionError(msg)

        try:
            lifetime = Lifetime(definition.lifetime)
        except ValueError:
            allowed = ", ".join(repr(lt.value) for lt in Lifetime)
            msg = f"Unknown lifetime {definition.lifetime!r} for {describe(token)}; expected one of {allowed}"
            raise InvalidDefinitionError(msg) from None

        if isinstance(definition.dependencies, (str, bytes)):
            msg = f"Dependencies of {describe(token)} must be a sequence of tokens, not a string"
            raise InvalidDefinitionError(msg)
        try:
            dependencies = tuple(definition.dependencies)
        except TypeError:
            msg = f"Dependencies of {describe(token)} must be a sequence of tokens"
            raise InvalidDefinitionError(msg) from None
        for dep in dependencies:
            if not isinstance(dep, Hashable):
                msg = f"Dependency {dep!r} of {describe(token)} is not hashable"
                raise InvalidDefinitionError(msg)

        if isinstance(definition.tags, str):
            tags = frozenset({definition.tags})
        else:
            tags = frozenset(definition.tags)

        if definition.eager and lifetime is not Lifetime.SINGLETON:
            msg = f"Only singletons can be eager; {describe(token)} is {lifetime.value}"
            raise InvalidDefinitionError(msg)

        if isinstance(definition.init_priority, bool) or not isinstance(definition.init_priority, int):
            msg = f"init_priority of {describe(token)} must be an int, got {definition.init_priority!r}"
            raise InvalidDefinitionError(msg)

        is_async = definition.is_async
        if is_async is None:
            is_async = _is_coroutine_factory(definition.factory)

        return dataclasses.replace(
            definition, lifetime=lifetime, dependencies=dependencies, tags=tags, is_async=bool(is_async)
        )


def _is_coroutine_factory(factory: Callable[..., Any]) -> bool:
    """Whether calling ``factory`` produces a coroutine, judged from the factory alone."""
    if inspect.iscoroutinefunction(factory):
        return True
    if inspect.isclass(factory):
        return False
    return inspect.iscoroutinefunction(getattr(factory, "__call__", None))  # noqa: B004
