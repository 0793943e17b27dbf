"""Service container with scoped lifetimes and deterministic disposal.

This package provides an in-process dependency injection runtime: services are
registered as factories with explicitly declared dependencies, resolved on
demand (synchronously or with asynchronous factories), cached according to
their lifetime, and disposed in reverse construction order.

Exports:
- `Container`: Root container; registration, resolution, scopes and disposal.
- `Scope`: Child lifetime created by `Container.create_scope()`, e.g. one
  editing session. Scoped services get one instance per scope.
- `Lifetime`: Instance sharing policy (singleton, transient or scoped).
- `ServiceDefinition`: A token, its factory, lifetime and dependencies.
- `Disposable` / `AsyncDisposable`: Capabilities instances implement to be
  torn down with their scope.
- `Initializable` / `AsyncInitializable`: Start-up hooks that eager singletons
  implement; run by `Container.initialize()`.
- Errors: `ContainerError` and its subclasses.
"""

from ._container import Container, Scope
from ._errors import (
    AggregateDisposalError,
    AsyncFactoryError,
    CircularDependencyError,
    ContainerError,
    FactoryError,
    InvalidDefinitionError,
    ResolutionError,
    ScopeDisposedError,
    UnregisteredServiceError,
)
from ._lifecycle import AsyncDisposable, AsyncInitializable, Disposable, Initializable, ScopeState
from ._registry import Lifetime, ServiceDefinition


__all__ = [
    "AggregateDisposalError",
    "AsyncDisposable",
    "AsyncFactoryError",
    "AsyncInitializable",
    "CircularDependencyError",
    "Container",
    "ContainerError",
    "Disposable",
    "FactoryError",
    "Initializable",
    "InvalidDefinitionError",
    "Lifetime",
    "ResolutionError",
    "Scope",
    "ScopeDisposedError",
    "ScopeState",
    "ServiceDefinition",
    "UnregisteredServiceError",
]
