from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Sequence


def describe(token: Any) -> str:
    """Human readable token name for error messages."""
    if isinstance(token, type):
        return token.__qualname__
    return repr(token)


def _describe_chain(chain: Iterable[Hashable]) -> str:
    return " -> ".join(describe(t) for t in chain)


class ContainerError(RuntimeError):
    pass


class InvalidDefinitionError(ContainerError, ValueError):
    pass


class ResolutionError(ContainerError):
    pass


class UnregisteredServiceError(ResolutionError, KeyError):
    def __init__(self, token: Hashable, chain: Sequence[Hashable] = ()) -> None:
        self.token = token
        self.chain = list(chain)
        msg = f"No registration found for token: {describe(token)}"
        if self.chain:
            msg += f" (required by {_describe_chain(self.chain)})"
        super().__init__(msg)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class CircularDependencyError(ResolutionError):
    def __init__(self, chain: Sequence[Hashable]) -> None:
        self.chain = list(chain)
        super().__init__(f"Circular dependency detected: {_describe_chain(self.chain)}")


class FactoryError(ResolutionError):
    def __init__(self, token: Hashable, cause: BaseException) -> None:
        self.token = token
        self.cause = cause
        super().__init__(f"Factory for {describe(token)} failed: {cause!r}")


class AsyncFactoryError(ResolutionError):
    def __init__(self, token: Hashable, reason: str) -> None:
        self.token = token
        super().__init__(f"Cannot resolve {describe(token)} synchronously: {reason}. Use resolve_async() instead.")


class ScopeDisposedError(ContainerError):
    def __init__(self, scope_name: str) -> None:
        self.scope_name = scope_name
        super().__init__(f"Scope {scope_name!r} has been disposed")


class AggregateDisposalError(ContainerError):
    """Raised after a disposal sweep during which one or more teardowns failed."""

    def __init__(self, scope_name: str, errors: Sequence[BaseException]) -> None:
        self.scope_name = scope_name
        self.errors = list(errors)
        details = "; ".join(repr(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} disposal failure(s) in scope {scope_name!r}: {details}")
