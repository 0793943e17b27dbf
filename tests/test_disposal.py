import unittest

import pytest

from scopebind import (
    AggregateDisposalError,
    AsyncDisposable,
    Container,
    Disposable,
    Lifetime,
    ScopeDisposedError,
)


class Tracked(Disposable):
    def __init__(self, name, log):
        self.name = name
        self.log = log

    def dispose(self) -> None:
        self.log.append(self.name)


class Failing(Disposable):
    def __init__(self, name, log):
        self.name = name
        self.log = log

    def dispose(self) -> None:
        self.log.append(self.name)
        msg = f"{self.name} failed to close"
        raise OSError(msg)


class DuckTyped:
    """Has a dispose method but does not declare the capability."""

    def __init__(self, log):
        self.log = log

    def dispose(self) -> None:
        self.log.append("duck")


class TestScopeDisposal(unittest.TestCase):
    def setUp(self):
        self.cont = Container()
        self.log = []

    def register_tracked(self, name, lifetime=Lifetime.SCOPED, dependencies=(), cls=Tracked):
        self.cont.register(name, lambda *_: cls(name, self.log), lifetime=lifetime, dependencies=dependencies)

    def test_dispose_runs_in_reverse_creation_order(self):
        for name in ("X", "Y", "Z"):
            self.register_tracked(name)
        scope = self.cont.create_scope()
        scope.resolve("X")
        scope.resolve("Y")
        scope.resolve("Z")

        scope.dispose()

        assert self.log == ["Z", "Y", "X"]

    def test_dependencies_are_disposed_after_their_consumers(self):
        self.register_tracked("db")
        self.register_tracked("repo", dependencies=["db"])
        self.register_tracked("service", dependencies=["repo"])
        scope = self.cont.create_scope()
        scope.resolve("service")

        scope.dispose()

        assert self.log == ["service", "repo", "db"]

    def test_dispose_twice_is_a_no_op(self):
        self.register_tracked("X")
        scope = self.cont.create_scope()
        scope.resolve("X")

        scope.dispose()
        scope.dispose()

        assert self.log == ["X"]

    def test_transients_are_disposed_with_resolving_scope(self):
        self.register_tracked("T", lifetime=Lifetime.TRANSIENT)
        scope = self.cont.create_scope()
        scope.resolve("T")
        scope.resolve("T")

        scope.dispose()

        assert self.log == ["T", "T"]

    def test_transients_resolved_from_container_are_held_until_it_is_disposed(self):
        self.register_tracked("T", lifetime=Lifetime.TRANSIENT)
        first = self.cont.resolve("T")
        second = self.cont.resolve("T")

        with self.cont.create_scope() as scope:
            scope.resolve("T")
        assert self.log == ["T"]
        assert [r.value for r in self.cont._context.disposables] == [first, second]

        self.cont.dispose()

        assert self.log == ["T", "T", "T"]
        assert self.cont._context.disposables == []

    def test_singletons_survive_scope_disposal(self):
        self.register_tracked("S", lifetime=Lifetime.SINGLETON)
        scope = self.cont.create_scope()
        singleton = scope.resolve("S")

        scope.dispose()

        assert self.log == []
        assert self.cont.resolve("S") is singleton

    def test_failing_teardown_does_not_stop_the_sweep(self):
        self.register_tracked("X")
        self.register_tracked("Y", cls=Failing)
        self.register_tracked("Z", cls=Failing)
        scope = self.cont.create_scope()
        for name in ("X", "Y", "Z"):
            scope.resolve(name)

        with pytest.raises(AggregateDisposalError) as ctx:
            scope.dispose()

        assert self.log == ["Z", "Y", "X"]
        assert [str(e) for e in ctx.value.errors] == ["Z failed to close", "Y failed to close"]
        assert scope.disposed
        scope.dispose()

    def test_only_declared_capability_is_disposed(self):
        self.cont.register("duck", lambda: DuckTyped(self.log), lifetime=Lifetime.SCOPED)
        scope = self.cont.create_scope()
        scope.resolve("duck")

        scope.dispose()

        assert self.log == []

    def test_registered_virtual_subclass_is_disposed(self):
        class Handle:
            def __init__(self, log):
                self.log = log

            def dispose(self):
                self.log.append("handle")

        Disposable.register(Handle)
        self.cont.register("handle", lambda: Handle(self.log), lifetime=Lifetime.SCOPED)
        scope = self.cont.create_scope()
        scope.resolve("handle")

        scope.dispose()

        assert self.log == ["handle"]

    def test_async_only_disposable_fails_sync_sweep(self):
        class Conn(AsyncDisposable):
            async def dispose_async(self) -> None: ...

        self.cont.register("conn", Conn, lifetime=Lifetime.SCOPED)
        scope = self.cont.create_scope()
        scope.resolve("conn")

        with pytest.raises(AggregateDisposalError) as ctx:
            scope.dispose()
        assert isinstance(ctx.value.errors[0], TypeError)


class TestContainerDisposal(unittest.TestCase):
    def setUp(self):
        self.cont = Container()
        self.log = []

    def test_container_disposes_scopes_in_reverse_creation_order_then_itself(self):
        names = iter(["first-item", "second-item"])
        self.cont.register("S", lambda: Tracked("root-singleton", self.log))
        self.cont.register("item", lambda: Tracked(next(names), self.log), lifetime=Lifetime.SCOPED)
        self.cont.resolve("S")

        first = self.cont.create_scope("first")
        second = self.cont.create_scope("second")
        first.resolve("item")
        second.resolve("item")

        self.cont.dispose()

        assert self.log == ["second-item", "first-item", "root-singleton"]
        assert first.disposed
        assert second.disposed

    def test_closed_scope_is_not_disposed_again_by_container(self):
        self.cont.register("item", lambda: Tracked("item", self.log), lifetime=Lifetime.SCOPED)
        scope = self.cont.create_scope()
        scope.resolve("item")
        scope.dispose()

        self.cont.dispose()

        assert self.log == ["item"]

    def test_resolve_after_container_dispose_raises(self):
        self.cont.register("svc", object)
        self.cont.dispose()

        with pytest.raises(ScopeDisposedError):
            self.cont.resolve("svc")
        assert not self.cont.has("svc")

    def test_pre_built_instance_is_disposed_with_container(self):
        instance = Tracked("pre-built", self.log)
        self.cont.register_instance("svc", instance)
        self.cont.resolve("svc")

        self.cont.dispose()

        assert self.log == ["pre-built"]

    def test_pre_built_instance_is_disposed_even_if_never_resolved(self):
        self.cont.register_instance("svc", Tracked("pre-built", self.log))

        self.cont.dispose()

        assert self.log == ["pre-built"]

    def test_child_scope_failures_are_aggregated_into_container_error(self):
        self.cont.register("bad", lambda: Failing("bad", self.log), lifetime=Lifetime.SCOPED)
        self.cont.register("good", lambda: Tracked("good", self.log))
        self.cont.resolve("good")
        self.cont.create_scope().resolve("bad")

        with pytest.raises(AggregateDisposalError) as ctx:
            self.cont.dispose()

        assert self.log == ["bad", "good"]
        assert len(ctx.value.errors) == 1
        assert self.cont.disposed
