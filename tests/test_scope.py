import unittest

import pytest

from scopebind import Container, Lifetime, Scope, ScopeDisposedError, ScopeState


class TestContainerScopeBehavior(unittest.TestCase):
    parent: Container
    scope: Scope

    def setUp(self):
        self.parent = Container()
        self.scope = self.parent.create_scope()

    def test_scope_cannot_be_constructed_directly(self):
        with pytest.raises(RuntimeError):
            Scope(self.parent, self.parent._context)

    def test_scope_resolves_parent_registrations(self):
        class Service: ...

        instance = Service()

        self.parent.register(
            Service,
            lambda: instance,
            lifetime=Lifetime.SINGLETON,
        )

        resolved = self.scope.resolve(Service)

        assert resolved is instance

    def test_scope_sees_registrations_made_after_it_was_created(self):
        self.parent.register("late", lambda: "value", lifetime=Lifetime.SCOPED)
        assert self.scope.has("late")
        assert self.scope.resolve("late") == "value"

    def test_scopes_get_generated_names(self):
        other = self.parent.create_scope()
        named = self.parent.create_scope("editing-session")

        assert self.scope.name != other.name
        assert named.name == "editing-session"
        assert self.parent.name == "root"

    def test_resolve_after_scope_dispose_raises(self):
        self.parent.register("svc", object, lifetime=Lifetime.SCOPED)
        self.scope.resolve("svc")
        self.scope.dispose()

        assert self.scope.disposed
        assert self.scope.state is ScopeState.DISPOSED
        with pytest.raises(ScopeDisposedError):
            self.scope.resolve("svc")

    def test_try_resolve_after_scope_dispose_raises(self):
        self.scope.dispose()
        with pytest.raises(ScopeDisposedError):
            self.scope.try_resolve("missing")

    def test_disposing_scope_leaves_container_usable(self):
        self.parent.register("svc", object, lifetime=Lifetime.SCOPED)
        self.scope.dispose()

        fresh = self.parent.create_scope()
        assert fresh.resolve("svc") is fresh.resolve("svc")
        assert not self.parent.disposed

    def test_new_scope_gets_new_scoped_instance_after_dispose(self):
        self.parent.register("svc", object, lifetime=Lifetime.SCOPED)
        first = self.scope.resolve("svc")
        self.scope.dispose()

        assert self.parent.create_scope().resolve("svc") is not first

    def test_container_dispose_disposes_open_scopes(self):
        other = self.parent.create_scope()
        self.parent.dispose()

        assert self.scope.disposed
        assert other.disposed
        with pytest.raises(ScopeDisposedError):
            self.parent.create_scope()
        with pytest.raises(ScopeDisposedError):
            self.parent.register("svc", object)

    def test_scope_context_manager_disposes(self):
        self.parent.register("svc", object, lifetime=Lifetime.SCOPED)
        with self.parent.create_scope() as scope:
            scope.resolve("svc")
        assert scope.disposed
        assert scope.container is self.parent
