import unittest

import pytest

from minioc import Container, Lifetime, RegistrationError


class TestLifetimeControl(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_resolve_transient_returns_new_instances(self):
        class A: ...

        self.cont.register(A, A)
        instances = [self.cont.resolve(A) for _ in range(5)]
        assert len({id(a) for a in instances}) == 5, "TRANSIENT should return new instances"

    def test_resolve_singleton_returns_same_instance(self):
        class A: ...

        self.cont.register(A, A).as_singleton()
        a1 = self.cont.resolve(A)
        a2 = self.cont.resolve(A)
        assert a2 is a1, "SINGLETON should return the cached instance"

    def test_singleton_factory_runs_once(self):
        calls = []

        class A: ...

        self.cont.register(A, factory=lambda: calls.append(1) or A()).as_singleton()
        self.cont.resolve(A)
        self.cont.resolve(A)
        assert calls == [1]

    def test_lifetime_keyword_applies_transition(self):
        class A: ...

        handle = self.cont.register(A, A, lifetime=Lifetime.SINGLETON)
        assert handle.lifetime is Lifetime.SINGLETON
        assert self.cont.resolve(A) is self.cont.resolve(A)

    def test_per_scope_on_root_caches_at_root(self):
        class A: ...

        self.cont.register(A, A).per_scope()
        assert self.cont.resolve(A) is self.cont.resolve(A)

    def test_handle_methods_chain(self):
        class A: ...

        handle = self.cont.register(A, A)
        assert handle.as_singleton() is handle
        assert handle.lifetime is Lifetime.SINGLETON

    def test_reapplying_same_lifetime_is_noop(self):
        class A: ...

        handle = self.cont.register(A, A).per_scope()
        handle.per_scope()
        assert handle.lifetime is Lifetime.PER_SCOPE

    def test_singleton_then_per_scope_is_rejected(self):
        class A: ...

        handle = self.cont.register(A, A).as_singleton()
        with pytest.raises(RegistrationError):
            handle.per_scope()
        assert handle.lifetime is Lifetime.SINGLETON

    def test_per_scope_then_singleton_is_rejected(self):
        class A: ...

        handle = self.cont.register(A, A, lifetime=Lifetime.PER_SCOPE)
        with pytest.raises(RegistrationError):
            handle.as_singleton()

    def test_register_instance_is_not_cached(self):
        class Closeable:
            closed = False

            def close(self):
                self.closed = True

        inst = Closeable()
        self.cont.register_instance(Closeable, inst)
        assert self.cont.resolve(Closeable) is inst

        self.cont.dispose()
        assert not inst.closed

    def test_register_instance_refuses_lifetime_changes(self):
        class Closeable:
            closed = False

            def close(self):
                self.closed = True

        inst = Closeable()
        handle = self.cont.register_instance(Closeable, inst)

        with pytest.raises(RegistrationError):
            handle.as_singleton()
        with pytest.raises(RegistrationError):
            handle.per_scope()
        assert handle.lifetime is Lifetime.TRANSIENT

        with self.cont.create_scope() as scope:
            assert scope.resolve(Closeable) is inst
        self.cont.resolve(Closeable)
        self.cont.dispose()
        assert not inst.closed
