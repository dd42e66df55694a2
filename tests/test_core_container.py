"""Tests for the service registry implementation."""

import threading
import unittest
from abc import ABC, abstractmethod

from stagehand.core.container import Lifetime, ServiceRegistry
from stagehand.core.errors import ConfigurationError


class Greeter(ABC):
    @abstractmethod
    def greet(self) -> str: ...


class EnglishGreeter(Greeter):
    def greet(self) -> str:
        return "hello"


class Clock:
    pass


class Closable:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class TestServiceRegistry(unittest.TestCase):
    """Test lifetime policies and resolution."""

    def setUp(self):
        self.services = ServiceRegistry()

    def test_singleton_shared_across_scopes(self):
        self.services.add_singleton(Greeter, EnglishGreeter)

        with self.services.create_scope() as first, self.services.create_scope() as second:
            self.assertIs(first.resolve(Greeter), second.resolve(Greeter))
        self.assertIs(self.services.resolve(Greeter), self.services.resolve(Greeter))
        self.assertEqual(self.services.resolve(Greeter).greet(), "hello")

    def test_scoped_same_within_scope_different_across(self):
        self.services.add_scoped(Greeter, EnglishGreeter)

        with self.services.create_scope() as first, self.services.create_scope() as second:
            self.assertIs(first.resolve(Greeter), first.resolve(Greeter))
            self.assertIsNot(first.resolve(Greeter), second.resolve(Greeter))

    def test_transient_new_every_time(self):
        self.services.add_transient(Greeter, EnglishGreeter)

        with self.services.create_scope() as scope:
            self.assertIsNot(scope.resolve(Greeter), scope.resolve(Greeter))
        self.assertIsNot(self.services.resolve(Greeter), self.services.resolve(Greeter))

    def test_scoped_outside_scope_is_configuration_error(self):
        self.services.add_scoped(Greeter, EnglishGreeter)

        with self.assertRaises(ConfigurationError):
            self.services.resolve(Greeter)

    def test_singleton_cannot_capture_scoped(self):
        self.services.add_scoped(Clock)
        self.services.add_singleton(Greeter, factory=lambda p: (p.resolve(Clock), EnglishGreeter())[1])

        with self.services.create_scope() as scope:
            with self.assertRaises(ConfigurationError):
                scope.resolve(Greeter)

    def test_factory_receives_provider(self):
        self.services.add_scoped(Clock)
        self.services.add_transient("pair", factory=lambda p: (p.resolve(Clock), p.resolve(Clock)))

        with self.services.create_scope() as scope:
            left, right = scope.resolve("pair")
            self.assertIs(left, right)
            self.assertIs(left, scope.resolve(Clock))

    def test_unregistered_capability(self):
        with self.assertRaises(ConfigurationError):
            self.services.resolve("missing")

    def test_circular_dependency_detection(self):
        self.services.add_transient("a", factory=lambda p: p.resolve("b"))
        self.services.add_transient("b", factory=lambda p: p.resolve("a"))

        with self.assertRaises(ConfigurationError) as ctx:
            self.services.resolve("a")
        self.assertIn("Circular dependency", str(ctx.exception))

    def test_add_instance(self):
        clock = Clock()
        self.services.add_instance(Clock, clock)

        self.assertIs(self.services.resolve(Clock), clock)
        self.assertEqual(self.services.registration(Clock).lifetime, Lifetime.SINGLETON)

    def test_register_explicit_lifetime(self):
        self.services.register("token", lambda _p: object(), Lifetime.SINGLETON)

        self.assertIs(self.services.resolve("token"), self.services.resolve("token"))

    def test_frozen_registry_rejects_registration(self):
        self.services.freeze()

        with self.assertRaises(ConfigurationError):
            self.services.add_singleton(Clock)

    def test_validate_lists_missing(self):
        self.services.add_singleton(Clock)

        self.services.validate([Clock])
        with self.assertRaises(ConfigurationError) as ctx:
            self.services.validate([Clock, Greeter, "named"])
        self.assertIn("Greeter", str(ctx.exception))
        self.assertIn("named", str(ctx.exception))

    def test_list_services(self):
        self.assertEqual(self.services.list_services(), {})
        self.services.add_singleton(Clock)
        self.services.add_scoped(Greeter, EnglishGreeter)

        self.assertEqual(
            self.services.list_services(), {"Clock": "singleton", "Greeter": "scoped"}
        )

    def test_scope_close_closes_scoped_instances(self):
        self.services.add_scoped(Closable)

        with self.services.create_scope() as scope:
            instance = scope.resolve(Closable)
            self.assertFalse(instance.closed)
        self.assertTrue(instance.closed)
        with self.assertRaises(ConfigurationError):
            scope.resolve(Closable)

    def test_singleton_created_once_under_contention(self):
        created = []
        barrier = threading.Barrier(8)

        def factory(_provider):
            created.append(1)
            return object()

        self.services.add_singleton("shared", factory=factory)
        results = []

        def worker():
            barrier.wait()
            results.append(self.services.resolve("shared"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(created), 1)
        self.assertEqual(len({id(r) for r in results}), 1)


if __name__ == "__main__":
    unittest.main()
