"""Tests for the request context and response buffer."""

import unittest

from werkzeug.datastructures import Headers

from stagehand.core.container import ServiceRegistry
from stagehand.core.context import RequestContext, ResponseBuffer
from stagehand.core.errors import ConfigurationError


class TestRequestContext(unittest.TestCase):
    def test_defaults_and_normalisation(self):
        context = RequestContext(method="post", path="hello", headers={"X-A": "1"})

        self.assertEqual(context.method, "POST")
        self.assertEqual(context.path, "/hello")
        self.assertIsInstance(context.headers, Headers)
        self.assertEqual(context.items, {})
        self.assertEqual(len(context.request_id), 32)

    def test_request_ids_unique(self):
        self.assertNotEqual(RequestContext().request_id, RequestContext().request_id)

    def test_headers_case_insensitive_and_ordered(self):
        context = RequestContext(headers=[("X-First", "1"), ("Accept", "a"), ("x-first", "2")])

        self.assertEqual(context.headers["x-FIRST"], "1")
        self.assertEqual(context.headers.getlist("X-First"), ["1", "2"])
        self.assertEqual([k for k, _ in context.headers.items()], ["X-First", "Accept", "x-first"])

    def test_resolve_without_scope(self):
        with self.assertRaises(ConfigurationError):
            RequestContext().resolve("anything")

    def test_resolve_from_scope(self):
        services = ServiceRegistry()
        services.add_scoped("token", factory=lambda _p: object())

        with services.create_scope() as scope:
            context = RequestContext(services=scope)
            self.assertIs(context.resolve("token"), scope.resolve("token"))


class TestResponseBuffer(unittest.TestCase):
    def setUp(self):
        self.response = ResponseBuffer()

    def test_initial_state(self):
        self.assertEqual(self.response.status, 200)
        self.assertFalse(self.response.has_started)
        self.assertEqual(self.response.text, "")

    def test_write_appends(self):
        self.response.write("a")
        self.response.write("b")

        self.assertTrue(self.response.has_started)
        self.assertEqual(self.response.text, "ab")
        self.assertEqual(self.response.body_bytes(), b"ab")

    def test_set_status_marks_started(self):
        self.response.set_status(204)

        self.assertTrue(self.response.has_started)
        self.assertEqual(self.response.status, 204)

    def test_clear(self):
        self.response.set_status(418)
        self.response.headers["X-A"] = "1"
        self.response.write("x")

        self.response.clear()

        self.assertFalse(self.response.has_started)
        self.assertEqual(self.response.status, 200)
        self.assertNotIn("X-A", self.response.headers)
        self.assertEqual(self.response.text, "")


if __name__ == "__main__":
    unittest.main()
