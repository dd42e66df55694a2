"""Flask adapter: the inbound HTTP boundary of a :class:`~stagehand.hosting.host.Host`.

Every route is caught by one view that maps the Flask request onto a
:class:`RequestContext`, runs it through the host's pipeline and turns the
response buffer back into exactly one Flask response.
"""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError
from typing import TYPE_CHECKING, Any

from flask import Flask, Response, request
from werkzeug.datastructures import Headers

from ..core.context import RequestContext

if TYPE_CHECKING:
    from .host import Host

LOGGER = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
DEFAULT_CONTENT_TYPE = "text/plain; charset=utf-8"


def context_from_request(req: Any) -> RequestContext:
    """Build a RequestContext from a Flask/werkzeug request."""
    return RequestContext(
        method=req.method,
        path=req.path,
        headers=Headers(list(req.headers.items())),
        body=req.get_data(cache=False),
        query_string=req.query_string.decode("latin-1"),
    )


def response_from_context(context: RequestContext) -> Response:
    buffer = context.response
    headers = Headers(list(buffer.headers.items()))
    if "Content-Type" not in headers:
        headers["Content-Type"] = DEFAULT_CONTENT_TYPE
    headers["X-Request-Id"] = context.request_id
    return Response(buffer.body_bytes(), status=buffer.status, headers=headers)


def create_wsgi_app(host: Host, import_name: str = "stagehand") -> Flask:
    """Create the Flask app that feeds every request into ``host``."""
    app: Any = Flask(import_name)
    app.extensions["stagehand.host"] = host

    @app.route("/", defaults={"path": ""}, methods=ALL_METHODS)
    @app.route("/<path:path>", methods=ALL_METHODS)
    def dispatch(path: str) -> Response:
        context = context_from_request(request)
        try:
            host.handle(context)
        except CancelledError:
            LOGGER.warning("Request %s cancelled during shutdown", context.request_id)
            return Response("Service Unavailable", status=503, content_type=DEFAULT_CONTENT_TYPE)
        return response_from_context(context)

    return app


__all__ = ["create_wsgi_app", "context_from_request", "response_from_context"]
