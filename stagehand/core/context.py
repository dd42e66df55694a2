"""Per-request state shared by the stages of one pipeline execution."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from werkzeug.datastructures import Headers

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .container import ServiceScope


class ResponseBuffer:
    """Buffered response: status, headers and text body."""

    def __init__(self) -> None:
        self.status = 200
        self.headers = Headers()
        self._chunks: list[str] = []
        self._touched = False

    @property
    def has_started(self) -> bool:
        """True once a stage wrote body text or set a status."""
        return self._touched or bool(self._chunks)

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def write(self, text: str) -> None:
        self._chunks.append(text)

    def set_status(self, status: int) -> None:
        self.status = status
        self._touched = True

    def clear(self) -> None:
        """Drop everything written so far (used by the error boundary)."""
        self.status = 200
        self.headers = Headers()
        self._chunks.clear()
        self._touched = False

    def body_bytes(self, encoding: str = "utf-8") -> bytes:
        return self.text.encode(encoding)


@dataclass
class RequestContext:
    """One in-flight request/response pair.

    ``items`` carries arbitrary values between stages. ``services`` is the
    request's service scope when the host created one.
    """

    method: str = "GET"
    path: str = "/"
    headers: Headers = field(default_factory=Headers)
    body: bytes = b""
    query_string: str = ""
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    items: dict[str, Any] = field(default_factory=dict)
    response: ResponseBuffer = field(default_factory=ResponseBuffer)
    services: ServiceScope | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        if not self.path.startswith("/"):
            self.path = "/" + self.path

    def resolve(self, capability: Any) -> Any:
        """Resolve a capability from the request scope."""
        if self.services is None:
            raise ConfigurationError(f"Request {self.request_id} has no service scope")
        return self.services.resolve(capability)


__all__ = ["RequestContext", "ResponseBuffer"]
