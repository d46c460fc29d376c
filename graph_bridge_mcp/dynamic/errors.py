"""Error taxonomy raised by the execution engine and its collaborators."""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from multidict import CIMultiDict


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class BridgeError(Exception):
    """Base class for every failure surfaced by ``execute``"""

    kind = "BridgeError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, **self.details()}


class ValidationError(BridgeError):
    """Caller arguments do not conform to the tool's schema"""

    kind = "ValidationError"

    def __init__(self, tool_name: str, field_errors: List[FieldError]):
        fields = ", ".join(sorted({e.field for e in field_errors}))
        super().__init__(f"Invalid arguments for '{tool_name}': {fields}")
        self.tool_name = tool_name
        self.field_errors = list(field_errors)

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.field_errors]

    def details(self) -> Dict[str, Any]:
        return {"fieldErrors": [e.to_dict() for e in self.field_errors]}


class NotFoundError(BridgeError):
    kind = "NotFound"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found")
        self.tool_name = tool_name


class AuthenticationError(BridgeError):
    kind = "AuthenticationError"


class TransportError(BridgeError):
    """Network-level failure: timeout, refused connection, DNS"""

    kind = "TransportError"

    def __init__(self, message: str, *, url: str = "", timeout: bool = False):
        super().__init__(message)
        self.url = url
        self.timeout = timeout

    def details(self) -> Dict[str, Any]:
        return {"url": self.url, "timeout": self.timeout}


class RemoteApiError(BridgeError):
    """Non-2xx response from the remote API, other than the retried 401"""

    kind = "RemoteApiError"

    def __init__(self, status: int, body: Any, headers: Optional[Mapping[str, str]] = None, url: str = ""):
        super().__init__(f"Remote API returned status {status}")
        self.status = status
        self.body = body
        self.headers = CIMultiDict(headers or {})
        self.url = url

    def details(self) -> Dict[str, Any]:
        return {"status": self.status, "body": self.body, "url": self.url}


class PaginationLimitExceeded(BridgeError):
    """Pagination stopped at its safety bound; ``partial`` keeps what was collected"""

    kind = "PaginationLimitExceeded"

    def __init__(self, pages_fetched: int, max_pages: int, partial: Any = None):
        super().__init__(f"Stopped after {pages_fetched} pages (limit {max_pages}); results are partial")
        self.pages_fetched = pages_fetched
        self.max_pages = max_pages
        self.partial = partial

    def details(self) -> Dict[str, Any]:
        partial = self.partial.to_dict() if hasattr(self.partial, "to_dict") else self.partial
        return {"pagesFetched": self.pages_fetched, "maxPages": self.max_pages, "partial": partial}


__all__ = [
    "FieldError",
    "BridgeError",
    "ValidationError",
    "NotFoundError",
    "AuthenticationError",
    "TransportError",
    "RemoteApiError",
    "PaginationLimitExceeded",
]
