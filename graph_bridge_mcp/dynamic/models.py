"""Data models for declarative endpoints, credentials and requests.

This module contains the core data structures the execution engine
interprets: endpoint descriptors loaded from static configuration, the
credential cached by the authentication manager, and the request and
response values that flow through a single invocation.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from multidict import CIMultiDict

AUTHORIZATION_HEADER = "Authorization"


class HTTPMethod(Enum):
    """Supported HTTP methods for API endpoints"""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"

    @property
    def allows_body(self) -> bool:
        return self in (HTTPMethod.POST, HTTPMethod.PUT, HTTPMethod.PATCH)


class ResponseMode(Enum):
    """How the engine treats a successful response"""
    RAW = "raw"
    DOWNLOAD_URL = "downloadUrl"


class ParamLocation(Enum):
    """Where an argument binds into the request"""
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    BODY = "body"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class DynamicParameter:
    """Caller-supplied parameter declared on a descriptor instead of the schema

    Args:
        name: Argument name the caller passes
        type: JSON primitive type ("string", "number", "integer", "boolean", "object", "array")
        target: Request component it augments (header, query or body)
        key: Header name, query name or body field; defaults to ``name``
        template: Optional format string rendered with ``{value}``
        description: Parameter description for tool documentation
    """
    name: str
    type: str
    target: ParamLocation
    key: Optional[str] = None
    template: Optional[str] = None
    description: str = ""

    @property
    def binding_key(self) -> str:
        return self.key or self.name

    def render(self, value: Any) -> Any:
        if self.template is None:
            return value
        return self.template.format(value=value)


@dataclass(frozen=True)
class EndpointDescriptor:
    """Static declarative configuration for one tool

    Args:
        tool_name: Unique tool identifier
        path_pattern: URL path template with named placeholders, e.g. /chats/{chat-id}/messages
        method: HTTP method to use
        required_scopes: Permission scopes the credential must carry (documentation only)
        extra_headers: Literal headers merged into every request for this tool
        guidance_text: Free-form hint surfaced to the calling agent
        fetch_all_pages: Follow continuation links and accumulate all pages
        response_mode: ``raw`` or ``downloadUrl``
        dynamic_parameters: Additional parameters not present in the generated schema
    """
    tool_name: str
    path_pattern: str
    method: HTTPMethod
    required_scopes: FrozenSet[str] = frozenset()
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    guidance_text: str = ""
    fetch_all_pages: bool = False
    response_mode: ResponseMode = ResponseMode.RAW
    dynamic_parameters: Tuple[DynamicParameter, ...] = ()

    def __post_init__(self):
        if self.fetch_all_pages and self.response_mode == ResponseMode.DOWNLOAD_URL:
            raise ValueError(f"Endpoint '{self.tool_name}' cannot combine fetchAllPages with downloadUrl")
        object.__setattr__(self, "extra_headers", MappingProxyType(dict(self.extra_headers)))
        object.__setattr__(self, "required_scopes", frozenset(self.required_scopes))
        object.__setattr__(self, "dynamic_parameters", tuple(self.dynamic_parameters))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "pathPattern": self.path_pattern,
            "method": self.method.value,
            "requiredScopes": sorted(self.required_scopes),
            "extraHeaders": dict(self.extra_headers),
            "guidanceText": self.guidance_text,
            "fetchAllPages": self.fetch_all_pages,
            "responseMode": self.response_mode.value,
            "dynamicParameters": [
                {
                    "name": p.name,
                    "type": p.type,
                    "target": p.target.value,
                    "key": p.binding_key,
                    "template": p.template,
                    "description": p.description,
                }
                for p in self.dynamic_parameters
            ],
        }


@dataclass(frozen=True)
class Credential:
    """Bearer token with its expiry (epoch seconds) and granted scopes"""
    access_token: str
    expires_at: float
    scopes: FrozenSet[str] = frozenset()

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        return self.expires_at - now > margin


@dataclass(frozen=True)
class ConstructedRequest:
    """A fully resolved request, minus the credential"""
    method: HTTPMethod
    url: str
    headers: Mapping[str, str]
    body: Optional[bytes] = None

    def with_authorization(self, access_token: str) -> Dict[str, str]:
        """Return the headers with the bearer credential attached last

        Args:
            access_token: Token to present to the remote API

        Returns:
            Header mapping in which no other header can stand in for Authorization
        """
        headers = {
            name: value for name, value in self.headers.items()
            if name.lower() != AUTHORIZATION_HEADER.lower()
        }
        headers[AUTHORIZATION_HEADER] = f"Bearer {access_token}"
        return headers


@dataclass
class RawResponse:
    """What the transport hands back: status, headers and undecoded bytes"""
    status: int
    headers: CIMultiDict
    body: bytes
    url: str = ""

    def __post_init__(self):
        # Repeated headers are kept; lookups ignore case
        self.headers = CIMultiDict(self.headers)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

    @property
    def content_type(self) -> str:
        return (self.header("Content-Type") or "").split(";", 1)[0].strip().lower()


@dataclass
class NormalizedResponse:
    """Result returned to the caller of ``execute``

    ``encoding`` tells how ``body`` was decoded: ``json`` (parsed value),
    ``text`` (str), ``base64`` (str of base64 data) or ``empty`` (None).
    """
    status: int
    content_type: str
    body: Any
    encoding: str
    headers: Dict[str, str] = field(default_factory=dict)
    pages: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "contentType": self.content_type,
            "encoding": self.encoding,
            "headers": dict(self.headers),
            "pages": self.pages,
            "body": self.body,
        }


@dataclass(frozen=True)
class ToolInfo:
    """Advertised view of one tool"""
    name: str
    description: str
    input_schema: Dict[str, Any]
    required_scopes: FrozenSet[str] = frozenset()


__all__ = [
    "AUTHORIZATION_HEADER",
    "HTTPMethod",
    "ResponseMode",
    "ParamLocation",
    "DynamicParameter",
    "EndpointDescriptor",
    "Credential",
    "ConstructedRequest",
    "RawResponse",
    "NormalizedResponse",
    "ToolInfo",
]
