"""Declarative REST-to-MCP bridge package.

This package exposes remote REST API endpoints as MCP tools. Endpoints are
data (a descriptor plus a generated request schema) and a single generic
engine executes all of them.
"""

from .auth import AuthManager, ClientCredentialsTokenSource, StaticTokenSource
from .config import BridgeConfig
from .core import DynamicMCPServer
from .descriptor_store import EndpointDescriptorStore, create_descriptor_from_config
from .engine import ExecutionEngine, create_engine
from .errors import (
    AuthenticationError,
    BridgeError,
    FieldError,
    NotFoundError,
    PaginationLimitExceeded,
    RemoteApiError,
    TransportError,
    ValidationError,
)
from .models import (
    ConstructedRequest,
    Credential,
    DynamicParameter,
    EndpointDescriptor,
    HTTPMethod,
    NormalizedResponse,
    ParamLocation,
    ResponseMode,
)
from .pagination import PaginationDriver
from .request_builder import RequestBuilder
from .schema_registry import RequestSchema, SchemaField, SchemaRegistry
from .transport import AiohttpTransport

__all__ = [
    "AiohttpTransport",
    "AuthManager",
    "AuthenticationError",
    "BridgeConfig",
    "BridgeError",
    "ClientCredentialsTokenSource",
    "ConstructedRequest",
    "Credential",
    "DynamicMCPServer",
    "DynamicParameter",
    "EndpointDescriptor",
    "EndpointDescriptorStore",
    "ExecutionEngine",
    "FieldError",
    "HTTPMethod",
    "NormalizedResponse",
    "NotFoundError",
    "PaginationDriver",
    "PaginationLimitExceeded",
    "ParamLocation",
    "RemoteApiError",
    "RequestBuilder",
    "RequestSchema",
    "ResponseMode",
    "SchemaField",
    "SchemaRegistry",
    "StaticTokenSource",
    "TransportError",
    "ValidationError",
    "create_descriptor_from_config",
    "create_engine",
]
