import asyncio
import json
from typing import Callable, List, Optional

from graph_bridge_mcp.dynamic.auth import AuthManager
from graph_bridge_mcp.dynamic.descriptor_store import EndpointDescriptorStore, create_descriptor_from_config
from graph_bridge_mcp.dynamic.engine import ExecutionEngine
from graph_bridge_mcp.dynamic.errors import AuthenticationError
from graph_bridge_mcp.dynamic.models import Credential, RawResponse
from graph_bridge_mcp.dynamic.pagination import PaginationDriver
from graph_bridge_mcp.dynamic.request_builder import RequestBuilder
from graph_bridge_mcp.dynamic.schema_registry import SchemaRegistry

BASE_URL = "https://graph.example.test/v1.0"


def json_response(status: int, payload, headers: Optional[dict] = None) -> RawResponse:
    all_headers = {"Content-Type": "application/json; charset=utf-8"}
    all_headers.update(headers or {})
    return RawResponse(status=status, headers=all_headers, body=json.dumps(payload).encode("utf-8"))


class SentRequest:
    def __init__(self, method, url, headers, body, timeout):
        self.method = method
        self.url = url
        self.headers = dict(headers)
        self.body = body
        self.timeout = timeout

    @property
    def json(self):
        return json.loads(self.body.decode("utf-8")) if self.body else None


class FakeTransport:
    """Records every request and answers from a handler or a queue"""

    def __init__(self, responses: Optional[List] = None, handler: Optional[Callable] = None):
        self.responses = list(responses or [])
        self.handler = handler
        self.requests: List[SentRequest] = []
        self.closed = False

    async def send(self, method, url, headers, body=None, timeout=None):
        request = SentRequest(method, url, headers, body, timeout)
        self.requests.append(request)
        if self.handler is not None:
            result = self.handler(request)
        else:
            result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


class FakeTokenSource:
    """Issues token-1, token-2, ... and counts exchanges"""

    def __init__(self, lifetime: float = 3600.0, clock: Callable[[], float] = lambda: 1000.0,
                 gate: Optional[asyncio.Event] = None, fail: bool = False):
        self.lifetime = lifetime
        self.clock = clock
        self.gate = gate
        self.fail = fail
        self.calls = 0

    async def fetch_credential(self) -> Credential:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise AuthenticationError("authority unavailable")
        return Credential(access_token=f"token-{self.calls}", expires_at=self.clock() + self.lifetime)


SCHEMAS = {
    "send-chat-message": {
        "method": "post",
        "path": "/chats/{chat-id}/messages",
        "description": "Send a new message in a chat.",
        "parameters": [
            {"name": "chat-id", "in": "path", "required": True, "schema": {"type": "string"}},
        ],
        "requestBody": {"required": True, "schema": {"type": "object"}},
    },
    "list-messages": {
        "method": "get",
        "path": "/me/messages",
        "description": "List messages.",
        "parameters": [
            {"name": "$top", "in": "query", "schema": {"type": "integer"}},
            {"name": "$select", "in": "query", "schema": {"type": "array", "items": {"type": "string"}}},
            {"name": "$filter", "in": "query", "schema": {"type": "string"}},
        ],
    },
    "list-all-messages": {
        "method": "get",
        "path": "/me/messages",
        "description": "List every message.",
        "parameters": [
            {"name": "$top", "in": "query", "schema": {"type": "integer"}},
        ],
    },
    "download-file": {
        "method": "get",
        "path": "/drives/{drive-id}/items/{item-id}",
        "description": "Download a file.",
        "parameters": [
            {"name": "drive-id", "in": "path", "required": True, "schema": {"type": "string"}},
            {"name": "item-id", "in": "path", "required": True, "schema": {"type": "string"}},
        ],
    },
}

DESCRIPTORS = [
    {
        "toolName": "send-chat-message",
        "pathPattern": "/chats/{chat-id}/messages",
        "method": "POST",
        "requiredScopes": ["ChatMessage.Send"],
    },
    {
        "toolName": "list-messages",
        "pathPattern": "/me/messages",
        "method": "GET",
        "requiredScopes": ["Mail.Read"],
        "extraHeaders": {"ConsistencyLevel": "eventual"},
        "guidanceText": "Use $select to keep responses small.",
        "dynamicParameters": [
            {"name": "timezone", "type": "string", "target": "header", "key": "Prefer",
             "template": "outlook.timezone=\"{value}\""},
        ],
    },
    {
        "toolName": "list-all-messages",
        "pathPattern": "/me/messages",
        "method": "GET",
        "fetchAllPages": True,
    },
    {
        "toolName": "download-file",
        "pathPattern": "/drives/{drive-id}/items/{item-id}",
        "method": "GET",
        "responseMode": "downloadUrl",
    },
]


def make_engine(transport: FakeTransport, token_source: Optional[FakeTokenSource] = None,
                max_pages: int = 100, descriptors=None, schemas=None):
    token_source = token_source or FakeTokenSource()
    auth = AuthManager(token_source, refresh_margin=60, clock=lambda: 1000.0)
    engine = ExecutionEngine(
        descriptors=EndpointDescriptorStore(
            create_descriptor_from_config(c) for c in (descriptors or DESCRIPTORS)
        ),
        schemas=SchemaRegistry.from_mapping(schemas or SCHEMAS),
        auth=auth,
        transport=transport,
        builder=RequestBuilder(BASE_URL),
        paginator=PaginationDriver(max_pages=max_pages),
        timeout=5.0,
    )
    return engine, token_source
