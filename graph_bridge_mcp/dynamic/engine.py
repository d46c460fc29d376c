"""Generic execution engine for declarative endpoints.

This module provides the ExecutionEngine class, which interprets endpoint
descriptors and request schemas as data: it validates caller arguments,
builds the request, dispatches it with the cached credential, follows
pagination or download references when the descriptor asks for it, and
normalizes the response. No code path depends on a tool's identity.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

from .auth import AuthManager, ClientCredentialsTokenSource, StaticTokenSource
from .config import BridgeConfig
from .descriptor_store import EndpointDescriptorStore
from .errors import (
    AuthenticationError,
    NotFoundError,
    PaginationLimitExceeded,
    RemoteApiError,
)
from .models import (
    ConstructedRequest,
    Credential,
    EndpointDescriptor,
    HTTPMethod,
    NormalizedResponse,
    RawResponse,
    ResponseMode,
    ToolInfo,
)
from .pagination import PaginationDriver
from .request_builder import RequestBuilder
from .schema_registry import RequestSchema, SchemaRegistry
from .transport import AiohttpTransport, Transport

DOWNLOAD_URL_FIELDS = ("@microsoft.graph.downloadUrl", "downloadUrl")
ITEMS_FIELD = "value"
RELEVANT_HEADERS = ("Content-Type", "Content-Length", "Content-Disposition", "ETag")

_TEXT_TYPES = ("xml", "javascript", "csv")


def decode_body(raw: RawResponse) -> Tuple[str, Any]:
    """Decode a response body according to its content type

    Returns:
        (encoding, value) where encoding is json, text, base64 or empty
    """
    if not raw.body:
        return "empty", None
    content_type = raw.content_type
    if "json" in content_type:
        try:
            return "json", json.loads(raw.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logging.warning(f"[Engine] Response declared {content_type} but is not valid JSON")
    if not content_type or "json" in content_type or content_type.startswith("text/") \
            or any(t in content_type for t in _TEXT_TYPES):
        try:
            return "text", raw.body.decode("utf-8")
        except UnicodeDecodeError:
            pass
    return "base64", base64.b64encode(raw.body).decode("ascii")


def normalize(raw: RawResponse, pages: int = 1) -> NormalizedResponse:
    encoding, body = decode_body(raw)
    headers = {}
    for name in RELEVANT_HEADERS:
        value = raw.header(name)
        if value is not None:
            headers[name] = value
    return NormalizedResponse(
        status=raw.status,
        content_type=raw.content_type,
        body=body,
        encoding=encoding,
        headers=headers,
        pages=pages,
    )


class _Invocation:
    """Per-call state; nothing here is shared between invocations"""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        self.auth_retried = False


class ExecutionEngine:
    """Executes tools described by descriptors and schemas

    Args:
        descriptors: Endpoint overlay configuration, in advertised order
        schemas: Generated request-shape schemas
        auth: Credential owner
        transport: HTTP transport
        builder: Request builder bound to the API root
        paginator: Pagination driver (defaults to a 100 page cap)
        timeout: Per-dispatch timeout in seconds
    """

    def __init__(
        self,
        descriptors: EndpointDescriptorStore,
        schemas: SchemaRegistry,
        auth: AuthManager,
        transport: Transport,
        builder: RequestBuilder,
        paginator: Optional[PaginationDriver] = None,
        timeout: float = 30.0,
    ):
        self.descriptors = descriptors
        self.schemas = schemas
        self.auth = auth
        self.transport = transport
        self.builder = builder
        self.paginator = paginator or PaginationDriver()
        self.timeout = timeout
        self._tools: Dict[str, Tuple[EndpointDescriptor, RequestSchema]] = {}

        for descriptor in descriptors:
            schema = schemas.find(descriptor.tool_name)
            if schema is None:
                logging.error(f"[Engine] No request schema for '{descriptor.tool_name}', tool disabled")
                continue
            schema.extended_with(descriptor.dynamic_parameters)
            self._tools[descriptor.tool_name] = (descriptor, schema)
        logging.info(f"[Engine] Initialized with {len(self._tools)} tools")

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[ToolInfo]:
        """Describe every executable tool for advertisement to the agent"""
        tools = []
        for descriptor, schema in self._tools.values():
            description = schema.description or f"{descriptor.method.value} {descriptor.path_pattern}"
            if descriptor.guidance_text:
                description = f"{description}\n\nTIP: {descriptor.guidance_text}"
            tools.append(ToolInfo(
                name=descriptor.tool_name,
                description=description,
                input_schema=schema.extended_with(descriptor.dynamic_parameters).to_json_schema(),
                required_scopes=descriptor.required_scopes,
            ))
        return tools

    async def execute(self, tool_name: str, args: Optional[Mapping[str, Any]] = None) -> NormalizedResponse:
        """Run one tool invocation end to end

        Args:
            tool_name: Tool identifier
            args: Caller arguments

        Returns:
            NormalizedResponse for the final content

        Raises:
            NotFoundError: Unknown tool; no network call is made
            ValidationError: Arguments do not conform; no network call is made
            AuthenticationError: Credential unavailable or rejected twice
            TransportError: Network failure or timeout
            RemoteApiError: Non-2xx response other than the retried 401
            PaginationLimitExceeded: Page cap hit; ``partial`` holds the collected result
        """
        entry = self._tools.get(tool_name)
        if entry is None:
            logging.warning(f"[Engine] Tool '{tool_name}' not found")
            raise NotFoundError(tool_name)
        descriptor, schema = entry

        request = self.builder.build(descriptor, schema, args if args is not None else {})
        logging.info(f"[Engine] {tool_name}: {request.method.value} {request.url}")

        invocation = _Invocation(tool_name)
        raw = await self._dispatch(invocation, request)

        if descriptor.response_mode == ResponseMode.DOWNLOAD_URL:
            return await self._download(invocation, request, raw)
        if descriptor.fetch_all_pages:
            return await self._paginate(invocation, request, raw)
        return normalize(raw)

    async def _send(self, request: ConstructedRequest, credential: Credential) -> RawResponse:
        return await self.transport.send(
            request.method.value,
            request.url,
            request.with_authorization(credential.access_token),
            request.body,
            self.timeout,
        )

    async def _dispatch(self, invocation: _Invocation, request: ConstructedRequest) -> RawResponse:
        credential = await self.auth.acquire_credential()
        response = await self._send(request, credential)

        if response.status == 401:
            if invocation.auth_retried:
                logging.error(f"[Engine] {invocation.tool_name}: credential rejected again after refresh")
                raise AuthenticationError("Remote API rejected the refreshed credential")
            invocation.auth_retried = True
            logging.warning(f"[Engine] {invocation.tool_name}: credential rejected, refreshing and retrying once")
            self.auth.invalidate(credential)
            credential = await self.auth.acquire_credential()
            response = await self._send(request, credential)
            if response.status == 401:
                logging.error(f"[Engine] {invocation.tool_name}: credential rejected twice")
                raise AuthenticationError("Remote API rejected the credential twice")

        if not response.ok:
            _, body = decode_body(response)
            logging.warning(f"[Engine] {invocation.tool_name}: remote API returned {response.status}")
            raise RemoteApiError(response.status, body, response.headers, request.url)
        return response

    async def _paginate(self, invocation: _Invocation, request: ConstructedRequest, first: RawResponse) -> NormalizedResponse:
        encoding, first_body = decode_body(first)
        if encoding != "json" or not isinstance(first_body, dict) or not isinstance(first_body.get(ITEMS_FIELD), list):
            return normalize(first)

        page_headers = {k: v for k, v in request.headers.items() if k.lower() != "content-type"}

        async def fetch_next(link: str) -> Any:
            page_request = ConstructedRequest(method=HTTPMethod.GET, url=link, headers=page_headers)
            raw = await self._dispatch(invocation, page_request)
            return decode_body(raw)[1]

        items: List[Any] = []
        pages = 0

        def accumulated() -> NormalizedResponse:
            result = {k: v for k, v in first_body.items() if k != self.paginator.next_link_field}
            result[ITEMS_FIELD] = items
            response = normalize(first, pages=pages)
            response.body = result
            response.encoding = "json"
            response.headers.pop("Content-Length", None)
            return response

        try:
            async for body in self.paginator.drive(first_body, fetch_next):
                pages += 1
                if isinstance(body, dict) and isinstance(body.get(ITEMS_FIELD), list):
                    items.extend(body[ITEMS_FIELD])
        except PaginationLimitExceeded as e:
            e.partial = accumulated()
            raise

        logging.info(f"[Engine] {invocation.tool_name}: collected {len(items)} items over {pages} pages")
        return accumulated()

    @staticmethod
    def _download_reference(raw: RawResponse) -> Optional[str]:
        encoding, body = decode_body(raw)
        if isinstance(body, dict):
            for field in DOWNLOAD_URL_FIELDS:
                value = body.get(field)
                if isinstance(value, str) and value:
                    return value
        if encoding == "json" and isinstance(body, str) and body:
            return body
        return raw.header("Location")

    async def _download(self, invocation: _Invocation, request: ConstructedRequest, raw: RawResponse) -> NormalizedResponse:
        reference = self._download_reference(raw)
        if not reference:
            logging.error(f"[Engine] {invocation.tool_name}: response carries no download reference")
            raise RemoteApiError(raw.status, decode_body(raw)[1], raw.headers, request.url)

        url = urljoin(raw.url or request.url, reference)
        headers = {k: v for k, v in request.headers.items() if k.lower() not in ("content-type", "accept")}
        headers["Accept"] = "*/*"
        logging.info(f"[Engine] {invocation.tool_name}: following download reference")
        content = await self._dispatch(invocation, ConstructedRequest(method=HTTPMethod.GET, url=url, headers=headers))
        return normalize(content)

    async def close(self) -> None:
        await self.transport.close()


def create_engine(config: BridgeConfig, transport: Optional[Transport] = None) -> ExecutionEngine:
    """Wire an ExecutionEngine from configuration

    Args:
        config: Bridge settings
        transport: Transport to use instead of a new AiohttpTransport

    Returns:
        ExecutionEngine instance

    Raises:
        ValueError: If no way to obtain a credential is configured
    """
    transport = transport or AiohttpTransport(timeout=config.timeout)

    if config.access_token:
        logging.info("[Engine] Using pre-issued access token")
        token_source = StaticTokenSource(config.access_token)
    elif config.has_client_credentials:
        logging.info(f"[Engine] Using client credentials against {config.resolved_token_url}")
        token_source = ClientCredentialsTokenSource(
            transport,
            config.resolved_token_url,
            config.client_id,
            config.client_secret,
            config.scopes,
            timeout=config.timeout,
        )
    else:
        raise ValueError(
            "No credentials configured: set GRAPH_BRIDGE_ACCESS_TOKEN or "
            "GRAPH_BRIDGE_CLIENT_ID and GRAPH_BRIDGE_CLIENT_SECRET"
        )

    descriptors = EndpointDescriptorStore.from_file(config.endpoints_file).filtered(
        read_only=config.read_only,
        enabled_tools=config.enabled_tools,
    )
    schemas = SchemaRegistry.from_file(config.schemas_file)

    return ExecutionEngine(
        descriptors=descriptors,
        schemas=schemas,
        auth=AuthManager(token_source, refresh_margin=config.token_refresh_margin),
        transport=transport,
        builder=RequestBuilder(config.base_url),
        paginator=PaginationDriver(max_pages=config.max_pages),
        timeout=config.timeout,
    )


__all__ = [
    "ExecutionEngine",
    "create_engine",
    "decode_body",
    "normalize",
]
