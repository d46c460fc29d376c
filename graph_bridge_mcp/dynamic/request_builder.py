"""Turns a descriptor, a schema and caller arguments into a request.

The builder is a pure function of its inputs. It knows nothing about
individual endpoints: every decision is driven by how the schema
classifies each argument and by the overlay flags on the descriptor.
"""

import json
import re
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import quote, urlencode

from .errors import FieldError, ValidationError
from .models import (
    AUTHORIZATION_HEADER,
    ConstructedRequest,
    DynamicParameter,
    EndpointDescriptor,
    ParamLocation,
)
from .schema_registry import BODY_FIELD, RequestSchema

PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")

# OData directives ($select, $filter, ...) and list separators stay literal
QUERY_SAFE = "$,"


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_empty_query(value: Any) -> bool:
    return _is_empty(value) or (isinstance(value, (list, tuple, dict)) and not value)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_query_value(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class RequestBuilder:
    """Builds ConstructedRequest values against one API root

    Args:
        base_url: API root that path patterns are appended to
    """

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def build(self, descriptor: EndpointDescriptor, schema: RequestSchema, args: Mapping[str, Any]) -> ConstructedRequest:
        """Validate ``args`` and construct the request for ``descriptor``

        Args:
            descriptor: Endpoint overlay configuration
            schema: Generated request-shape schema for the same tool
            args: Caller arguments

        Returns:
            ConstructedRequest without an Authorization header

        Raises:
            ValidationError: If the arguments do not conform or a placeholder is unbound
        """
        effective = schema.extended_with(descriptor.dynamic_parameters)
        errors = effective.validate(args)
        if errors:
            raise ValidationError(descriptor.tool_name, errors)

        args = {k: v for k, v in args.items() if v is not None}
        dynamic = {p.name: p for p in descriptor.dynamic_parameters}

        path = self._resolve_path(descriptor, effective, args)

        query: List[Tuple[str, str]] = []
        headers: Dict[str, str] = {}
        body_fields: Dict[str, Any] = {}
        payload: Any = None

        for field in effective.fields:
            if field.name not in args or field.location == ParamLocation.PATH:
                continue
            value = args[field.name]
            if field.location == ParamLocation.QUERY:
                if not _is_empty_query(value):
                    query.append((field.name, _query_value(value)))
            elif field.location == ParamLocation.HEADER:
                headers[field.name] = _header_value(value)
            elif field.location == ParamLocation.BODY:
                if field.name == BODY_FIELD:
                    payload = value
                else:
                    body_fields[field.name] = value
            elif field.location == ParamLocation.DYNAMIC:
                self._bind_dynamic(dynamic[field.name], value, query, headers, body_fields)

        body = self._serialize_body(descriptor, payload, body_fields)

        composed: Dict[str, str] = {"Accept": "application/json"}
        if body is not None:
            composed["Content-Type"] = "application/json"
        composed.update(descriptor.extra_headers)
        composed.update(headers)
        composed = {
            name: value for name, value in composed.items()
            if name.lower() != AUTHORIZATION_HEADER.lower()
        }

        url = self.base_url + path
        if query:
            url += "?" + urlencode(query, quote_via=quote, safe=QUERY_SAFE)

        return ConstructedRequest(method=descriptor.method, url=url, headers=composed, body=body)

    def _resolve_path(self, descriptor: EndpointDescriptor, schema: RequestSchema, args: Mapping[str, Any]) -> str:
        fields = schema.field_map
        errors: List[FieldError] = []

        def substitute(match: "re.Match") -> str:
            name = match.group(1)
            field = fields.get(name)
            if field is None or field.location != ParamLocation.PATH:
                errors.append(FieldError(name, "path placeholder is not a path parameter of this tool"))
                return match.group(0)
            value = args.get(name)
            if _is_empty(value) or str(value).strip() == "":
                errors.append(FieldError(name, "path parameter must not be empty"))
                return match.group(0)
            return quote(str(value), safe="")

        path = PLACEHOLDER_RE.sub(substitute, descriptor.path_pattern)
        if errors:
            raise ValidationError(descriptor.tool_name, errors)
        if not path.startswith("/"):
            path = "/" + path
        return path

    @staticmethod
    def _bind_dynamic(
        param: DynamicParameter,
        value: Any,
        query: List[Tuple[str, str]],
        headers: Dict[str, str],
        body_fields: Dict[str, Any],
    ) -> None:
        rendered = param.render(value)
        if param.target == ParamLocation.HEADER:
            headers[param.binding_key] = _header_value(rendered)
        elif param.target == ParamLocation.QUERY:
            if not _is_empty_query(rendered):
                query.append((param.binding_key, _query_value(rendered)))
        elif param.target == ParamLocation.BODY:
            body_fields[param.binding_key] = rendered

    @staticmethod
    def _serialize_body(descriptor: EndpointDescriptor, payload: Any, body_fields: Dict[str, Any]):
        if payload is None and not body_fields:
            return None

        if not descriptor.method.allows_body:
            names = ([BODY_FIELD] if payload is not None else []) + list(body_fields)
            raise ValidationError(descriptor.tool_name, [
                FieldError(name, f"{descriptor.method.value} requests do not carry a body") for name in names
            ])

        if body_fields:
            if payload is None:
                payload = {}
            elif not isinstance(payload, dict):
                raise ValidationError(descriptor.tool_name, [
                    FieldError(BODY_FIELD, "must be an object when combined with other body fields")
                ])
            payload = {**payload, **body_fields}
        elif not isinstance(payload, (dict, list)):
            raise ValidationError(descriptor.tool_name, [FieldError(BODY_FIELD, "must be an object or array")])

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


__all__ = [
    "RequestBuilder",
]
