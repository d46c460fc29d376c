"""Request-shape schemas generated ahead of time from the API description.

A schema is an opaque validation contract for one tool: which argument
names exist, where each binds (path, query, header or body), whether it
is required and its JSON type. The registry is filled once at startup
and is read-only afterwards.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from jsonschema import Draft7Validator

from .errors import FieldError
from .models import DynamicParameter, ParamLocation

BODY_FIELD = "body"
ARGUMENTS_FIELD = "<arguments>"


@dataclass(frozen=True)
class SchemaField:
    name: str
    location: ParamLocation
    required: bool = False
    json_schema: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""

    def to_property(self) -> Dict[str, Any]:
        prop = dict(self.json_schema)
        if self.description and "description" not in prop:
            prop["description"] = self.description
        return prop


@dataclass(frozen=True)
class RequestSchema:
    """Structural contract for one tool's arguments

    Args:
        tool_name: Tool the schema belongs to
        method: HTTP method from the API description (informational)
        path: Path template from the API description (informational)
        description: Human description advertised to the agent
        fields: Ordered argument fields
        closed: Reject arguments that are not declared fields
    """
    tool_name: str
    method: str
    path: str
    description: str = ""
    fields: Tuple[SchemaField, ...] = ()
    closed: bool = True

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))

    @property
    def field_map(self) -> Mapping[str, SchemaField]:
        return MappingProxyType({f.name: f for f in self.fields})

    def fields_in(self, location: ParamLocation) -> List[SchemaField]:
        return [f for f in self.fields if f.location == location]

    def path_fields(self) -> List[SchemaField]:
        return self.fields_in(ParamLocation.PATH)

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": {f.name: f.to_property() for f in self.fields},
        }
        required = [f.name for f in self.fields if f.required]
        if required:
            schema["required"] = required
        if self.closed:
            schema["additionalProperties"] = False
        return schema

    def extended_with(self, dynamic_parameters: Iterable[DynamicParameter]) -> "RequestSchema":
        """Return a copy that also accepts the descriptor's dynamic parameters

        Raises:
            ValueError: If a dynamic parameter reuses the name of a schema field
        """
        dynamic_parameters = list(dynamic_parameters)
        if not dynamic_parameters:
            return self
        existing = self.field_map
        extra = []
        for param in dynamic_parameters:
            if param.name in existing:
                raise ValueError(
                    f"Dynamic parameter '{param.name}' of '{self.tool_name}' collides with a schema field"
                )
            extra.append(SchemaField(
                name=param.name,
                location=ParamLocation.DYNAMIC,
                required=False,
                json_schema={"type": param.type},
                description=param.description,
            ))
        return replace(self, fields=self.fields + tuple(extra))

    def validate(self, args: Any) -> List[FieldError]:
        """Check ``args`` against this schema

        ``None`` values are treated as absent.

        Returns:
            One FieldError per offending field; empty when the arguments conform
        """
        if not isinstance(args, Mapping):
            return [FieldError(ARGUMENTS_FIELD, "arguments must be an object")]

        present = {k: v for k, v in args.items() if v is not None}
        validator = Draft7Validator(self.to_json_schema())
        known = self.field_map
        errors: List[FieldError] = []
        seen = set()

        def add(name: str, message: str) -> None:
            if (name, message) not in seen:
                seen.add((name, message))
                errors.append(FieldError(name, message))

        for error in validator.iter_errors(present):
            if not error.path and error.validator == "required":
                for name in error.validator_value:
                    if name not in present:
                        add(name, "is a required field")
            elif not error.path and error.validator == "additionalProperties":
                for name in present:
                    if name not in known:
                        add(name, f"is not accepted by '{self.tool_name}'")
            elif error.path:
                add(str(error.path[0]), error.message)
            else:
                add(ARGUMENTS_FIELD, error.message)
        return errors

    @classmethod
    def from_artifact(cls, tool_name: str, entry: Mapping[str, Any]) -> "RequestSchema":
        """Create a RequestSchema from one generated artifact entry

        Args:
            tool_name: Tool identifier the entry is keyed by
            entry: Dict with method, path, parameters and optional requestBody

        Raises:
            KeyError: If method or path is missing
            ValueError: If a parameter location is unknown
        """
        fields: List[SchemaField] = []
        for param in entry.get("parameters", []):
            location = ParamLocation(param["in"])
            if location in (ParamLocation.BODY, ParamLocation.DYNAMIC):
                raise ValueError(f"Parameter '{param['name']}' of '{tool_name}' has unsupported location '{param['in']}'")
            fields.append(SchemaField(
                name=param["name"],
                location=location,
                required=location == ParamLocation.PATH or bool(param.get("required", False)),
                json_schema=param.get("schema") or {"type": "string"},
                description=param.get("description", ""),
            ))

        body = entry.get("requestBody")
        if body:
            fields.append(SchemaField(
                name=BODY_FIELD,
                location=ParamLocation.BODY,
                required=bool(body.get("required", False)),
                json_schema=body.get("schema") or {"type": "object"},
                description=body.get("description", "Request body"),
            ))

        return cls(
            tool_name=tool_name,
            method=entry["method"].upper(),
            path=entry["path"],
            description=entry.get("description", ""),
            fields=tuple(fields),
            closed=entry.get("closed", True),
        )


class SchemaRegistry:
    """Read-only mapping from tool identifier to RequestSchema"""

    def __init__(self, schemas: Iterable[RequestSchema] = ()):
        self._schemas: Dict[str, RequestSchema] = {}
        for schema in schemas:
            if schema.tool_name in self._schemas:
                raise ValueError(f"Schema for '{schema.tool_name}' already registered")
            self._schemas[schema.tool_name] = schema
        logging.info(f"[SchemaRegistry] Loaded {len(self._schemas)} request schemas")

    @classmethod
    def from_mapping(cls, artifact: Mapping[str, Mapping[str, Any]]) -> "SchemaRegistry":
        return cls(RequestSchema.from_artifact(name, entry) for name, entry in artifact.items())

    @classmethod
    def from_file(cls, path: Path) -> "SchemaRegistry":
        with open(path, "r", encoding="utf-8") as fh:
            artifact = json.load(fh)
        return cls.from_mapping(artifact)

    def get(self, tool_name: str) -> RequestSchema:
        return self._schemas[tool_name]

    def find(self, tool_name: str) -> Optional[RequestSchema]:
        return self._schemas.get(tool_name)

    def names(self) -> List[str]:
        return list(self._schemas)

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def __iter__(self) -> Iterator[RequestSchema]:
        return iter(self._schemas.values())


__all__ = [
    "BODY_FIELD",
    "SchemaField",
    "RequestSchema",
    "SchemaRegistry",
]
