"""Declarative endpoint descriptors loaded from static configuration."""

import json
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from .models import (
    AUTHORIZATION_HEADER,
    DynamicParameter,
    EndpointDescriptor,
    HTTPMethod,
    ParamLocation,
    ResponseMode,
)

_DYNAMIC_TARGETS = (ParamLocation.HEADER, ParamLocation.QUERY, ParamLocation.BODY)


def create_dynamic_parameter_from_config(config: dict) -> DynamicParameter:
    target = ParamLocation(config["target"])
    if target not in _DYNAMIC_TARGETS:
        raise ValueError(f"Dynamic parameter '{config['name']}' cannot bind to '{target.value}'")
    return DynamicParameter(
        name=config["name"],
        type=config.get("type", "string"),
        target=target,
        key=config.get("key"),
        template=config.get("template"),
        description=config.get("description", ""),
    )


def create_descriptor_from_config(config: dict) -> EndpointDescriptor:
    """Create an EndpointDescriptor from a configuration dictionary

    Args:
        config: Dictionary containing endpoint configuration (camelCase keys)

    Returns:
        EndpointDescriptor instance

    Raises:
        KeyError: If required configuration keys are missing
        ValueError: If configuration values are invalid
    """
    extra_headers = dict(config.get("extraHeaders") or {})
    for name in extra_headers:
        if name.lower() == AUTHORIZATION_HEADER.lower():
            raise ValueError(f"Endpoint '{config['toolName']}' may not configure the {AUTHORIZATION_HEADER} header")

    return EndpointDescriptor(
        tool_name=config["toolName"],
        path_pattern=config["pathPattern"],
        method=HTTPMethod(config["method"].upper()),
        required_scopes=frozenset(config.get("requiredScopes") or ()),
        extra_headers=extra_headers,
        guidance_text=config.get("guidanceText", ""),
        fetch_all_pages=bool(config.get("fetchAllPages", False)),
        response_mode=ResponseMode(config.get("responseMode", ResponseMode.RAW.value)),
        dynamic_parameters=tuple(
            create_dynamic_parameter_from_config(p) for p in config.get("dynamicParameters") or ()
        ),
    )


def load_descriptors(path: Path) -> List[EndpointDescriptor]:
    with open(path, "r", encoding="utf-8") as fh:
        configs = json.load(fh)
    if not isinstance(configs, list):
        raise ValueError(f"{path} must contain a JSON list of endpoint descriptors")
    return [create_descriptor_from_config(c) for c in configs]


class EndpointDescriptorStore:
    """Ordered, immutable collection of endpoint descriptors

    Args:
        descriptors: Descriptors in configuration order

    Raises:
        ValueError: If two descriptors share a tool name
    """

    def __init__(self, descriptors: Iterable[EndpointDescriptor] = ()):
        self._descriptors: Dict[str, EndpointDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.tool_name in self._descriptors:
                raise ValueError(f"Endpoint '{descriptor.tool_name}' already exists")
            self._descriptors[descriptor.tool_name] = descriptor

    @classmethod
    def from_file(cls, path: Path) -> "EndpointDescriptorStore":
        store = cls(load_descriptors(path))
        logging.info(f"[DescriptorStore] Loaded {len(store)} endpoint descriptors from {path}")
        return store

    def get(self, tool_name: str) -> EndpointDescriptor:
        return self._descriptors[tool_name]

    def list(self) -> List[EndpointDescriptor]:
        return list(self._descriptors.values())

    def required_scopes(self) -> List[str]:
        scopes = set()
        for descriptor in self._descriptors.values():
            scopes.update(descriptor.required_scopes)
        return sorted(scopes)

    def filtered(self, read_only: bool = False, enabled_tools: Optional[str] = None) -> "EndpointDescriptorStore":
        """Return a new store restricted to the allowed tools

        Args:
            read_only: Keep only GET endpoints
            enabled_tools: Regular expression a tool name must match (re.search)

        Returns:
            A new EndpointDescriptorStore
        """
        pattern = re.compile(enabled_tools) if enabled_tools else None
        kept = []
        for descriptor in self._descriptors.values():
            if read_only and descriptor.method != HTTPMethod.GET:
                continue
            if pattern is not None and not pattern.search(descriptor.tool_name):
                continue
            kept.append(descriptor)
        dropped = len(self._descriptors) - len(kept)
        if dropped:
            logging.info(f"[DescriptorStore] Filtered out {dropped} endpoints (read_only={read_only}, enabled_tools={enabled_tools!r})")
        return EndpointDescriptorStore(kept)

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[EndpointDescriptor]:
        return iter(self._descriptors.values())


__all__ = [
    "create_descriptor_from_config",
    "create_dynamic_parameter_from_config",
    "load_descriptors",
    "EndpointDescriptorStore",
]
