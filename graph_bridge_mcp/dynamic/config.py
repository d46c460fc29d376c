"""Environment-driven settings for the bridge."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

DEFAULT_BASE_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
DEFAULT_SCOPES = "https://graph.microsoft.com/.default"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


def _env_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class BridgeConfig:
    base_url: str = DEFAULT_BASE_URL
    tenant_id: str = "common"
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    token_url: Optional[str] = None
    scopes: Tuple[str, ...] = (DEFAULT_SCOPES,)
    access_token: Optional[str] = None
    timeout: float = 30.0
    max_pages: int = 100
    token_refresh_margin: float = 300.0
    read_only: bool = False
    enabled_tools: Optional[str] = None
    endpoints_file: Path = DATA_DIR / "endpoints.json"
    schemas_file: Path = DATA_DIR / "schemas.json"

    @property
    def resolved_token_url(self) -> str:
        return self.token_url or DEFAULT_TOKEN_URL.format(tenant=self.tenant_id)

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Build a config from ``GRAPH_BRIDGE_*`` environment variables

        Args:
            env: Mapping to read instead of ``os.environ`` (tests)

        Returns:
            BridgeConfig instance

        Raises:
            ValueError: If a numeric setting is malformed
        """
        env = os.environ if env is None else env
        scopes = tuple((env.get("GRAPH_BRIDGE_SCOPES") or DEFAULT_SCOPES).split())
        return cls(
            base_url=(env.get("GRAPH_BRIDGE_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            tenant_id=env.get("GRAPH_BRIDGE_TENANT_ID") or "common",
            client_id=env.get("GRAPH_BRIDGE_CLIENT_ID") or None,
            client_secret=env.get("GRAPH_BRIDGE_CLIENT_SECRET") or None,
            token_url=env.get("GRAPH_BRIDGE_TOKEN_URL") or None,
            scopes=scopes,
            access_token=env.get("GRAPH_BRIDGE_ACCESS_TOKEN") or None,
            timeout=_env_number(env, "GRAPH_BRIDGE_TIMEOUT", 30.0, float),
            max_pages=_env_number(env, "GRAPH_BRIDGE_MAX_PAGES", 100, int),
            token_refresh_margin=_env_number(env, "GRAPH_BRIDGE_TOKEN_REFRESH_MARGIN", 300.0, float),
            read_only=_env_bool(env, "GRAPH_BRIDGE_READ_ONLY"),
            enabled_tools=env.get("GRAPH_BRIDGE_ENABLED_TOOLS") or None,
            endpoints_file=Path(env.get("GRAPH_BRIDGE_ENDPOINTS_FILE") or DATA_DIR / "endpoints.json"),
            schemas_file=Path(env.get("GRAPH_BRIDGE_SCHEMAS_FILE") or DATA_DIR / "schemas.json"),
        )


__all__ = [
    "BridgeConfig",
    "DATA_DIR",
]
