from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from .errors import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val in {"1", "true", "yes", "y", "on"}:
        return True
    if val in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def socket_url_from_graphql(endpoint: str) -> str:
    """Derive the socket.io server URL from a GraphQL endpoint.

    ``https://host/graphql`` becomes ``wss://host`` and ``http`` becomes ``ws``.
    """
    parts = urlsplit(endpoint)
    scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
    path = parts.path.rstrip("/")
    if path.endswith("/graphql"):
        path = path[: -len("/graphql")]
    return urlunsplit((scheme, parts.netloc, path, "", ""))


@dataclass(frozen=True)
class Settings:
    """Connection and behaviour settings.

    Built once by the caller (usually via ``Settings.from_env()``) and passed
    to every service. Nothing in the package reads the environment on its own.
    """

    base_url: str = "http://localhost:3010"
    workspace_id: str | None = None
    api_token: str | None = field(default=None, repr=False)
    client_version: str = "0.26.2"
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    strict: bool = True

    log_level: str = "INFO"
    log_path: Path | None = None
    log_max_bytes: int = 1_000_000
    log_backup_count: int = 3

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            base_url=os.environ.get("AFFINE_BASE_URL", cls.base_url).rstrip("/"),
            workspace_id=os.environ.get("AFFINE_WORKSPACE_ID") or None,
            api_token=os.environ.get("AFFINE_API_TOKEN") or None,
            client_version=os.environ.get("AFFINE_CLIENT_VERSION", cls.client_version),
            connect_timeout=_env_float("AFFINE_CONNECT_TIMEOUT", cls.connect_timeout),
            request_timeout=_env_float("AFFINE_REQUEST_TIMEOUT", cls.request_timeout),
            strict=_env_bool("AFFINE_STRICT", cls.strict),
            log_level=os.environ.get("AFFINE_LOG_LEVEL", cls.log_level),
            log_path=(
                Path(os.environ["AFFINE_LOG_PATH"]) if os.environ.get("AFFINE_LOG_PATH") else None
            ),
            log_max_bytes=_env_int("AFFINE_LOG_MAX_BYTES", cls.log_max_bytes),
            log_backup_count=_env_int("AFFINE_LOG_BACKUP_COUNT", cls.log_backup_count),
        )

    @property
    def graphql_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/graphql"

    @property
    def socket_url(self) -> str:
        return socket_url_from_graphql(self.graphql_endpoint)

    def auth_headers(self) -> dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}

    def resolve_workspace(self, workspace_id: str | None) -> str:
        """Return the explicit workspace id, falling back to the configured one."""
        resolved = workspace_id or self.workspace_id
        if not resolved:
            raise ConfigurationError(
                "workspace_id is required (pass it or set AFFINE_WORKSPACE_ID)",
                setting="AFFINE_WORKSPACE_ID",
            )
        return resolved
