"""
Connector Transports

Dispatch strategies for a single remote endpoint:
- HttpTransport: httpx client owning auth headers and request stamping
- SyntheticTransport: zero-cost echo for recognizable test/mock hosts

The strategy is chosen once, by is_synthetic_endpoint(), so the
connector's call path carries no test-only branching.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse
import re
import uuid

import httpx
import structlog

from healthlink.config import ConnectorSettings, get_settings
from healthlink.errors import ConnectorConnectionError
from healthlink.models import ConnectorConfig

logger = structlog.get_logger(__name__)


# Hostname tokens that mark an endpoint as synthetic
SYNTHETIC_HOST_TOKENS = frozenset({"mock", "test", "example"})

# Transport failure codes
UNAUTHORIZED = "UNAUTHORIZED"
CONNECTION_REFUSED = "CONNECTION_REFUSED"
TIMEOUT = "TIMEOUT"
HTTP_ERROR = "HTTP_ERROR"
TRANSPORT_ERROR = "TRANSPORT_ERROR"


def is_synthetic_endpoint(endpoint: str) -> bool:
    """True when a hostname label (split on '.' and '-') is mock, test or example."""
    host = (urlparse(endpoint).hostname or "").lower()
    return any(token in SYNTHETIC_HOST_TOKENS for token in re.split(r"[.\-]", host))


class Transport(ABC):
    """Network access for one connector."""

    synthetic: bool = False

    @abstractmethod
    async def probe(self, path: str) -> Any:
        """Liveness probe. Raises ConnectorConnectionError on failure."""

    @abstractmethod
    async def send(self, path: str, body: dict[str, Any]) -> Any:
        """Dispatch a call body. Raises ConnectorConnectionError on failure."""

    async def close(self) -> None:
        pass


# =============================================================================
# Synthetic
# =============================================================================

class SyntheticTransport(Transport):
    """Answers locally; used for mock, test and example hosts."""

    synthetic = True

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.closed = False

    async def probe(self, path: str) -> dict[str, Any]:
        return {"status": "ok", "synthetic": True, "endpoint": self.endpoint}

    async def send(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        method = body.get("method")
        return {
            "success": True,
            "method": method,
            "path": path,
            "params": body.get("params"),
            "result": f"Mock execution successful for {method}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "mockEndpoint": self.endpoint,
        }

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# HTTP
# =============================================================================

class HttpTransport(Transport):
    """
    httpx-based transport.

    Features:
    - Bearer / API key / Basic / OAuth2 auth dispatch
    - X-Request-ID and X-Timestamp on every request
    - httpx errors mapped to ConnectorConnectionError codes
    """

    def __init__(
        self,
        config: ConnectorConfig,
        settings: ConnectorSettings | None = None,
        compliance_level: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.settings = settings or get_settings().connector

        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            **config.headers,
        }
        if compliance_level:
            headers["X-Healthcare-Compliance"] = compliance_level

        auth = None
        credentials = config.authentication
        if credentials.type == "bearer":
            headers["Authorization"] = f"Bearer {credentials.token}"
        elif credentials.type == "apikey":
            headers[credentials.header] = credentials.key
        elif credentials.type == "basic":
            auth = httpx.BasicAuth(credentials.username, credentials.password)
        elif credentials.type == "oauth2" and credentials.access_token:
            headers["Authorization"] = f"Bearer {credentials.access_token}"

        self._client = httpx.AsyncClient(
            base_url=config.endpoint,
            headers=headers,
            auth=auth,
            timeout=config.error_handling.timeout_ms / 1000,
            transport=transport,
            event_hooks={"request": [self._stamp_request]},
        )
        self._token_acquired = credentials.type != "oauth2" or bool(credentials.access_token)

    @staticmethod
    async def _stamp_request(request: httpx.Request) -> None:
        request.headers["X-Request-ID"] = str(uuid.uuid4())
        request.headers["X-Timestamp"] = datetime.now(timezone.utc).isoformat()

    async def _ensure_token(self) -> None:
        """Single client-credentials grant when no access token was supplied."""
        if self._token_acquired:
            return

        credentials = self.config.authentication
        data = {
            "grant_type": "client_credentials",
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
        }
        if credentials.scope:
            data["scope"] = credentials.scope

        response = await self._request("POST", credentials.token_url, data=data)
        token = _json_or_none(response) or {}
        access_token = token.get("access_token") if isinstance(token, dict) else None
        if not access_token:
            raise ConnectorConnectionError(
                "OAuth2 token response did not include an access_token",
                status_code=response.status_code,
                code=UNAUTHORIZED,
            )

        self._client.headers["Authorization"] = f"Bearer {access_token}"
        self._token_acquired = True
        logger.info("OAuth2 access token acquired", endpoint=self.config.endpoint)

    async def probe(self, path: str) -> Any:
        await self._ensure_token()
        response = await self._request("GET", path)
        return _json_or_none(response)

    async def send(self, path: str, body: dict[str, Any]) -> Any:
        await self._ensure_token()
        response = await self._request("POST", path, json=body)
        return _json_or_none(response)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ConnectorConnectionError(
                f"{method} {url} returned HTTP {status}",
                status_code=status,
                code=UNAUTHORIZED if status == 401 else HTTP_ERROR,
            ) from e
        except httpx.ConnectError as e:
            raise ConnectorConnectionError(
                f"Connection refused: {e}", code=CONNECTION_REFUSED
            ) from e
        except httpx.TimeoutException as e:
            raise ConnectorConnectionError(f"Request timed out: {e}", code=TIMEOUT) from e
        except httpx.HTTPError as e:
            raise ConnectorConnectionError(f"Transport error: {e}", code=TRANSPORT_ERROR) from e


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"text": response.text}


def build_transport(
    config: ConnectorConfig,
    settings: ConnectorSettings | None = None,
    compliance_level: str = "",
) -> Transport:
    """Synthetic transport for recognizable test hosts, HTTP otherwise."""
    if is_synthetic_endpoint(config.endpoint):
        return SyntheticTransport(config.endpoint)
    return HttpTransport(config, settings=settings, compliance_level=compliance_level)
