"""
HTTP transport for the Flow sandbox API and the task proxy.

Every upstream call goes through ``request_json`` so that the failure shape
is uniform: HTML error pages, bodies that are not JSON, network errors and
non-2xx statuses all become typed ``UpstreamError`` instances carrying the
HTTP status the executor classifies on.
"""

import json
import logging
from typing import Any, Optional

import httpx

from core.config import FlowConfig, get_config
from core.errors import UpstreamError, UpstreamMalformedResponse
from services.account_pool.models import Account

logger = logging.getLogger(__name__)


def _looks_like_html(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith("<") or "<!DOCTYPE" in text


def _extract_error(data: Any) -> tuple[Optional[str], Optional[str]]:
    """Pull (message, upstream status code) out of a JSON error body."""
    if not isinstance(data, dict):
        return None, None
    error = data.get("error")
    if isinstance(error, dict):
        code = error.get("status")
        if not isinstance(code, str):
            code = error.get("code") if isinstance(error.get("code"), str) else None
        return error.get("message"), code
    if isinstance(error, str):
        return error, None
    return data.get("message"), None


class FlowTransport:
    """
    Thin async HTTP layer shared by all operation adapters.

    Usage:
        transport = FlowTransport()
        data = await transport.post_sandbox(account, "/v1:uploadUserImage", payload)
        await transport.close()
    """

    def __init__(
        self,
        config: Optional[FlowConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config().flow
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.http_timeout)
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def sandbox_url(self, path: str) -> str:
        return f"{self.config.api_base.rstrip('/')}{path}"

    def sandbox_headers(self, account: Account, include_cookies: bool = True) -> dict[str, str]:
        headers = {
            "content-type": "text/plain;charset=UTF-8",
            "origin": self.config.origin,
            "referer": f"{self.config.origin}/",
            "user-agent": self.config.user_agent,
            "authorization": f"Bearer {account.access_token}",
        }
        if include_cookies:
            headers["cookie"] = account.auth_cookies or ""
        return headers

    def proxy_headers(self) -> dict[str, str]:
        return {
            "Authorization": self.config.proxy_auth,
            "Content-Type": "application/json",
        }

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        payload: Optional[dict] = None,
        params: Optional[dict] = None,
        account_id: Optional[str] = None,
        label: str = "Upstream request",
    ) -> dict:
        """
        Perform one call and return the decoded JSON body.

        Raises:
            UpstreamMalformedResponse: body is HTML or not valid JSON
            UpstreamError: network failure or non-2xx status
        """
        client = await self._get_client()
        body = json.dumps(payload) if payload is not None else None

        try:
            response = await client.request(method, url, headers=headers, content=body, params=params)
            text = response.text
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"{label} timeout: {type(e).__name__}",
                status_code=502,
                upstream_code="TIMEOUT",
                account_id=account_id,
                error_code="NETWORK_ERROR",
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(
                f"{label} network error: {type(e).__name__}: {e}",
                status_code=502,
                upstream_code="NETWORK_ERROR",
                account_id=account_id,
                error_code="NETWORK_ERROR",
            ) from e

        status = response.status_code

        if _looks_like_html(text):
            logger.warning(f"{label}: HTML body with status {status}")
            raise UpstreamMalformedResponse(
                f"{label} failed ({status}): Upstream HTML Error",
                status_code=status,
                account_id=account_id,
                error_code="UPSTREAM_HTML_ERROR",
            )

        try:
            data = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"{label}: invalid JSON with status {status}: {text[:100]}")
            raise UpstreamMalformedResponse(
                f"{label} failed ({status}): Invalid JSON",
                status_code=status,
                account_id=account_id,
                error_code="INVALID_JSON",
            ) from e

        if not response.is_success:
            message, upstream_code = _extract_error(data)
            detail = message or json.dumps(data)[:200]
            raise UpstreamError(
                f"{label} failed ({status}): {detail}",
                status_code=status,
                upstream_code=upstream_code,
                account_id=account_id,
            )

        if not isinstance(data, dict):
            raise UpstreamMalformedResponse(
                f"{label} failed ({status}): expected a JSON object",
                status_code=status,
                account_id=account_id,
                error_code="INVALID_JSON",
            )

        return data

    async def post_sandbox(
        self,
        account: Account,
        path: str,
        payload: dict,
        label: str = "Sandbox request",
        include_cookies: bool = True,
    ) -> dict:
        return await self.request_json(
            "POST",
            self.sandbox_url(path),
            headers=self.sandbox_headers(account, include_cookies=include_cookies),
            payload=payload,
            account_id=account.id,
            label=label,
        )

    async def post_proxy(self, account: Account, flow_url: str, body_json: dict, label: str) -> dict:
        """Relay a sandbox request through the task proxy using the account token."""
        payload = {
            "body_json": body_json,
            "flow_auth_token": account.access_token,
            "flow_url": flow_url,
        }
        return await self.request_json(
            "POST",
            self.config.proxy_create_url,
            headers=self.proxy_headers(),
            payload=payload,
            account_id=account.id,
            label=label,
        )

    async def get_proxy_status(self, task_id: str) -> dict:
        return await self.request_json(
            "GET",
            self.config.proxy_status_url,
            headers=self.proxy_headers(),
            params={"taskId": task_id},
            label="Proxy status",
        )
