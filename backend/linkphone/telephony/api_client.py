"""API client for the practice-management backend (SIP provisioning and call logging)."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from linkphone.config import Settings
from linkphone.core.exceptions import LinkPhoneError

from .models import CallLogRequest, SipProvision

logger = logging.getLogger(__name__)


class LinkApiError(LinkPhoneError):
    """Backend request failed or returned an unusable response."""

    code = "BACKEND_API_ERROR"
    status_code = 502

    def __init__(self, message: str, http_status: Optional[int] = None) -> None:
        super().__init__(message, details={"http_status": http_status} if http_status else None)
        self.http_status = http_status


class LinkApiClient:
    """Async client for the endpoints a phone widget consumes."""

    def __init__(
        self,
        base_url: str,
        sip_provision_path: str = "/api/ringcentral/sip-provision",
        log_call_path: str = "/api/ringcentral/log-call",
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._sip_provision_path = sip_provision_path
        self._log_call_path = log_call_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "LinkApiClient":
        return cls(
            base_url=settings.link_api_base_url,
            sip_provision_path=settings.sip_provision_path,
            log_call_path=settings.log_call_path,
            token=settings.link_api_token,
            timeout=settings.api_request_timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return str(self._client.base_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def provision_sip(self) -> SipProvision:
        """POST /sip-provision and parse the SIP credentials."""
        data = await self._post(self._sip_provision_path)
        return SipProvision.model_validate(data)

    async def log_call(self, request: CallLogRequest) -> dict[str, Any]:
        """POST /log-call with the completed call's metadata."""
        payload = request.model_dump(mode="json", by_alias=True, exclude_none=True)
        return await self._post(self._log_call_path, payload)

    async def _post(self, endpoint: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            response = await self._client.post(endpoint, json=data or {})
        except httpx.TimeoutException as err:
            logger.error("Timeout calling backend endpoint %s", endpoint)
            raise LinkApiError("Connection timeout") from err
        except httpx.HTTPError as err:
            logger.error("Error calling backend endpoint %s: %s", endpoint, err)
            raise LinkApiError(f"Connection error: {err}") from err

        return self._handle_response(response, endpoint)

    def _handle_response(self, response: httpx.Response, endpoint: str) -> dict[str, Any]:
        try:
            response_data = response.json() if response.content else {}
        except json.JSONDecodeError as err:
            logger.error("Invalid JSON response from %s: %s", endpoint, err)
            raise LinkApiError("Invalid JSON response", response.status_code) from err

        if response.status_code >= 400:
            error_msg = f"HTTP {response.status_code}"
            if isinstance(response_data, dict) and response_data.get("message"):
                error_msg = response_data["message"]
            raise LinkApiError(error_msg, response.status_code)

        if not isinstance(response_data, dict):
            raise LinkApiError("Unexpected response shape", response.status_code)

        return response_data
