"""HTTP notification platform client.

Talks to a scheduled-notification service over a small REST contract:

    POST   {base_url}/notifications        {title, body, fire_at, data} -> {"id": ...}
    DELETE {base_url}/notifications/{id}

A 403 on create means the user has not granted notification permission and is
reported as a declined (``None``) handle rather than an error. A 404 on delete
means the notification already fired or was removed and counts as success.
429 and 503 responses are retried with exponential backoff, honouring
``Retry-After`` on 429.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from reminders.gateway.base import NotificationPlatform, NotificationPlatformError

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 30.0


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


class HttpNotificationPlatform(NotificationPlatform):
    """``NotificationPlatform`` backed by an HTTP notification service."""

    def __init__(
        self,
        base_url: str,
        *,
        api_token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base_s: float = DEFAULT_BACKOFF_BASE_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        normalized = base_url.strip().rstrip("/")
        if not normalized:
            raise ValueError("base_url must be a non-empty string")
        self._base_url = normalized
        self._api_token = api_token
        self._max_retries = max_retries
        self._backoff_base_s = backoff_base_s
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_s)

    async def schedule_notification(
        self,
        *,
        title: str,
        body: str,
        fire_at: datetime,
        data: dict[str, Any] | None = None,
    ) -> str | None:
        response = await self._request(
            "POST",
            "/notifications",
            json_body={
                "title": title,
                "body": body,
                "fire_at": fire_at.astimezone(UTC).isoformat(),
                "data": data or {},
            },
        )

        if response.status_code == 403:
            logger.warning("Notification permission not granted: %s", _safe_error_message(response))
            return None
        self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise NotificationPlatformError(
                "Notification service returned invalid JSON for a successful response",
                status_code=response.status_code,
            ) from exc

        handle = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(handle, str) or not handle.strip():
            raise NotificationPlatformError(
                "Notification service response is missing a notification id",
                status_code=response.status_code,
            )
        logger.debug("Notification scheduled: %s at %s", handle, fire_at.isoformat())
        return handle

    async def cancel_notification(self, handle: str) -> None:
        response = await self._request("DELETE", f"/notifications/{quote(handle, safe='')}")
        if response.status_code == 404:
            logger.debug("Notification %s already gone", handle)
            return
        self._raise_for_status(response)
        logger.debug("Notification cancelled: %s", handle)

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        raise NotificationPlatformError(
            f"Notification service request failed ({response.status_code}): "
            f"{_safe_error_message(response)}",
            status_code=response.status_code,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        response = await self._request_once(method, url, json_body=json_body)

        retry = 0
        while response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < self._max_retries:
            backoff = self._backoff_base_s * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Notification service rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                self._max_retries,
            )
            await asyncio.sleep(backoff)
            response = await self._request_once(method, url, json_body=json_body)
            retry += 1

        return response

    async def _request_once(
        self,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        try:
            return await self._http_client.request(method, url, json=json_body, headers=headers)
        except httpx.HTTPError as exc:
            raise NotificationPlatformError(f"Notification service request failed: {exc}") from exc
