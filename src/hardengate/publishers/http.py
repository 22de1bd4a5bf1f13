"""Publish compliance reports to an artifact registry or webhook over HTTP."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import httpx

from ..models.report import ComplianceReport, PublishResult
from ..utils.sanitize import sanitize_detail

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ReportPublisher:
    """POSTs the JSON report with retry on rate limits and server errors."""

    def __init__(self, output_config: dict, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = output_config.get("publish_url") or ""
        self.token_env = output_config.get("publish_token_env", "HARDENGATE_PUBLISH_TOKEN")
        self.max_attempts = max(1, int(output_config.get("retry_attempts", 3)))
        self.retry_delay = output_config.get("retry_delay_seconds", 5)
        self.timeout = output_config.get("timeout_seconds", 30)
        self._transport = transport
        self._sleep = asyncio.sleep

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _headers(self) -> dict:
        headers = {"content-type": "application/json"}
        token = os.environ.get(self.token_env) if self.token_env else None
        if token:
            headers["authorization"] = f"Bearer {token}"
        return headers

    async def publish_once(self, payload: str) -> PublishResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, content=payload, headers=self._headers())
                response.raise_for_status()
            return PublishResult(success=True, url=self.url, status_code=response.status_code)
        except httpx.HTTPStatusError as e:
            return PublishResult(
                success=False,
                url=self.url,
                status_code=e.response.status_code,
                error=f"{e.response.status_code} | {e.response.text[:200]}",
            )
        except httpx.HTTPError as e:
            return PublishResult(success=False, url=self.url, error=f"{type(e).__name__}: {e}")

    async def publish(self, report: ComplianceReport) -> PublishResult:
        """Publish with backoff; 4xx responses other than 429 are not retried."""
        payload = report.model_dump_json(indent=2)
        result = PublishResult(success=False, url=self.url, error="not attempted")

        for attempt in range(1, self.max_attempts + 1):
            result = await self.publish_once(payload)
            result = result.model_copy(update={"attempts": attempt})
            if result.success:
                logger.info("Published report to %s", self.url)
                return result

            retryable = result.status_code is None or result.status_code in RETRYABLE_STATUS
            if not retryable or attempt >= self.max_attempts:
                break

            # Rate limits back off harder than transient server errors
            base_delay = self.retry_delay * 6 if result.status_code == 429 else self.retry_delay
            wait_time = base_delay * min(attempt, 3)
            logger.warning("Publish attempt %d failed (%s), retrying in %ss", attempt, result.error, wait_time)
            await self._sleep(wait_time)

        return result.model_copy(update={"error": sanitize_detail(result.error or "")})
