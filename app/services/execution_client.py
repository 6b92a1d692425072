"""
HTTP client for the category pages backend that applies snippet assignments.

Two endpoints:
  - execute: apply one batch of {catType, slug} assignments
  - preview: list the category pages a bulk assignment would touch
"""
from typing import Any, Dict, Optional

import httpx

from app.config import get_settings
from app.middleware.correlation import get_correlation_id
from app.services.errors import ExecutionServiceError
from app.services.gateway import ServiceGateway, get_gateway
from app.utils.logger import logger

EXECUTE_PATH = "/internal-seats/api/assignments/execute/"
PREVIEW_PATH = "/internal-seats/api/assignments/preview/"


class ExecutionClient:
    """Thin async wrapper; every call goes through the service gateway."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        execution_timeout: Optional[float] = None,
        preview_timeout: Optional[float] = None,
        gateway: Optional[ServiceGateway] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.backend_api_url).rstrip("/")
        self.execution_timeout = execution_timeout or settings.execution_timeout_seconds
        self.preview_timeout = preview_timeout or settings.preview_timeout_seconds
        self._gateway = gateway or get_gateway()
        self._transport = transport

    async def _post(self, path: str, body: Dict[str, Any], timeout: float) -> Any:
        headers = {}
        cid = get_correlation_id()
        if cid:
            headers["X-Correlation-ID"] = cid
        async with httpx.AsyncClient(base_url=self.base_url, transport=self._transport) as client:
            resp = await client.post(path, json=body, headers=headers, timeout=timeout)
            resp.raise_for_status()
            return resp.json()

    async def execute_batch(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send one batch. Returns the backend's JSON:
            {"success": bool, "results": {"processed": int, ...} | [...]}
        Transport and HTTP errors propagate to the caller.
        """
        return await self._gateway.execute(
            "backend_execute", self._post, EXECUTE_PATH, body, self.execution_timeout
        )

    async def preview(self, body: Dict[str, Any]) -> Any:
        """Return the preview payload as-is."""
        try:
            return await self._gateway.execute(
                "backend_preview", self._post, PREVIEW_PATH, body, self.preview_timeout
            )
        except Exception as exc:
            detail = exc.response.text[:500] if isinstance(exc, httpx.HTTPStatusError) else str(exc)
            logger.error("preview.failed", extra={"error": detail, "error_type": type(exc).__name__})
            raise ExecutionServiceError("Failed to preview assignment") from exc
