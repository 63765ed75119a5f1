import asyncio
import logging
from typing import Any, Optional

import httpx

from tempreport.config.settings import Settings, get_settings
from tempreport.models.report import (
    CentralFailure,
    CentralRequest,
    ChunkResult,
)
from tempreport.models.telemetry import RawReading

logger = logging.getLogger(__name__)

_http_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    global _http_client

    if _http_client is None:
        settings = get_settings()
        _http_client = httpx.AsyncClient(timeout=settings.rpc_timeout_seconds)

    return _http_client


async def close_http_client():
    global _http_client
    if _http_client:
        await _http_client.aclose()
        _http_client = None


def extract_payload(body: Any) -> list:
    """Flatten the envelopes centrals answer with into a plain item list.

    Accepted shapes: a bare array, ``{"data": [...]}`` or ``{"body": [...]}``.
    Anything else yields an empty list.
    """
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        if isinstance(body.get("data"), list):
            return body["data"]
        if isinstance(body.get("body"), list):
            return body["body"]
    return []


def parse_readings(items: list) -> list[RawReading]:
    return [RawReading.from_payload(item) for item in items if isinstance(item, dict)]


class RpcClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        settings: Optional[Settings] = None,
    ):
        self.http = http_client
        self.settings = settings or get_settings()

    async def fetch_chunk(self, requests: dict[str, CentralRequest]) -> ChunkResult:
        """Query every central of a chunk.

        Centrals are visited concurrently up to ``rpc_max_concurrency``; a
        failing central is recorded and never aborts the others.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.rpc_max_concurrency))

        async def bounded(central_id: str, request: CentralRequest):
            async with semaphore:
                return await self.fetch_central(central_id, request)

        central_ids = list(requests)
        outcomes = await asyncio.gather(
            *(bounded(central_id, requests[central_id]) for central_id in central_ids)
        )

        result = ChunkResult()
        for central_id, (readings, failure) in zip(central_ids, outcomes):
            result.readings[central_id] = readings
            if failure is not None:
                result.failures.append(failure)
        return result

    async def fetch_central(
        self, central_id: str, request: CentralRequest
    ) -> tuple[list[RawReading], Optional[CentralFailure]]:
        if not request.devices:
            logger.info(f"[RPC SKIP] {central_id}: no devices for this central")
            return [], None

        url = self.settings.rpc_url(central_id)
        timeout = self.settings.rpc_timeout_seconds
        logger.info(f"[RPC] {central_id}: sending {len(request.devices)} devices")

        try:
            response = await asyncio.wait_for(
                self.http.post(url, json=request.to_body(), timeout=timeout),
                timeout=timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error(f"[RPC ERROR] {central_id}: no answer within {timeout:g}s")
            return [], CentralFailure(
                central_id=central_id,
                status="timeout",
                status_text=f"Timeout ({timeout:g}s)",
                url=url,
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"[RPC ERROR] {central_id}: HTTP {e.response.status_code}")
            return [], CentralFailure(
                central_id=central_id,
                status=e.response.status_code,
                status_text=e.response.reason_phrase or str(e),
                url=url,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"[RPC ERROR] {central_id}: {e!r}")
            return [], CentralFailure(
                central_id=central_id,
                status=0,
                status_text=str(e) or type(e).__name__,
                url=url,
            )
        except ValueError as e:
            logger.error(f"[RPC ERROR] {central_id}: invalid JSON ({e})")
            return [], CentralFailure(
                central_id=central_id,
                status=response.status_code,
                status_text="Invalid JSON response",
                url=url,
            )

        readings = parse_readings(extract_payload(body))
        logger.info(f"[RPC OK] {central_id}: {len(readings)} items")
        return readings, None
