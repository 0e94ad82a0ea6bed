"""PulseSync — Remote Store Client.

Handles timeouts, retry with backoff, batching, and result reporting.
Public methods never raise on network trouble: every failure becomes a
result value with the cause attached.
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

import httpx

from pulsesync.config import settings
from pulsesync.connectors.remote.transformer import parse_records, record_to_wire
from pulsesync.core.errors import NetworkError
from pulsesync.core.logging import get_logger
from pulsesync.models.record_models import Record
from pulsesync.models.sync_models import (
    BatchResult,
    DownloadResult,
    ReplaceResult,
    UploadResult,
)

logger = get_logger("remote.client")


class RemoteClient:
    """Async HTTP client for the remote record store."""

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        retry_base_delay: float | None = None,
        batch_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.remote_base_url).rstrip("/")
        self.api_token = api_token if api_token is not None else settings.remote_api_token
        self.timeout = timeout if timeout is not None else settings.remote_timeout_seconds
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.upload_max_attempts
        )
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else settings.retry_base_delay_seconds
        )
        self.batch_delay = (
            batch_delay if batch_delay is not None else settings.upload_batch_delay_seconds
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """One attempt. Raises NetworkError on timeout, transport or protocol failure."""
        client = await self._get_client()
        try:
            resp = await client.request(method, path, params=params, json=json)
            resp.raise_for_status()
            body = resp.json()
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout after {self.timeout}s: {e!r}", timeout=True) from e
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"HTTP {e.response.status_code} from {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request error: {e!r}") from e
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {path}: {e}") from e

        if not isinstance(body, dict) or not body.get("success", False):
            message = body.get("error") if isinstance(body, dict) else None
            raise NetworkError(f"Remote reported failure on {path}: {message or body!r}")
        return body

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
        attempts: int | None = None,
    ) -> tuple[Dict[str, Any], int]:
        """Retry with exponential backoff. Returns (body, attempts_used)."""
        limit = attempts if attempts is not None else self.max_attempts
        last_error: Optional[NetworkError] = None

        for attempt in range(1, limit + 1):
            try:
                return await self._request(method, path, params, json), attempt
            except NetworkError as e:
                last_error = e
                # 4xx other than 408/429 will not improve on retry
                if 400 <= e.status_code < 500 and e.status_code not in (408, 429):
                    logger.warning(f"{method} {path} rejected: {e}", extra={"attempt": attempt})
                    raise NetworkError(str(e), e.status_code, attempts=attempt) from e
                if attempt < limit:
                    wait = self.retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"{method} {path} failed: {e}. Retrying in {wait}s "
                        f"(attempt {attempt}/{limit})",
                        extra={"attempt": attempt, "status_code": e.status_code},
                    )
                    await asyncio.sleep(wait)

        if last_error is None:
            raise NetworkError(f"{method} {path}: no attempts made", attempts=0)
        raise NetworkError(
            f"{method} {path} failed after {limit} attempts: {last_error}",
            last_error.status_code,
            last_error.timeout,
            attempts=limit,
        ) from last_error

    # ── Downloads ──

    async def _download(self, params: Dict[str, Any], label: str) -> DownloadResult:
        try:
            body, _ = await self._request_with_retry("GET", "/records", params=params)
        except NetworkError as e:
            logger.error(f"Download {label} failed: {e}")
            return DownloadResult(success=False, error=str(e))

        data = body.get("data") or []
        if not isinstance(data, list):
            logger.error(f"Download {label} returned non-list data")
            return DownloadResult(success=False, error="data is not a list")

        records, rejected = parse_records(data)
        logger.info(f"Downloaded {len(records)} records ({rejected} rejected) for {label}")
        return DownloadResult(success=True, records=records, rejected=rejected)

    async def download_by_date(self, day_key: str) -> DownloadResult:
        return await self._download({"date": day_key}, day_key)

    async def download_all(self, days: int | None = None) -> DownloadResult:
        n = days or settings.retention_days
        return await self._download({"days": n}, f"last {n} days")

    # ── Uploads ──

    async def upload_batch(
        self,
        records: Sequence[Record],
        batch_size: int | None = None,
    ) -> UploadResult:
        """Upload in fixed-size batches, strictly one after another.

        Each batch retries on its own; a batch that exhausts its attempts is
        recorded as failed and the next batch still runs.
        """
        size = batch_size or settings.upload_batch_size
        if size <= 0:
            raise ValueError("batch_size must be positive")

        result = UploadResult()
        total_batches = (len(records) + size - 1) // size
        logger.info(f"Uploading {len(records)} records in {total_batches} batches")

        for index in range(total_batches):
            if index > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

            batch = records[index * size : (index + 1) * size]
            batch_result = BatchResult(
                index=index, size=len(batch), record_ids=[r.id for r in batch]
            )
            payload = {"data": [record_to_wire(r) for r in batch]}
            try:
                _, attempts = await self._request_with_retry(
                    "POST", "/records/bulk", json=payload
                )
                batch_result.success = True
                batch_result.attempts = attempts
                logger.info(
                    f"Batch {index + 1}/{total_batches} uploaded ({len(batch)} records)",
                    extra={"batch_index": index, "attempt": attempts},
                )
            except NetworkError as e:
                batch_result.success = False
                batch_result.attempts = e.attempts
                batch_result.error = str(e)
                logger.error(
                    f"Batch {index + 1}/{total_batches} failed: {e}",
                    extra={"batch_index": index},
                )
            result.batches.append(batch_result)

        return result

    async def replace_date_range(
        self, day_keys: Sequence[str], records: Sequence[Record]
    ) -> ReplaceResult:
        """Remote delete-then-insert for `day_keys`. Safe to reissue."""
        payload = {
            "dates": list(day_keys),
            "data": [record_to_wire(r) for r in records],
        }
        try:
            body, attempts = await self._request_with_retry(
                "POST", "/records/replace-range", json=payload
            )
        except NetworkError as e:
            logger.error(f"Replace range {list(day_keys)} failed: {e}")
            return ReplaceResult(
                success=False, day_keys=list(day_keys), attempts=e.attempts, error=str(e)
            )
        inserted = int(body.get("inserted", len(records)) or 0)
        logger.info(f"Replaced {len(day_keys)} remote days, {inserted} records inserted")
        return ReplaceResult(
            success=True, day_keys=list(day_keys), inserted=inserted, attempts=attempts
        )
