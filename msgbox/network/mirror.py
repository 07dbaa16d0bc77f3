# msgbox/network/mirror.py
"""
Read-replica client for a mirror-node REST API.

    GET {base}/api/v1/topics/{topic_id}/messages?sequencenumber=gt:N&order=asc&limit=100

Response entries carry `sequence_number`, base64 `message`,
`consensus_timestamp`, `payer_account_id` and, for chunked submissions,
`chunk_info: {initial_transaction_id: {account_id, transaction_valid_start, nonce}, number, total}`.
"""

import logging
import os
from typing import List, Optional

import httpx

from msgbox.core.errors import LedgerError
from msgbox.core.types import ChunkInfo, RawEntry
from . import PAGE_LIMIT, MirrorClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def _chunk_info(data: Optional[dict]) -> Optional[ChunkInfo]:
    if not data:
        return None
    tx = data.get("initial_transaction_id") or {}
    if not tx.get("account_id") or not tx.get("transaction_valid_start"):
        group_key = ""          # unusable; dropped during reassembly
    else:
        group_key = f"{tx['account_id']}-{tx['transaction_valid_start']}-{tx.get('nonce') or 0}"
    return ChunkInfo(group_key, int(data.get("number", 0)), int(data.get("total", 0)))


def parse_entry(data: dict) -> RawEntry:
    return RawEntry(
        sequence_number=int(data["sequence_number"]),
        message=data.get("message") or "",
        consensus_timestamp=str(data.get("consensus_timestamp", "")),
        payer_account_id=data.get("payer_account_id", ""),
        chunk_info=_chunk_info(data.get("chunk_info")),
    )


class MirrorNodeClient(MirrorClient):
    """Async httpx client; safe to use as an async context manager."""

    def __init__(self, base_url: str, timeout: float | None = None, client: Optional[httpx.AsyncClient] = None):
        if timeout is None:
            timeout = float(os.environ.get("MSGBOX_HTTP_TIMEOUT", DEFAULT_TIMEOUT))
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _get(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        try:
            response = await self._client.get(f"{self.base_url}{path}", params=params)
        except httpx.HTTPError as e:
            raise LedgerError(f"Mirror node request failed: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise LedgerError(f"Mirror node returned HTTP {response.status_code} for {path}")
        try:
            return response.json()
        except ValueError as e:
            raise LedgerError(f"Mirror node returned invalid JSON for {path}") from e

    async def query_messages(
        self,
        topic_id: str,
        after: Optional[int] = None,
        order: str = "asc",
        limit: int = PAGE_LIMIT,
    ) -> List[RawEntry]:
        params = {"order": order, "limit": limit}
        if after is not None:
            params["sequencenumber"] = f"gt:{after}"
        body = await self._get(f"/api/v1/topics/{topic_id}/messages", params)
        if body is None:
            logger.debug("Topic %s not found on mirror node", topic_id)
            return []
        entries = []
        for item in body.get("messages") or []:
            try:
                entries.append(parse_entry(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed mirror entry in topic %s: %r", topic_id, item)
        return entries

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
