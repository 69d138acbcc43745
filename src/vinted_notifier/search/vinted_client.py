"""
Vinted APIクライアント

Vintedの検索APIからアイテム一覧を取得する。
"""

import asyncio
import logging
import time

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from vinted_notifier.core.config import settings
from vinted_notifier.core.errors import NetworkError, ProviderError
from vinted_notifier.core.models import SearchParams, SearchResponse, VintedItem

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://www.vinted.fr/",
    "Origin": "https://www.vinted.fr",
}


class VintedClient:
    """Vinted APIクライアント"""

    def __init__(
        self,
        base_url: str = settings.vinted_api_url,
        timeout: float = settings.request_timeout,
        request_interval: float = settings.vinted_request_interval,
        proxy: str | None = settings.proxy_url,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_interval = request_interval
        self._last_request_time: float = 0
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=DEFAULT_HEADERS,
            proxy=proxy,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _wait_for_rate_limit(self) -> None:
        """リクエスト間隔の調整"""
        if self._last_request_time > 0:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self.request_interval:
                await asyncio.sleep(self.request_interval - elapsed)

    @retry(
        retry=retry_if_exception_type(NetworkError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(self, path: str, params: dict | None = None) -> dict:
        """GETリクエストを実行（通信エラーのみリトライ）"""
        await self._wait_for_rate_limit()

        logger.debug(f"Vinted API request: {path} {params}")
        try:
            response = await self._client.get(path, params=params)
        except httpx.RequestError as e:
            raise NetworkError(f"Vinted通信エラー: {e}") from e
        finally:
            self._last_request_time = time.monotonic()

        logger.debug(f"Vinted API response: status={response.status_code}")

        if not response.is_success:
            message = response.text[:200]
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = str(body["message"])
            except ValueError:
                pass
            logger.error(f"Vinted APIエラー: status={response.status_code}, {message}")
            raise ProviderError(
                f"HTTP {response.status_code}: {message}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"JSONパースエラー: {e}", status=response.status_code) from e

    async def search(
        self,
        params: SearchParams,
        page: int = 1,
        per_page: int = settings.vinted_per_page,
    ) -> SearchResponse:
        """アイテムを検索"""
        query = {**params.to_query(), "page": page, "per_page": per_page}
        data = await self._get("/items", params=query)
        return SearchResponse.model_validate(data)

    async def get_item(self, item_id: int) -> VintedItem:
        """アイテム詳細を取得"""
        data = await self._get(f"/items/{item_id}")
        return VintedItem.model_validate(data.get("item", data))
