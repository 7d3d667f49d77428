# shared/remote_client.py

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from shared.exceptions import RemoteSyncError
from shared.metrics import REMOTE_REQUESTS
from shared.models import Announcement

logger = logging.getLogger(__name__)


class RemoteClient:
    """Клиент удалённого API объявлений с повторными попытками через фиксированную паузу."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        enabled: bool = True,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.enabled = enabled
        self.retry_attempts = max(0, retry_attempts)
        self.retry_delay = retry_delay
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout,
            transport=transport,
        )

    def is_enabled(self) -> bool:
        return self.enabled

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, endpoint: str, json: Any = None) -> Any:
        """
        Выполняет запрос, повторяя его retry_attempts раз с паузой retry_delay.

        Raises:
            RemoteSyncError: все попытки исчерпаны
        """
        total_attempts = self.retry_attempts + 1
        last_error = None
        status_code = None

        for attempt in range(1, total_attempts + 1):
            try:
                logger.debug(f"[API] Запрос: {method} {endpoint}")
                response = await self._client.request(method, endpoint, json=json)
                logger.debug(f"[API] Ответ: {response.status_code} - {endpoint}")
                response.raise_for_status()
                REMOTE_REQUESTS.labels(operation=method, outcome='ok').inc()
                if not response.content:
                    return {}
                return response.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                status_code = e.response.status_code
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                status_code = None

            if attempt < total_attempts:
                logger.warning(
                    f"⚠️ Попытка {attempt}/{total_attempts} {method} {endpoint} не удалась: {last_error}. "
                    f"Повтор через {self.retry_delay} сек"
                )
                await asyncio.sleep(self.retry_delay)

        REMOTE_REQUESTS.labels(operation=method, outcome='failed').inc()
        raise RemoteSyncError(
            f"{method} {endpoint} не выполнен после {total_attempts} попыток: {last_error}",
            status_code=status_code
        )

    # === Операции ===

    async def list_all(self) -> List[Dict[str, Any]]:
        """Полный список объявлений удалённой стороны."""
        if not self.enabled:
            return []
        body = await self._request("GET", "/ads")
        if isinstance(body, list):
            return body
        if not isinstance(body, dict) or body.get("success") is False:
            raise RemoteSyncError(f"Неожиданный ответ на GET /ads: {body!r}")
        return body.get("data") or []

    async def create(self, record: Announcement) -> Optional[str]:
        """Создаёт зеркальную запись. Возвращает внешний ID, если API его вернул."""
        if not self.enabled:
            return None
        payload = {
            "group_id": record.group_id,
            "content": record.content,
            "interval": record.interval,
            "unit": record.unit,
            "local_ad_id": str(record.local_id),
        }
        body = await self._request("POST", "/ads", json=payload)
        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, dict) and data.get("id") is not None:
            return str(data["id"])
        return None

    async def delete_by_correlation(self, local_id: int, group_id: str):
        if not self.enabled:
            return None
        await self._request("DELETE", f"/ads/local/{local_id}", json={"group_id": group_id})

    async def mark_sent(self, remote_id: str):
        if not self.enabled:
            return None
        await self._request("POST", f"/ads/{remote_id}/sent")

    async def test_connection(self) -> bool:
        if not self.enabled:
            return False
        try:
            await self._request("GET", "/test")
        except RemoteSyncError as e:
            logger.error(f"❌ Удалённый API недоступен: {e}")
            return False
        logger.info("✅ Соединение с удалённым API подтверждено")
        return True
