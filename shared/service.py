# shared/service.py

import asyncio
import logging
from typing import Awaitable, List, Optional, Set

from scheduler_logic import AnnouncementScheduler
from shared.exceptions import DeliveryError, RemoteSyncError, ValidationError
from shared.metrics import ADS_ACTIVE, ADS_CREATED, ADS_REMOVED
from shared.models import Announcement, AnnouncementSummary, make_key, validate_cadence
from shared.remote_client import RemoteClient
from shared.storage import AnnouncementStore
from shared.sync import SyncEngine

logger = logging.getLogger(__name__)


class AnnouncementService:
    """
    Точка входа для командного слоя: add/remove/list/stats.

    Локальное состояние фиксируется первым и остаётся авторитетным;
    зеркалирование в удалённый API идёт фоновыми задачами, которые
    можно дождаться через ``drain()``.
    """

    def __init__(
        self,
        store: AnnouncementStore,
        transport,
        remote: RemoteClient,
        timezone: str = 'UTC',
        max_per_group: int = 10,
        adopt_new: bool = False,
        sync_interval: int = 300,
        scheduler=None
    ):
        self.store = store
        self.transport = transport
        self.remote = remote
        self.max_per_group = max_per_group
        self.scheduler = AnnouncementScheduler(
            store,
            deliver=self.deliver,
            on_sent=self.on_sent,
            timezone=timezone,
            scheduler=scheduler,
        )
        self.sync = SyncEngine(
            store, remote, self.scheduler,
            adopt_new=adopt_new,
            interval_seconds=sync_interval,
        )
        self._pending: Set[asyncio.Task] = set()

    # === Жизненный цикл ===

    async def start(self):
        self.store.load()
        self.scheduler.restore()
        self.scheduler.start()
        self._refresh_gauge()

        if self.remote.is_enabled():
            if await self.remote.test_connection():
                await self.sync.run_cycle()
            self.sync.start()
        else:
            logger.info("🌐 Удалённый API отключён")

    async def shutdown(self):
        self.sync.stop()
        self.scheduler.cancel_all()
        await self.drain()
        self.store.save()
        await self.remote.aclose()
        self.scheduler.shutdown()
        logger.info("Сервис объявлений остановлен, снимок сохранён")

    # === Операции командного слоя ===

    async def add(self, group_id: str, content: str, interval: int, unit: str) -> int:
        """
        Создаёт объявление и ставит его в расписание.

        Raises:
            ValidationError: пустой текст, неверный интервал или достигнут лимит группы
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Текст объявления не может быть пустым")
        interval, unit = validate_cadence(interval, unit)
        group_id = str(group_id)

        async with self.store.lock:
            if self.store.group_active_count(group_id) >= self.max_per_group:
                raise ValidationError(
                    f"Достигнут лимит {self.max_per_group} объявлений для группы"
                )
            local_id = self.store.add(group_id, content, interval, unit)
            key = make_key(group_id, local_id)
            self.scheduler.schedule(key, self.store.get(key))

        ADS_CREATED.inc()
        self._refresh_gauge()
        logger.info(f"Объявление {key} добавлено: каждые {interval} {unit}")

        if self.remote.is_enabled():
            self._dispatch(self._mirror_create(key), f"создание {key}")
        return local_id

    async def remove(self, group_id: str, local_id: int) -> bool:
        group_id = str(group_id)
        key = make_key(group_id, local_id)

        async with self.store.lock:
            self.scheduler.cancel(key)
            removed = self.store.remove(group_id, local_id)

        if not removed:
            return False

        ADS_REMOVED.inc()
        self._refresh_gauge()
        logger.info(f"Объявление {key} удалено")

        if self.remote.is_enabled():
            self._dispatch(
                self.remote.delete_by_correlation(local_id, group_id),
                f"удаление {key}"
            )
        return True

    def list(self, group_id: str) -> List[AnnouncementSummary]:
        return self.store.list(str(group_id))

    def stats(self) -> dict:
        stats = self.store.stats()
        stats['scheduled_jobs'] = self.scheduler.job_count
        stats['remote_enabled'] = self.remote.is_enabled()
        return stats

    # === Доставка ===

    async def deliver(self, record: Announcement) -> bool:
        sent = await self.transport.send_message(record.group_id, record.content)
        if not sent:
            raise DeliveryError(f"Транспорт не доставил объявление {record.key}")
        return True

    def on_sent(self, record: Announcement):
        if record.remote_id and self.remote.is_enabled():
            self._dispatch(self.remote.mark_sent(record.remote_id), f"отметка отправки {record.key}")

    # === Фоновое зеркалирование ===

    def _dispatch(self, coro: Awaitable, description: str) -> asyncio.Task:
        task = asyncio.create_task(self._run_mirror(coro, description))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_mirror(self, coro: Awaitable, description: str) -> bool:
        try:
            await coro
        except RemoteSyncError as e:
            logger.error(f"❌ Зеркалирование ({description}) не удалось: {e}")
            return False
        except Exception as e:
            logger.exception(f"❌ Неожиданная ошибка зеркалирования ({description}): {e}")
            return False
        logger.debug(f"Зеркалирование ({description}) выполнено")
        return True

    async def _mirror_create(self, key: str):
        record = self.store.get(key)
        if record is None:
            logger.debug(f"Объявление {key} удалено до отправки в удалённый API")
            return
        remote_id = await self.remote.create(record)
        if remote_id:
            async with self.store.lock:
                if self.store.set_remote_id(key, remote_id):
                    logger.info(f"🌐 Объявление {key} синхронизировано, внешний ID {remote_id}")

    @property
    def pending_mirrors(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: Optional[float] = None):
        """Ждёт завершения всех фоновых задач зеркалирования."""
        while self._pending:
            await asyncio.wait_for(
                asyncio.gather(*list(self._pending), return_exceptions=True),
                timeout=timeout
            )

    def _refresh_gauge(self):
        ADS_ACTIVE.set(self.store.stats()['active_count'])
