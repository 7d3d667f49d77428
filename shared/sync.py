# shared/sync.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from shared.exceptions import RemoteSyncError, ValidationError
from shared.metrics import SYNC_CYCLES
from shared.models import Announcement, make_key, validate_cadence
from shared.remote_client import RemoteClient
from shared.storage import AnnouncementStore

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "remote-sync"


def parse_correlation_id(value) -> Optional[int]:
    """
    Приводит local_ad_id удалённой записи к локальному ID.

    "7", " 7", "07" и 7 дают 7; нечисловые и неположительные значения дают None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        local_id = int(str(value).strip())
    except ValueError:
        return None
    return local_id if local_id > 0 else None


@dataclass
class SyncResult:
    remote_count: int = 0
    backfilled: int = 0
    adopted: int = 0
    ignored: int = 0
    finished_at: Optional[str] = None


class SyncEngine:
    """
    Периодическая сверка локального хранилища с удалённым API.

    Удалённая сторона авторитетна только для обнаружения новых записей:
    локальные поля не перезаписываются, удалённые на сервере записи
    локально не удаляются.
    """

    def __init__(
        self,
        store: AnnouncementStore,
        remote: RemoteClient,
        scheduler,
        adopt_new: bool = False,
        interval_seconds: int = 300
    ):
        self.store = store
        self.remote = remote
        self.scheduler = scheduler
        self.adopt_new = adopt_new
        self.interval_seconds = interval_seconds
        self._started = False

    def start(self):
        if not self.remote.is_enabled():
            logger.info("Удалённый API отключён, периодическая синхронизация не запускается")
            return
        self.scheduler.add_interval_job(self.run_cycle, self.interval_seconds, SYNC_JOB_ID)
        self._started = True
        logger.info(f"🔄 Периодическая синхронизация: каждые {self.interval_seconds} сек")

    def stop(self):
        if self._started:
            self.scheduler.remove_interval_job(SYNC_JOB_ID)
            self._started = False

    async def run_cycle(self) -> Optional[SyncResult]:
        """Один цикл сверки. Никакие ошибки не выходят наружу."""
        if not self.remote.is_enabled():
            return None

        try:
            remote_records = await self.remote.list_all()
        except RemoteSyncError as e:
            SYNC_CYCLES.labels(status='failed').inc()
            logger.error(f"❌ Синхронизация пропущена, список не получен: {e}")
            return None
        except Exception as e:
            SYNC_CYCLES.labels(status='failed').inc()
            logger.exception(f"❌ Неожиданная ошибка синхронизации: {e}")
            return None

        result = SyncResult(remote_count=len(remote_records))
        async with self.store.lock:
            for remote_record in remote_records:
                self._merge(remote_record, result)
            self.store.save()
            result.finished_at = self.store.mark_synced()

        SYNC_CYCLES.labels(status='ok').inc()
        logger.info(
            f"✅ Синхронизация завершена: получено {result.remote_count}, "
            f"дополнено {result.backfilled}, принято {result.adopted}, пропущено {result.ignored}"
        )
        return result

    def _merge(self, remote_record: Dict[str, Any], result: SyncResult):
        if not isinstance(remote_record, dict):
            result.ignored += 1
            return

        local_id = parse_correlation_id(remote_record.get("local_ad_id"))
        group_id = remote_record.get("group_id")
        if local_id is None or group_id in (None, ""):
            result.ignored += 1
            return

        key = make_key(group_id, local_id)
        local = self.store.get(key)
        if local is not None:
            if self.store.set_remote_id(key, remote_record.get("id"), persist=False):
                result.backfilled += 1
                logger.debug(f"Объявлению {key} назначен внешний ID {local.remote_id}")
            return

        if not self.adopt_new:
            result.ignored += 1
            return

        record = self._from_remote(remote_record, local_id)
        if record is None:
            result.ignored += 1
            return

        self.store.put(record, persist=False)
        if record.active:
            self.scheduler.schedule(record.key, record)
        result.adopted += 1
        logger.info(f"📥 Принято объявление {record.key} из удалённого API")

    def _from_remote(self, remote_record: Dict[str, Any], local_id: int) -> Optional[Announcement]:
        try:
            interval, unit = validate_cadence(int(remote_record["interval"]), remote_record["unit"])
            content = remote_record.get("content") or ""
            if not content.strip():
                raise ValidationError("пустой текст")
            remote_id = remote_record.get("id")
            return Announcement(
                local_id=local_id,
                group_id=str(remote_record["group_id"]),
                content=content,
                interval=interval,
                unit=unit,
                active=bool(remote_record.get("active", True)),
                created_at=remote_record.get("created_at") or self.store.now().isoformat(),
                last_sent=remote_record.get("last_sent_at"),
                sent_count=0,
                remote_id=str(remote_id) if remote_id is not None else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"⚠️ Удалённая запись {remote_record.get('id')} пропущена: {e}")
            return None
