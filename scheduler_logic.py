# scheduler_logic.py
import dataclasses
import datetime
import logging
from typing import Awaitable, Callable, Dict, List, Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from shared.exceptions import DeliveryError
from shared.metrics import DELIVERIES
from shared.models import Announcement, MINUTES, HOURS, DAYS, normalize_unit
from shared.storage import AnnouncementStore, local_now

logger = logging.getLogger(__name__)

DeliverCallback = Callable[[Announcement], Awaitable[bool]]
SentCallback = Callable[[Announcement], None]

# Разница между последним и первым значением cron-поля
GRID_SPAN = {MINUTES: 59, HOURS: 23, DAYS: 30}


def build_trigger(interval: int, unit: str, timezone) -> CronTrigger:
    """
    Строит cron-триггер для (interval, unit).

    Сетка привязана к настенным часам, а не к моменту создания:
    минуты  -> каждые N минут (*/N);
    часы    -> в 00 минут каждого N-го часа суток;
    дни     -> в полночь каждого N-го дня месяца.
    Интервалы, не делящие 24 часа или длину месяца, «дрейфуют» на границе
    суток или месяца. Шаг шире диапазона поля срабатывает только в его
    первом значении, как */N в cron: 90 минут -> в 00 минут каждого часа,
    48 часов -> в полночь, 45 дней -> 1-го числа.
    """
    unit = normalize_unit(unit)
    if isinstance(timezone, str):
        timezone = pytz.timezone(timezone)

    if unit == MINUTES:
        return CronTrigger(minute=_grid_step(interval, unit, 0), timezone=timezone)
    if unit == HOURS:
        return CronTrigger(hour=_grid_step(interval, unit, 0), minute=0, timezone=timezone)
    if unit == DAYS:
        return CronTrigger(day=_grid_step(interval, unit, 1), hour=0, minute=0, timezone=timezone)
    raise ValueError(f"Неизвестная единица времени: {unit}")


def _grid_step(interval: int, unit: str, first_value: int):
    # APScheduler отвергает шаг больше диапазона поля (59, 23, 30)
    if interval > GRID_SPAN[unit]:
        return first_value
    return f"*/{interval}"


def fire_times(trigger, start: datetime.datetime, count: int) -> List[datetime.datetime]:
    """Возвращает ближайшие count моментов срабатывания начиная с start (включительно)."""
    times = []
    previous = None
    now = start
    while len(times) < count:
        next_time = trigger.get_next_fire_time(previous, now)
        if next_time is None:
            break
        times.append(next_time)
        previous = next_time
        now = next_time + datetime.timedelta(microseconds=1)
    return times


class AnnouncementScheduler:
    """
    Ровно одна живая задача APScheduler на каждое активное объявление.

    Таблица ``_jobs`` (ключ объявления -> Job) принадлежит этому объекту;
    любое изменение объявления пересоздаёт задачу целиком.
    """

    def __init__(
        self,
        store: AnnouncementStore,
        deliver: DeliverCallback,
        on_sent: Optional[SentCallback] = None,
        timezone: str = 'UTC',
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.store = store
        self._deliver = deliver
        self._on_sent = on_sent
        self.timezone = pytz.timezone(timezone) if isinstance(timezone, str) else timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)
        self._jobs: Dict[str, object] = {}

    @property
    def job_count(self) -> int:
        return len(self._jobs)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def has_job(self, key: str) -> bool:
        return key in self._jobs

    def start(self, paused: bool = False):
        if not self.scheduler.running:
            self.scheduler.start(paused=paused)
            logger.info(f"🕐 Планировщик запущен ({self.timezone}), задач: {len(self._jobs)}")

    def shutdown(self):
        self.cancel_all()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("⏹️ Планировщик остановлен")

    # === Задачи объявлений ===

    def schedule(self, key: str, record: Announcement):
        """Создаёт задачу для объявления, предварительно уничтожая старую."""
        self.cancel(key)
        trigger = build_trigger(record.interval, record.unit, self.timezone)
        job = self.scheduler.add_job(
            self.fire,
            trigger=trigger,
            args=[key],
            id=key,
            name=f"announcement:{key}",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=60,
        )
        self._jobs[key] = job
        logger.debug(f"Задача {key} создана: каждые {record.interval} {record.unit}")

    def cancel(self, key: str) -> bool:
        """Удаляет задачу, если она есть. Уже запущенная отправка доработает."""
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        try:
            self.scheduler.remove_job(key)
        except JobLookupError:
            logger.debug(f"Задача {key} уже отсутствует в APScheduler")
        logger.debug(f"Задача {key} удалена")
        return True

    def cancel_all(self):
        for key in list(self._jobs):
            self.cancel(key)

    def restore(self, store: AnnouncementStore = None) -> int:
        """Пересоздаёт задачи для всех активных объявлений хранилища."""
        store = store or self.store
        self.cancel_all()
        for key, record in store.active_items():
            try:
                self.schedule(key, record)
            except ValueError as e:
                logger.error(f"❌ Не удалось восстановить задачу {key}: {e}")
        logger.info(f"🔄 Восстановлено {len(self._jobs)} задач из хранилища")
        return len(self._jobs)

    def next_fire_time(self, key: str, now: datetime.datetime = None) -> Optional[datetime.datetime]:
        job = self._jobs.get(key)
        if job is None:
            return None
        return job.trigger.get_next_fire_time(None, now or local_now(self.timezone))

    # === Служебные задачи ===

    def add_interval_job(self, func, seconds: int, job_id: str):
        return self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds, timezone=self.timezone),
            id=job_id,
            name=job_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def remove_interval_job(self, job_id: str):
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    # === Срабатывание ===

    async def fire(self, key: str, fired_at: datetime.datetime = None) -> bool:
        """
        Одно срабатывание: отправка и учёт счётчиков.

        Ошибки отправки логируются и не выходят за пределы метода,
        следующее срабатывание по расписанию не затрагивается.
        """
        record = self.store.get(key)
        if record is None or not record.active:
            logger.warning(f"⚠️ Срабатывание для отсутствующего объявления {key}, задача снимается")
            self.cancel(key)
            return False

        fired_at = fired_at or local_now(self.timezone)
        snapshot = dataclasses.replace(record)
        logger.info(f"🔄 Отправка объявления {key} в чат {snapshot.group_id}")

        try:
            delivered = await self._deliver(snapshot)
        except DeliveryError as e:
            logger.error(f"❌ Объявление {key} не отправлено: {e}")
            delivered = False
        except Exception as e:
            logger.exception(f"❌ Неожиданная ошибка при отправке объявления {key}: {e}")
            delivered = False

        if not delivered:
            DELIVERIES.labels(status='failed').inc()
            return False

        updated = self.store.record_delivery(key, fired_at)
        DELIVERIES.labels(status='sent').inc()
        if updated is None:
            return True

        logger.info(f"✅ Объявление {key} отправлено, всего отправок: {updated.sent_count}")
        if self._on_sent:
            try:
                self._on_sent(updated)
            except Exception as e:
                logger.exception(f"❌ Ошибка обработчика отправки для {key}: {e}")
        return True
