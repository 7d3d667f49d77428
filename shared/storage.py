# shared/storage.py

import asyncio
import datetime
import json
import logging
import os
import tempfile
from typing import Callable, Dict, List, Optional, Tuple

import pytz

from shared.exceptions import StorageError
from shared.models import Announcement, AnnouncementSummary, make_key

logger = logging.getLogger(__name__)


def local_now(timezone) -> datetime.datetime:
    """Текущее время в заданном часовом поясе (имя или объект pytz)."""
    if isinstance(timezone, str):
        timezone = pytz.timezone(timezone)
    return datetime.datetime.now(timezone)


class AnnouncementStore:
    """
    Набор объявлений в памяти и его JSON-снимок на диске.

    Каждая мутация целиком перезаписывает снимок: ключи вида
    "<groupId>_<localId>", значения в формате Announcement.to_dict().
    Ошибки чтения и записи логируются и не прерывают работу,
    состояние в памяти остаётся источником истины до следующей записи.

    Последовательности «прочитать, дождаться I/O, записать», которые
    пересекают точки await, выполняются под ``lock``.
    """

    def __init__(
        self,
        path: str,
        timezone: str = 'UTC',
        clock: Optional[Callable[[], datetime.datetime]] = None
    ):
        self.path = path
        self.timezone = pytz.timezone(timezone) if isinstance(timezone, str) else timezone
        self._clock = clock or (lambda: local_now(self.timezone))
        self._records: Dict[str, Announcement] = {}
        self._last_allocated_id = 0
        self.last_sync_time: Optional[str] = None
        self.lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def now(self) -> datetime.datetime:
        return self._clock()

    # === Снимок ===

    def load(self) -> int:
        """Загружает снимок с диска. Возвращает количество загруженных записей."""
        self._records = {}
        if not os.path.exists(self.path):
            logger.info(f"Снимок {self.path} не найден, начинаем с пустого набора")
            return 0

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise StorageError(f"Ожидался JSON-объект, получено {type(data).__name__}")
        except (OSError, ValueError, StorageError) as e:
            logger.error(f"❌ Не удалось загрузить снимок {self.path}: {e}")
            return 0

        for key, raw in data.items():
            try:
                record = Announcement.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ Пропущена повреждённая запись {key}: {e}")
                continue
            self._records[record.key] = record
            self._last_allocated_id = max(self._last_allocated_id, record.local_id)

        logger.info(f"Загружено {len(self._records)} объявлений из {self.path}")
        return len(self._records)

    def save(self) -> bool:
        """Записывает полный снимок. При ошибке логирует StorageError и возвращает False."""
        data = {key: record.to_dict() for key, record in self._records.items()}
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix='.ads-', suffix='.json', dir=directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
            tmp_path = None
            return True
        except (OSError, TypeError, ValueError) as e:
            error = StorageError(f"Не удалось сохранить снимок {self.path}: {e}")
            logger.error(f"❌ {error}. Изменения сохранены только в памяти.")
            return False
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

    # === Мутации ===

    def _next_id(self) -> int:
        existing = max((r.local_id for r in self._records.values()), default=0)
        self._last_allocated_id = max(existing, self._last_allocated_id) + 1
        return self._last_allocated_id

    def add(self, group_id: str, content: str, interval: int, unit: str) -> int:
        """Создаёт запись и сохраняет снимок. Проверка параметров лежит на вызывающем."""
        local_id = self._next_id()
        record = Announcement(
            local_id=local_id,
            group_id=group_id,
            content=content,
            interval=interval,
            unit=unit,
            active=True,
            created_at=self.now().isoformat(),
            last_sent=None,
            sent_count=0,
        )
        self._records[record.key] = record
        self.save()
        logger.debug(f"Объявление {record.key} добавлено в хранилище")
        return local_id

    def put(self, record: Announcement, persist: bool = True):
        """Вставляет или заменяет запись целиком без выделения нового ID."""
        self._records[record.key] = record
        self._last_allocated_id = max(self._last_allocated_id, record.local_id)
        if persist:
            self.save()

    def remove(self, group_id: str, local_id: int) -> bool:
        key = make_key(group_id, local_id)
        if key not in self._records:
            return False
        del self._records[key]
        self.save()
        logger.debug(f"Объявление {key} удалено из хранилища")
        return True

    def record_delivery(self, key: str, sent_at: datetime.datetime = None) -> Optional[Announcement]:
        """
        Фиксирует успешную отправку: lastSent и sentCount += 1.

        Читает актуальную запись, а не копию с момента срабатывания,
        поэтому удалённое во время отправки объявление не воскресает.
        """
        record = self._records.get(key)
        if record is None:
            logger.warning(f"⚠️ Объявление {key} удалено во время отправки, счётчики не обновлены")
            return None
        record.last_sent = (sent_at or self.now()).isoformat()
        record.sent_count += 1
        self.save()
        return record

    def set_remote_id(self, key: str, remote_id, persist: bool = True) -> bool:
        """Проставляет внешний ID, если он ещё не задан."""
        record = self._records.get(key)
        if record is None or record.remote_id or remote_id is None:
            return False
        record.remote_id = str(remote_id)
        if persist:
            self.save()
        return True

    def mark_synced(self, when: datetime.datetime = None) -> str:
        self.last_sync_time = (when or self.now()).isoformat()
        return self.last_sync_time

    # === Чтение ===

    def get(self, key: str) -> Optional[Announcement]:
        return self._records.get(key)

    def active_items(self) -> List[Tuple[str, Announcement]]:
        return [(key, r) for key, r in self._records.items() if r.active]

    def group_active_count(self, group_id: str) -> int:
        return sum(1 for r in self._records.values() if r.group_id == group_id and r.active)

    def list(self, group_id: str) -> List[AnnouncementSummary]:
        """Активные объявления группы по возрастанию ID, текст обрезан до 50 символов."""
        records = sorted(
            (r for r in self._records.values() if r.group_id == group_id and r.active),
            key=lambda r: r.local_id
        )
        return [AnnouncementSummary.from_record(r) for r in records]

    def stats(self) -> dict:
        records = list(self._records.values())
        return {
            'total_count': len(records),
            'active_count': sum(1 for r in records if r.active),
            'total_sent_count': sum(r.sent_count for r in records),
            'last_sync_time': self.last_sync_time,
        }
