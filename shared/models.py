# shared/models.py

from dataclasses import dataclass, asdict
from typing import Optional

from shared.exceptions import ValidationError

MINUTES = 'minutes'
HOURS = 'hours'
DAYS = 'days'
UNITS = (MINUTES, HOURS, DAYS)

UNIT_ALIASES = {
    'm': MINUTES, 'min': MINUTES, 'minute': MINUTES, 'minutes': MINUTES, 'minutos': MINUTES,
    'h': HOURS, 'hour': HOURS, 'hours': HOURS, 'horas': HOURS,
    'd': DAYS, 'day': DAYS, 'days': DAYS, 'dias': DAYS,
}

MIN_MINUTES_INTERVAL = 5

SUMMARY_CONTENT_LIMIT = 50


def make_key(group_id: str, local_id: int) -> str:
    return f"{group_id}_{local_id}"


def normalize_unit(unit: str) -> str:
    """Приводит единицу измерения (m/h/d, minutos, hours, ...) к каноническому виду."""
    if not isinstance(unit, str):
        raise ValidationError(f"Некорректная единица времени: {unit!r}")
    normalized = UNIT_ALIASES.get(unit.strip().lower())
    if normalized is None:
        raise ValidationError(f"Неизвестная единица времени: {unit!r}. Используйте m, h или d")
    return normalized


def validate_cadence(interval, unit: str):
    """
    Проверяет интервал и единицу измерения.

    Returns:
        (interval, unit) в нормализованном виде

    Raises:
        ValidationError: интервал не целый или меньше минимума
    """
    unit = normalize_unit(unit)
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise ValidationError(f"Интервал должен быть целым числом, получено {interval!r}")
    if interval < 1:
        raise ValidationError("Интервал должен быть больше 0")
    if unit == MINUTES and interval < MIN_MINUTES_INTERVAL:
        raise ValidationError(f"Минимальный интервал {MIN_MINUTES_INTERVAL} минут")
    return interval, unit


def truncate_content(content: str, limit: int = SUMMARY_CONTENT_LIMIT) -> str:
    if len(content) > limit:
        return content[:limit] + '...'
    return content


@dataclass
class Announcement:
    local_id: int
    group_id: str
    content: str
    interval: int
    unit: str  # 'minutes', 'hours', 'days'
    active: bool = True
    created_at: Optional[str] = None  # ISO 8601 в настроенном часовом поясе
    last_sent: Optional[str] = None
    sent_count: int = 0
    remote_id: Optional[str] = None

    @property
    def key(self) -> str:
        return make_key(self.group_id, self.local_id)

    def to_dict(self) -> dict:
        """Формат записи в JSON-снимке."""
        return {
            'localId': self.local_id,
            'groupId': self.group_id,
            'content': self.content,
            'interval': self.interval,
            'unit': self.unit,
            'active': self.active,
            'createdAt': self.created_at,
            'lastSent': self.last_sent,
            'sentCount': self.sent_count,
            'remoteId': self.remote_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Announcement':
        # Старые снимки хранили внешний ID под ключом apiId
        remote_id = data.get('remoteId', data.get('apiId'))
        return cls(
            local_id=int(data['localId']),
            group_id=str(data['groupId']),
            content=data['content'],
            interval=int(data['interval']),
            unit=normalize_unit(data['unit']),
            active=bool(data.get('active', True)),
            created_at=data.get('createdAt'),
            last_sent=data.get('lastSent'),
            sent_count=int(data.get('sentCount') or 0),
            remote_id=str(remote_id) if remote_id is not None else None,
        )


@dataclass
class AnnouncementSummary:
    id: int
    content: str
    interval: int
    unit: str
    sent_count: int
    last_sent: Optional[str]
    created_at: Optional[str]

    @classmethod
    def from_record(cls, record: Announcement) -> 'AnnouncementSummary':
        return cls(
            id=record.local_id,
            content=truncate_content(record.content),
            interval=record.interval,
            unit=record.unit,
            sent_count=record.sent_count,
            last_sent=record.last_sent,
            created_at=record.created_at,
        )

    def to_dict(self) -> dict:
        return asdict(self)
