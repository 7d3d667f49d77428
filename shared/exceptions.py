# shared/exceptions.py


class AnnouncementError(Exception):
    """Базовая ошибка подсистемы объявлений."""


class ValidationError(AnnouncementError):
    """Некорректные параметры объявления. Состояние не изменяется."""


class StorageError(AnnouncementError):
    """Ошибка чтения или записи локального снимка."""


class RemoteSyncError(AnnouncementError):
    """Удалённый API недоступен после всех повторных попыток."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class DeliveryError(AnnouncementError):
    """Не удалось отправить объявление в чат."""
