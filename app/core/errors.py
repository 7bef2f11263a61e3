from __future__ import annotations


class ReminderError(Exception):
    """Базовая ошибка конвейера напоминаний."""


class SourceUnavailable(ReminderError):
    """Закреплённое сообщение не получено или в нём нет текста."""


class LedgerLookupFailure(ReminderError):
    """Журнал отправленных событий не читается."""


class LedgerWriteFailure(ReminderError):
    """Не удалось записать отправленное событие или лог рассылки."""


class RecipientStoreError(ReminderError):
    """Получателей не удалось прочитать или обновить."""


class DeliveryFailure(ReminderError):
    def __init__(self, user_id: int, message: str) -> None:
        super().__init__(message)
        self.user_id = user_id
        self.message = message

    def __str__(self) -> str:
        return self.message
