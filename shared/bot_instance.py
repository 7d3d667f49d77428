# shared/bot_instance.py

import logging
from typing import Optional

from telegram import Bot
from telegram.error import BadRequest, Forbidden, TelegramError

logger = logging.getLogger(__name__)


class TelegramTransport:
    """Отправка текстовых объявлений в чаты Telegram."""

    def __init__(self, bot: Optional[Bot] = None, token: str = ""):
        if bot is None and not token:
            raise ValueError("Нужен либо экземпляр Bot, либо токен")
        self._bot = bot
        self._token = token

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(token=self._token)
        return self._bot

    def attach(self, bot: Bot):
        """Использует бот приложения python-telegram-bot вместо отдельного экземпляра."""
        self._bot = bot

    async def send_message(self, target_id: str, text: str) -> bool:
        try:
            message = await self.bot.send_message(chat_id=target_id, text=text)
        except (BadRequest, Forbidden) as e:
            logger.error(f"❌ Чат {target_id} недоступен: {e}")
            return False
        except TelegramError as e:
            logger.error(f"❌ Ошибка Telegram API при отправке в чат {target_id}: {e}")
            return False

        logger.info(f"📤 Сообщение отправлено в чат {target_id}, ID: {message.message_id}")
        return True
