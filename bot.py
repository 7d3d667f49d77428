# bot.py

import asyncio
import functools
import logging
import re

import uvicorn
from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from config import (
    BOT_TOKEN, OWNER_ID, TIMEZONE, DATA_FILE, MAX_ADS_PER_GROUP,
    REMOTE_API_ENABLED, REMOTE_API_BASE_URL, REMOTE_API_TOKEN, REMOTE_API_TIMEOUT,
    REMOTE_API_RETRY_ATTEMPTS, REMOTE_API_RETRY_DELAY,
    SYNC_INTERVAL_SECONDS, SYNC_ADOPT_NEW, WEB_API_PORT, WEB_API_SECRET,
    configure_logging
)
from shared.bot_instance import TelegramTransport
from shared.exceptions import ValidationError
from shared.models import MINUTES, HOURS, DAYS, AnnouncementSummary
from shared.remote_client import RemoteClient
from shared.service import AnnouncementService
from shared.storage import AnnouncementStore
from web_api import create_app

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = ('group', 'supergroup')
TIME_PATTERN = re.compile(r"^(\d+)\s*([mhd]?)$", re.IGNORECASE)
UNIT_BY_SUFFIX = {'m': MINUTES, 'h': HOURS, 'd': DAYS}
UNIT_TEXT = {
    MINUTES: ('минута', 'минут'),
    HOURS: ('час', 'часов'),
    DAYS: ('день', 'дней'),
}

ADD_USAGE = (
    "Неверный формат!\n\n"
    "Использование: /addads текст объявления|интервал\n\n"
    "Примеры:\n"
    "/addads Специальная акция сегодня!|30m\n"
    "/addads Не пропустите предложение|2h\n"
    "/addads Ежедневное напоминание|1d"
)

HELP_TEXT = (
    "🤖 Бот объявлений\n\n"
    "Команды:\n"
    "/addads текст|интервал — создать повторяющееся объявление\n"
    "/listads — активные объявления группы\n"
    "/rmads ID — удалить объявление\n"
    "/stats — статистика (только владелец)\n"
    "/help — эта справка\n\n"
    "Интервал: m — минуты (от 5), h — часы, d — дни.\n"
    "Команды объявлений работают только в группах."
)


# === Вспомогательные функции ===

def parse_add_args(raw: str):
    """
    Разбирает "текст|30m" в (content, interval, unit).

    Без суффикса интервал считается в минутах.

    Raises:
        ValidationError: нет разделителя, пустой текст или неверный формат интервала
    """
    if not raw or '|' not in raw:
        raise ValidationError(ADD_USAGE)
    content, time_str = (part.strip() for part in raw.rsplit('|', 1))
    if not content or not time_str:
        raise ValidationError("Текст и интервал обязательны!")

    match = TIME_PATTERN.match(time_str)
    if not match:
        raise ValidationError("Неверный формат интервала! Используйте: 30m, 2h, 1d")

    interval = int(match.group(1))
    unit = UNIT_BY_SUFFIX[(match.group(2) or 'm').lower()]
    return content, interval, unit


def unit_label(interval: int, unit: str) -> str:
    one, many = UNIT_TEXT.get(unit, (unit, unit))
    return f"{interval} {one if interval == 1 else many}"


def format_summary(ad: AnnouncementSummary) -> str:
    lines = [
        f"🆔 ID: {ad.id}",
        f"📝 Текст: {ad.content}",
        f"⏰ Интервал: {unit_label(ad.interval, ad.unit)}",
        f"📊 Отправлено: {ad.sent_count} раз",
    ]
    if ad.last_sent:
        lines.append(f"🕐 Последняя отправка: {ad.last_sent}")
    lines.append('—' * 20)
    return "\n".join(lines)


def command_argument(update: Update) -> str:
    """Текст после команды целиком, с сохранением пробелов внутри."""
    text = (update.effective_message.text or "").strip()
    parts = text.split(maxsplit=1)
    return parts[1] if len(parts) > 1 else ""


def get_service(context: ContextTypes.DEFAULT_TYPE) -> AnnouncementService:
    return context.application.bot_data['service']


def group_only(func):
    @functools.wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        if update.effective_chat.type not in GROUP_CHAT_TYPES:
            await update.effective_message.reply_text("❌ Команды объявлений работают только в группах!")
            return
        return await func(update, context)
    return wrapper


def owner_only(func):
    @functools.wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not OWNER_ID or update.effective_user.id != OWNER_ID:
            await update.effective_message.reply_text("❌ Команда доступна только администратору.")
            return
        return await func(update, context)
    return wrapper


# === Команды ===

@group_only
async def add_ad(update: Update, context: ContextTypes.DEFAULT_TYPE):
    service = get_service(context)
    group_id = str(update.effective_chat.id)
    try:
        content, interval, unit = parse_add_args(command_argument(update))
        ad_id = await service.add(group_id, content, interval, unit)
    except ValidationError as e:
        await update.effective_message.reply_text(f"❌ {e}")
        return
    except Exception as e:
        logger.exception(f"❌ Ошибка при создании объявления в чате {group_id}: {e}")
        await update.effective_message.reply_text("❌ Ошибка при создании объявления. Попробуйте ещё раз.")
        return

    await update.effective_message.reply_text(
        f"✅ Объявление создано!\n\n"
        f"🆔 ID: {ad_id}\n"
        f"📝 Текст: {content}\n"
        f"⏰ Интервал: {unit_label(interval, unit)}\n\n"
        f"🤖 Объявление будет отправляться автоматически."
    )


@group_only
async def list_ads(update: Update, context: ContextTypes.DEFAULT_TYPE):
    ads = get_service(context).list(str(update.effective_chat.id))
    if not ads:
        await update.effective_message.reply_text(
            "📋 Нет активных объявлений в этой группе.\n\n💡 Используйте /addads, чтобы создать."
        )
        return
    text = "\n".join(format_summary(ad) for ad in ads)
    await update.effective_message.reply_text(
        f"📋 Активные объявления:\n\n{text}\n\n"
        f"📈 Всего: {len(ads)}\n💡 /rmads ID — удалить объявление"
    )


@group_only
async def remove_ad(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if not context.args:
        await update.effective_message.reply_text("❌ Используйте: /rmads <ID>\n📋 ID смотрите в /listads")
        return
    try:
        ad_id = int(context.args[0])
    except ValueError:
        await update.effective_message.reply_text("❌ ID должен быть числом!")
        return

    try:
        removed = await get_service(context).remove(str(update.effective_chat.id), ad_id)
    except Exception as e:
        logger.exception(f"❌ Ошибка при удалении объявления {ad_id}: {e}")
        await update.effective_message.reply_text("❌ Ошибка при удалении объявления. Попробуйте ещё раз.")
        return

    if removed:
        await update.effective_message.reply_text(f"✅ Объявление {ad_id} удалено.")
    else:
        await update.effective_message.reply_text(f"❌ Объявление с ID {ad_id} не найдено!")


async def show_help(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text(HELP_TEXT)


@owner_only
async def show_stats(update: Update, context: ContextTypes.DEFAULT_TYPE):
    stats = get_service(context).stats()
    await update.effective_message.reply_text(
        f"📊 Статистика\n\n"
        f"• Всего объявлений: {stats['total_count']}\n"
        f"• Активных: {stats['active_count']}\n"
        f"• Отправлено: {stats['total_sent_count']}\n"
        f"• Задач в планировщике: {stats['scheduled_jobs']}\n\n"
        f"🔄 Удалённый API: {'✅ включён' if stats['remote_enabled'] else '❌ отключён'}\n"
        f"• Последняя синхронизация: {stats['last_sync_time'] or 'никогда'}\n\n"
        f"🕐 Часовой пояс: {TIMEZONE}"
    )


# === Сборка и запуск ===

def build_service() -> AnnouncementService:
    store = AnnouncementStore(DATA_FILE, timezone=TIMEZONE)
    remote = RemoteClient(
        base_url=REMOTE_API_BASE_URL,
        token=REMOTE_API_TOKEN,
        enabled=REMOTE_API_ENABLED,
        timeout=REMOTE_API_TIMEOUT,
        retry_attempts=REMOTE_API_RETRY_ATTEMPTS,
        retry_delay=REMOTE_API_RETRY_DELAY,
    )
    return AnnouncementService(
        store,
        TelegramTransport(token=BOT_TOKEN),
        remote,
        timezone=TIMEZONE,
        max_per_group=MAX_ADS_PER_GROUP,
        adopt_new=SYNC_ADOPT_NEW,
        sync_interval=SYNC_INTERVAL_SECONDS,
    )


def register_handlers(app: Application):
    app.add_handler(CommandHandler("addads", add_ad))
    app.add_handler(CommandHandler("listads", list_ads))
    app.add_handler(CommandHandler("rmads", remove_ad))
    app.add_handler(CommandHandler(["help", "start"], show_help))
    app.add_handler(CommandHandler("stats", show_stats))


async def on_startup(app: Application):
    service: AnnouncementService = app.bot_data['service']
    service.transport.attach(app.bot)
    await service.start()

    if WEB_API_PORT:
        server = uvicorn.Server(uvicorn.Config(
            create_app(service, admin_secret=WEB_API_SECRET),
            host="0.0.0.0",
            port=WEB_API_PORT,
            log_level="warning",
        ))
        app.bot_data['web_server'] = server
        app.bot_data['web_task'] = asyncio.create_task(server.serve())
        logger.info(f"🚀 Веб-API запущен на порту {WEB_API_PORT}")

    stats = service.stats()
    logger.info(
        f"🤖 Бот запущен: активных объявлений {stats['active_count']}, "
        f"удалённый API {'включён' if stats['remote_enabled'] else 'отключён'}"
    )


async def on_shutdown(app: Application):
    server = app.bot_data.get('web_server')
    if server is not None:
        server.should_exit = True
        await app.bot_data['web_task']
    await app.bot_data['service'].shutdown()


def main():
    configure_logging()
    app = (
        Application.builder()
        .token(BOT_TOKEN)
        .post_init(on_startup)
        .post_shutdown(on_shutdown)
        .build()
    )
    app.bot_data['service'] = build_service()
    register_handlers(app)

    logger.info("Бот запускается...")
    app.run_polling()


if __name__ == "__main__":
    main()
