import logging
from collections.abc import Callable, Coroutine
from typing import Any

from telegram import Bot, BotCommand, Update
from telegram.ext import Application, CommandHandler, ContextTypes

from screener.alert.models import Alert
from screener.delivery.batcher import AlertSummary
from screener.notifier.formatter import format_alert, format_summary

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = """
🔔 <b>Pair Screener</b> - USDT 交易对实时筛选

<b>功能：</b>
• Pioneer / Big Bull / Hunter 信号
• 成交量异常 (bubble) 检测
• 告警合并推送，避免刷屏

输入 /help 查看所有命令
"""

HELP_MESSAGE = """
📖 <b>命令列表</b>

/status - 预热进度与运行状态
/stats - 告警历史统计
/help - 查看帮助
"""

BOT_COMMANDS = [
    BotCommand("start", "开始使用"),
    BotCommand("help", "查看帮助"),
    BotCommand("status", "系统状态"),
    BotCommand("stats", "告警统计"),
]


class TelegramNotifier:
    name = "telegram"
    kind = "notification"

    def __init__(self, bot_token: str, chat_id: str):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.bot = Bot(token=bot_token)
        self.app: Application | None = None  # type: ignore[type-arg]

        # Callbacks
        self.on_status: Callable[[], Coroutine[Any, Any, str]] | None = None
        self.on_stats: Callable[[], Coroutine[Any, Any, str]] | None = None

    async def send_message(self, text: str) -> None:
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            parse_mode="HTML",
        )

    async def send_alert(self, alert: Alert) -> bool:
        try:
            await self.send_message(format_alert(alert))
            return True
        except Exception as e:
            logger.error(f"Telegram send failed for {alert.symbol}: {e}")
            return False

    async def send_summary(self, summary: AlertSummary, alerts: list[Alert]) -> bool:
        # 单条告警直接发原文
        if len(alerts) == 1:
            return await self.send_alert(alerts[0])
        try:
            await self.send_message(format_summary(summary))
            return True
        except Exception as e:
            logger.error(f"Telegram summary send failed: {e}")
            return False

    async def _handle_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return

        if self.on_status:
            text = await self.on_status()
            await update.message.reply_text(text, parse_mode="HTML")
        else:
            await update.message.reply_text("系统运行中")

    async def _handle_stats(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return

        if self.on_stats:
            text = await self.on_stats()
            await update.message.reply_text(text, parse_mode="HTML")
        else:
            await update.message.reply_text("暂无告警记录")

    async def _handle_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(WELCOME_MESSAGE, parse_mode="HTML")

    async def _handle_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message:
            return
        await update.message.reply_text(HELP_MESSAGE, parse_mode="HTML")

    def setup_handlers(self, app: Application) -> None:  # type: ignore[type-arg]
        app.add_handler(CommandHandler("start", self._handle_start))
        app.add_handler(CommandHandler("help", self._handle_help))
        app.add_handler(CommandHandler("status", self._handle_status))
        app.add_handler(CommandHandler("stats", self._handle_stats))

    async def start_polling(self) -> None:
        self.app = Application.builder().token(self.bot_token).build()
        self.setup_handlers(self.app)
        await self.app.initialize()
        await self.app.start()

        await self.bot.set_my_commands(BOT_COMMANDS)

        if self.app.updater:
            await self.app.updater.start_polling()

    async def stop_polling(self) -> None:
        if self.app:
            if self.app.updater:
                await self.app.updater.stop()
            await self.app.stop()
            await self.app.shutdown()
