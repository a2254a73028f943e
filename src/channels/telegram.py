"""Telegram reporter bot: translates updates into intake inputs and renders replies.

Runs on python-telegram-bot v21 (polling or webhook). Choice steps get inline
keyboards; the location step gets a share-location reply button.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from telegram import (
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    Message,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.config import settings
from src.conversation import messages
from src.conversation.engine import IntakeEngine
from src.conversation.inputs import (
    ButtonPress,
    Cancel,
    Command,
    IntakeInput,
    LocationMessage,
    PhotoMessage,
    Reply,
    StartIntake,
    TextMessage,
    VoiceMessage,
)
from src.security.rate_limiter import event_key, rate_limiter

logger = logging.getLogger(__name__)

ENGINE_KEY = "intake_engine"

GENERIC_ERROR = "Sorry, something went wrong on our side. Please try again in a moment."
DOWNLOAD_FAILED = "Sorry, I couldn't download your file from Telegram. Please send it again."
RATE_LIMITED = "You are sending messages too quickly. Please wait {seconds} seconds and try again."
LOCATION_BUTTON = "📍 Share location"

# ── Webhook router ───────────────────────────────────────────────────

telegram_router = APIRouter(prefix="/webhook", tags=["telegram"])


_pending_updates: set[asyncio.Task[None]] = set()


@telegram_router.post("/telegram")
async def telegram_webhook(request: Request) -> Response:
    """Accept one update and process it in the background (webhook mode)."""
    telegram_app: Application | None = request.app.state.telegram_app
    if telegram_app is None:
        return Response(status_code=503)

    expected = settings.telegram.telegram_webhook_secret
    presented = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if expected and not secrets.compare_digest(presented, expected):
        return Response(status_code=403)

    update = Update.de_json(await request.json(), telegram_app.bot)
    # Telegram redelivers anything not acknowledged quickly
    task = asyncio.create_task(telegram_app.process_update(update))
    _pending_updates.add(task)
    task.add_done_callback(_pending_updates.discard)
    return Response(status_code=200)


class DownloadError(Exception):
    """An attachment could not be fetched from Telegram."""


# ── Rendering ────────────────────────────────────────────────────────


def render_markup(reply: Reply) -> InlineKeyboardMarkup | ReplyKeyboardMarkup | None:
    """Inline choice keyboard, one-shot location button, or nothing."""
    if reply.keyboard:
        return InlineKeyboardMarkup([
            [InlineKeyboardButton(label, callback_data=payload) for label, payload in row]
            for row in reply.keyboard
        ])
    if reply.request_location:
        return ReplyKeyboardMarkup(
            [[KeyboardButton(LOCATION_BUTTON, request_location=True)]],
            resize_keyboard=True,
            one_time_keyboard=True,
        )
    return None


async def _send_replies(message: Message, replies: list[Reply]) -> None:
    for reply in replies:
        await message.reply_text(reply.text, reply_markup=render_markup(reply))


def _engine(context: ContextTypes.DEFAULT_TYPE) -> IntakeEngine:
    return context.application.bot_data[ENGINE_KEY]


# ── Core routing ─────────────────────────────────────────────────────


async def _answer(query: CallbackQuery) -> None:
    """Stop the client's loading spinner; a failed answer never blocks the tap."""
    try:
        await query.answer()
    except TelegramError as exc:
        logger.warning("Could not answer callback query %s: %s", query.id, exc)


async def _route(
    message: Message,
    user_id: str,
    context: ContextTypes.DEFAULT_TYPE,
    build: Callable[[], Awaitable[IntakeInput]],
    acknowledge: Callable[[], Awaitable[None]] | None = None,
) -> None:
    """Throttle, build the input inside the user's slot, run it, reply.

    ``acknowledge`` runs first inside the slot, so a network round trip
    there cannot let a later message from the same user overtake this one.
    Nothing the user sends is dropped silently: every path ends in a reply.
    """
    engine = _engine(context)

    async def _load() -> IntakeInput | None:
        if acknowledge is not None:
            await acknowledge()
        decision = await rate_limiter.check(
            event_key(user_id),
            limit=settings.intake.rate_limit_messages,
            window=settings.intake.rate_limit_window_seconds,
        )
        if not decision.allowed:
            await message.reply_text(RATE_LIMITED.format(seconds=decision.retry_after))
            return None
        return await build()

    try:
        replies = await engine.handle_deferred(user_id, _load)
    except DownloadError:
        logger.exception("Failed to download attachment from user %s", user_id)
        replies = [Reply(DOWNLOAD_FAILED)]
    except Exception:
        logger.exception("Error processing update from user %s", user_id)
        replies = [Reply(GENERIC_ERROR)]

    await _send_replies(message, replies)


def _static(event: IntakeInput) -> Callable[[], Awaitable[IntakeInput]]:
    async def _build() -> IntakeInput:
        return event
    return _build


# ── Handlers ─────────────────────────────────────────────────────────


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/start and /report: begin (or restart) a report."""
    if update.effective_user is None or update.message is None:
        return
    user_id = str(update.effective_user.id)
    await _route(update.message, user_id, context, _static(StartIntake(user_id)))


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/cancel: discard the report immediately, without queueing behind uploads."""
    if update.effective_user is None or update.message is None:
        return
    user_id = str(update.effective_user.id)
    try:
        replies = await _engine(context).handle(Cancel(user_id))
    except Exception:
        logger.exception("Error cancelling intake for user %s", user_id)
        replies = [Reply(GENERIC_ERROR)]
    await _send_replies(update.message, replies)


async def step_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/done and /retry are forwarded to the engine as commands."""
    if update.effective_user is None or update.message is None or not update.message.text:
        return
    user_id = str(update.effective_user.id)
    name = update.message.text.split()[0].lstrip("/").split("@")[0].lower()
    await _route(update.message, user_id, context, _static(Command(user_id, name)))


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/help: show the command list."""
    if update.message is None:
        return
    await update.message.reply_text(messages.HELP_TEXT)


async def handle_button(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Inline keyboard taps (incident type, severity)."""
    query = update.callback_query
    if query is None or update.effective_user is None:
        return
    if not isinstance(query.message, Message) or not query.data:
        await _answer(query)
        return
    user_id = str(update.effective_user.id)
    await _route(
        query.message,
        user_id,
        context,
        _static(ButtonPress(user_id, query.data)),
        acknowledge=lambda: _answer(query),
    )


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Plain text: links in EVIDENCE, descriptions in DETAILS."""
    if update.effective_user is None or update.message is None or update.message.text is None:
        return
    user_id = str(update.effective_user.id)
    await _route(update.message, user_id, context, _static(TextMessage(user_id, update.message.text)))


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Photos and image documents. Downloads the largest variant inside the user's slot."""
    if update.effective_user is None or update.message is None:
        return
    message = update.message
    user_id = str(update.effective_user.id)

    async def _build() -> IntakeInput:
        try:
            if message.photo:
                file = await message.photo[-1].get_file()
            elif message.document:
                file = await message.document.get_file()
            else:
                msg = "Message carries no image"
                raise DownloadError(msg)
            data = bytes(await file.download_as_bytearray())
        except DownloadError:
            raise
        except Exception as exc:
            raise DownloadError(str(exc)) from exc
        return PhotoMessage(user_id, data, caption=message.caption)

    await _route(message, user_id, context, _build)


async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Voice notes and audio files."""
    if update.effective_user is None or update.message is None:
        return
    message = update.message
    user_id = str(update.effective_user.id)

    async def _build() -> IntakeInput:
        attachment = message.voice or message.audio
        if attachment is None:
            msg = "Message carries no audio"
            raise DownloadError(msg)
        try:
            file = await attachment.get_file()
            data = bytes(await file.download_as_bytearray())
        except Exception as exc:
            raise DownloadError(str(exc)) from exc
        return VoiceMessage(
            user_id,
            data,
            mime_type=attachment.mime_type or "audio/ogg",
            caption=message.caption,
        )

    await _route(message, user_id, context, _build)


async def handle_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Shared locations (the final step)."""
    if update.effective_user is None or update.message is None or update.message.location is None:
        return
    user_id = str(update.effective_user.id)
    location = update.message.location
    event = LocationMessage(user_id, location.latitude, location.longitude)
    await _route(update.message, user_id, context, _static(event))


async def handle_unsupported(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Stickers, videos, contacts and unknown /commands get the current step's re-prompt."""
    if update.effective_user is None or update.message is None:
        return
    user_id = str(update.effective_user.id)
    # An empty text is rejected by every state with its re-prompt
    await _route(update.message, user_id, context, _static(TextMessage(user_id, "")))


def create_telegram_app(engine: IntakeEngine) -> Application:
    """Build and configure the Telegram bot application.

    Updates are processed concurrently; the engine keeps each user's
    updates in order. Returns the Application instance (not yet started).
    """
    token = settings.telegram.telegram_bot_token
    if not token:
        msg = "TELEGRAM_BOT_TOKEN not set in environment"
        raise ValueError(msg)

    app = Application.builder().token(token).concurrent_updates(True).build()
    app.bot_data[ENGINE_KEY] = engine

    app.add_handler(CommandHandler(["start", "report"], start_command))
    app.add_handler(CommandHandler("cancel", cancel_command))
    app.add_handler(CommandHandler(["done", "retry"], step_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CallbackQueryHandler(handle_button))
    app.add_handler(MessageHandler(filters.PHOTO | filters.Document.IMAGE, handle_photo))
    app.add_handler(MessageHandler(filters.VOICE | filters.AUDIO, handle_voice))
    app.add_handler(MessageHandler(filters.LOCATION, handle_location))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(~filters.COMMAND, handle_unsupported))
    app.add_handler(MessageHandler(filters.COMMAND, handle_unsupported))

    logger.info("Telegram bot application created")
    return app
