"""Direct-message intake of defense submissions and opponent screenshots."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional

import discord

from .adapters.discord.builders import build_submission_receipt
from .errors import DefenseBotError
from .models import Submission
from .service import DefenseService
from .sessions import IntakeSessionStore, IntakeState

logger = logging.getLogger(__name__)

HOW_TO_SUBMIT = (
    "⚠️ **Important:** You must send the image and code **together in the same message**.\n\n"
    "📝 **How to submit:**\n"
    "1. Attach your defense screenshot\n"
    "2. Write your code in the message text\n"
    "3. Send both together!"
)
MISSING_IMAGE = f"❌ Please send an **image** with your **code**!\n\n{HOW_TO_SUBMIT}"
MISSING_CODE = f"❌ Please send your **code** with the image!\n\n{HOW_TO_SUBMIT}"
MENU_PROMPT = "👋 What would you like to send?"
FINISH_WORDS = {"done", "finish", "finished", "stop"}

AdminNotifier = Callable[[Submission], Awaitable[None]]
MenuFactory = Callable[[], Optional[discord.ui.View]]


def _image_attachments(message: Any) -> List[Any]:
    return [
        attachment
        for attachment in getattr(message, "attachments", [])
        if (getattr(attachment, "content_type", None) or "").startswith("image/")
    ]


class IntakeHandler:
    """Routes each DM to the step its author's session is on."""

    def __init__(
        self,
        service: DefenseService,
        sessions: IntakeSessionStore,
        *,
        menu_factory: Optional[MenuFactory] = None,
        admin_notifier: Optional[AdminNotifier] = None,
    ) -> None:
        self._service = service
        self._sessions = sessions
        self._menu_factory = menu_factory
        self._admin_notifier = admin_notifier

    async def handle(self, message: Any) -> None:
        if message.author.bot or message.guild is not None:
            return
        user_id = str(message.author.id)
        state = self._sessions.state(user_id)
        if state is IntakeState.AWAITING_OPPONENT_IMAGES:
            await self._handle_opponent_images(message, user_id)
            return
        if state is IntakeState.AWAITING_CODE_AND_IMAGE or (
            _image_attachments(message) and (message.content or "").strip()
        ):
            await self._handle_code_and_image(message, user_id)
            return
        await self._send_menu(message)

    async def _send_menu(self, message: Any) -> None:
        view = self._menu_factory() if self._menu_factory else None
        if view is None:
            await message.reply(MISSING_IMAGE)
            return
        await message.reply(MENU_PROMPT, view=view)

    async def _handle_code_and_image(self, message: Any, user_id: str) -> None:
        content = (message.content or "").strip()
        images = _image_attachments(message)
        if not images:
            await message.reply(MISSING_IMAGE)
            return
        if not content:
            await message.reply(MISSING_CODE)
            return
        attachment = images[0]
        try:
            image_data = await attachment.read()
            submission = self._service.submit_defense(
                user_id,
                message.author.name,
                content,
                image_data,
                attachment.filename,
            )
        except (DefenseBotError, discord.HTTPException) as exc:
            logger.exception("Error saving submission from %s", user_id)
            await message.reply(f"❌ Error saving your submission! ({exc})")
            return
        self._sessions.clear(user_id)
        await message.reply(build_submission_receipt(submission))
        if self._admin_notifier is not None:
            try:
                await self._admin_notifier(submission)
            except discord.HTTPException:
                logger.exception("Error sending admin notification")

    async def _handle_opponent_images(self, message: Any, user_id: str) -> None:
        content = (message.content or "").strip().lower()
        session = self._sessions.get(user_id)
        if content in FINISH_WORDS:
            self._sessions.clear(user_id)
            await message.reply(
                f"🙏 Thank you! {session.uploads} opponent defense(s) received for review."
            )
            return
        images = _image_attachments(message)
        if not images:
            await message.reply("🖼️ Please send screenshots, or type **done** to finish.")
            return
        limit = self._service.settings.max_opponent_images
        saved = 0
        for attachment in images:
            if session.uploads + saved >= limit:
                await message.reply(f"⚠️ Limit of {limit} screenshots per session reached.")
                break
            try:
                image_data = await attachment.read()
                self._service.submit_opponent_image(
                    user_id, message.author.name, image_data, attachment.filename
                )
            except (DefenseBotError, discord.HTTPException):
                logger.exception("Error saving opponent screenshot from %s", user_id)
                continue
            saved += 1
        total = self._sessions.record_upload(user_id, saved)
        await message.reply(
            f"✅ {saved} screenshot(s) received ({total} this session). "
            "Send more or type **done**."
        )


__all__ = ["IntakeHandler", "MISSING_CODE", "MISSING_IMAGE", "MENU_PROMPT"]
