"""Interactive review screens for administrators and the DM intake menu."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

import discord

from ...errors import DefenseBotError
from ...models import PublishResult
from ...scheduler import PublishScheduler
from ...service import DefenseService
from ...sessions import (
    IntakeSessionStore,
    IntakeState,
    ReviewMode,
    ReviewSessions,
    ReviewView,
)
from .builders import build_review_page, build_schedule_status_message

logger = logging.getLogger(__name__)

PublishSubmissions = Callable[[Optional[int], str], Awaitable[PublishResult]]
PublishOpponents = Callable[[Optional[int], str], Awaitable[PublishResult]]


def _parse_channel_id(raw: str) -> Optional[int]:
    text = (raw or "").strip().lstrip("<#").rstrip(">")
    try:
        return int(text)
    except ValueError:
        return None


def describe_result(result: PublishResult, channel_id: Optional[int]) -> str:
    if not result.success:
        return f"❌ {result.error}"
    lines = [f"📤 **Published {result.published_count} of {result.attempted} to <#{channel_id}>!**"]
    if result.failed_ids:
        lines.append(f"⚠️ Failed: {', '.join(str(item) for item in result.failed_ids)}")
    return "\n".join(lines)


class _PagedView(discord.ui.View):
    """Shared pagination and rendering over a :class:`ReviewView`."""

    def __init__(
        self,
        *,
        owner_id: int,
        key: int,
        model: ReviewView,
        sessions: ReviewSessions,
        service: DefenseService,
        timeout: float,
    ) -> None:
        super().__init__(timeout=timeout)
        self.owner_id = owner_id
        self.key = key
        self.model = model
        self.sessions = sessions
        self.service = service
        self.origin: Optional[discord.Interaction] = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.owner_id:
            await interaction.response.send_message(
                "This review screen belongs to someone else.", ephemeral=True
            )
            return False
        return True

    async def on_timeout(self) -> None:
        self.sessions.close(self.key)

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item
    ) -> None:
        logger.exception("Review view action failed", exc_info=error)
        message = f"❌ {error}" if isinstance(error, DefenseBotError) else "❌ An error occurred!"
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)

    def sync_buttons(self) -> None:
        """Enable or disable buttons for the current cursor position."""

    def page(self):
        return build_review_page(
            self.model, preview_length=self.service.settings.code_preview_length
        )

    async def render(self, interaction: discord.Interaction, content: str = "") -> None:
        self.sync_buttons()
        embed, files = self.page()
        if interaction.response.is_done():
            await interaction.edit_original_response(
                content=content, embed=embed, attachments=files, view=self
            )
        else:
            await interaction.response.edit_message(
                content=content, embed=embed, attachments=files, view=self
            )

    async def rerender_origin(self, content: str = "") -> None:
        if self.origin is None:
            return
        self.sync_buttons()
        embed, files = self.page()
        try:
            await self.origin.edit_original_response(
                content=content, embed=embed, attachments=files, view=self
            )
        except discord.HTTPException:
            logger.info("Review message could not be refreshed")


class EditCodeModal(discord.ui.Modal, title="Edit Code"):
    def __init__(self, parent: "SubmissionReviewView", submission_id: int, code: str) -> None:
        super().__init__()
        self.parent = parent
        self.submission_id = submission_id
        self.code = discord.ui.TextInput(
            label="Code",
            style=discord.TextStyle.paragraph,
            default=code[:4000],
            max_length=4000,
        )
        self.add_item(self.code)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        self.parent.service.edit_code(self.submission_id, self.code.value)
        self.parent.model.refresh(self.parent.service)
        await self.parent.render(interaction, f"✏️ Code for #{self.submission_id} updated.")


class EditMessageModal(discord.ui.Modal, title="Edit Message"):
    def __init__(
        self, parent: "SubmissionReviewView", submission_id: int, message: str, extra: str
    ) -> None:
        super().__init__()
        self.parent = parent
        self.submission_id = submission_id
        self.message = discord.ui.TextInput(
            label="Message (shown with the mention)",
            style=discord.TextStyle.paragraph,
            default=message or None,
            required=False,
            max_length=1500,
        )
        self.extra = discord.ui.TextInput(
            label="Extra mention (user id)",
            default=extra or None,
            required=False,
            max_length=40,
        )
        self.add_item(self.message)
        self.add_item(self.extra)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        self.parent.service.edit_message(
            self.submission_id, self.message.value, self.extra.value
        )
        self.parent.model.refresh(self.parent.service)
        await self.parent.render(interaction, f"💬 Message for #{self.submission_id} updated.")


class SeasonModal(discord.ui.Modal, title="Set Season"):
    def __init__(self, parent: "SubmissionReviewView") -> None:
        super().__init__()
        self.parent = parent
        self.season = discord.ui.TextInput(
            label="Season Number",
            default=parent.model.season or None,
            max_length=10,
        )
        self.add_item(self.season)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        season = self.season.value.strip()
        if not season.isdigit():
            await interaction.response.send_message("❌ Season must be a number.", ephemeral=True)
            return
        self.parent.model.season = season
        await self.parent.render(interaction, f"🏆 Season set to {season}.")


class ScheduleModal(discord.ui.Modal, title="Schedule Publish (UTC)"):
    def __init__(self, parent: "SubmissionReviewView", default_channel: Optional[int]) -> None:
        super().__init__()
        self.parent = parent
        self.channel = discord.ui.TextInput(
            label="Channel ID",
            default=str(default_channel) if default_channel else None,
            placeholder="Right-click channel → Copy ID",
        )
        self.date = discord.ui.TextInput(label="Date (YYYY-MM-DD)", placeholder="2025-12-15")
        self.time = discord.ui.TextInput(label="Time (HH:MM, UTC)", placeholder="22:30")
        self.add_item(self.channel)
        self.add_item(self.date)
        self.add_item(self.time)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        channel_id = _parse_channel_id(self.channel.value)
        if channel_id is None or interaction.client.get_channel(channel_id) is None:
            await interaction.response.send_message(
                "❌ Channel not found! Make sure the Channel ID is correct.", ephemeral=True
            )
            return
        try:
            self.parent.scheduler.schedule_once(
                self.date.value,
                self.time.value,
                channel_id,
                self.parent.model.season or self.parent.service.settings.default_season,
            )
        except DefenseBotError as exc:
            await interaction.response.send_message(f"❌ {exc}", ephemeral=True)
            return
        status = build_schedule_status_message(self.parent.scheduler.status())
        await self.parent.render(
            interaction, f"{status}\n🌍 This is UTC timezone (Coordinated Universal Time)"
        )


class SubmissionReviewView(_PagedView):
    """The `/list` screen: page, edit, delete, publish and schedule."""

    def __init__(
        self,
        *,
        publish: PublishSubmissions,
        scheduler: PublishScheduler,
        default_channel: Optional[int],
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.publish = publish
        self.scheduler = scheduler
        self.default_channel = default_channel
        self.sync_buttons()

    def sync_buttons(self) -> None:
        has_items = self.model.current is not None
        self.previous_button.disabled = not self.model.has_previous
        self.next_button.disabled = not self.model.has_next
        for button in (
            self.toggle_code_button,
            self.edit_message_button,
            self.edit_code_button,
            self.delete_button,
            self.publish_button,
        ):
            button.disabled = not has_items
        self.toggle_code_button.label = (
            "📄 Hide Code" if self.model.show_full_code else "📄 Full Code"
        )

    @discord.ui.button(label="◀️ Previous", style=discord.ButtonStyle.secondary, row=0)
    async def previous_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.previous()
        await self.render(interaction)

    @discord.ui.button(label="Next ▶️", style=discord.ButtonStyle.secondary, row=0)
    async def next_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.next()
        await self.render(interaction)

    @discord.ui.button(label="📄 Full Code", style=discord.ButtonStyle.secondary, row=0)
    async def toggle_code_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.show_full_code = not self.model.show_full_code
        await self.render(interaction)

    @discord.ui.button(label="🔄 Refresh", style=discord.ButtonStyle.secondary, row=0)
    async def refresh_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.refresh(self.service)
        await self.render(interaction)

    @discord.ui.button(label="💬 Message", style=discord.ButtonStyle.primary, row=1)
    async def edit_message_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        submission = self.model.current
        await interaction.response.send_modal(
            EditMessageModal(self, submission.id, submission.message, submission.extra_mention)
        )

    @discord.ui.button(label="✏️ Edit Code", style=discord.ButtonStyle.primary, row=1)
    async def edit_code_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        submission = self.model.current
        await interaction.response.send_modal(EditCodeModal(self, submission.id, submission.code))

    @discord.ui.button(label="🏆 Season", style=discord.ButtonStyle.primary, row=1)
    async def season_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.send_modal(SeasonModal(self))

    @discord.ui.button(label="🗑️ Delete", style=discord.ButtonStyle.danger, row=1)
    async def delete_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        submission = self.model.current
        self.service.delete_submission(submission.id)
        self.model.refresh(self.service)
        await self.render(
            interaction, f"🗑️ Submission from **{submission.username}** moved to archive."
        )

    @discord.ui.button(label="📤 Publish All", style=discord.ButtonStyle.success, row=2)
    async def publish_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.defer()
        season = self.model.season or self.service.settings.default_season
        result = await self.publish(self.default_channel, season)
        self.model.refresh(self.service)
        await self.render(interaction, describe_result(result, self.default_channel))

    @discord.ui.button(label="⏰ Schedule", style=discord.ButtonStyle.success, row=2)
    async def schedule_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.send_modal(ScheduleModal(self, self.default_channel))

    @discord.ui.button(label="📦 Archive", style=discord.ButtonStyle.secondary, row=2)
    async def archive_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        archive = open_archive_view(
            owner_id=self.owner_id,
            key=interaction.id,
            sessions=self.sessions,
            service=self.service,
            timeout=self.timeout or 300,
            on_change=self.refresh_after_restore,
        )
        embed, files = archive.page()
        await interaction.response.send_message(
            embed=embed, files=files, view=archive, ephemeral=True
        )
        archive.origin = interaction

    async def refresh_after_restore(self) -> None:
        self.model.refresh(self.service)
        await self.rerender_origin()


class ArchiveReviewView(_PagedView):
    """Browse archived submissions; restore or purge them."""

    def __init__(self, *, on_change: Optional[Callable[[], Awaitable[None]]] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.on_change = on_change
        self.sync_buttons()

    def sync_buttons(self) -> None:
        has_items = self.model.current is not None
        self.previous_button.disabled = not self.model.has_previous
        self.next_button.disabled = not self.model.has_next
        self.restore_button.disabled = not has_items
        self.purge_button.disabled = not has_items

    @discord.ui.button(label="◀️ Previous", style=discord.ButtonStyle.secondary, row=0)
    async def previous_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.previous()
        await self.render(interaction)

    @discord.ui.button(label="Next ▶️", style=discord.ButtonStyle.secondary, row=0)
    async def next_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.next()
        await self.render(interaction)

    @discord.ui.button(label="♻️ Restore", style=discord.ButtonStyle.success, row=1)
    async def restore_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        entry = self.model.current
        restored = self.service.restore_submission(entry.id)
        self.model.refresh(self.service)
        await self.render(
            interaction,
            f"♻️ **Restored!** Submission from **{entry.username}** is pending again as #{restored.id}.",
        )
        if self.on_change is not None:
            await self.on_change()

    @discord.ui.button(label="🗑️ Delete Permanently", style=discord.ButtonStyle.danger, row=1)
    async def purge_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        entry = self.model.current
        self.service.purge_archived(entry.id)
        self.model.refresh(self.service)
        await self.render(
            interaction,
            f"🗑️ **Permanently deleted!** Submission from **{entry.username}** removed.",
        )

    @discord.ui.button(label="✖️ Close", style=discord.ButtonStyle.secondary, row=1)
    async def close_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.sessions.close(self.key)
        self.stop()
        await interaction.response.edit_message(
            content="📦 Archive closed.", embed=None, attachments=[], view=None
        )


def open_archive_view(
    *,
    owner_id: int,
    key: int,
    sessions: ReviewSessions,
    service: DefenseService,
    timeout: float,
    on_change: Optional[Callable[[], Awaitable[None]]] = None,
) -> ArchiveReviewView:
    model = sessions.open(key, ReviewMode.ARCHIVE)
    return ArchiveReviewView(
        owner_id=owner_id,
        key=key,
        model=model,
        sessions=sessions,
        service=service,
        timeout=timeout,
        on_change=on_change,
    )


class OpponentPublishModal(discord.ui.Modal, title="Publish Opponents Defenses"):
    def __init__(self, parent: "OpponentReviewView", default_channel: Optional[int]) -> None:
        super().__init__()
        self.parent = parent
        self.channel = discord.ui.TextInput(
            label="Channel ID",
            default=str(default_channel) if default_channel else None,
            placeholder="Right-click channel → Copy ID",
        )
        self.season = discord.ui.TextInput(
            label="Season Number",
            default=parent.service.settings.default_season,
            max_length=10,
        )
        self.add_item(self.channel)
        self.add_item(self.season)

    async def on_submit(self, interaction: discord.Interaction) -> None:
        channel_id = _parse_channel_id(self.channel.value)
        if channel_id is None or interaction.client.get_channel(channel_id) is None:
            await interaction.response.send_message("❌ Channel not found!", ephemeral=True)
            return
        await interaction.response.defer()
        result = await self.parent.publish(channel_id, self.season.value.strip())
        self.parent.model.refresh(self.parent.service)
        summary = describe_result(result, channel_id)
        if result.success:
            summary += "\n✅ Opening and closing messages sent!"
        await self.parent.render(interaction, summary)


class OpponentReviewView(_PagedView):
    """The `/opponents` screen with pending and approved modes."""

    def __init__(
        self, *, publish: PublishOpponents, default_channel: Optional[int], **kwargs
    ) -> None:
        super().__init__(**kwargs)
        self.publish = publish
        self.default_channel = default_channel
        self.sync_buttons()

    def _counts(self) -> tuple[int, int]:
        if self.model.mode is ReviewMode.OPPONENTS_PENDING:
            return len(self.model.items), len(self.service.approved_opponents())
        return len(self.service.pending_opponents()), len(self.model.items)

    def sync_buttons(self) -> None:
        pending_mode = self.model.mode is ReviewMode.OPPONENTS_PENDING
        has_items = self.model.current is not None
        pending_count, approved_count = self._counts()
        self.previous_button.disabled = not self.model.has_previous
        self.next_button.disabled = not self.model.has_next
        self.pending_mode_button.label = f"⏳ Pending ({pending_count})"
        self.approved_mode_button.label = f"✅ Approved ({approved_count})"
        self.pending_mode_button.style = (
            discord.ButtonStyle.primary if pending_mode else discord.ButtonStyle.secondary
        )
        self.approved_mode_button.style = (
            discord.ButtonStyle.success if not pending_mode else discord.ButtonStyle.secondary
        )
        for button in (self.approve_button, self.reject_button, self.approve_all_button):
            button.disabled = not (pending_mode and has_items)
        for button in (self.publish_button, self.remove_button, self.clear_button):
            button.disabled = pending_mode or not has_items

    @discord.ui.button(label="◀️ Previous", style=discord.ButtonStyle.secondary, row=0)
    async def previous_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.previous()
        await self.render(interaction)

    @discord.ui.button(label="Next ▶️", style=discord.ButtonStyle.secondary, row=0)
    async def next_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.next()
        await self.render(interaction)

    @discord.ui.button(label="🔄 Refresh", style=discord.ButtonStyle.secondary, row=0)
    async def refresh_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.cursor = 0
        self.model.refresh(self.service)
        await self.render(interaction)

    @discord.ui.button(label="⏳ Pending", style=discord.ButtonStyle.primary, row=1)
    async def pending_mode_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.switch_mode(ReviewMode.OPPONENTS_PENDING, self.service)
        await self.render(interaction)

    @discord.ui.button(label="✅ Approved", style=discord.ButtonStyle.secondary, row=1)
    async def approved_mode_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.model.switch_mode(ReviewMode.OPPONENTS_APPROVED, self.service)
        await self.render(interaction)

    @discord.ui.button(label="✅ Approve", style=discord.ButtonStyle.success, row=2)
    async def approve_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        defense = self.model.current
        await interaction.response.defer()
        approved = self.service.approve_opponent(defense.id)
        self.model.refresh(self.service)
        await self.render(interaction, f"✅ Defense #{approved.number} approved!")

    @discord.ui.button(label="🗑️ Reject", style=discord.ButtonStyle.danger, row=2)
    async def reject_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.service.reject_opponent(self.model.current.id)
        self.model.refresh(self.service)
        await self.render(interaction)

    @discord.ui.button(label="✅ Approve All", style=discord.ButtonStyle.success, row=2)
    async def approve_all_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.defer()
        report = self.service.approve_all_opponents()
        self.model.cursor = 0
        self.model.refresh(self.service)
        content = f"✅ {report.succeeded} defenses approved!"
        if report.failed_ids:
            content += f"\n⚠️ {len(report.failed_ids)} could not be processed."
        await self.render(interaction, content)

    @discord.ui.button(label="📤 Publish All", style=discord.ButtonStyle.success, row=3)
    async def publish_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.send_modal(OpponentPublishModal(self, self.default_channel))

    @discord.ui.button(label="🗑️ Remove", style=discord.ButtonStyle.danger, row=3)
    async def remove_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.service.remove_opponent(self.model.current.id)
        self.model.refresh(self.service)
        await self.render(interaction)

    @discord.ui.button(label="🗑️ Clear All", style=discord.ButtonStyle.danger, row=3)
    async def clear_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        removed = self.service.clear_opponents()
        self.model.cursor = 0
        self.model.refresh(self.service)
        await self.render(interaction, f"🗑️ Cleared {removed} defenses.")


class IntakeMenuView(discord.ui.View):
    """DM menu letting a player pick which kind of upload follows."""

    def __init__(self, sessions: IntakeSessionStore, *, timeout: float = 900) -> None:
        super().__init__(timeout=timeout)
        self.sessions = sessions

    @discord.ui.button(label="🛡️ Submit Defense (code + image)", style=discord.ButtonStyle.primary)
    async def code_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.sessions.begin(str(interaction.user.id), IntakeState.AWAITING_CODE_AND_IMAGE)
        await interaction.response.send_message(
            "📝 Send your **image** and **code** together in the **same message**."
        )

    @discord.ui.button(label="⚔️ EOS Opponents Defenses", style=discord.ButtonStyle.secondary)
    async def opponents_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        self.sessions.begin(str(interaction.user.id), IntakeState.AWAITING_OPPONENT_IMAGES)
        await interaction.response.send_message(
            "🖼️ Send your opponent defense screenshots (several per message is fine).\n"
            "Type **done** when you are finished."
        )


__all__: List[str] = [
    "ArchiveReviewView",
    "IntakeMenuView",
    "OpponentReviewView",
    "SubmissionReviewView",
    "describe_result",
    "open_archive_view",
]
