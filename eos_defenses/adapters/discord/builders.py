"""Discord embed/message builders.

Pure-ish construction helpers for Discord UI objects. Keeping these in a
separate module makes them easy to unit test and reuse across views.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import discord

from ...models import ArchiveReason, ArchivedSubmission, OpponentDefense, Submission
from ...scheduler import ScheduleStatus
from ...sessions import ReviewMode, ReviewView

_FIELD_LIMIT = 1000


def _clamp_field(text: str) -> str:
    if len(text) <= _FIELD_LIMIT:
        return text
    return text[: _FIELD_LIMIT - 1].rstrip() + "…"


def make_file(data: bytes, filename: str) -> discord.File:
    return discord.File(io.BytesIO(data), filename=filename)


def build_empty_embed(mode: ReviewMode) -> discord.Embed:
    titles = {
        ReviewMode.SUBMISSIONS: (
            "📭 No Pending Submissions",
            "There are no submissions waiting to be published.\n\n"
            "Players can send their defenses via DM to the bot.",
        ),
        ReviewMode.ARCHIVE: (
            "📦 Archive is empty",
            "No deleted or published submissions yet.",
        ),
        ReviewMode.OPPONENTS_PENDING: (
            "📭 No Pending Defenses",
            "There are no opponent defenses waiting for review.\n\n"
            "Players can send images via DM → ⚔️ EOS Opponents Defenses",
        ),
        ReviewMode.OPPONENTS_APPROVED: (
            "📭 No Approved Defenses",
            "No defenses have been approved yet.\n\nReview pending defenses first.",
        ),
    }
    title, description = titles[mode]
    return discord.Embed(
        title=title,
        description=description,
        colour=discord.Color.light_grey(),
        timestamp=datetime.now(timezone.utc),
    )


def build_submission_embed(
    submission: Submission,
    view: ReviewView,
    *,
    preview_length: int = 100,
) -> Tuple[discord.Embed, List[discord.File]]:
    """Embed for the pending-submission review screen."""

    code = submission.code if view.show_full_code else submission.code_preview(preview_length)
    embed = discord.Embed(
        title=f"📋 Submission ({view.position_label()})",
        colour=discord.Color.blue(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="🆔 ID", value=str(submission.id), inline=True)
    embed.add_field(name="👤 Player", value=f"<@{submission.user_id}>", inline=True)
    embed.add_field(name="📛 Username", value=submission.username, inline=True)
    embed.add_field(name="📅 Date", value=submission.created_at, inline=True)
    if view.season:
        embed.add_field(name="🏆 Season", value=view.season, inline=True)
    if submission.extra_mention:
        embed.add_field(name="➕ Extra Mention", value=f"<@{submission.extra_mention}>", inline=True)
    if submission.message:
        embed.add_field(name="💬 Message", value=_clamp_field(submission.message), inline=False)
    embed.add_field(name="📝 Code", value=_clamp_field(f"```\n{code}\n```"), inline=False)

    files: List[discord.File] = []
    if submission.image_data:
        filename = submission.image_filename or "image.png"
        files.append(make_file(submission.image_data, filename))
        embed.set_image(url=f"attachment://{filename}")
    return embed, files


def build_archive_embed(
    entry: ArchivedSubmission, view: ReviewView
) -> Tuple[discord.Embed, List[discord.File]]:
    published = entry.archive_reason is ArchiveReason.PUBLISHED
    embed = discord.Embed(
        title=f"📦 Archive ({view.position_label()})",
        colour=discord.Color.green() if published else discord.Color.red(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="🆔 Archive ID", value=str(entry.id), inline=True)
    embed.add_field(name="👤 Player", value=f"<@{entry.user_id}>", inline=True)
    embed.add_field(name="📛 Username", value=entry.username, inline=True)
    embed.add_field(
        name="📌 Status",
        value="✅ Published" if published else "🗑️ Deleted",
        inline=True,
    )
    embed.add_field(name="📅 Created", value=entry.created_at, inline=True)
    embed.add_field(name="📦 Archived", value=entry.archived_at or "N/A", inline=True)
    embed.add_field(name="📝 Code", value=_clamp_field(f"```\n{entry.code}\n```"), inline=False)

    files: List[discord.File] = []
    if entry.image_data:
        filename = entry.image_filename or "image.png"
        files.append(make_file(entry.image_data, filename))
        embed.set_image(url=f"attachment://{filename}")
    return embed, files


def build_opponent_embed(
    defense: OpponentDefense, view: ReviewView
) -> Tuple[discord.Embed, List[discord.File]]:
    approved = view.mode is ReviewMode.OPPONENTS_APPROVED
    title = "✅ Approved" if approved else "⏳ Pending Review"
    embed = discord.Embed(
        title=f"{title} ({view.position_label()})",
        colour=discord.Color.green() if approved else discord.Color.orange(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="🆔 ID", value=str(defense.id), inline=True)
    embed.add_field(name="👤 Player", value=f"<@{defense.user_id}>", inline=True)
    embed.add_field(name="📛 Username", value=defense.username, inline=True)
    embed.add_field(name="📅 Date", value=defense.created_at, inline=True)
    if approved and defense.number is not None:
        embed.add_field(name="🔢 Number", value=f"#{defense.number}", inline=True)
        embed.add_field(
            name="📤 Published", value="Yes" if defense.published else "No", inline=True
        )

    image = defense.processed_image if approved and defense.processed_image else defense.image_data
    filename = defense.image_filename or "defense.png"
    if approved and defense.processed_image:
        filename = defense.publish_filename
    embed.set_image(url=f"attachment://{filename}")
    return embed, [make_file(image, filename)]


def build_review_page(
    view: ReviewView, *, preview_length: int = 100
) -> Tuple[discord.Embed, List[discord.File]]:
    """Render whatever the view's cursor currently points at."""

    item = view.current
    if item is None:
        return build_empty_embed(view.mode), []
    if view.mode is ReviewMode.SUBMISSIONS:
        return build_submission_embed(item, view, preview_length=preview_length)
    if view.mode is ReviewMode.ARCHIVE:
        return build_archive_embed(item, view)
    return build_opponent_embed(item, view)


def build_schedule_status_message(status: ScheduleStatus) -> str:
    if not status.active:
        return "⏰ No scheduled publish is armed."
    lines = [f"⏰ **Scheduled for {status.date} at {status.time} UTC**"]
    if status.channel_id is not None:
        lines.append(f"📢 **Channel:** <#{status.channel_id}>")
    if status.season:
        lines.append(f"🏆 **Season:** {status.season}")
    return "\n".join(lines)


def build_submission_receipt(submission: Submission) -> str:
    preview = submission.code_preview(50)
    return (
        f"✅ **Submission received!** #{submission.id}\n\n"
        "🙏 Thank you for sharing your defense! Your contribution helps the team! 💪\n\n"
        f"📝 Code: `{preview}`\n🖼️ Image: ✅"
    )


def build_admin_notification(submission: Submission) -> Tuple[discord.Embed, Optional[discord.File]]:
    embed = discord.Embed(
        title="📥 New Submission Received!",
        colour=discord.Color.green(),
        timestamp=datetime.now(timezone.utc),
    )
    embed.add_field(name="🆔 ID", value=str(submission.id), inline=True)
    embed.add_field(name="👤 Player", value=f"<@{submission.user_id}>", inline=True)
    embed.add_field(name="📛 Username", value=submission.username, inline=True)
    embed.set_footer(text="Use /list to manage submissions")
    file: Optional[discord.File] = None
    if submission.image_data:
        filename = submission.image_filename or "image.png"
        file = make_file(submission.image_data, filename)
        embed.set_image(url=f"attachment://{filename}")
    return embed, file


__all__ = [
    "build_admin_notification",
    "build_archive_embed",
    "build_empty_embed",
    "build_opponent_embed",
    "build_review_page",
    "build_schedule_status_message",
    "build_submission_embed",
    "build_submission_receipt",
    "make_file",
]
