"""Tests for the DM intake handler."""
from __future__ import annotations

import dataclasses
from types import SimpleNamespace

import pytest

from eos_defenses.intake import MENU_PROMPT, MISSING_CODE, MISSING_IMAGE, IntakeHandler
from eos_defenses.service import DefenseService
from eos_defenses.sessions import IntakeSessionStore, IntakeState

from conftest import fake_transform


class FakeAttachment:
    def __init__(self, filename: str, data: bytes, content_type: str = "image/png") -> None:
        self.filename = filename
        self.content_type = content_type
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakeMessage:
    def __init__(self, content="", attachments=(), *, user_id=1, bot=False, guild=None) -> None:
        self.content = content
        self.attachments = list(attachments)
        self.author = SimpleNamespace(id=user_id, name=f"player{user_id}", bot=bot)
        self.guild = guild
        self.replies = []

    async def reply(self, content=None, **kwargs):
        self.replies.append((content, kwargs))

    @property
    def last_reply(self):
        return self.replies[-1][0]


@pytest.fixture
def sessions():
    return IntakeSessionStore()


@pytest.fixture
def notified():
    return []


@pytest.fixture
def handler(service, sessions, notified):
    async def notify(submission):
        notified.append(submission)

    return IntakeHandler(
        service, sessions, menu_factory=lambda: "menu-view", admin_notifier=notify
    )


@pytest.mark.asyncio
async def test_code_and_image_together_is_submitted(handler, service, notified):
    """A DM with both image and code should be stored straight away."""
    message = FakeMessage("  CODE-123 ", [FakeAttachment("def.png", b"png-bytes")])

    await handler.handle(message)

    pending = service.pending_submissions()
    assert len(pending) == 1
    assert pending[0].code == "CODE-123"
    assert pending[0].user_id == "1"
    assert pending[0].image_data == b"png-bytes"
    assert message.last_reply.startswith("✅ **Submission received!**")
    assert notified == pending


@pytest.mark.asyncio
async def test_text_only_dm_shows_menu(handler, service):
    message = FakeMessage("hello")

    await handler.handle(message)

    assert message.replies == [(MENU_PROMPT, {"view": "menu-view"})]
    assert service.pending_submissions() == []


@pytest.mark.asyncio
async def test_without_menu_factory_explains_format(service, sessions):
    handler = IntakeHandler(service, sessions)
    message = FakeMessage("hello")

    await handler.handle(message)

    assert message.last_reply == MISSING_IMAGE


@pytest.mark.asyncio
async def test_awaiting_code_requires_both_parts(handler, sessions, service):
    """In the code step, a lone image or lone text should be bounced back."""
    sessions.begin("1", IntakeState.AWAITING_CODE_AND_IMAGE)

    image_only = FakeMessage("", [FakeAttachment("a.png", b"x")])
    await handler.handle(image_only)
    text_only = FakeMessage("CODE")
    await handler.handle(text_only)

    assert image_only.last_reply == MISSING_CODE
    assert text_only.last_reply == MISSING_IMAGE
    assert service.pending_submissions() == []
    assert sessions.state("1") is IntakeState.AWAITING_CODE_AND_IMAGE


@pytest.mark.asyncio
async def test_successful_submission_ends_session(handler, sessions):
    sessions.begin("1", IntakeState.AWAITING_CODE_AND_IMAGE)

    await handler.handle(FakeMessage("CODE", [FakeAttachment("a.png", b"x")]))

    assert sessions.state("1") is IntakeState.IDLE


@pytest.mark.asyncio
async def test_non_image_attachments_are_ignored(handler, service):
    message = FakeMessage("CODE", [FakeAttachment("notes.txt", b"x", "text/plain")])

    await handler.handle(message)

    assert service.pending_submissions() == []
    assert message.replies[0][0] == MENU_PROMPT


@pytest.mark.asyncio
async def test_opponent_images_collected_until_done(handler, sessions, service):
    sessions.begin("1", IntakeState.AWAITING_OPPONENT_IMAGES)

    first = FakeMessage("", [FakeAttachment("a.png", b"a"), FakeAttachment("b.png", b"b")])
    await handler.handle(first)
    second = FakeMessage("", [FakeAttachment("c.png", b"c")])
    await handler.handle(second)
    done = FakeMessage("Done")
    await handler.handle(done)

    assert [d.image_data for d in service.pending_opponents()] == [b"a", b"b", b"c"]
    assert "2 screenshot(s) received (2 this session)" in first.last_reply
    assert "(3 this session)" in second.last_reply
    assert "3 opponent defense(s)" in done.last_reply
    assert sessions.state("1") is IntakeState.IDLE


@pytest.mark.asyncio
async def test_opponent_upload_limit(store, settings, sessions):
    settings = dataclasses.replace(settings, max_opponent_images=2)
    service = DefenseService(store, settings=settings, image_transform=fake_transform)
    handler = IntakeHandler(service, sessions)
    sessions.begin("1", IntakeState.AWAITING_OPPONENT_IMAGES)
    message = FakeMessage(
        "", [FakeAttachment(f"{n}.png", bytes([n + 1])) for n in range(3)]
    )

    await handler.handle(message)

    assert len(service.pending_opponents()) == 2
    assert any("Limit of 2" in content for content, _ in message.replies)


@pytest.mark.asyncio
async def test_opponent_step_without_image_prompts(handler, sessions):
    sessions.begin("1", IntakeState.AWAITING_OPPONENT_IMAGES)
    message = FakeMessage("what now?")

    await handler.handle(message)

    assert "type **done**" in message.last_reply
    assert sessions.state("1") is IntakeState.AWAITING_OPPONENT_IMAGES


@pytest.mark.asyncio
async def test_guild_and_bot_messages_ignored(handler, service):
    in_guild = FakeMessage("CODE", [FakeAttachment("a.png", b"x")], guild=object())
    from_bot = FakeMessage("CODE", [FakeAttachment("a.png", b"x")], bot=True)

    await handler.handle(in_guild)
    await handler.handle(from_bot)

    assert in_guild.replies == []
    assert from_bot.replies == []
    assert service.pending_submissions() == []
