"""Shared fixtures for the EOS defenses test suite."""
from __future__ import annotations

import dataclasses
import io
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from eos_defenses import telemetry as telemetry_module
from eos_defenses.config import get_settings
from eos_defenses.service import DefenseService
from eos_defenses.state import DefenseStore


class TickingClock:
    """Deterministic clock that advances one step per call."""

    def __init__(
        self,
        start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
        step: timedelta = timedelta(seconds=1),
    ) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        self.current = self.current + self.step
        return self.current


def make_png(width: int = 200, height: int = 400, colour=(0, 0, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), colour).save(buffer, format="PNG")
    return buffer.getvalue()


def fake_transform(image_data: bytes, number: int) -> bytes:
    return b"processed-" + str(number).encode() + b"-" + image_data


@pytest.fixture(autouse=True)
def isolated_telemetry(tmp_path, monkeypatch):
    monkeypatch.setenv("EOS_TELEMETRY_DB", str(tmp_path / "telemetry.db"))
    monkeypatch.setattr(telemetry_module, "_telemetry", None)
    yield


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def settings():
    return dataclasses.replace(get_settings(), opponent_publish_delay_seconds=0.0)


@pytest.fixture
def store(tmp_path, clock) -> DefenseStore:
    return DefenseStore(tmp_path / "submissions.db", clock=clock)


@pytest.fixture
def service(store, settings) -> DefenseService:
    return DefenseService(store, settings=settings, image_transform=fake_transform)
