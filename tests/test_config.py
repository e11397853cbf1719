"""Tests for YAML settings loading."""
from __future__ import annotations

from pathlib import Path

from eos_defenses.config import CropBox, NumberStyle, SettingsLoader, get_settings


def test_default_settings_load():
    settings = get_settings()

    assert settings.default_season == "158"
    assert settings.thread_title == "Code"
    assert settings.opponent_publish_delay_seconds == 0.5
    assert settings.crop == CropBox()
    assert settings.number_style == NumberStyle()
    assert settings.max_opponent_images == 20


def test_templates_render_placeholders():
    settings = get_settings()

    assert "s160-eos-defenses" in settings.render_intro("160")
    assert "<#4242>" in settings.render_ack(4242)
    assert "SEASON 160 EOS DEFENSES" in settings.render_opponent_opening("160")


def test_custom_settings_file(tmp_path: Path, monkeypatch):
    """EOS_SETTINGS_PATH should point the loader at another file."""
    path = tmp_path / "settings.yaml"
    path.write_text(
        """
publishing:
  default_season: "200"
  intro_message: "Season {season} starts"
  published_ack: "Live in <#{channel_id}>"
opponents:
  opening_message: "Opening {season}"
  closing_message: "Bye"
  crop:
    bottom: 0.4
intake:
  max_opponent_images: 5
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("EOS_SETTINGS_PATH", str(path))

    loader = SettingsLoader()
    settings = loader.load()

    assert loader.path == path
    assert settings.default_season == "200"
    assert settings.render_intro("201") == "Season 201 starts"
    assert settings.crop.bottom == 0.4
    assert settings.crop.top == 0.02
    assert settings.max_opponent_images == 5
    assert settings.thread_auto_archive_minutes == 1440
    assert loader.load() is settings
    assert loader.load(force=True) is not settings
