"""Configuration loading utilities for the EOS defenses bot."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"


@dataclass(frozen=True)
class CropBox:
    """Fractions of the screenshot trimmed from each edge."""

    top: float = 0.02
    bottom: float = 0.50
    left: float = 0.05
    right: float = 0.25

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CropBox":
        return CropBox(
            top=float(data.get("top", 0.02)),
            bottom=float(data.get("bottom", 0.50)),
            left=float(data.get("left", 0.05)),
            right=float(data.get("right", 0.25)),
        )


@dataclass(frozen=True)
class NumberStyle:
    """How the approval number is painted on opponent screenshots."""

    size_ratio: float = 0.15
    margin: int = 20
    fill: str = "#FF0000"
    stroke: str = "#FFFFFF"
    stroke_width: int = 3

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "NumberStyle":
        return NumberStyle(
            size_ratio=float(data.get("size_ratio", 0.15)),
            margin=int(data.get("margin", 20)),
            fill=str(data.get("fill", "#FF0000")),
            stroke=str(data.get("stroke", "#FFFFFF")),
            stroke_width=int(data.get("stroke_width", 3)),
        )


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    default_season: str
    thread_title: str
    thread_auto_archive_minutes: int
    intro_message: str
    published_ack: str
    opponent_publish_delay_seconds: float
    opponent_divider: str
    opponent_opening_message: str
    opponent_closing_message: str
    crop: CropBox
    number_style: NumberStyle
    session_timeout_minutes: float
    max_opponent_images: int
    code_preview_length: int
    view_timeout_seconds: float

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        publishing = data.get("publishing", {})
        opponents = data.get("opponents", {})
        intake = data.get("intake", {})
        review = data.get("review", {})
        return Settings(
            default_season=str(publishing.get("default_season", "158")),
            thread_title=str(publishing.get("thread_title", "Code")),
            thread_auto_archive_minutes=int(publishing.get("thread_auto_archive_minutes", 1440)),
            intro_message=publishing["intro_message"],
            published_ack=publishing["published_ack"],
            opponent_publish_delay_seconds=float(opponents.get("publish_delay_seconds", 0.5)),
            opponent_divider=str(opponents.get("divider", "──────────────────────")),
            opponent_opening_message=opponents["opening_message"],
            opponent_closing_message=opponents["closing_message"],
            crop=CropBox.from_dict(opponents.get("crop", {})),
            number_style=NumberStyle.from_dict(opponents.get("number", {})),
            session_timeout_minutes=float(intake.get("session_timeout_minutes", 15)),
            max_opponent_images=int(intake.get("max_opponent_images", 20)),
            code_preview_length=int(review.get("code_preview_length", 100)),
            view_timeout_seconds=float(review.get("view_timeout_seconds", 600)),
        )

    def render_intro(self, season: str) -> str:
        return self.intro_message.format(season=season)

    def render_ack(self, channel_id: int | str) -> str:
        return self.published_ack.format(channel_id=channel_id)

    def render_opponent_opening(self, season: str) -> str:
        return self.opponent_opening_message.format(season=season)


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.environ.get("EOS_SETTINGS_PATH")
        self._path = path or (Path(env_path) if env_path else DEFAULT_SETTINGS_PATH)
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["CropBox", "NumberStyle", "Settings", "SettingsLoader", "get_settings"]
