"""Channel routing for the EOS defenses bot.

Publish and admin channels come from ``EOS_CHANNEL_PUBLISH`` and
``EOS_CHANNEL_ADMIN``; either may be left unset.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

PUBLISH_CHANNEL_ENV = "EOS_CHANNEL_PUBLISH"
ADMIN_CHANNEL_ENV = "EOS_CHANNEL_ADMIN"


def _channel_id(environ: Mapping[str, str], key: str) -> Optional[int]:
    raw = (environ.get(key) or "").strip()
    if not raw:
        return None
    if not raw.isdigit():
        logger.warning("Ignoring %s=%r: channel ids are numeric", key, raw)
        return None
    return int(raw)


@dataclass(frozen=True)
class ChannelRouter:
    """Where scheduled/default publishes and admin notices are posted."""

    publish: Optional[int]
    admin: Optional[int]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ChannelRouter":
        environ = os.environ if environ is None else environ
        return cls(
            publish=_channel_id(environ, PUBLISH_CHANNEL_ENV),
            admin=_channel_id(environ, ADMIN_CHANNEL_ENV),
        )
