"""Emoji Forge - prompt-to-emoji generation with per-user credits."""

__version__ = "0.1.0"

from emojiforge.core.config import EmojiForgeConfig, config

__all__ = [
    "EmojiForgeConfig",
    "config",
]
