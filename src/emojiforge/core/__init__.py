"""Core components for Emoji Forge.

Modules
-------
config
    Pydantic Settings configuration and the global ``config`` instance.
errors
    Error taxonomy with HTTP status classification.
database
    SQLite store: credit ledger, profiles, and emoji records.
provider
    Inference provider protocol and the Replicate client.
blob_store
    No-overwrite artifact storage with public URLs.
orchestrator
    Credit-charged generation lifecycle.
"""

from emojiforge.core.config import EmojiForgeConfig, config
from emojiforge.core.database import (
    CreditDecrement,
    CreditLedger,
    Database,
    EmojiRecord,
    EmojiRepository,
    ProfileRepository,
)
from emojiforge.core.orchestrator import GenerationOrchestrator, GenerationResult

__all__ = [
    "EmojiForgeConfig",
    "config",
    "CreditDecrement",
    "CreditLedger",
    "Database",
    "EmojiRecord",
    "EmojiRepository",
    "ProfileRepository",
    "GenerationOrchestrator",
    "GenerationResult",
]
