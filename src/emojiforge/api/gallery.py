"""Emoji listing and download helpers for the Emoji Forge API.

This module keeps the paging arithmetic for ``GET /api/emojis`` out of
``emojiforge.api.main`` so route handlers can focus on HTTP concerns while
the listing rules stay testable as a small unit.

Listing rules:

- order is newest first by default, or most-liked first with ``sort=likes``
- a listing can be scoped to one creator
- the requested page is clamped to the valid range
"""

from __future__ import annotations

import re
from typing import Literal

from emojiforge.core.database import EmojiRepository

SortOrder = Literal["recent", "likes"]


def page_count(total: int, per_page: int) -> int:
    """Number of pages needed for ``total`` items; an empty listing has one."""
    return (total + per_page - 1) // per_page if total > 0 else 1


def paginate_emojis(
    emojis: EmojiRepository,
    page: int,
    per_page: int,
    *,
    creator_user_id: str | None = None,
    sort: SortOrder = "recent",
) -> dict:
    """Return one page of emojis and clamp the requested page to valid bounds.

    Clamping keeps the response consistent when a client asks for a page past
    the end, for example after the listing was filtered down to fewer items.

    Args:
        emojis: Repository to read from.
        page: Requested one-based page number.
        per_page: Requested items per page.
        creator_user_id: Optional creator to filter by.
        sort: ``"recent"`` or ``"likes"``.

    Returns:
        Dictionary containing ``total``, ``page``, ``per_page``, ``pages``, and
        ``emojis`` for the resolved page.
    """
    total = emojis.count(creator_user_id)
    pages = page_count(total, per_page)
    resolved_page = min(max(page, 1), pages)

    records = emojis.list_emojis(
        limit=per_page,
        offset=(resolved_page - 1) * per_page,
        creator_user_id=creator_user_id,
        sort=sort,
    )

    return {
        "total": total,
        "page": resolved_page,
        "per_page": per_page,
        "pages": pages,
        "emojis": [record.to_dict() for record in records],
    }


def download_filename(prompt: str, extension: str) -> str:
    """Attachment filename for a downloaded emoji.

    The first 20 characters of the prompt are lowercased, and every character
    outside ``a-z0-9`` becomes a hyphen: ``"A happy cat!"`` with ``.png``
    gives ``emoji-a-happy-cat-.png``.
    """
    slug = re.sub(r"[^a-z0-9]", "-", prompt[:20], flags=re.IGNORECASE).lower()
    return f"emoji-{slug}{extension}"
