"""Pydantic request models for the Emoji Forge API.

These models define the JSON schema for the endpoints that accept a body.
FastAPI uses them for automatic request validation, serialisation, and
OpenAPI documentation generation.

Models
------
GenerateRequest
    Payload for ``POST /api/generate`` — the prompt to turn into an emoji.
LikeRequest
    Payload for ``POST /api/like`` — the emoji to add a like to.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

MAX_PROMPT_LENGTH = 500


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        prompt: Free-text description of the emoji.  Stored exactly as sent;
            it is only wrapped in the prompt template on its way to the
            provider.
    """

    prompt: str = Field(
        ...,
        min_length=1,
        max_length=MAX_PROMPT_LENGTH,
        description="Free-text description of the emoji (e.g. 'a happy cat').",
    )

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        # Checked without stripping: the stored prompt must match the input.
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value


class LikeRequest(BaseModel):
    """Request body for the ``POST /api/like`` endpoint.

    Attributes:
        emoji_id: UUID of the emoji to like.
    """

    emoji_id: str = Field(
        ...,
        min_length=1,
        description="UUID of the emoji to like.",
    )
