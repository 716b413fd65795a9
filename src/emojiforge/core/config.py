"""Configuration management for Emoji Forge.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the EMOJIFORGE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (EMOJIFORGE_* prefix)
2. .env file in the project root
3. Default values defined in EmojiForgeConfig

Example .env file:
    EMOJIFORGE_REPLICATE_API_TOKEN=r8_xxx
    EMOJIFORGE_POLL_TIMEOUT_SECONDS=90
    EMOJIFORGE_REFUND_ON_FAILURE=true
    EMOJIFORGE_DATABASE_PATH=data/emojiforge.db

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time and
is used as the default when the application factory is called without an
explicit configuration.  Tests construct their own instances instead.

Generation Parameter Block
--------------------------
The ``gen_*`` fields form the fixed parameter block sent with every job to
the inference provider.  They are policy, not user input: requests only ever
supply the prompt text, which is substituted into ``prompt_template``.  The
defaults reproduce the provider payload the emoji model was tuned against.

Polling Budget
--------------
Jobs are polled every ``poll_interval_seconds`` until they reach a terminal
state or ``poll_timeout_seconds`` elapses, whichever comes first.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmojiForgeConfig(BaseSettings):
    """Main configuration for Emoji Forge.

    Values are loaded from environment variables with the EMOJIFORGE_ prefix,
    with fallback to the defaults defined here.  The media directory and the
    database's parent directory are created if they don't exist.

    Attributes
    ----------
    Provider Settings:
        replicate_api_token : str
            Bearer token for the Replicate predictions API
        replicate_api_url : str
            Base URL of the predictions API
        replicate_model_version : str
            Model version hash submitted with every job
        request_timeout_seconds : float
            Per-request HTTP timeout for provider and artifact calls

    Generation Parameter Block:
        gen_width, gen_height : int
            Output image dimensions
        prompt_template : str
            Template wrapping the user prompt (must contain ``{prompt}``)
        gen_refine, gen_scheduler : str
            Refiner and scheduler names
        gen_lora_scale, gen_guidance_scale, gen_high_noise_frac,
        gen_prompt_strength : float
            Sampling parameters
        gen_num_outputs, gen_num_inference_steps : int
            Output count and inference step count
        gen_negative_prompt : str
            Negative prompt (empty by default)
        gen_apply_watermark : bool
            Provider watermarking (disabled)

    Polling:
        poll_interval_seconds : float
            Delay between job status checks
        poll_timeout_seconds : float
            Total polling budget before a job is abandoned

    Billing:
        default_credits : int
            Starting balance for newly initialized profiles
        refund_on_failure : bool
            Refund the spent credit when generation fails after the decrement

    Storage:
        database_path : Path
            SQLite database file
        database_busy_timeout_seconds : float
            How long a connection waits on a locked database
        media_dir : Path
            Directory holding stored artifacts
        media_url_prefix : str
            Public URL prefix under which ``media_dir`` is served

    Server:
        auth_header : str
            Request header carrying the authenticated user identity
        server_host, server_port : str, int
            uvicorn bind address
        log_level : str
            Root logger level used by ``main()``
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="EMOJIFORGE_",
        case_sensitive=False,
    )

    # Provider settings
    replicate_api_token: str = Field(
        default="",
        description="Bearer token for the Replicate predictions API",
    )
    replicate_api_url: str = Field(
        default="https://api.replicate.com/v1",
        description="Base URL of the predictions API",
    )
    replicate_model_version: str = Field(
        default="dee76b5afde21b0f01ed7925f0665b7e879c50ee718c5f78a9d38e04d523cc5e",
        description="Model version submitted with every prediction",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="HTTP timeout for provider and artifact requests",
        gt=0,
    )

    # Generation parameter block
    gen_width: int = Field(default=1024, ge=64, le=2048)
    gen_height: int = Field(default=1024, ge=64, le=2048)
    prompt_template: str = Field(
        default="A TOK emoji of {prompt}",
        description="Template applied to the user prompt",
    )
    gen_refine: str = Field(default="no_refiner")
    gen_scheduler: str = Field(default="K_EULER")
    gen_lora_scale: float = Field(default=0.6)
    gen_num_outputs: int = Field(default=1, ge=1)
    gen_guidance_scale: float = Field(default=7.5)
    gen_apply_watermark: bool = Field(default=False)
    gen_high_noise_frac: float = Field(default=0.8)
    gen_negative_prompt: str = Field(default="")
    gen_prompt_strength: float = Field(default=0.8)
    gen_num_inference_steps: int = Field(default=50, ge=1, le=500)

    # Polling
    poll_interval_seconds: float = Field(
        default=1.0,
        description="Delay between job status checks",
        ge=0,
    )
    poll_timeout_seconds: float = Field(
        default=120.0,
        description="Maximum time to wait for a job to finish",
        gt=0,
    )

    # Billing
    default_credits: int = Field(
        default=3,
        description="Credits granted to a newly initialized profile",
        ge=0,
    )
    refund_on_failure: bool = Field(
        default=False,
        description="Refund the credit when generation fails after it was spent",
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/emojiforge.db"),
        description="SQLite database file",
    )
    database_busy_timeout_seconds: float = Field(
        default=30.0,
        description="Seconds a connection waits for a locked database",
        gt=0,
    )
    media_dir: Path = Field(
        default=Path("media"),
        description="Directory holding stored emoji images",
    )
    media_url_prefix: str = Field(
        default="/media",
        description="Public URL prefix for stored emoji images",
    )

    # Server settings
    auth_header: str = Field(
        default="X-User-Id",
        description="Header carrying the authenticated user id from the auth proxy",
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Root logger level",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.media_dir.mkdir(parents=True, exist_ok=True)

    def job_input(self, prompt: str) -> dict:
        """Build the provider input payload for a user prompt.

        Key order matches the payload the emoji model version was published
        with, so the serialized request body is stable.

        Args:
            prompt: Prompt text exactly as supplied by the user.

        Returns:
            Dictionary ready to be sent as the ``input`` of a prediction.
        """
        return {
            "width": self.gen_width,
            "height": self.gen_height,
            "prompt": self.prompt_template.format(prompt=prompt),
            "refine": self.gen_refine,
            "scheduler": self.gen_scheduler,
            "lora_scale": self.gen_lora_scale,
            "num_outputs": self.gen_num_outputs,
            "guidance_scale": self.gen_guidance_scale,
            "apply_watermark": self.gen_apply_watermark,
            "high_noise_frac": self.gen_high_noise_frac,
            "negative_prompt": self.gen_negative_prompt,
            "prompt_strength": self.gen_prompt_strength,
            "num_inference_steps": self.gen_num_inference_steps,
        }


# Global configuration instance
# Loads values from environment variables (EMOJIFORGE_* prefix) and .env file.
config = EmojiForgeConfig()
