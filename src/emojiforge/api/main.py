"""Emoji Forge — FastAPI Application.

This module is the single entry point for the web application.  It defines
the application factory, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :class:`~emojiforge.core.config.EmojiForgeConfig`
  (``EMOJIFORGE_*`` environment variables).
- **Collaborators** — database, blob store, inference provider, and the
  :class:`~emojiforge.core.orchestrator.GenerationOrchestrator` built on top
  of them — are created in the lifespan handler and kept on ``app.state``.
  :func:`create_app` accepts replacements for the provider and blob store so
  tests can run without network access.
- **Identity** is read from the ``auth_header`` request header, which the
  upstream auth proxy sets for signed-in users.  Requests without it are
  rejected before any credit or provider call.
- **Errors** are :class:`~emojiforge.core.errors.EmojiForgeError` subclasses,
  turned into ``{"error": ..., "detail": ...}`` JSON by one exception handler.
- **Stored images** are served by FastAPI's ``StaticFiles`` at
  ``media_url_prefix``.

Endpoints
---------
========  ===============================  =================================
Method    Path                             Purpose
========  ===============================  =================================
GET       ``/api/health``                  Liveness and version
POST      ``/api/generate``                Spend a credit, generate an emoji
GET       ``/api/emojis``                  Paginated emoji listing
GET       ``/api/emojis/{id}``             Single emoji
GET       ``/api/emojis/{id}/download``    Image bytes as an attachment
POST      ``/api/like``                    Add one like to an emoji
POST      ``/api/profile/init``            Create the caller's profile
GET       ``/api/credits``                 Caller's credit balance
========  ===============================  =================================

Usage
-----
CLI (installed entry point)::

    emojiforge

Direct invocation::

    python -m emojiforge.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from emojiforge import __version__
from emojiforge.api.gallery import download_filename, paginate_emojis
from emojiforge.api.models import GenerateRequest, LikeRequest
from emojiforge.core.blob_store import CONTENT_TYPE_EXTENSIONS, BlobStore, LocalBlobStore
from emojiforge.core.config import EmojiForgeConfig, config
from emojiforge.core.database import (
    CreditLedger,
    Database,
    EmojiRepository,
    ProfileRepository,
)
from emojiforge.core.errors import EmojiForgeError, Unauthorized
from emojiforge.core.orchestrator import GenerationOrchestrator
from emojiforge.core.provider import InferenceProvider, ReplicateProvider

logger = logging.getLogger(__name__)

_EXTENSION_CONTENT_TYPES = {ext: ctype for ctype, ext in CONTENT_TYPE_EXTENSIONS.items()}


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: EmojiForgeConfig | None = None,
    *,
    provider: InferenceProvider | None = None,
    blob_store: BlobStore | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        provider: Inference provider.  Defaults to a :class:`ReplicateProvider`
            built from ``settings`` and closed on shutdown.
        blob_store: Artifact storage.  Defaults to a :class:`LocalBlobStore`
            rooted at ``settings.media_dir``.

    Returns:
        The configured application.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the request collaborators on startup, release them on shutdown.

        Args:
            app: The FastAPI application instance.

        Yields:
            Control back to the application for the duration of its lifetime.
        """
        # --- Startup -----------------------------------------------------------
        db = Database(settings.database_path, busy_timeout=settings.database_busy_timeout_seconds)
        owned_provider = None
        active_provider = provider
        if active_provider is None:
            owned_provider = ReplicateProvider(
                api_url=settings.replicate_api_url,
                api_token=settings.replicate_api_token,
                model_version=settings.replicate_model_version,
                timeout=settings.request_timeout_seconds,
            )
            active_provider = owned_provider

        app.state.ledger = CreditLedger(db)
        app.state.profiles = ProfileRepository(db)
        app.state.emojis = EmojiRepository(db)
        app.state.blob_store = blob_store or LocalBlobStore(
            settings.media_dir, settings.media_url_prefix
        )
        app.state.orchestrator = GenerationOrchestrator(
            provider=active_provider,
            blob_store=app.state.blob_store,
            ledger=app.state.ledger,
            emojis=app.state.emojis,
            settings=settings,
        )
        logger.info("Emoji Forge collaborators initialised.")

        yield  # Application runs here.

        # --- Shutdown ----------------------------------------------------------
        if owned_provider is not None:
            await owned_provider.aclose()
        logger.info("Emoji Forge shut down.")

    app = FastAPI(
        title="Emoji Forge",
        description="Prompt-to-emoji generation with per-user credits.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Stored images are served directly at the public URL prefix.
    app.mount(
        settings.media_url_prefix,
        StaticFiles(directory=str(settings.media_dir)),
        name="media",
    )

    app.add_exception_handler(EmojiForgeError, _handle_emojiforge_error)
    app.include_router(_build_router())
    return app


async def _handle_emojiforge_error(request: Request, exc: EmojiForgeError) -> JSONResponse:
    """Render a lifecycle error as JSON with its status classification."""
    if exc.is_client_error:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    else:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def current_user(request: Request) -> str:
    """Resolve the caller's identity from the auth header.

    Raises:
        Unauthorized: The header is missing or blank.
    """
    header = request.app.state.settings.auth_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise Unauthorized("Unauthorized")
    return user_id


def optional_user(request: Request) -> str | None:
    header = request.app.state.settings.auth_header
    return (request.headers.get(header) or "").strip() or None


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _build_router() -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.get("/health")
    async def health() -> dict:
        """Report liveness and the running version."""
        return {"status": "ok", "version": __version__}

    @router.post("/generate")
    async def generate_emoji(
        req: GenerateRequest,
        request: Request,
        user_id: str = Depends(current_user),
    ) -> dict:
        """Spend one credit and generate an emoji from the prompt.

        This endpoint:

        1. Resolves the caller (401 if anonymous).
        2. Decrements one credit (400 if the balance is zero).
        3. Submits and polls the provider job.
        4. Stores the image and writes the emoji record.

        Args:
            req: Validated :class:`GenerateRequest` payload.

        Returns:
            The new emoji record plus ``remaining_credits``.
        """
        orchestrator: GenerationOrchestrator = request.app.state.orchestrator
        result = await orchestrator.handle(user_id, req.prompt)
        return {**result.record.to_dict(), "remaining_credits": result.remaining_credits}

    @router.get("/emojis")
    def list_emojis(
        request: Request,
        page: int = 1,
        per_page: int = Query(default=20, ge=1, le=100),
        sort: Literal["recent", "likes"] = "recent",
        creator: str | None = None,
        mine: bool = False,
        user_id: str | None = Depends(optional_user),
    ) -> dict:
        """Return a paginated listing of emojis.

        Args:
            page: Page number (1-indexed).
            per_page: Number of emojis per page (1-100).
            sort: ``recent`` (newest first) or ``likes`` (most liked first).
            creator: Only list emojis created by this user id.
            mine: Only list the caller's own emojis (requires auth).

        Returns:
            Dictionary with ``total``, ``page``, ``per_page``, ``pages``,
            and ``emojis``.
        """
        if mine:
            if user_id is None:
                raise Unauthorized("Unauthorized")
            creator = user_id

        return paginate_emojis(
            request.app.state.emojis,
            page,
            per_page,
            creator_user_id=creator,
            sort=sort,
        )

    @router.get("/emojis/{emoji_id}")
    def get_emoji(emoji_id: str, request: Request) -> dict:
        """Return a single emoji record (404 if unknown)."""
        return request.app.state.emojis.get(emoji_id).to_dict()

    @router.get("/emojis/{emoji_id}/download")
    def download_emoji(emoji_id: str, request: Request) -> Response:
        """Return the stored image as a file download.

        Raises:
            HTTPException: 404 if the image file is no longer in storage.
        """
        record = request.app.state.emojis.get(emoji_id)
        try:
            data = request.app.state.blob_store.read(record.storage_path)
        except FileNotFoundError:
            raise HTTPException(status_code=404, detail="Image file not found")

        extension = "." + record.storage_path.rsplit(".", 1)[-1]
        media_type = _EXTENSION_CONTENT_TYPES.get(extension, "application/octet-stream")
        filename = download_filename(record.prompt, extension)
        return Response(
            content=data,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @router.post("/like")
    def like_emoji(req: LikeRequest, request: Request) -> dict:
        """Add one like to an emoji.

        The increment is applied to the stored count, so concurrent likes are
        never lost.

        Returns:
            Dictionary with ``success``, ``id``, and the new ``likes`` total.
        """
        likes = request.app.state.emojis.increment_likes(req.emoji_id)
        return {"success": True, "id": req.emoji_id, "likes": likes}

    @router.post("/profile/init")
    def init_profile(request: Request, user_id: str = Depends(current_user)) -> JSONResponse:
        """Create the caller's profile with the starting credit balance.

        Returns 201 when a profile was created and 200 when it already existed.
        """
        settings: EmojiForgeConfig = request.app.state.settings
        created = request.app.state.profiles.ensure(user_id, settings.default_credits)
        credits = request.app.state.ledger.balance(user_id)
        if created:
            return JSONResponse(
                status_code=201,
                content={"message": "Profile initialized successfully", "credits": credits},
            )
        return JSONResponse(
            status_code=200,
            content={"message": "Profile already exists", "credits": credits},
        )

    @router.get("/credits")
    def get_credits(request: Request, user_id: str = Depends(current_user)) -> dict:
        """Return the caller's remaining credits."""
        return {"user_id": user_id, "credits": request.app.state.ledger.balance(user_id)}

    return router


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port, and log level from :data:`~emojiforge.core.config.config`
    (``EMOJIFORGE_SERVER_HOST``, ``EMOJIFORGE_SERVER_PORT``,
    ``EMOJIFORGE_LOG_LEVEL``).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``emojiforge`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "emojiforge.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
