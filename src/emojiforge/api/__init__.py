"""Emoji Forge — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request models, and
the emoji listing helpers.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
gallery
    Paginated, filtered, and sorted emoji listings.
"""
