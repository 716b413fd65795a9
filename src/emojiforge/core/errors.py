"""Error taxonomy for the generation request lifecycle.

Every failure a request can hit is an :class:`EmojiForgeError` subclass.  Each
class carries a stable ``kind`` string (used as the ``error`` field of API
responses) and an HTTP ``status_code`` that classifies it as client-caused
(4xx) or server-side (5xx).  The API layer registers a single exception
handler for the base class, so route handlers never build error responses
by hand.

Client errors
-------------
Unauthorized, InsufficientCredit, EmojiNotFound

Server errors
-------------
UserNotFound, ProviderRequestFailed, ProviderJobFailed,
InvalidProviderOutput, ArtifactFetchFailed, StorageWriteFailed,
RecordWriteFailed, GenerationTimeout
"""

from __future__ import annotations


class EmojiForgeError(Exception):
    """Base class for all request-aborting failures."""

    kind: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return cls.kind.replace("_", " ").capitalize()

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    def to_dict(self) -> dict:
        """Serialise to the JSON body returned by the API."""
        return {"error": self.kind, "detail": self.message}


class Unauthorized(EmojiForgeError):
    kind = "unauthorized"
    status_code = 401


class InsufficientCredit(EmojiForgeError):
    kind = "insufficient_credit"
    status_code = 400

    def __init__(self, user_id: str, balance: int):
        self.user_id = user_id
        self.balance = balance
        super().__init__("Insufficient credits")


class UserNotFound(EmojiForgeError):
    kind = "user_not_found"
    status_code = 500

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("User not found")


class EmojiNotFound(EmojiForgeError):
    kind = "emoji_not_found"
    status_code = 404

    def __init__(self, emoji_id: str):
        self.emoji_id = emoji_id
        super().__init__(f"Emoji not found: {emoji_id}")


class ProviderRequestFailed(EmojiForgeError):
    """The inference provider could not be reached or rejected a call."""

    kind = "provider_request_failed"
    status_code = 502


class ProviderJobFailed(EmojiForgeError):
    """The provider reported the job as failed."""

    kind = "provider_job_failed"
    status_code = 502

    def __init__(self, job_id: str, detail: str | None):
        self.job_id = job_id
        self.detail = detail
        super().__init__(f"Prediction failed: {detail}")


class InvalidProviderOutput(EmojiForgeError):
    """A succeeded job returned output that is not a list of URLs."""

    kind = "invalid_provider_output"
    status_code = 502


class ArtifactFetchFailed(EmojiForgeError):
    kind = "artifact_fetch_failed"
    status_code = 502


class StorageWriteFailed(EmojiForgeError):
    kind = "storage_write_failed"
    status_code = 500


class RecordWriteFailed(EmojiForgeError):
    kind = "record_write_failed"
    status_code = 500


class GenerationTimeout(EmojiForgeError):
    """The job did not reach a terminal state within the polling budget."""

    kind = "timeout"
    status_code = 504

    def __init__(self, job_id: str, waited_seconds: float):
        self.job_id = job_id
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Prediction {job_id} did not finish within {waited_seconds:.1f} seconds"
        )
