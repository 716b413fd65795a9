"""Generation request lifecycle: spend a credit, run a job, keep the result.

:class:`GenerationOrchestrator` is the single place that turns a prompt into
a persisted :class:`~emojiforge.core.database.EmojiRecord`.  One call to
:meth:`GenerationOrchestrator.handle` walks these steps in order:

1. **Spend** — the credit ledger decrements one credit.  Unknown users and
   empty balances stop here, before the provider is ever contacted.
2. **Submit** — a job is created with the fixed parameter block from
   :meth:`EmojiForgeConfig.job_input`.
3. **Poll** — job status is read every ``poll_interval_seconds`` until it is
   terminal or ``poll_timeout_seconds`` runs out.
4. **Validate** — a succeeded job must expose a non-empty list whose first
   element is a URL string.
5. **Fetch** — the artifact is downloaded and decoded with Pillow to learn
   its real format.
6. **Store** — the bytes are written to blob storage under a fresh name.
7. **Record** — the emoji row is inserted, pointing at the blob's public URL.

The database insert is the last step, so a failure anywhere leaves no
record behind.  A failed insert can leave a stored blob without a record;
that case is logged with the blob name for cleanup.

Credits spent on a failed attempt stay spent unless ``refund_on_failure`` is
enabled, in which case one credit is returned before the error propagates.

Blocking store calls run in the thread pool so that polling for one request
never stalls others.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from PIL import Image
from starlette.concurrency import run_in_threadpool

from emojiforge.core.blob_store import CONTENT_TYPE_EXTENSIONS, BlobStore
from emojiforge.core.config import EmojiForgeConfig
from emojiforge.core.database import CreditLedger, EmojiRecord, EmojiRepository
from emojiforge.core.errors import (
    ArtifactFetchFailed,
    GenerationTimeout,
    InvalidProviderOutput,
    ProviderJobFailed,
    RecordWriteFailed,
)
from emojiforge.core.provider import GenerationJob, InferenceProvider, JobStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    """A new emoji together with the creator's balance after paying for it."""

    record: EmojiRecord
    remaining_credits: int


def artifact_url(job: GenerationJob) -> str:
    """Extract the artifact location from a succeeded job.

    Raises:
        InvalidProviderOutput: Output is not a non-empty list or tuple whose
            first element is a string
    """
    output = job.output
    if not isinstance(output, (list, tuple)) or len(output) == 0:
        raise InvalidProviderOutput("No output from provider")

    url = output[0]
    if not isinstance(url, str) or not url:
        raise InvalidProviderOutput("Invalid image URL from provider")
    return url


def detect_image_type(data: bytes) -> str:
    """Return the MIME type of an image payload.

    Raises:
        ArtifactFetchFailed: The bytes are not an image in a storable format
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (OSError, SyntaxError, ValueError) as e:
        raise ArtifactFetchFailed(f"Fetched artifact is not a valid image: {e}") from e

    content_type = Image.MIME.get(image_format or "")
    if content_type not in CONTENT_TYPE_EXTENSIONS:
        raise ArtifactFetchFailed(f"Unsupported artifact format: {image_format}")
    return content_type


class GenerationOrchestrator:
    """Runs one generation request from credit check to stored record.

    Args:
        provider: Inference provider used to submit and poll jobs.
        blob_store: Storage for artifact bytes.
        ledger: Credit ledger charged before each job.
        emojis: Repository the finished record is written to.
        settings: Supplies the job parameter block, polling budget, and
            refund policy.
        sleep: Awaitable delay between polls.
        clock: Monotonic clock used for the polling deadline.
    """

    def __init__(
        self,
        *,
        provider: InferenceProvider,
        blob_store: BlobStore,
        ledger: CreditLedger,
        emojis: EmojiRepository,
        settings: EmojiForgeConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.blob_store = blob_store
        self.ledger = ledger
        self.emojis = emojis
        self.settings = settings
        self._sleep = sleep
        self._clock = clock

    async def handle(self, user_id: str, prompt: str) -> GenerationResult:
        """Charge one credit and generate an emoji for ``prompt``.

        Raises:
            UserNotFound, InsufficientCredit: Raised by the ledger before any
                provider call.
            EmojiForgeError: Any generation failure after the credit was spent.
        """
        decrement = await run_in_threadpool(self.ledger.decrement, user_id)
        remaining = decrement.after

        try:
            record = await self.generate(user_id, prompt)
        except Exception:
            if self.settings.refund_on_failure:
                await self._refund(user_id)
            raise

        return GenerationResult(record=record, remaining_credits=remaining)

    async def _refund(self, user_id: str) -> None:
        try:
            await run_in_threadpool(self.ledger.refund, user_id)
        except Exception:
            # The generation error is the one the caller needs to see.
            logger.exception(f"Failed to refund credit to {user_id}")

    async def generate(self, user_id: str, prompt: str) -> EmojiRecord:
        """Run a job for ``prompt`` and persist its artifact as a new record."""
        logger.info(f"Generating emoji for {user_id} with prompt: {prompt!r}")

        job_id = await self.provider.submit(self.settings.job_input(prompt))
        job = await self.wait_for_job(job_id)

        if job.status is JobStatus.FAILED:
            logger.warning(f"Prediction {job_id} failed: {job.error}")
            raise ProviderJobFailed(job_id, job.error)

        url = artifact_url(job)
        data = await self.provider.fetch_artifact(url)
        content_type = detect_image_type(data)

        blob_name = f"{uuid.uuid4()}{CONTENT_TYPE_EXTENSIONS[content_type]}"
        await run_in_threadpool(self.blob_store.write, blob_name, data, content_type)
        public_url = self.blob_store.public_url(blob_name)

        try:
            return await run_in_threadpool(
                lambda: self.emojis.create(
                    prompt=prompt,
                    image_url=public_url,
                    storage_path=blob_name,
                    creator_user_id=user_id,
                )
            )
        except RecordWriteFailed:
            logger.warning(f"Stored blob {blob_name} has no emoji record")
            raise

    async def wait_for_job(self, job_id: str) -> GenerationJob:
        """Poll a job until it reaches a terminal state.

        Raises:
            GenerationTimeout: The job is still pending after
                ``poll_timeout_seconds``
        """
        interval = self.settings.poll_interval_seconds
        budget = self.settings.poll_timeout_seconds
        deadline = self._clock() + budget

        job = await self.provider.get_job(job_id)
        while not job.is_terminal:
            if self._clock() >= deadline:
                logger.warning(f"Prediction {job_id} still pending after {budget}s")
                raise GenerationTimeout(job_id, budget)
            await self._sleep(interval)
            job = await self.provider.get_job(job_id)

        logger.debug(f"Prediction {job_id} finished with status {job.status.value}")
        return job
