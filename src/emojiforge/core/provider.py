"""Inference provider client for emoji generation jobs.

The orchestrator talks to the provider through the :class:`InferenceProvider`
protocol: submit a job, read its status, and download the artifact a
finished job points at.  :class:`ReplicateProvider` implements it against
the Replicate predictions API with a shared ``httpx.AsyncClient``.

Job Status Mapping
------------------
Replicate reports ``starting``, ``processing``, ``succeeded``, ``failed`` and
``canceled``.  These collapse into the three states the orchestrator cares
about:

==============================  ==============
Provider status                 JobStatus
==============================  ==============
``starting``, ``processing``    ``PENDING``
``succeeded``                   ``SUCCEEDED``
``failed``, ``canceled``        ``FAILED``
==============================  ==============
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from emojiforge.core.errors import ArtifactFetchFailed, ProviderRequestFailed

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_STATUS_MAP = {
    "starting": JobStatus.PENDING,
    "processing": JobStatus.PENDING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
}


@dataclass(frozen=True)
class GenerationJob:
    """Snapshot of one provider job.

    Attributes:
        id: Opaque job identifier issued by the provider.
        status: Collapsed job state.
        output: Provider output; only meaningful when ``status`` is
            ``SUCCEEDED``.
        error: Provider error detail; only meaningful when ``status`` is
            ``FAILED``.
    """

    id: str
    status: JobStatus
    output: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.PENDING

    @classmethod
    def from_prediction(cls, prediction: dict) -> GenerationJob:
        """Build a job snapshot from a Replicate prediction body."""
        raw_status = prediction.get("status")
        status = _STATUS_MAP.get(raw_status)
        if status is None:
            logger.warning(f"Unknown prediction status {raw_status!r}, treating as pending")
            status = JobStatus.PENDING

        error = prediction.get("error")
        if status is JobStatus.FAILED and error is None and raw_status == "canceled":
            error = "Prediction was canceled"

        return cls(
            id=str(prediction.get("id", "")),
            status=status,
            output=prediction.get("output") if status is JobStatus.SUCCEEDED else None,
            error=str(error) if status is JobStatus.FAILED and error is not None else None,
        )


class InferenceProvider(Protocol):
    async def submit(self, job_input: dict) -> str: ...

    async def get_job(self, job_id: str) -> GenerationJob: ...

    async def fetch_artifact(self, url: str) -> bytes: ...


class ReplicateProvider:
    """Replicate predictions API client.

    The HTTP client is owned by the provider unless one is passed in, and is
    closed by :meth:`aclose`.  Artifact downloads go through the same client
    but without the API token, since output URLs are public.
    """

    def __init__(
        self,
        *,
        api_url: str,
        api_token: str,
        model_version: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.model_version = model_version
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Provider returned {e.response.status_code} for {method} {url}")
            raise ProviderRequestFailed(
                f"Provider request failed with status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Provider request {method} {url} failed: {e}")
            raise ProviderRequestFailed(f"Provider request failed: {e}") from e

        if not isinstance(body, dict):
            logger.error(f"Provider returned a {type(body).__name__} body for {method} {url}")
            raise ProviderRequestFailed("Provider returned a non-object body")
        return body

    async def submit(self, job_input: dict) -> str:
        """Create a prediction and return its id."""
        prediction = await self._request(
            "POST",
            f"{self.api_url}/predictions",
            json={"version": self.model_version, "input": job_input},
        )
        job_id = prediction.get("id")
        if not job_id:
            raise ProviderRequestFailed("Provider response did not include a prediction id")

        logger.info(f"Submitted prediction {job_id}")
        return job_id

    async def get_job(self, job_id: str) -> GenerationJob:
        prediction = await self._request("GET", f"{self.api_url}/predictions/{job_id}")
        return GenerationJob.from_prediction(prediction)

    async def fetch_artifact(self, url: str) -> bytes:
        """Download the bytes behind a prediction output URL.

        Raises:
            ArtifactFetchFailed: Transport error or non-success response
        """
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise ArtifactFetchFailed(f"Failed to fetch image from provider: {e}") from e

        if not response.is_success:
            raise ArtifactFetchFailed(
                f"Failed to fetch image from provider: "
                f"{response.status_code} {response.reason_phrase}"
            )
        return response.content
